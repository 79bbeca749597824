"""
core/query.py -- Query Composer: request parameters -> refined SELECT.

Turns a listing request such as

    /api/v1/tours?difficulty=easy&price[lt]=1500&sort=-price,ratingsAverage
                 &fields=name,price&page=2&limit=10

into one SQLAlchemy Core Select. Four chainable steps, applied in order:

    filter()        equality / range / membership on the remaining keys
    sort()          comma-separated fields, "-" prefix = descending
    limit_fields()  inclusion or "-"-exclusion projection
    paginate()      offset = (page - 1) * limit

The composer never executes anything. Callers hand .query to their store.

Field names are wire names (camelCase). Each store passes a mapping from
wire name to Column; columns missing from that mapping (password hashes,
reset tokens) can be neither filtered, sorted nor projected.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, tours/.
"""

from __future__ import annotations

import copy
import operator
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, Callable

from sqlalchemy import Select, and_, false
from sqlalchemy.sql.elements import ColumnElement

from core.errors import ValidationFailure

RESERVED_PARAMS = frozenset({"page", "sort", "limit", "fields"})

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 100

ParamValue = str | list[str] | dict[str, Any]


class Comparison(str, Enum):
    """Filter-suffix tokens accepted as ``field[token]=value``."""

    GTE = "gte"
    GT = "gt"
    LTE = "lte"
    LT = "lt"

    @property
    def operator(self) -> Callable[[Any, Any], Any]:
        return _COMPARISON_OPERATORS[self]


_COMPARISON_OPERATORS: dict[Comparison, Callable[[Any, Any], Any]] = {
    Comparison.GTE: operator.ge,
    Comparison.GT: operator.gt,
    Comparison.LTE: operator.le,
    Comparison.LT: operator.lt,
}

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def parse_query_params(items: Iterable[tuple[str, str]]) -> dict[str, ParamValue]:
    """Build the parameter mapping from raw (key, value) query pairs.

    ``price[gte]=500`` becomes ``{"price": {"gte": "500"}}``. A plain key that
    repeats becomes a list (membership filter). Reserved keys and operator
    keys keep their last value. When a field appears both plain and with an
    operator, the later form replaces the earlier one.
    """
    params: dict[str, ParamValue] = {}
    for key, value in items:
        name, bracket, rest = key.partition("[")
        if bracket and rest.endswith("]") and "[" not in rest and name:
            token = rest[:-1]
            nested = params.get(name)
            if not isinstance(nested, dict):
                nested = {}
                params[name] = nested
            nested[token] = value
            continue
        if key in RESERVED_PARAMS:
            params[key] = value
            continue
        existing = params.get(key)
        if isinstance(existing, str):
            params[key] = [existing, value]
        elif isinstance(existing, list):
            existing.append(value)
        else:
            params[key] = value
    return params


def _positive_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _python_type(column: ColumnElement) -> type | None:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class QueryComposer:
    """Chainable builder over a base Select.

    Usage:
        composer = QueryComposer(select(*fields.values()), params, fields)
        query = composer.filter().sort().limit_fields().paginate().query

    The params mapping is deep-copied on construction; no step mutates the
    caller's mapping. Each step replaces self.query with a refined Select.
    """

    def __init__(
        self,
        query: Select,
        params: Mapping[str, ParamValue],
        fields: Mapping[str, ColumnElement],
        *,
        default_sort: str = "-createdAt",
        default_exclude: Iterable[str] = ("revision",),
    ) -> None:
        self.query = query
        self.params: dict[str, ParamValue] = copy.deepcopy(dict(params))
        self.fields = dict(fields)
        self.default_sort = default_sort
        self.default_exclude = frozenset(default_exclude)
        self.skip = 0
        self.limit = DEFAULT_LIMIT

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def filter(self) -> "QueryComposer":
        clauses = []
        for name, value in self.params.items():
            if name in RESERVED_PARAMS:
                continue
            column = self.fields.get(name)
            if column is None or _python_type(column) in (dict, list):
                # Unknown and structured fields match nothing, as in a document store.
                clauses.append(false())
                continue
            if isinstance(value, dict):
                clauses.extend(self._comparisons(name, column, value))
            elif isinstance(value, list):
                clauses.append(column.in_([self._coerce(name, column, v) for v in value]))
            else:
                clauses.append(column == self._coerce(name, column, value))
        if clauses:
            self.query = self.query.where(and_(*clauses))
        return self

    def sort(self) -> "QueryComposer":
        spec = self.params.get("sort")
        names = _split(spec) if isinstance(spec, str) and spec.strip() else [self.default_sort]
        order_by = []
        for raw in names:
            descending = raw.startswith("-")
            column = self.fields.get(raw[1:] if descending else raw)
            if column is None:
                continue
            order_by.append(column.desc() if descending else column.asc())
        if order_by:
            self.query = self.query.order_by(*order_by)
        return self

    def limit_fields(self) -> "QueryComposer":
        spec = self.params.get("fields")
        if isinstance(spec, str) and spec.strip():
            names = _split(spec)
            excluded = {n[1:] for n in names if n.startswith("-")}
            if excluded and len(excluded) != len(names):
                raise ValidationFailure("Field selection cannot mix inclusion and exclusion.")
            if excluded:
                columns = [c for n, c in self.fields.items() if n == "id" or n not in excluded]
            else:
                columns = [self.fields["id"]]
                columns += [self.fields[n] for n in dict.fromkeys(names) if n in self.fields and n != "id"]
        else:
            columns = [c for n, c in self.fields.items() if n not in self.default_exclude]
        self.query = self.query.with_only_columns(*columns)
        return self

    def paginate(self) -> "QueryComposer":
        page = _positive_int(self.params.get("page"), DEFAULT_PAGE)
        self.limit = _positive_int(self.params.get("limit"), DEFAULT_LIMIT)
        self.skip = (page - 1) * self.limit
        self.query = self.query.offset(self.skip).limit(self.limit)
        return self

    def apply(self) -> Select:
        """Run all four steps in order and return the final Select."""
        return self.filter().sort().limit_fields().paginate().query

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _comparisons(self, name: str, column: ColumnElement, ops: Mapping[str, Any]) -> list:
        clauses = []
        for token, operand in ops.items():
            try:
                compare = Comparison(token).operator
            except ValueError:
                clauses.append(false())
                continue
            if isinstance(operand, list):
                operand = operand[-1]
            clauses.append(compare(column, self._coerce(name, column, operand)))
        return clauses

    @staticmethod
    def _coerce(name: str, column: ColumnElement, raw: Any) -> Any:
        """Cast a query-string value to the column's Python type."""
        target = _python_type(column)
        if not isinstance(raw, str) or target is str:
            return raw
        try:
            if target is bool:
                lowered = raw.lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
                raise ValueError(raw)
            if target in (int, float):
                return target(raw)
        except ValueError:
            raise ValidationFailure(f"Invalid {name}: {raw}.") from None
        return raw


def _split(spec: str) -> list[str]:
    return [part.strip() for part in spec.split(",") if part.strip()]
