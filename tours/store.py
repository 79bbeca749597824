"""
tours/store.py -- SQLAlchemy Core persistence for tours, reviews, bookings.

Pattern: Repository + Data Mapper (same as auth/store.py).
TourStore is the repository; _row_to_tour / _row_to_review / _row_to_booking
are the mappers.

Listings go through core.query.QueryComposer. Each table exposes a
wire-name -> Column map (TOUR_FIELDS, REVIEW_FIELDS, BOOKING_FIELDS) so the
composer and the JSON output agree on field names.

Secret tours are excluded from every tour read, aggregate included.
Schema rules (tours.models.validate_*) run before every insert and update.

Layer rule: no imports from api/, web/ or payments/; from auth/ only the engine helper.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import asdict, fields as dataclass_fields
from datetime import datetime, timezone

from pydantic.alias_generators import to_camel
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.store import make_engine
from core.query import QueryComposer
from tours.geo import distance_in_unit, within_radius
from tours.models import (
    DEFAULT_RATINGS_AVERAGE,
    Booking,
    Review,
    Tour,
    slugify,
    validate_review,
    validate_tour,
)

logger = logging.getLogger("wayfarer.tours")

_DEFAULT_DB_URL = "sqlite:///wayfarer.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_tours = Table(
    "tours",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(40), nullable=False, unique=True),
    Column("slug", String(64), nullable=False),
    Column("duration", Integer, nullable=False),
    Column("max_group_size", Integer, nullable=False),
    Column("difficulty", String(16), nullable=False),
    Column("ratings_average", Float, nullable=False, server_default=str(DEFAULT_RATINGS_AVERAGE)),
    Column("ratings_quantity", Integer, nullable=False, server_default="0"),
    Column("price", Float, nullable=False),
    Column("price_discount", Float),
    Column("summary", Text, nullable=False),
    Column("description", Text),
    Column("image_cover", String(255), nullable=False),
    Column("images", JSON),  # list of file names
    Column("created_at", String(32), nullable=False),
    Column("start_dates", JSON),  # list of ISO timestamps
    Column("secret_tour", Boolean, nullable=False, server_default="0"),
    Column("start_location", JSON),  # GeoJSON point
    Column("locations", JSON),  # list of GeoJSON points with "day"
    Column("guides", JSON),  # list of user ids
    Column("revision", Integer, nullable=False, server_default="0"),
)

_reviews = Table(
    "reviews",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("review", Text, nullable=False),
    Column("rating", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("tour_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    UniqueConstraint("tour_id", "user_id", name="uq_review_tour_user"),
)

_bookings = Table(
    "bookings",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tour_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("price", Float, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("paid", Boolean, nullable=False, server_default="1"),
)


def _wire_name(column_name: str) -> str:
    """ratings_average -> ratingsAverage, tour_id -> tour."""
    if column_name != "id" and column_name.endswith("_id"):
        column_name = column_name[:-3]
    return to_camel(column_name)


def _field_map(table: Table) -> dict:
    return {_wire_name(c.name): c for c in table.columns}


TOUR_FIELDS = _field_map(_tours)
REVIEW_FIELDS = _field_map(_reviews)
BOOKING_FIELDS = _field_map(_bookings)

_TOUR_ATTRS = {f.name for f in dataclass_fields(Tour)} - {"id", "created_at", "revision"}
_REVIEW_ATTRS = {"review", "rating"}
_BOOKING_ATTRS = {"tour_id", "user_id", "price", "paid"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_document(row) -> dict:
    """Projected row -> wire-named dict (listing output)."""
    doc = {_wire_name(k): v for k, v in row._mapping.items()}
    if doc.get("duration") is not None:
        doc["durationWeeks"] = doc["duration"] / 7
    return doc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TourStore:
    """Repository for Tour, Review, and Booking entities.

    Usage:
        store = TourStore("sqlite:///wayfarer.db")
        tour_id = store.create_tour(Tour(name="The Forest Hiker", ...))
        docs = store.find_tours({"difficulty": "easy", "sort": "price"})
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    @staticmethod
    def _visible_tours():
        return _tours.c.secret_tour.is_(False)

    def _find(self, base, params: Mapping, fields: Mapping) -> list[dict]:
        query = QueryComposer(base, params, fields).apply()
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_document(r) for r in rows]

    # ------------------------------------------------------------------
    # Tours
    # ------------------------------------------------------------------

    def find_tours(self, params: Mapping) -> list[dict]:
        base = select(*TOUR_FIELDS.values()).where(self._visible_tours())
        return self._find(base, params, TOUR_FIELDS)

    def list_tours(self) -> list[Tour]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tours.select().where(self._visible_tours()).order_by(_tours.c.created_at.desc())
            ).fetchall()
        return [_row_to_tour(r) for r in rows]

    def get_tour(self, tour_id: int) -> Tour | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _tours.select().where((_tours.c.id == tour_id) & self._visible_tours())
            ).fetchone()
        return _row_to_tour(row) if row is not None else None

    def get_tour_by_slug(self, slug: str) -> Tour | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _tours.select().where((_tours.c.slug == slug) & self._visible_tours())
            ).fetchone()
        return _row_to_tour(row) if row is not None else None

    def get_tours_by_ids(self, tour_ids: list[int]) -> list[Tour]:
        if not tour_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tours.select().where(_tours.c.id.in_(tour_ids) & self._visible_tours())
            ).fetchall()
        return [_row_to_tour(r) for r in rows]

    def create_tour(self, tour: Tour) -> int:
        """Validate and insert a tour. Raises ValidationFailure or IntegrityError."""
        tour.name = tour.name.strip()
        validate_tour(tour)
        values = asdict(tour)
        values.pop("id")
        values["slug"] = slugify(tour.name)
        values["created_at"] = tour.created_at or _now_iso()
        values["revision"] = 0
        with self.engine.connect() as conn:
            result = conn.execute(_tours.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def update_tour(self, tour_id: int, **changes) -> Tour | None:
        """Apply changes, re-validate the merged tour, bump revision.

        Returns the updated tour, or None if no visible tour has that ID.
        """
        unknown = set(changes) - _TOUR_ATTRS
        if unknown:
            raise ValueError(f"Unknown tour fields: {sorted(unknown)!r}")
        current = self.get_tour(tour_id)
        if current is None:
            return None
        for key, value in changes.items():
            setattr(current, key, value)
        if "name" in changes:
            current.name = current.name.strip()
            changes["name"] = current.name
            changes["slug"] = slugify(current.name)
        validate_tour(current)
        with self.engine.connect() as conn:
            conn.execute(
                _tours.update()
                .where(_tours.c.id == tour_id)
                .values(**changes, revision=_tours.c.revision + 1)
            )
            conn.commit()
        return self.get_tour(tour_id)

    def delete_tour(self, tour_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_tours.delete().where(_tours.c.id == tour_id))
            conn.commit()
        return result.rowcount > 0

    def delete_all_tours(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_tours.delete())
            conn.commit()
        return result.rowcount

    def set_ratings(self, tour_id: int, quantity: int, average: float) -> None:
        """Store recomputed rating aggregates. Applies to secret tours too."""
        with self.engine.connect() as conn:
            conn.execute(
                _tours.update()
                .where(_tours.c.id == tour_id)
                .values(ratings_quantity=quantity, ratings_average=average)
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Tour aggregates
    # ------------------------------------------------------------------

    def tour_stats(self, min_rating: float = 4.5) -> list[dict]:
        """Per-difficulty statistics over well-rated tours, cheapest first."""
        avg_price = func.avg(_tours.c.price).label("avgPrice")
        query = (
            select(
                func.upper(_tours.c.difficulty).label("difficulty"),
                func.count().label("numTours"),
                func.sum(_tours.c.ratings_quantity).label("numRatings"),
                func.avg(_tours.c.ratings_average).label("avgRating"),
                avg_price,
                func.min(_tours.c.price).label("minPrice"),
                func.max(_tours.c.price).label("maxPrice"),
            )
            .where((_tours.c.ratings_average >= min_rating) & self._visible_tours())
            .group_by(_tours.c.difficulty)
            .order_by(avg_price.asc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [dict(r._mapping) for r in rows]

    def monthly_plan(self, year: int) -> list[dict]:
        """Tour starts per month of year, busiest month first, at most 12."""
        months: dict[int, list[str]] = defaultdict(list)
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_tours.c.name, _tours.c.start_dates).where(self._visible_tours())
            ).fetchall()
        for name, start_dates in rows:
            for raw in start_dates or []:
                try:
                    start = datetime.fromisoformat(raw)
                except (TypeError, ValueError):
                    logger.warning("Skipping malformed start date %r on tour %r", raw, name)
                    continue
                if start.year == year:
                    months[start.month].append(name)
        plan = [{"month": m, "numTourStarts": len(names), "tours": names} for m, names in months.items()]
        plan.sort(key=lambda p: (-p["numTourStarts"], p["month"]))
        return plan[:12]

    def tours_within(self, center: tuple[float, float], distance: float, unit: str) -> list[Tour]:
        return [t for t in self.list_tours() if within_radius(center, t.start_location, distance, unit)]

    def distances(self, center: tuple[float, float], unit: str) -> list[dict]:
        """Distance from center to every tour start, nearest first."""
        result = []
        for tour in self.list_tours():
            distance = distance_in_unit(center, tour.start_location, unit)
            if distance is not None:
                result.append({"id": tour.id, "name": tour.name, "distance": distance})
        result.sort(key=lambda d: d["distance"])
        return result

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def find_reviews(self, params: Mapping, tour_id: int | None = None) -> list[dict]:
        base = select(*REVIEW_FIELDS.values())
        if tour_id is not None:
            base = base.where(_reviews.c.tour_id == tour_id)
        return self._find(base, params, REVIEW_FIELDS)

    def reviews_for_tour(self, tour_id: int) -> list[Review]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _reviews.select().where(_reviews.c.tour_id == tour_id).order_by(_reviews.c.created_at.desc())
            ).fetchall()
        return [_row_to_review(r) for r in rows]

    def get_review(self, review_id: int) -> Review | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reviews.select().where(_reviews.c.id == review_id)).fetchone()
        return _row_to_review(row) if row is not None else None

    def create_review(self, review: Review) -> int:
        """Insert a review. Raises IntegrityError if the user already reviewed the tour."""
        validate_review(review)
        with self.engine.connect() as conn:
            result = conn.execute(
                _reviews.insert().values(
                    review=review.review.strip(),
                    rating=review.rating,
                    created_at=review.created_at or _now_iso(),
                    tour_id=review.tour_id,
                    user_id=review.user_id,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_review(self, review_id: int, **changes) -> Review | None:
        unknown = set(changes) - _REVIEW_ATTRS
        if unknown:
            raise ValueError(f"Unknown review fields: {sorted(unknown)!r}")
        current = self.get_review(review_id)
        if current is None:
            return None
        for key, value in changes.items():
            setattr(current, key, value)
        validate_review(current)
        if changes:
            with self.engine.connect() as conn:
                conn.execute(_reviews.update().where(_reviews.c.id == review_id).values(**changes))
                conn.commit()
        return self.get_review(review_id)

    def delete_review(self, review_id: int) -> Review | None:
        """Delete and return the removed review (callers need its tour_id)."""
        review = self.get_review(review_id)
        if review is None:
            return None
        with self.engine.connect() as conn:
            conn.execute(_reviews.delete().where(_reviews.c.id == review_id))
            conn.commit()
        return review

    def review_stats(self, tour_id: int) -> tuple[int, float | None]:
        """(count, average rating) over the tour's reviews."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(func.count(), func.avg(_reviews.c.rating)).where(_reviews.c.tour_id == tour_id)
            ).fetchone()
        return int(row[0] or 0), (float(row[1]) if row[1] is not None else None)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def find_bookings(self, params: Mapping) -> list[dict]:
        return self._find(select(*BOOKING_FIELDS.values()), params, BOOKING_FIELDS)

    def get_booking(self, booking_id: int) -> Booking | None:
        with self.engine.connect() as conn:
            row = conn.execute(_bookings.select().where(_bookings.c.id == booking_id)).fetchone()
        return _row_to_booking(row) if row is not None else None

    def create_booking(self, booking: Booking) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _bookings.insert().values(
                    tour_id=booking.tour_id,
                    user_id=booking.user_id,
                    price=booking.price,
                    created_at=booking.created_at or _now_iso(),
                    paid=booking.paid,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_booking(self, booking_id: int, **changes) -> Booking | None:
        unknown = set(changes) - _BOOKING_ATTRS
        if unknown:
            raise ValueError(f"Unknown booking fields: {sorted(unknown)!r}")
        if changes:
            with self.engine.connect() as conn:
                conn.execute(_bookings.update().where(_bookings.c.id == booking_id).values(**changes))
                conn.commit()
        return self.get_booking(booking_id)

    def delete_booking(self, booking_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_bookings.delete().where(_bookings.c.id == booking_id))
            conn.commit()
        return result.rowcount > 0

    def booked_tours(self, user_id: int) -> list[Tour]:
        """Tours the user holds a booking for, in booking order."""
        with self.engine.connect() as conn:
            tour_ids = conn.execute(
                select(_bookings.c.tour_id).where(_bookings.c.user_id == user_id).order_by(_bookings.c.id)
            ).scalars().all()
        by_id = {t.id: t for t in self.get_tours_by_ids(list(dict.fromkeys(tour_ids)))}
        return [by_id[i] for i in dict.fromkeys(tour_ids) if i in by_id]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_tour(row) -> Tour:
    return Tour(
        id=row.id,
        name=row.name,
        slug=row.slug,
        duration=row.duration,
        max_group_size=row.max_group_size,
        difficulty=row.difficulty,
        ratings_average=row.ratings_average,
        ratings_quantity=row.ratings_quantity,
        price=row.price,
        price_discount=row.price_discount,
        summary=row.summary,
        description=row.description or "",
        image_cover=row.image_cover,
        images=row.images or [],
        created_at=row.created_at,
        start_dates=row.start_dates or [],
        secret_tour=bool(row.secret_tour),
        start_location=row.start_location,
        locations=row.locations or [],
        guides=row.guides or [],
        revision=row.revision,
    )


def _row_to_review(row) -> Review:
    return Review(
        id=row.id,
        review=row.review,
        rating=row.rating,
        created_at=row.created_at,
        tour_id=row.tour_id,
        user_id=row.user_id,
    )


def _row_to_booking(row) -> Booking:
    return Booking(
        id=row.id,
        tour_id=row.tour_id,
        user_id=row.user_id,
        price=row.price,
        created_at=row.created_at,
        paid=bool(row.paid),
    )
