"""
tours/models.py -- Domain dataclasses for tours, reviews, and bookings.

Pattern: Data class plus the resource-level schema checks. The store calls
validate_tour() / validate_review() before every write, so route code and
the CLI importer get the same rules.

Layer rule: no imports from api/, web/, auth/, or payments/.
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum

from core.errors import ValidationFailure


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    DIFFICULT = "difficult"


DEFAULT_RATINGS_AVERAGE = 4.5


@dataclass
class Tour:
    """A bookable tour.

    start_location is a GeoJSON point dict:
        {"type": "Point", "coordinates": [lng, lat], "address": ..., "description": ...}
    locations holds the same shape plus a "day" key. guides holds user ids.
    """

    name: str
    duration: int
    max_group_size: int
    difficulty: str
    price: float
    summary: str
    image_cover: str
    id: int | None = None
    slug: str = ""
    ratings_average: float = DEFAULT_RATINGS_AVERAGE
    ratings_quantity: int = 0
    price_discount: float | None = None
    description: str = ""
    images: list[str] = field(default_factory=list)
    start_dates: list[str] = field(default_factory=list)
    secret_tour: bool = False
    start_location: dict | None = None
    locations: list[dict] = field(default_factory=list)
    guides: list[int] = field(default_factory=list)
    created_at: str | None = None
    revision: int = 0

    @property
    def duration_weeks(self) -> float:
        return self.duration / 7


@dataclass
class Review:
    review: str
    rating: int
    tour_id: int
    user_id: int
    id: int | None = None
    created_at: str | None = None


@dataclass
class Booking:
    tour_id: int
    user_id: int
    price: float
    id: int | None = None
    created_at: str | None = None
    paid: bool = True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def slugify(text: str) -> str:
    """'The Forest Hiker' -> 'the-forest-hiker'."""
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")


def round_rating(value: float) -> float:
    """Round half up to one decimal: 4.666 -> 4.7, 4.25 -> 4.3."""
    return math.floor(value * 10 + 0.5) / 10


# ---------------------------------------------------------------------------
# Schema checks
# ---------------------------------------------------------------------------


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_point(point) -> bool:
    """True for {"coordinates": [lng, lat]} with both numbers in range."""
    if not isinstance(point, dict):
        return False
    coordinates = point.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or len(coordinates) != 2:
        return False
    lng, lat = coordinates
    return _is_number(lng) and _is_number(lat) and -180 <= lng <= 180 and -90 <= lat <= 90


def validate_tour(tour: Tour) -> None:
    """Raise ValidationFailure listing every rule the tour breaks."""
    errors: list[str] = []
    name = (tour.name or "").strip()
    if not 10 <= len(name) <= 40:
        errors.append("A tour name must have between 10 and 40 characters.")
    if tour.duration is None or tour.duration <= 0:
        errors.append("A tour must have a duration.")
    if tour.max_group_size is None or tour.max_group_size <= 0:
        errors.append("A tour must have a group size.")
    if tour.difficulty not in {d.value for d in Difficulty}:
        errors.append("Difficulty is either: easy, medium, difficult.")
    if not 1 <= tour.ratings_average <= 5:
        errors.append("Rating must be between 1.0 and 5.0.")
    if tour.price is None or tour.price < 0:
        errors.append("A tour must have a price.")
    if tour.price_discount is not None and tour.price is not None and tour.price_discount >= tour.price:
        errors.append(f"Discount price ({tour.price_discount}) should be below regular price.")
    if not (tour.summary or "").strip():
        errors.append("A tour must have a summary.")
    if not tour.image_cover:
        errors.append("A tour must have a cover image.")
    if tour.start_location is not None and not _is_point(tour.start_location):
        errors.append("Start location must be a GeoJSON point with [lng, lat] coordinates.")
    if any(not _is_point(location) for location in tour.locations or []):
        errors.append("Every location must be a GeoJSON point with [lng, lat] coordinates.")
    if errors:
        raise ValidationFailure(f"Invalid input data. {' '.join(errors)}")


def validate_review(review: Review) -> None:
    errors: list[str] = []
    if not (review.review or "").strip():
        errors.append("Review can not be empty!")
    if review.rating is None or not 1 <= review.rating <= 5:
        errors.append("Rating must be between 1 and 5.")
    if errors:
        raise ValidationFailure(f"Invalid input data. {' '.join(errors)}")
