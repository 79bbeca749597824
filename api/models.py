"""
API request and response models for Wayfarer REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
separate from the dataclasses in auth/models.py and tours/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (ratingsAverage, passwordConfirm). Every model uses
to_camel as its alias generator and accepts snake_case too, so
model_dump(exclude_unset=True) hands store-ready snake_case keys to the
repositories.

Request models check types and sizes only. Domain rules (name length,
difficulty, discount below price) live in tours.models.validate_tour and
surface as 400 ValidationFailure, not 422.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import EMAIL_PATTERN, Role, User
from tours.models import Booking, Review, Tour


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


def success(**payload: Any) -> dict:
    """{"status": "success", ...payload} -- the body of every 2xx JSON reply."""
    return {"status": "success", **payload}


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    status: str = "fail"
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class SignupRequest(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(max_length=128)
    password_confirm: str = Field(max_length=128)


class LoginRequest(CamelModel):
    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)


class ForgotPasswordRequest(CamelModel):
    email: str = Field(max_length=255)


class ResetPasswordRequest(CamelModel):
    password: str = Field(max_length=128)
    password_confirm: str = Field(max_length=128)


class UpdatePasswordRequest(CamelModel):
    password_current: str = Field(max_length=128)
    password: str = Field(max_length=128)
    password_confirm: str = Field(max_length=128)


class UserAdminUpdate(CamelModel):
    """PATCH /api/v1/users/{id}. Never carries a password."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    role: Optional[Role] = None
    active: Optional[bool] = None
    login_attempts: Optional[int] = Field(default=None, ge=0)


class UserOut(CamelModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    name: str
    email: str
    photo: str
    role: str
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            photo=user.photo,
            role=user.role,
            created_at=user.created_at,
        )


class AuthorOut(CamelModel):
    """The slice of a user shown next to a review."""

    id: int
    name: str
    photo: str


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


class TourCreate(CamelModel):
    name: str = Field(max_length=100)
    duration: int
    max_group_size: int
    difficulty: str
    price: float
    summary: str
    image_cover: str
    price_discount: Optional[float] = None
    description: str = ""
    images: list[str] = Field(default_factory=list, max_length=10)
    start_dates: list[str] = Field(default_factory=list)
    secret_tour: bool = False
    start_location: Optional[dict] = None
    locations: list[dict] = Field(default_factory=list)
    guides: list[int] = Field(default_factory=list)
    ratings_average: float = 4.5

    def to_tour(self) -> Tour:
        return Tour(**self.model_dump())


class TourUpdate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=100)
    duration: Optional[int] = None
    max_group_size: Optional[int] = None
    difficulty: Optional[str] = None
    price: Optional[float] = None
    summary: Optional[str] = None
    image_cover: Optional[str] = None
    price_discount: Optional[float] = None
    description: Optional[str] = None
    images: Optional[list[str]] = Field(default=None, max_length=10)
    start_dates: Optional[list[str]] = None
    secret_tour: Optional[bool] = None
    start_location: Optional[dict] = None
    locations: Optional[list[dict]] = None
    guides: Optional[list[int]] = None


class ReviewOut(CamelModel):
    id: int
    review: str
    rating: int
    created_at: str
    tour: int
    user: AuthorOut | int

    @classmethod
    def from_review(cls, review: Review, author: User | None = None) -> "ReviewOut":
        return cls(
            id=review.id,
            review=review.review,
            rating=review.rating,
            created_at=review.created_at,
            tour=review.tour_id,
            user=AuthorOut(id=author.id, name=author.name, photo=author.photo) if author else review.user_id,
        )


class GuideOut(CamelModel):
    """A guide as embedded in a tour (no bookkeeping fields)."""

    id: int
    name: str
    email: str
    photo: str
    role: str


class TourOut(CamelModel):
    id: int
    name: str
    slug: str
    duration: int
    duration_weeks: float
    max_group_size: int
    difficulty: str
    ratings_average: float
    ratings_quantity: int
    price: float
    price_discount: Optional[float] = None
    summary: str
    description: str
    image_cover: str
    images: list[str]
    created_at: Optional[str] = None
    start_dates: list[str]
    start_location: Optional[dict] = None
    locations: list[dict]
    guides: list[GuideOut | int]
    reviews: Optional[list[ReviewOut]] = None

    @classmethod
    def from_tour(
        cls,
        tour: Tour,
        guides: dict[int, User] | None = None,
        reviews: list[ReviewOut] | None = None,
    ) -> "TourOut":
        guides = guides or {}
        return cls(
            id=tour.id,
            name=tour.name,
            slug=tour.slug,
            duration=tour.duration,
            duration_weeks=tour.duration_weeks,
            max_group_size=tour.max_group_size,
            difficulty=tour.difficulty,
            ratings_average=tour.ratings_average,
            ratings_quantity=tour.ratings_quantity,
            price=tour.price,
            price_discount=tour.price_discount,
            summary=tour.summary,
            description=tour.description,
            image_cover=tour.image_cover,
            images=tour.images,
            created_at=tour.created_at,
            start_dates=tour.start_dates,
            start_location=tour.start_location,
            locations=tour.locations,
            guides=[
                GuideOut(id=g.id, name=g.name, email=g.email, photo=g.photo, role=g.role) if g else gid
                for gid, g in ((gid, guides.get(gid)) for gid in tour.guides)
            ],
            reviews=reviews,
        )


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewCreate(CamelModel):
    review: str = Field(max_length=2000)
    rating: int
    tour: Optional[int] = None


class ReviewUpdate(CamelModel):
    review: Optional[str] = Field(default=None, max_length=2000)
    rating: Optional[int] = None


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingCreate(CamelModel):
    tour: int
    user: int
    price: float = Field(ge=0)
    paid: bool = True


class BookingUpdate(CamelModel):
    price: Optional[float] = Field(default=None, ge=0)
    paid: Optional[bool] = None


class BookingOut(CamelModel):
    id: int
    tour: int
    user: int
    price: float
    created_at: str
    paid: bool

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingOut":
        return cls(
            id=booking.id,
            tour=booking.tour_id,
            user=booking.user_id,
            price=booking.price,
            created_at=booking.created_at,
            paid=booking.paid,
        )


def dump(model: BaseModel) -> dict:
    """Serialize with wire (camelCase) names."""
    return model.model_dump(by_alias=True, mode="json")
