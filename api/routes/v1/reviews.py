"""
api/routes/v1/reviews.py -- Review endpoints, flat and nested under a tour.

Routes (all require login):
  GET    /api/v1/reviews                   -- listing (Query Composer; ?tour=<id> filters)
  POST   /api/v1/reviews                   -- write a review (role user)
  GET    /api/v1/tours/{tour_id}/reviews   -- one tour's reviews
  POST   /api/v1/tours/{tour_id}/reviews   -- review that tour (role user)
  GET    /api/v1/reviews/{id}
  PATCH  /api/v1/reviews/{id}              -- user (own review only) or admin
  DELETE /api/v1/reviews/{id}              -- user (own review only) or admin

The author is always the caller; a body can never write a review on
someone else's behalf. Every successful write recomputes the tour's rating
aggregates through tours.events.on_review_changed().
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.deps import listing_params, tour_store
from api.limiter import api_limit
from api.models import ReviewCreate, ReviewOut, ReviewUpdate, dump, success
from auth.dependencies import protect, restrict_to
from auth.models import Role, User
from core.errors import Forbidden, NotFound, ValidationFailure
from tours.events import on_review_changed
from tours.models import Review
from tours.store import TourStore

router = APIRouter(dependencies=[Depends(protect)])

_authors = restrict_to(Role.USER)
_moderators = restrict_to(Role.USER, Role.ADMIN)


def _create(store: TourStore, user: User, body: ReviewCreate, tour_id: Optional[int]) -> dict:
    tour_id = tour_id if tour_id is not None else body.tour
    if tour_id is None:
        raise ValidationFailure("Review must belong to a tour.")
    if store.get_tour(tour_id) is None:
        raise NotFound("No tour found with that ID.")
    review_id = store.create_review(
        Review(review=body.review, rating=body.rating, tour_id=tour_id, user_id=user.id)
    )
    on_review_changed(store, tour_id)
    return success(data={"review": dump(ReviewOut.from_review(store.get_review(review_id)))})


def _owned_review(store: TourStore, review_id: int, user: User) -> Review:
    review = store.get_review(review_id)
    if review is None:
        raise NotFound()
    if user.role == Role.USER.value and review.user_id != user.id:
        raise Forbidden("You can only change your own reviews.")
    return review


# ---------------------------------------------------------------------------
# Collection routes
# ---------------------------------------------------------------------------


@api_limit
@router.get("/reviews")
def list_reviews(
    request: Request,
    params: dict = Depends(listing_params),
    store: TourStore = Depends(tour_store),
) -> dict:
    docs = store.find_reviews(params)
    return success(results=len(docs), data={"reviews": docs})


@api_limit
@router.post("/reviews", status_code=201)
def create_review(
    request: Request,
    body: ReviewCreate,
    user: User = Depends(_authors),
    store: TourStore = Depends(tour_store),
) -> dict:
    return _create(store, user, body, None)


@api_limit
@router.get("/tours/{tour_id}/reviews")
def list_tour_reviews(
    request: Request,
    tour_id: int,
    params: dict = Depends(listing_params),
    store: TourStore = Depends(tour_store),
) -> dict:
    docs = store.find_reviews(params, tour_id=tour_id)
    return success(results=len(docs), data={"reviews": docs})


@api_limit
@router.post("/tours/{tour_id}/reviews", status_code=201)
def create_tour_review(
    request: Request,
    tour_id: int,
    body: ReviewCreate,
    user: User = Depends(_authors),
    store: TourStore = Depends(tour_store),
) -> dict:
    return _create(store, user, body, tour_id)


# ---------------------------------------------------------------------------
# Single review
# ---------------------------------------------------------------------------


@api_limit
@router.get("/reviews/{review_id}")
def get_review(request: Request, review_id: int, store: TourStore = Depends(tour_store)) -> dict:
    review = store.get_review(review_id)
    if review is None:
        raise NotFound()
    return success(data={"review": dump(ReviewOut.from_review(review))})


@api_limit
@router.patch("/reviews/{review_id}")
def update_review(
    request: Request,
    review_id: int,
    body: ReviewUpdate,
    user: User = Depends(_moderators),
    store: TourStore = Depends(tour_store),
) -> dict:
    review = _owned_review(store, review_id, user)
    updated = store.update_review(review_id, **body.model_dump(exclude_unset=True, exclude_none=True))
    on_review_changed(store, review.tour_id)
    return success(data={"review": dump(ReviewOut.from_review(updated))})


@api_limit
@router.delete("/reviews/{review_id}", status_code=204)
def delete_review(
    request: Request,
    review_id: int,
    user: User = Depends(_moderators),
    store: TourStore = Depends(tour_store),
) -> Response:
    _owned_review(store, review_id, user)
    removed = store.delete_review(review_id)
    if removed is not None:
        on_review_changed(store, removed.tour_id)
    return Response(status_code=204)
