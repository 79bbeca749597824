"""
api/routes/v1/tours.py -- Tour catalogue REST endpoints.

Routes:
  GET    /api/v1/tours                          -- listing (Query Composer)
  GET    /api/v1/tours/top-5-cheap              -- preset listing alias
  GET    /api/v1/tours/tour-stats               -- per-difficulty aggregates
  GET    /api/v1/tours/monthly-plan/{year}      -- starts per month (staff)
  GET    /api/v1/tours/tours-within/{distance}/center/{latlng}/unit/{unit}
  GET    /api/v1/tours/distances/{latlng}/unit/{unit}
  POST   /api/v1/tours                          -- create (admin, lead-guide)
  GET    /api/v1/tours/{id}                     -- detail with guides + reviews
  PATCH  /api/v1/tours/{id}                     -- edit (admin, lead-guide)
  PATCH  /api/v1/tours/{id}/images              -- multipart upload (admin, lead-guide)
  DELETE /api/v1/tours/{id}                     -- delete (admin, lead-guide)

Fixed paths are registered before /{tour_id} so "tour-stats" is never
parsed as an id. The nested /tours/{tour_id}/reviews routes live in
reviews.py.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from api.deps import listing_params, tour_store, user_store
from api.limiter import api_limit
from api.models import ReviewOut, TourCreate, TourOut, TourUpdate, dump, success
from auth.dependencies import restrict_to
from auth.models import Role
from auth.store import UserStore
from core.errors import NotFound, ValidationFailure
from tours.geo import parse_latlng, parse_unit
from tours.models import Tour
from tours.store import TourStore

logger = logging.getLogger("wayfarer.api.tours")

router = APIRouter(prefix="/tours")

_editors = restrict_to(Role.ADMIN, Role.LEAD_GUIDE)
_staff = restrict_to(Role.ADMIN, Role.LEAD_GUIDE, Role.GUIDE)

TOP_CHEAP_PRESET = {
    "limit": "5",
    "sort": "-ratingsAverage,price",
    "fields": "name,price,ratingsAverage,summary,difficulty",
}

# Fields a PATCH may set back to null.
_NULLABLE = {"price_discount", "start_location"}


def _tour_detail(tour: Tour, users: UserStore, tours: TourStore) -> dict:
    """Tour with guide records and reviews (author name + photo) filled in."""
    reviews = tours.reviews_for_tour(tour.id)
    people = users.get_by_ids(set(tour.guides) | {r.user_id for r in reviews})
    review_out = [ReviewOut.from_review(r, people.get(r.user_id)) for r in reviews]
    return dump(TourOut.from_tour(tour, people, review_out))


# ---------------------------------------------------------------------------
# Listings and aggregates
# ---------------------------------------------------------------------------


@api_limit
@router.get("")
def list_tours(
    request: Request,
    params: dict = Depends(listing_params),
    store: TourStore = Depends(tour_store),
) -> dict:
    docs = store.find_tours(params)
    return success(results=len(docs), data={"tours": docs})


@api_limit
@router.get("/top-5-cheap")
def top_cheap_tours(
    request: Request,
    params: dict = Depends(listing_params),
    store: TourStore = Depends(tour_store),
) -> dict:
    """Best rated, then cheapest. The preset wins over the client's paging and projection."""
    docs = store.find_tours({**params, **TOP_CHEAP_PRESET})
    return success(results=len(docs), data={"tours": docs})


@api_limit
@router.get("/tour-stats")
def tour_stats(request: Request, store: TourStore = Depends(tour_store)) -> dict:
    return success(data={"stats": store.tour_stats()})


@api_limit
@router.get("/monthly-plan/{year}", dependencies=[Depends(_staff)])
def monthly_plan(request: Request, year: int, store: TourStore = Depends(tour_store)) -> dict:
    return success(data={"plan": store.monthly_plan(year)})


@api_limit
@router.get("/tours-within/{distance}/center/{latlng}/unit/{unit}")
def tours_within(
    request: Request,
    distance: float,
    latlng: str,
    unit: str,
    store: TourStore = Depends(tour_store),
) -> dict:
    """Tours whose start location lies within distance (in unit) of latlng."""
    center = parse_latlng(latlng)
    unit = parse_unit(unit)
    if distance < 0:
        raise ValidationFailure("Distance must not be negative.")
    tours = store.tours_within(center, distance, unit)
    return success(results=len(tours), data={"tours": [dump(TourOut.from_tour(t)) for t in tours]})


@api_limit
@router.get("/distances/{latlng}/unit/{unit}")
def distances(request: Request, latlng: str, unit: str, store: TourStore = Depends(tour_store)) -> dict:
    center = parse_latlng(latlng)
    return success(data={"distances": store.distances(center, parse_unit(unit))})


# ---------------------------------------------------------------------------
# Single tour
# ---------------------------------------------------------------------------


@api_limit
@router.post("", status_code=201, dependencies=[Depends(_editors)])
def create_tour(request: Request, body: TourCreate, store: TourStore = Depends(tour_store)) -> dict:
    tour_id = store.create_tour(body.to_tour())
    tour = store.get_tour(tour_id)
    logger.info("Tour %s created (id=%s)", tour.slug if tour else "?", tour_id)
    # A new secret tour is not readable back; echo what was stored.
    data = dump(TourOut.from_tour(tour)) if tour else {"id": tour_id}
    return success(data={"tour": data})


@api_limit
@router.get("/{tour_id}")
def get_tour(
    request: Request,
    tour_id: int,
    store: TourStore = Depends(tour_store),
    users: UserStore = Depends(user_store),
) -> dict:
    tour = store.get_tour(tour_id)
    if tour is None:
        raise NotFound("No tour found with that ID.")
    return success(data={"tour": _tour_detail(tour, users, store)})


@api_limit
@router.patch("/{tour_id}", dependencies=[Depends(_editors)])
def update_tour(
    request: Request,
    tour_id: int,
    body: TourUpdate,
    store: TourStore = Depends(tour_store),
) -> dict:
    changes = {
        k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k in _NULLABLE
    }
    tour = store.update_tour(tour_id, **changes)
    if tour is None:
        raise NotFound("No tour found with that ID.")
    return success(data={"tour": dump(TourOut.from_tour(tour))})


@api_limit
@router.patch("/{tour_id}/images", dependencies=[Depends(_editors)])
async def upload_tour_images(
    request: Request,
    tour_id: int,
    store: TourStore = Depends(tour_store),
) -> dict:
    """multipart/form-data: imageCover (one file) and images (up to three)."""
    if store.get_tour(tour_id) is None:
        raise NotFound("No tour found with that ID.")
    form = await request.form()
    cover_file = form.get("imageCover")
    cover = None
    if isinstance(cover_file, UploadFile):
        cover = (await cover_file.read(), cover_file.content_type)
    images = []
    for upload in form.getlist("images"):
        if isinstance(upload, UploadFile):
            images.append((await upload.read(), upload.content_type))
    if cover is None and not images:
        raise ValidationFailure("Upload an imageCover or at least one image.")

    cover_name, names = await run_in_threadpool(
        request.app.state.images.save_tour_images, tour_id, cover, images
    )
    changes: dict = {}
    if cover_name:
        changes["image_cover"] = cover_name
    if names:
        changes["images"] = names
    tour = store.update_tour(tour_id, **changes)
    return success(data={"tour": dump(TourOut.from_tour(tour))})


@api_limit
@router.delete("/{tour_id}", status_code=204, dependencies=[Depends(_editors)])
def delete_tour(request: Request, tour_id: int, store: TourStore = Depends(tour_store)) -> Response:
    if not store.delete_tour(tour_id):
        raise NotFound("No tour found with that ID.")
    logger.info("Tour %s deleted", tour_id)
    return Response(status_code=204)
