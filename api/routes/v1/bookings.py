"""
api/routes/v1/bookings.py -- Bookings, Stripe checkout, and the payment webhook.

Routes:
  GET    /api/v1/bookings/checkout-session/{tour_id} -- Stripe session (auth)
  GET    /api/v1/bookings                   -- listing (admin, lead-guide)
  POST   /api/v1/bookings                   -- manual booking (admin, lead-guide)
  GET    /api/v1/bookings/{id}              -- (admin, lead-guide)
  PATCH  /api/v1/bookings/{id}              -- (admin, lead-guide)
  DELETE /api/v1/bookings/{id}              -- (admin, lead-guide)
  POST   /webhook-checkout                  -- Stripe webhook (public, signed)

The webhook sits outside /api so it is not counted against the shared API
limit, and it reads the raw body: the signature covers the exact bytes.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from api.deps import listing_params, tour_store, user_store
from api.limiter import api_limit
from api.models import BookingCreate, BookingOut, BookingUpdate, dump, success
from auth.dependencies import protect, restrict_to
from auth.models import Role, User
from auth.store import UserStore
from core.errors import NotFound
from payments.checkout import completed_checkout
from tours.models import Booking
from tours.store import TourStore

logger = logging.getLogger("wayfarer.api.bookings")

router = APIRouter(prefix="/bookings", dependencies=[Depends(protect)])
webhook_router = APIRouter()

_managers = restrict_to(Role.ADMIN, Role.LEAD_GUIDE)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@api_limit
@router.get("/checkout-session/{tour_id}")
def checkout_session(
    request: Request,
    tour_id: int,
    user: User = Depends(protect),
    store: TourStore = Depends(tour_store),
) -> dict:
    """Start a Stripe Checkout payment for one seat on the tour."""
    tour = store.get_tour(tour_id)
    if tour is None:
        raise NotFound("No tour found with that ID.")
    base = str(request.base_url)
    session = request.app.state.checkout.create_session(
        tour,
        user,
        success_url=f"{base}my-tours?alert=booking",
        cancel_url=f"{base}tour/{tour.slug}",
        image_url=f"{base}static/img/tours/{tour.image_cover}",
    )
    return success(session={"id": session.id, "url": session.url})


@webhook_router.post("/webhook-checkout")
async def webhook_checkout(
    request: Request,
    store: TourStore = Depends(tour_store),
    users: UserStore = Depends(user_store),
) -> dict:
    """Turn a completed checkout into a paid booking.

    Other event types are acknowledged and ignored so Stripe stops retrying.
    """
    payload = await request.body()
    event = request.app.state.checkout.parse_event(payload, request.headers.get("Stripe-Signature"))
    checkout = completed_checkout(event)
    if checkout is not None:
        user = users.get_by_email(checkout.customer_email)
        if user is None:
            logger.warning("Checkout completed for unknown customer %s", checkout.customer_email)
        else:
            booking_id = store.create_booking(
                Booking(tour_id=checkout.tour_id, user_id=user.id, price=checkout.price)
            )
            logger.info("Booking %s created from checkout (tour_id=%s)", booking_id, checkout.tour_id)
    return {"received": True}


# ---------------------------------------------------------------------------
# Booking management
# ---------------------------------------------------------------------------


@api_limit
@router.get("", dependencies=[Depends(_managers)])
def list_bookings(
    request: Request,
    params: dict = Depends(listing_params),
    store: TourStore = Depends(tour_store),
) -> dict:
    docs = store.find_bookings(params)
    return success(results=len(docs), data={"bookings": docs})


@api_limit
@router.post("", status_code=201, dependencies=[Depends(_managers)])
def create_booking(request: Request, body: BookingCreate, store: TourStore = Depends(tour_store)) -> dict:
    booking_id = store.create_booking(
        Booking(tour_id=body.tour, user_id=body.user, price=body.price, paid=body.paid)
    )
    return success(data={"booking": dump(BookingOut.from_booking(store.get_booking(booking_id)))})


@api_limit
@router.get("/{booking_id}", dependencies=[Depends(_managers)])
def get_booking(request: Request, booking_id: int, store: TourStore = Depends(tour_store)) -> dict:
    booking = store.get_booking(booking_id)
    if booking is None:
        raise NotFound()
    return success(data={"booking": dump(BookingOut.from_booking(booking))})


@api_limit
@router.patch("/{booking_id}", dependencies=[Depends(_managers)])
def update_booking(
    request: Request,
    booking_id: int,
    body: BookingUpdate,
    store: TourStore = Depends(tour_store),
) -> dict:
    booking = store.update_booking(booking_id, **body.model_dump(exclude_unset=True, exclude_none=True))
    if booking is None:
        raise NotFound()
    return success(data={"booking": dump(BookingOut.from_booking(booking))})


@api_limit
@router.delete("/{booking_id}", status_code=204, dependencies=[Depends(_managers)])
def delete_booking(request: Request, booking_id: int, store: TourStore = Depends(tour_store)) -> Response:
    if not store.delete_booking(booking_id):
        raise NotFound()
    return Response(status_code=204)
