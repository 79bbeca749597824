"""
tours/events.py -- Application event handlers run after review writes.

Review routes call on_review_changed() right after a successful create,
update, or delete. The aggregate recompute stays an explicit call instead of
a hidden save hook, so it can be tested on its own.
"""

from __future__ import annotations

import logging

from tours.models import DEFAULT_RATINGS_AVERAGE, round_rating
from tours.store import TourStore

logger = logging.getLogger("wayfarer.tours")


def on_review_changed(store: TourStore, tour_id: int) -> tuple[int, float]:
    """Recompute ratingsQuantity / ratingsAverage for one tour.

    With no reviews left the tour falls back to 0 ratings and the default
    average. Returns the stored (quantity, average).
    """
    quantity, average = store.review_stats(tour_id)
    if quantity and average is not None:
        stored = (quantity, round_rating(average))
    else:
        stored = (0, DEFAULT_RATINGS_AVERAGE)
    store.set_ratings(tour_id, *stored)
    logger.debug("Ratings for tour %s recomputed: %s", tour_id, stored)
    return stored
