"""tours/ -- Tours, reviews, and bookings: models, persistence, rating events.

Layer rule: tours/ imports from core/ and auth.store (engine helper) only.
It does NOT import from api/, web/, or payments/.
"""
