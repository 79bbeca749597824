"""payments/ -- Stripe Checkout sessions and webhook verification."""
