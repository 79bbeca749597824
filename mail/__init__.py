"""mail/ -- Transactional email senders and their templates."""
