"""media/ -- Image upload validation and resizing."""
