"""Task graph model, persistence and direct (non-AI) operations."""
