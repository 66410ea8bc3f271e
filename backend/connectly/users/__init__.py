"""User lookup endpoints."""
