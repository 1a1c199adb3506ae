"""API router package."""

from app.routers import votes

__all__ = ["votes"]
