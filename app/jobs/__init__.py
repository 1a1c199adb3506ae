"""Background job modules for periodic vote maintenance."""

from app.jobs.vote_expiry import vote_expiry

__all__ = ["vote_expiry"]
