"""Custom exception hierarchy for the household votes API."""

from __future__ import annotations


class AppError(Exception):
    """Base application error with a stable machine-readable code."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Serialize the error in the API standard shape."""
        return {"error": self.message, "code": self.code}


class UnauthorizedError(AppError):
    """Missing or invalid bearer token."""

    def __init__(self, reason: str = "Unauthorized") -> None:
        super().__init__(message=reason, code="UNAUTHORIZED", status_code=401)


class ForbiddenError(AppError):
    """Caller is not a group member, or lacks an elevated role."""

    def __init__(self, reason: str = "You don't have permission") -> None:
        super().__init__(message=reason, code="FORBIDDEN", status_code=403)


class NotFoundError(AppError):
    """Group, vote or candidate does not exist."""

    def __init__(self, resource: str) -> None:
        super().__init__(message=f"{resource} not found", code="NOT_FOUND", status_code=404)


class InvalidInputError(AppError):
    """Request payload or parameter validation failed."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="INVALID_INPUT", status_code=422)


class InvalidStateError(AppError):
    """Operation is not allowed in the vote's current lifecycle state."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="INVALID_STATE", status_code=409)


class ConflictError(AppError):
    """Write collided with existing data."""

    def __init__(self, reason: str, code: str = "CONFLICT") -> None:
        super().__init__(message=reason, code=code, status_code=409)


class ActiveVoteExistsError(ConflictError):
    def __init__(self) -> None:
        super().__init__("An active vote of this kind already exists", code="ACTIVE_VOTE_EXISTS")


class AlreadyVotedError(ConflictError):
    def __init__(self) -> None:
        super().__init__("You have already voted", code="ALREADY_VOTED")


class VersionConflictError(ConflictError):
    """A write lost against a concurrent writer or timed out on the row lock."""

    def __init__(self, reason: str = "Vote was modified concurrently") -> None:
        super().__init__(reason, code="VERSION_CONFLICT")


class VoteBusyError(ConflictError):
    """Ballot retries were exhausted under contention."""

    def __init__(self) -> None:
        super().__init__("Vote is busy, please try again", code="VOTE_BUSY")
