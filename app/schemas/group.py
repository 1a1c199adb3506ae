"""Group membership schemas."""

from enum import StrEnum

from pydantic import BaseModel


class GroupRole(StrEnum):
    """Roles a user can hold inside a group."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEAL_MANAGER = "MEAL_MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    MARKET_MANAGER = "MARKET_MANAGER"
    MEMBER = "MEMBER"


ELEVATED_ROLES = frozenset({GroupRole.SUPER_ADMIN, GroupRole.ADMIN, GroupRole.MANAGER})


class GroupMember(BaseModel):
    """A roster entry joined with the member's public profile."""

    user_id: str
    role: str = GroupRole.MEMBER
    display_name: str = "Unknown member"
    avatar_ref: str | None = None

    @property
    def is_elevated(self) -> bool:
        """Return True for roles that may manage votes and cannot stand."""
        return self.role in ELEVATED_ROLES
