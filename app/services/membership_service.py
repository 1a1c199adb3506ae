"""Group roster lookups used by the vote lifecycle."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from app.schemas.group import GroupMember, GroupRole
from app.services.common import SupabaseService, is_uuid
from supabase import Client

ROLE_PRIORITY = {
    GroupRole.SUPER_ADMIN: 0,
    GroupRole.ADMIN: 1,
    GroupRole.MANAGER: 2,
    GroupRole.MEAL_MANAGER: 3,
    GroupRole.ACCOUNTANT: 4,
    GroupRole.MARKET_MANAGER: 5,
    GroupRole.MEMBER: 6,
}


class MembershipService:
    """Read-only view of group membership, roles and member profiles."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def group_exists(self, group_id: str) -> bool:
        """Return True when the group row exists."""
        if not is_uuid(group_id):
            return False
        rows = self.db.select_many("groups", filters={"id": group_id}, columns="id", limit=1)
        return bool(rows)

    def get_members(self, group_id: str) -> list[GroupMember]:
        """Return the roster with each user's highest-priority role."""
        if not is_uuid(group_id):
            return []
        rows = self.db.select_many(
            "group_members",
            filters={"group_id": group_id},
            columns="user_id,role,joined_at",
            order_by="joined_at",
        )

        roles: dict[str, str] = {}
        for row in rows:
            user_id = str(row["user_id"])
            role = str(row.get("role") or GroupRole.MEMBER)
            current = roles.get(user_id)
            if current is None or ROLE_PRIORITY.get(role, 99) < ROLE_PRIORITY.get(current, 99):
                roles[user_id] = role

        users = self._users_map(roles.keys())
        members: list[GroupMember] = []
        for user_id, role in roles.items():
            user = users.get(user_id, {})
            members.append(
                GroupMember(
                    user_id=user_id,
                    role=role,
                    display_name=user.get("display_name") or "Unknown member",
                    avatar_ref=user.get("avatar_url"),
                )
            )
        return members

    def get_member(self, group_id: str, user_id: str) -> GroupMember | None:
        """Return one roster entry or None when the user is not a member."""
        for member in self.get_members(group_id):
            if member.user_id == str(user_id):
                return member
        return None

    def get_member_count(self, group_id: str) -> int:
        """Return the live number of distinct members."""
        if not is_uuid(group_id):
            return 0
        rows = self.db.select_many(
            "group_members",
            filters={"group_id": group_id},
            columns="user_id",
        )
        return len({str(row["user_id"]) for row in rows})

    def _users_map(self, user_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        rows = self.db.select_in("users", "id", user_ids, columns="id,display_name,avatar_url")
        return {str(row["id"]): row for row in rows}
