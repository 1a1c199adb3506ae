"""Notification service."""

from __future__ import annotations

from typing import Any

from app.services.common import SupabaseService
from supabase import Client


class NotificationService:
    """Write notification rows for group members."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def create_bulk(
        self,
        user_ids: list[str],
        group_id: str,
        notification_type: str,
        title: str,
        body: str,
    ) -> list[dict[str, Any]]:
        """Create one notification per user."""
        payloads = [
            {
                "user_id": user_id,
                "group_id": group_id,
                "type": notification_type,
                "title": title,
                "body": body,
            }
            for user_id in user_ids
        ]
        return self.db.insert_many("notifications", payloads)

    def notify_group(
        self,
        group_id: str,
        notification_type: str,
        title: str,
        body: str,
    ) -> list[dict[str, Any]]:
        """Fan a notification out to every current member of a group."""
        members = self.db.select_many(
            "group_members", filters={"group_id": group_id}, columns="user_id"
        )
        member_ids = sorted({str(member["user_id"]) for member in members})
        return self.create_bulk(
            user_ids=member_ids,
            group_id=group_id,
            notification_type=notification_type,
            title=title,
            body=body,
        )
