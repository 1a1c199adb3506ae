"""Collaborator interfaces consumed by the vote lifecycle service.

The Supabase-backed implementations live in ``vote_repository``,
``membership_service`` and ``notification_service``; tests provide
in-memory versions with the same methods.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from app.schemas.group import GroupMember
from app.schemas.vote import BallotRecord, VoteKind, VoteRecord, VoteStatus


class VoteStore(Protocol):
    """Persistence for votes and their ballots."""

    def list_for_group(self, group_id: str) -> list[VoteRecord]: ...

    def get(self, group_id: str, vote_id: str) -> VoteRecord:
        """Return one vote or raise ``NotFoundError``."""
        ...

    def find_active(self, group_id: str, kind: VoteKind) -> VoteRecord | None: ...

    def list_overdue(self, now: datetime) -> list[VoteRecord]: ...

    def open_vote(self, payload: dict[str, Any]) -> VoteRecord:
        """Insert an active vote in one transaction with clearing the creator's slot.

        A completed vote by the same creator and kind is deleted when the
        creator already owns a group decision, otherwise relabeled as an
        archived group decision. Raises ``ActiveVoteExistsError`` without
        touching any row when the kind already has an active vote.
        """
        ...

    def update_if_version(
        self,
        vote_id: str,
        expected_version: int,
        changes: dict[str, Any],
        require_status: VoteStatus | None = None,
    ) -> VoteRecord | None:
        """Apply ``changes`` only if the stored version still matches.

        Returns the updated vote, or None when another writer got there first.
        """
        ...

    def delete(self, vote_id: str) -> bool: ...

    def list_ballots(self, vote_id: str) -> list[BallotRecord]: ...

    def ballots_for_votes(self, vote_ids: list[str]) -> dict[str, list[BallotRecord]]: ...

    def commit_ballot(
        self,
        vote_id: str,
        ballot: BallotRecord,
        total_members: int,
        now: datetime,
    ) -> VoteRecord:
        """Insert ``ballot`` and resolve the vote while holding its row lock.

        Ballots from different voters never conflict with each other.
        Raises ``AlreadyVotedError`` for a second ballot, ``InvalidStateError``
        once the vote has closed, and ``VersionConflictError`` only when the
        lock could not be taken.
        """
        ...


class MemberRoster(Protocol):
    """Live group membership."""

    def group_exists(self, group_id: str) -> bool: ...

    def get_members(self, group_id: str) -> list[GroupMember]: ...

    def get_member(self, group_id: str, user_id: str) -> GroupMember | None: ...

    def get_member_count(self, group_id: str) -> int: ...


class Notifier(Protocol):
    """Best-effort group announcements."""

    def notify_group(
        self,
        group_id: str,
        notification_type: str,
        title: str,
        body: str,
    ) -> Any: ...
