"""Pytest fixtures for backend tests."""

from __future__ import annotations

import itertools
import os
import threading
import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient


def _set_default_env() -> None:
    os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
    os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
    os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
    os.environ.setdefault("ENABLE_SCHEDULER", "false")


# Settings are read at import time, so the environment has to exist before
# any test module imports from ``app``.
_set_default_env()

from app.schemas.group import GroupMember, GroupRole  # noqa: E402
from app.schemas.vote import BallotRecord, VoteKind, VoteRecord, VoteStatus  # noqa: E402
from app.services.vote_rules import evaluate_resolution, resolution_changes  # noqa: E402
from app.services.vote_service import VoteService  # noqa: E402
from app.utils.errors import (  # noqa: E402
    ActiveVoteExistsError,
    AlreadyVotedError,
    InvalidStateError,
    NotFoundError,
    VersionConflictError,
)

GROUP_ID = "group-1"
ARCHIVED_SUFFIX = " (Archived)"
START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable replacement for ``now_utc``."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryRoster:
    """Group membership kept in a dict."""

    def __init__(self) -> None:
        self.groups: dict[str, dict[str, GroupMember]] = {}

    def add_group(self, group_id: str, members: list[GroupMember]) -> None:
        self.groups[group_id] = {member.user_id: member for member in members}

    def add_member(self, group_id: str, member: GroupMember) -> None:
        self.groups[group_id][member.user_id] = member

    def remove_member(self, group_id: str, user_id: str) -> None:
        self.groups[group_id].pop(user_id, None)

    def set_role(self, group_id: str, user_id: str, role: str) -> None:
        member = self.groups[group_id][user_id]
        self.groups[group_id][user_id] = member.model_copy(update={"role": role})

    def group_exists(self, group_id: str) -> bool:
        return group_id in self.groups

    def get_members(self, group_id: str) -> list[GroupMember]:
        return list(self.groups.get(group_id, {}).values())

    def get_member(self, group_id: str, user_id: str) -> GroupMember | None:
        return self.groups.get(group_id, {}).get(user_id)

    def get_member_count(self, group_id: str) -> int:
        return len(self.groups.get(group_id, {}))


class InMemoryVoteStore:
    """Vote and ballot tables with the same guarantees as the database.

    A lock stands in for the row locks taken by ``open_vote`` and
    ``cast_vote_ballot``; both write paths apply their whole change under it.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.lock = threading.RLock()
        self.rows: dict[str, dict[str, Any]] = {}
        self._seq = itertools.count(1)
        self.ballots: list[dict[str, Any]] = []
        self.injected_conflicts = 0
        self.commit_delay = 0.0
        self.commits = 0
        self.transitions: list[tuple[str, str]] = []

    # reads

    def list_for_group(self, group_id: str) -> list[VoteRecord]:
        rows = [row for row in self.rows.values() if row["group_id"] == group_id]
        rows.sort(key=lambda row: row["seq"], reverse=True)
        return [VoteRecord.model_validate(row) for row in rows]

    def get(self, group_id: str, vote_id: str) -> VoteRecord:
        with self.lock:
            row = self.rows.get(vote_id)
            if row is None or row["group_id"] != group_id:
                raise NotFoundError("Vote")
            return VoteRecord.model_validate(dict(row))

    def find_active(self, group_id: str, kind: VoteKind) -> VoteRecord | None:
        for row in self.rows.values():
            if (
                row["group_id"] == group_id
                and row["kind"] == kind.value
                and row["status"] == VoteStatus.ACTIVE.value
            ):
                return VoteRecord.model_validate(row)
        return None

    def list_overdue(self, now: datetime) -> list[VoteRecord]:
        return [
            record
            for record in (VoteRecord.model_validate(row) for row in self.rows.values())
            if record.is_active and record.end_at < now
        ]

    def list_ballots(self, vote_id: str) -> list[BallotRecord]:
        with self.lock:
            rows = [dict(row) for row in self.ballots if row["vote_id"] == vote_id]
        return [BallotRecord.model_validate(row) for row in rows]

    def ballots_for_votes(self, vote_ids: list[str]) -> dict[str, list[BallotRecord]]:
        grouped: dict[str, list[BallotRecord]] = {}
        for row in self.ballots:
            if row["vote_id"] in vote_ids:
                grouped.setdefault(row["vote_id"], []).append(BallotRecord.model_validate(row))
        return grouped

    # writes

    def open_vote(self, payload: dict[str, Any]) -> VoteRecord:
        with self.lock:
            for row in self.rows.values():
                if (
                    row["group_id"] == payload["group_id"]
                    and row["kind"] == payload["kind"]
                    and row["status"] == VoteStatus.ACTIVE.value
                ):
                    raise ActiveVoteExistsError()

            mine = [
                row
                for row in self.rows.values()
                if row["group_id"] == payload["group_id"]
                and row["creator_id"] == payload["creator_id"]
            ]
            owns_decision = any(row["kind"] == VoteKind.GROUP_DECISION.value for row in mine)
            for row in mine:
                if row["kind"] != payload["kind"]:
                    continue
                if owns_decision:
                    self._delete_locked(row["id"])
                else:
                    title = row["title"]
                    if not title.endswith(ARCHIVED_SUFFIX):
                        title = f"{title}{ARCHIVED_SUFFIX}"
                    self._apply(
                        row,
                        {
                            "kind": VoteKind.GROUP_DECISION.value,
                            "title": title,
                            "status": VoteStatus.ARCHIVED.value,
                        },
                    )

            vote_id = str(uuid.uuid4())
            self.rows[vote_id] = {
                **payload,
                "id": vote_id,
                "seq": next(self._seq),
                "created_at": self.clock().isoformat(),
            }
            return VoteRecord.model_validate(self.rows[vote_id])

    def update_if_version(
        self,
        vote_id: str,
        expected_version: int,
        changes: dict[str, Any],
        require_status: VoteStatus | None = None,
    ) -> VoteRecord | None:
        with self.lock:
            row = self.rows.get(vote_id)
            if row is None or row["version"] != expected_version:
                return None
            if require_status is not None and row["status"] != require_status.value:
                return None
            self._apply(row, changes)
            return VoteRecord.model_validate(row)

    def delete(self, vote_id: str) -> bool:
        with self.lock:
            return self._delete_locked(vote_id)

    def commit_ballot(
        self,
        vote_id: str,
        ballot: BallotRecord,
        total_members: int,
        now: datetime,
    ) -> VoteRecord:
        if self.commit_delay:
            time.sleep(self.commit_delay)
        with self.lock:
            if self.injected_conflicts > 0:
                self.injected_conflicts -= 1
                raise VersionConflictError()
            row = self.rows.get(vote_id)
            if row is None:
                raise NotFoundError("Vote")
            if row["status"] != VoteStatus.ACTIVE.value:
                raise InvalidStateError("Vote is no longer active")
            if all(item["candidate_id"] != ballot.candidate_id for item in row["candidates"]):
                raise NotFoundError("Candidate")
            if any(
                existing["vote_id"] == vote_id and existing["voter_id"] == ballot.voter_id
                for existing in self.ballots
            ):
                raise AlreadyVotedError()

            self.ballots.append(
                {
                    "vote_id": vote_id,
                    "candidate_id": ballot.candidate_id,
                    "voter_id": ballot.voter_id,
                    "cast_at": now.isoformat(),
                }
            )
            self.commits += 1
            record = VoteRecord.model_validate(row)
            ballots = [
                BallotRecord.model_validate(item)
                for item in self.ballots
                if item["vote_id"] == vote_id
            ]
            resolution = evaluate_resolution(
                record.candidates, ballots, total_members, record.end_at, now
            )
            self._apply(row, resolution_changes(resolution, now))
            return VoteRecord.model_validate(row)

    def _delete_locked(self, vote_id: str) -> bool:
        removed = self.rows.pop(vote_id, None)
        self.ballots = [row for row in self.ballots if row["vote_id"] != vote_id]
        return removed is not None

    def _apply(self, row: dict[str, Any], changes: dict[str, Any]) -> None:
        row.update(changes)
        row["version"] += 1
        row["updated_at"] = self.clock().isoformat()
        if "status" in changes:
            self.transitions.append((row["id"], changes["status"]))


class RecordingNotifier:
    """Collects notifications; can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    def notify_group(self, group_id: str, notification_type: str, title: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("notification backend unavailable")
        self.sent.append(
            {"group_id": group_id, "type": notification_type, "title": title, "body": body}
        )

    def of_type(self, notification_type: str) -> list[dict[str, str]]:
        return [item for item in self.sent if item["type"] == notification_type]


def member(user_id: str, role: str = GroupRole.MEMBER) -> GroupMember:
    """Build a roster entry with a readable display name."""
    return GroupMember(user_id=user_id, role=role, display_name=user_id.title())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def roster() -> InMemoryRoster:
    """Five members: one admin and four regular members."""
    roster = InMemoryRoster()
    roster.add_group(
        GROUP_ID,
        [
            member("admin", GroupRole.ADMIN),
            member("alice"),
            member("bob"),
            member("carol"),
            member("dave"),
        ],
    )
    return roster


@pytest.fixture
def store(clock: FakeClock) -> InMemoryVoteStore:
    return InMemoryVoteStore(clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(
    store: InMemoryVoteStore,
    roster: InMemoryRoster,
    notifier: RecordingNotifier,
    clock: FakeClock,
) -> VoteService:
    return VoteService(
        repository=store,
        roster=roster,
        notifier=notifier,
        clock=clock,
        max_cast_retries=5,
        retry_backoff_seconds=0,
    )


@pytest.fixture(scope="session")
def client() -> TestClient:
    """Create a FastAPI test client."""
    from app.main import app

    return TestClient(app)
