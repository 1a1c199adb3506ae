"""Supabase persistence for votes and ballots."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from app.schemas.vote import BallotRecord, VoteKind, VoteRecord, VoteStatus
from app.services.common import SupabaseService, group_by, is_uuid
from app.utils.errors import (
    ActiveVoteExistsError,
    AlreadyVotedError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from app.utils.time import now_utc
from supabase import Client

logger = logging.getLogger(__name__)


class VoteRepository:
    """Read and write ``votes`` and ``vote_ballots`` rows.

    Writes that must be all-or-nothing go through the ``open_vote`` and
    ``cast_vote_ballot`` database functions in ``sql/schema.sql``.
    """

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def list_for_group(self, group_id: str) -> list[VoteRecord]:
        rows = self.db.select_many(
            "votes",
            filters={"group_id": group_id},
            order_by="created_at",
            descending=True,
        )
        return [VoteRecord.model_validate(row) for row in rows]

    def get(self, group_id: str, vote_id: str) -> VoteRecord:
        if not is_uuid(vote_id):
            raise NotFoundError("Vote")
        row = self.db.select_one(
            "votes",
            {"id": vote_id, "group_id": group_id},
            not_found_label="Vote",
        )
        return VoteRecord.model_validate(row)

    def find_active(self, group_id: str, kind: VoteKind) -> VoteRecord | None:
        rows = self.db.select_many(
            "votes",
            filters={"group_id": group_id, "kind": kind.value, "status": VoteStatus.ACTIVE.value},
            limit=1,
        )
        return VoteRecord.model_validate(rows[0]) if rows else None

    def list_overdue(self, now: datetime) -> list[VoteRecord]:
        """Return active votes whose deadline has passed, across all groups."""
        rows = self.db.execute(
            self.db.client.table("votes")
            .select("*")
            .eq("status", VoteStatus.ACTIVE.value)
            .lt("end_at", now.isoformat()),
            label="select overdue votes",
        )
        return [VoteRecord.model_validate(row) for row in rows]

    def open_vote(self, payload: dict[str, Any]) -> VoteRecord:
        """Insert a vote after archiving or deleting the creator's completed one."""
        rows = self.db.rpc("open_vote", {"p_vote": payload})
        return self._unpack(rows, "Vote could not be created")

    def update_if_version(
        self,
        vote_id: str,
        expected_version: int,
        changes: dict[str, Any],
        require_status: VoteStatus | None = None,
    ) -> VoteRecord | None:
        """Compare-and-swap update keyed on ``version``."""
        payload = {
            **changes,
            "version": expected_version + 1,
            "updated_at": now_utc().isoformat(),
        }
        filters: dict[str, Any] = {"id": vote_id, "version": expected_version}
        if require_status is not None:
            filters["status"] = require_status.value

        rows = self.db.update("votes", filters, payload)
        if not rows:
            logger.info("Vote %s update skipped: version %s is stale", vote_id, expected_version)
            return None
        return VoteRecord.model_validate(rows[0])

    def delete(self, vote_id: str) -> bool:
        return bool(self.db.delete("votes", {"id": vote_id}))

    def list_ballots(self, vote_id: str) -> list[BallotRecord]:
        rows = self.db.select_many(
            "vote_ballots",
            filters={"vote_id": vote_id},
            order_by="cast_at",
        )
        return [BallotRecord.model_validate(row) for row in rows]

    def ballots_for_votes(self, vote_ids: list[str]) -> dict[str, list[BallotRecord]]:
        rows = self.db.select_in("vote_ballots", "vote_id", vote_ids, order_by="cast_at")
        return {
            vote_id: [BallotRecord.model_validate(row) for row in grouped]
            for vote_id, grouped in group_by(rows, "vote_id").items()
        }

    def commit_ballot(
        self,
        vote_id: str,
        ballot: BallotRecord,
        total_members: int,
        now: datetime,
    ) -> VoteRecord:
        """Insert a ballot and resolve the vote through ``cast_vote_ballot``."""
        rows = self.db.rpc(
            "cast_vote_ballot",
            {
                "p_vote_id": vote_id,
                "p_voter_id": ballot.voter_id,
                "p_candidate_id": ballot.candidate_id,
                "p_total_members": total_members,
                "p_now": now.isoformat(),
            },
        )
        return self._unpack(rows, "Ballot could not be recorded")

    def _unpack(self, rows: list[dict[str, Any]], failure: str) -> VoteRecord:
        if not rows:
            raise InvalidInputError(failure)
        payload = rows[0]
        if not payload.get("success"):
            self._raise_for_reason(str(payload.get("reason") or ""))
        return VoteRecord.model_validate(payload["vote"])

    @staticmethod
    def _raise_for_reason(reason: str) -> None:
        if reason == "active_vote_exists":
            raise ActiveVoteExistsError()
        if reason == "already_voted":
            raise AlreadyVotedError()
        if reason == "vote_not_found":
            raise NotFoundError("Vote")
        if reason == "candidate_not_found":
            raise NotFoundError("Candidate")
        if reason == "vote_not_active":
            raise InvalidStateError("Vote is no longer active")
        raise InvalidInputError("Vote could not be updated")
