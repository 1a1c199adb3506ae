"""Group vote lifecycle: creation, ballots, resolution, expiry and archival."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from app.config import settings
from app.schemas.group import GroupMember
from app.schemas.vote import (
    BallotRecord,
    ParticipationView,
    ResolutionReason,
    VoteCreate,
    VoteRecord,
    VoteStatus,
    VoteUpdate,
    VoteView,
)
from app.services.membership_service import MembershipService
from app.services.notification_service import NotificationService
from app.services.ports import MemberRoster, Notifier, VoteStore
from app.services.vote_repository import VoteRepository
from app.services.vote_rules import (
    eligible_candidates,
    evaluate_resolution,
    kind_label,
    participation_rate,
    resolution_changes,
    voters_by_candidate,
)
from app.utils.errors import (
    ActiveVoteExistsError,
    AlreadyVotedError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    VersionConflictError,
    VoteBusyError,
)
from app.utils.time import ensure_aware, now_utc
from supabase import Client

logger = logging.getLogger(__name__)

NOTIFICATION_VOTE_STARTED = "vote_started"
NOTIFICATION_VOTE_ENDED = "vote_ended"

REASON_TEXT = {
    ResolutionReason.MAJORITY_REACHED: "majority reached",
    ResolutionReason.ALL_MEMBERS_VOTED: "all members voted",
}


class VoteService:
    """Own the state machine of group votes.

    Votes move from ``active`` to ``resolved`` (majority, or everyone voted)
    or ``expired`` (deadline passed). Completed votes may later be relabeled
    ``archived`` when their creator opens a new vote of the same kind.
    Expiry is applied lazily whenever a vote is read or voted on.
    """

    def __init__(
        self,
        repository: VoteStore,
        roster: MemberRoster,
        notifier: Notifier,
        clock: Callable[[], datetime] = now_utc,
        max_cast_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
    ) -> None:
        self.votes = repository
        self.roster = roster
        self.notifier = notifier
        self.clock = clock
        retries = settings.vote_cast_max_retries if max_cast_retries is None else max_cast_retries
        self.max_cast_retries = max(1, retries)
        if retry_backoff_seconds is None:
            retry_backoff_seconds = settings.vote_cast_retry_backoff_ms / 1000
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self.default_duration = timedelta(hours=settings.vote_default_duration_hours)

    @classmethod
    def from_client(cls, client: Client) -> VoteService:
        """Wire the service to Supabase-backed collaborators."""
        return cls(
            repository=VoteRepository(client),
            roster=MembershipService(client),
            notifier=NotificationService(client),
        )

    # Access checks

    def _require_group(self, group_id: str) -> None:
        if not self.roster.group_exists(group_id):
            raise NotFoundError("Group")

    @staticmethod
    def _require_member(members: list[GroupMember], user_id: str) -> GroupMember:
        for member in members:
            if member.user_id == str(user_id):
                return member
        raise ForbiddenError("You are not a member of this group")

    def _require_elevated(self, group_id: str, user_id: str, reason: str) -> GroupMember:
        self._require_group(group_id)
        member = self.roster.get_member(group_id, user_id)
        if member is None:
            raise ForbiddenError("You are not a member of this group")
        if not member.is_elevated:
            raise ForbiddenError(reason)
        return member

    # Reads

    def list_votes(self, group_id: str, requester_id: str) -> list[VoteView]:
        """Return every vote in the group, newest first, after a lazy sweep."""
        self._require_group(group_id)
        members = self.roster.get_members(group_id)
        self._require_member(members, requester_id)
        roster = {member.user_id: member for member in members}
        total_members = len(roster)

        votes = self.votes.list_for_group(group_id)
        ballots = self.votes.ballots_for_votes([vote.id for vote in votes])

        views: list[VoteView] = []
        for vote in votes:
            swept, vote_ballots = self._sweep(vote, ballots.get(vote.id, []), total_members)
            views.append(self._view(swept, vote_ballots, roster, total_members, requester_id))
        return views

    def get_vote(self, group_id: str, vote_id: str, requester_id: str) -> VoteView:
        """Return one vote after a lazy sweep."""
        self._require_group(group_id)
        members = self.roster.get_members(group_id)
        self._require_member(members, requester_id)
        roster = {member.user_id: member for member in members}

        vote = self.votes.get(group_id, vote_id)
        swept, ballots = self._sweep(vote, total_members=len(roster))
        return self._view(swept, ballots, roster, len(roster), requester_id)

    # Writes

    def create_vote(self, group_id: str, creator_id: str, payload: VoteCreate) -> VoteRecord:
        """Open a new vote of ``payload.kind`` (admins and managers only)."""
        self._require_group(group_id)
        members = self.roster.get_members(group_id)
        creator = self._require_member(members, creator_id)
        if not creator.is_elevated:
            raise ForbiddenError("Only admins and managers can create votes")

        title = payload.title.strip()
        if not title:
            raise InvalidInputError("Title is required")

        now = self.clock()
        start_at = ensure_aware(payload.start_at) or now
        end_at = ensure_aware(payload.end_at) or now + self.default_duration
        if payload.start_at is not None and end_at <= start_at:
            raise InvalidInputError("End time must be after start time")

        active = self.votes.find_active(group_id, payload.kind)
        if active is not None:
            active, _ = self._sweep(active, total_members=len(members))
            if active.is_active:
                raise ActiveVoteExistsError()

        candidates = eligible_candidates(members, payload.candidate_ids)
        if not candidates:
            raise InvalidInputError("At least one eligible candidate is required")

        vote = self.votes.open_vote(
            {
                "group_id": group_id,
                "creator_id": creator.user_id,
                "kind": payload.kind.value,
                "title": title,
                "description": payload.description.strip(),
                "start_at": start_at.isoformat(),
                "end_at": end_at.isoformat(),
                "status": VoteStatus.ACTIVE.value,
                "is_anonymous": payload.is_anonymous,
                "candidates": [candidate.model_dump() for candidate in candidates],
                "version": 0,
            }
        )
        logger.info(
            "Vote %s (%s) opened in group %s with %s candidates",
            vote.id,
            vote.kind,
            group_id,
            len(candidates),
        )
        self._notify(
            group_id,
            NOTIFICATION_VOTE_STARTED,
            "New vote started",
            f"A new {kind_label(vote.kind)} vote has started: {vote.title}",
        )
        return vote

    def cast_ballot(
        self,
        group_id: str,
        vote_id: str,
        voter_id: str,
        candidate_id: str,
    ) -> VoteView:
        """Record one ballot and resolve the vote if the ballot decides it.

        The ballot and any resulting transition are committed together while
        the vote row is locked, so concurrent voters queue instead of failing.
        Only a lock timeout is retried, with jittered backoff.
        """
        self._require_group(group_id)
        members = self.roster.get_members(group_id)
        voter = self._require_member(members, voter_id)
        roster = {member.user_id: member for member in members}

        for attempt in range(1, self.max_cast_retries + 1):
            vote = self.votes.get(group_id, vote_id)
            total_members = self.roster.get_member_count(group_id)
            vote, ballots = self._sweep(vote, total_members=total_members)
            if not vote.is_active:
                raise InvalidStateError("Vote is no longer active")
            if vote.candidate(candidate_id) is None:
                raise NotFoundError("Candidate")
            if any(ballot.voter_id == voter.user_id for ballot in ballots):
                raise AlreadyVotedError()

            now = self.clock()
            ballot = BallotRecord(
                vote_id=vote.id,
                candidate_id=candidate_id,
                voter_id=voter.user_id,
                cast_at=now,
            )
            try:
                updated = self.votes.commit_ballot(vote.id, ballot, total_members, now)
            except VersionConflictError:
                logger.info(
                    "Ballot on vote %s could not lock the vote (attempt %s/%s)",
                    vote_id,
                    attempt,
                    self.max_cast_retries,
                )
                self._backoff(attempt)
                continue

            if not updated.is_active:
                logger.info(
                    "Vote %s %s on ballot: winner=%s reason=%s",
                    updated.id,
                    updated.status,
                    updated.winner_id,
                    updated.resolution_reason,
                )
                self._announce_result(updated)

            ballots = self.votes.list_ballots(updated.id)
            return self._view(updated, ballots, roster, total_members, voter.user_id)

        raise VoteBusyError()

    def edit_vote(
        self,
        group_id: str,
        vote_id: str,
        actor_id: str,
        patch: VoteUpdate,
    ) -> VoteRecord:
        """Edit mutable fields of an active vote without re-evaluating it."""
        self._require_elevated(group_id, actor_id, "Only admins and managers can edit votes")
        vote = self.votes.get(group_id, vote_id)
        if not vote.is_active:
            raise InvalidStateError("Only active votes can be edited")

        changes: dict[str, object] = {}
        if patch.title is not None:
            title = patch.title.strip()
            if not title:
                raise InvalidInputError("Title is required")
            changes["title"] = title

        if patch.description is not None:
            changes["description"] = patch.description.strip()

        if patch.end_at is not None:
            end_at = ensure_aware(patch.end_at)
            if end_at <= vote.start_at:
                raise InvalidInputError("End time must be after start time")
            changes["end_at"] = end_at.isoformat()

        if patch.candidate_ids is not None:
            members = self.roster.get_members(group_id)
            candidates = eligible_candidates(members, patch.candidate_ids, keep=vote.candidates)
            if not candidates:
                raise InvalidInputError("At least one eligible candidate is required")

            kept = {candidate.candidate_id for candidate in candidates}
            voted_for = {ballot.candidate_id for ballot in self.votes.list_ballots(vote.id)}
            if voted_for - kept:
                raise InvalidStateError("Candidates who already received ballots cannot be removed")
            changes["candidates"] = [candidate.model_dump() for candidate in candidates]

        if not changes:
            return vote

        updated = self.votes.update_if_version(
            vote.id, vote.version, changes, require_status=VoteStatus.ACTIVE
        )
        if updated is None:
            raise VersionConflictError()
        logger.info("Vote %s edited by %s: %s", vote.id, actor_id, sorted(changes))
        return updated

    def delete_vote(self, group_id: str, vote_id: str, actor_id: str) -> None:
        """Delete a vote and its ballots regardless of state."""
        self._require_elevated(group_id, actor_id, "Only admins and managers can delete votes")
        vote = self.votes.get(group_id, vote_id)
        self.votes.delete(vote.id)
        logger.info("Vote %s deleted by %s", vote.id, actor_id)

    def expire_overdue(self) -> list[VoteRecord]:
        """Sweep active votes past their deadline across all groups."""
        closed: list[VoteRecord] = []
        for vote in self.votes.list_overdue(self.clock()):
            swept, _ = self._sweep(vote)
            if not swept.is_active:
                closed.append(swept)
        logger.info("vote expiry sweep closed %s votes", len(closed))
        return closed

    # Lifecycle internals

    def _sweep(
        self,
        vote: VoteRecord,
        ballots: list[BallotRecord] | None = None,
        total_members: int | None = None,
    ) -> tuple[VoteRecord, list[BallotRecord]]:
        """Persist a resolution for an active vote whose outcome is already decided.

        Safe to call repeatedly: non-active votes are returned untouched, and a
        lost compare-and-swap re-reads the row instead of writing again.
        """
        if total_members is None:
            total_members = self.roster.get_member_count(vote.group_id)

        for _ in range(self.max_cast_retries):
            if ballots is None:
                ballots = self.votes.list_ballots(vote.id)
            if not vote.is_active:
                return vote, ballots

            now = self.clock()
            resolution = evaluate_resolution(
                vote.candidates, ballots, total_members, vote.end_at, now
            )
            if not resolution.is_terminal:
                return vote, ballots

            updated = self.votes.update_if_version(
                vote.id,
                vote.version,
                resolution_changes(resolution, now),
                require_status=VoteStatus.ACTIVE,
            )
            if updated is not None:
                logger.info(
                    "Vote %s swept to %s: winner=%s reason=%s",
                    updated.id,
                    updated.status,
                    updated.winner_id,
                    updated.resolution_reason,
                )
                self._announce_result(updated)
                return updated, ballots

            vote = self.votes.get(vote.group_id, vote.id)
            ballots = None

        if ballots is None:
            ballots = self.votes.list_ballots(vote.id)
        return vote, ballots

    def _backoff(self, attempt: int) -> None:
        if self.retry_backoff_seconds:
            time.sleep(random.uniform(0, self.retry_backoff_seconds * attempt))

    def _view(
        self,
        vote: VoteRecord,
        ballots: list[BallotRecord],
        roster: dict[str, GroupMember],
        total_members: int,
        requester_id: str,
    ) -> VoteView:
        payload = vote.model_dump(exclude={"is_active"})
        return VoteView(
            **payload,
            winner=vote.candidate(vote.winner_id) if vote.winner_id else None,
            results=voters_by_candidate(vote.candidates, ballots, roster),
            total_ballots=len(ballots),
            participation=ParticipationView(
                ballots_cast=len(ballots),
                total_members=total_members,
                rate=participation_rate(len(ballots), total_members),
            ),
            has_voted=any(ballot.voter_id == str(requester_id) for ballot in ballots),
        )

    def _announce_result(self, vote: VoteRecord) -> None:
        winner = vote.candidate(vote.winner_id) if vote.winner_id else None
        label = kind_label(vote.kind)
        if vote.status == VoteStatus.EXPIRED:
            title = "Vote expired"
            if winner:
                body = (
                    f"The {label} vote '{vote.title}' expired. "
                    f"{winner.display_name} received the most votes."
                )
            else:
                body = f"The {label} vote '{vote.title}' expired with no ballots cast."
        else:
            title = "Vote result"
            reason = REASON_TEXT.get(vote.resolution_reason, "vote closed")
            winner_name = winner.display_name if winner else "No candidate"
            body = f"The {label} vote '{vote.title}' has ended. {winner_name} has won ({reason})."
        self._notify(vote.group_id, NOTIFICATION_VOTE_ENDED, title, body)

    def _notify(self, group_id: str, notification_type: str, title: str, body: str) -> None:
        try:
            self.notifier.notify_group(
                group_id=group_id,
                notification_type=notification_type,
                title=title,
                body=body,
            )
        except Exception:
            logger.exception("Failed to send %s notification to group %s", notification_type, group_id)
