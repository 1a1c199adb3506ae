"""Pure vote rules: eligibility, tallying, tie-breaks and resolution.

Nothing in this module touches the database, so the lifecycle service can
evaluate a prospective ballot in memory before committing it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.schemas.group import GroupMember
from app.schemas.vote import (
    BallotRecord,
    CandidateSnapshot,
    ResolutionReason,
    VoteKind,
    VoterView,
    VoteStatus,
)

UNKNOWN_VOTER_NAME = "Unknown member"


@dataclass(frozen=True)
class Resolution:
    """Outcome of evaluating a vote against its ballots and the live roster."""

    status: VoteStatus
    winner_id: str | None = None
    reason: ResolutionReason | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != VoteStatus.ACTIVE


STILL_ACTIVE = Resolution(VoteStatus.ACTIVE)


def majority_threshold(total_members: int) -> int:
    """Return ``floor(total_members / 2) + 1``."""
    return max(total_members, 0) // 2 + 1


def tally(
    candidates: Sequence[CandidateSnapshot],
    ballots: Iterable[BallotRecord],
) -> dict[str, int]:
    """Count ballots per candidate, keyed in candidate order."""
    counts = {candidate.candidate_id: 0 for candidate in candidates}
    for ballot in ballots:
        if ballot.candidate_id in counts:
            counts[ballot.candidate_id] += 1
    return counts


def leading_candidate(
    candidates: Sequence[CandidateSnapshot],
    counts: dict[str, int],
) -> str | None:
    """Return the candidate with the most ballots.

    Ties go to the candidate listed first in the snapshot. Returns None when
    no ballots have been cast.
    """
    leader: str | None = None
    best = 0
    for candidate in candidates:
        total = counts.get(candidate.candidate_id, 0)
        if total > best:
            leader = candidate.candidate_id
            best = total
    return leader


def evaluate_resolution(
    candidates: Sequence[CandidateSnapshot],
    ballots: Sequence[BallotRecord],
    total_members: int,
    end_at: datetime,
    now: datetime,
) -> Resolution:
    """Decide whether a vote resolves, expires or stays active.

    Checks run in order: majority, everyone voted, deadline passed.
    ``total_members`` is the live roster size, so thresholds follow
    membership changes while the vote is open.
    """
    counts = tally(candidates, ballots)
    total_ballots = sum(counts.values())
    leader = leading_candidate(candidates, counts)

    if leader is not None and counts[leader] >= majority_threshold(total_members):
        return Resolution(VoteStatus.RESOLVED, leader, ResolutionReason.MAJORITY_REACHED)

    if total_ballots > 0 and total_ballots >= total_members:
        return Resolution(VoteStatus.RESOLVED, leader, ResolutionReason.ALL_MEMBERS_VOTED)

    if now > end_at:
        return Resolution(VoteStatus.EXPIRED, leader, ResolutionReason.EXPIRED)

    return STILL_ACTIVE


def resolution_changes(resolution: Resolution, now: datetime) -> dict[str, Any]:
    """Return the column updates that persist a terminal resolution."""
    if not resolution.is_terminal:
        return {}

    changes: dict[str, Any] = {
        "status": resolution.status.value,
        "winner_id": resolution.winner_id,
        "resolution_reason": resolution.reason.value if resolution.reason else None,
        "resolved_at": now.isoformat(),
    }
    if resolution.status == VoteStatus.RESOLVED:
        changes["end_at"] = now.isoformat()
    return changes


def eligible_candidates(
    members: Iterable[GroupMember],
    requested_ids: Iterable[str],
    keep: Sequence[CandidateSnapshot] = (),
) -> list[CandidateSnapshot]:
    """Snapshot requested candidates that are members without an elevated role.

    Order follows ``requested_ids``; duplicates and unknown ids are dropped.
    Entries already in ``keep`` are carried over as-is, so an edit never
    re-derives eligibility for someone who was captured earlier.
    """
    roster = {member.user_id: member for member in members}
    existing = {candidate.candidate_id: candidate for candidate in keep}
    snapshot: list[CandidateSnapshot] = []
    seen: set[str] = set()
    for candidate_id in requested_ids:
        candidate_id = str(candidate_id)
        if candidate_id in seen:
            continue
        seen.add(candidate_id)

        if candidate_id in existing:
            snapshot.append(existing[candidate_id])
            continue

        member = roster.get(candidate_id)
        if member is None or member.is_elevated:
            continue
        snapshot.append(
            CandidateSnapshot(
                candidate_id=member.user_id,
                display_name=member.display_name,
                avatar_ref=member.avatar_ref,
                eligible_at_creation=True,
            )
        )
    return snapshot


def participation_rate(ballots_cast: int, total_members: int) -> float:
    """Return turnout as a percentage with one decimal."""
    if total_members <= 0:
        return 0.0
    return round(ballots_cast / total_members * 100, 1)


def voters_by_candidate(
    candidates: Sequence[CandidateSnapshot],
    ballots: Iterable[BallotRecord],
    roster: dict[str, GroupMember],
) -> dict[str, list[VoterView]]:
    """Resolve ballots into voter display objects grouped by candidate."""
    results: dict[str, list[VoterView]] = {
        candidate.candidate_id: [] for candidate in candidates
    }
    for ballot in ballots:
        member = roster.get(ballot.voter_id)
        voter = VoterView(
            user_id=ballot.voter_id,
            display_name=member.display_name if member else UNKNOWN_VOTER_NAME,
            avatar_ref=member.avatar_ref if member else None,
        )
        results.setdefault(ballot.candidate_id, []).append(voter)
    return results


def kind_label(kind: VoteKind) -> str:
    """Return a human label such as ``manager election``."""
    return kind.value.replace("_", " ").lower()
