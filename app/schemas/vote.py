"""Vote schemas: lifecycle enums, stored records, request bodies and views."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field


class VoteKind(StrEnum):
    """What a vote decides. One active vote per kind per group."""

    MANAGER_ELECTION = "MANAGER_ELECTION"
    MEAL_CHOICE = "MEAL_CHOICE"
    ACCOUNTANT = "ACCOUNTANT"
    ROOM_LEADER = "ROOM_LEADER"
    MARKET_MANAGER = "MARKET_MANAGER"
    GROUP_DECISION = "GROUP_DECISION"


class VoteStatus(StrEnum):
    """Lifecycle state of a vote."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class ResolutionReason(StrEnum):
    """Why a vote left the active state."""

    MAJORITY_REACHED = "majority_reached"
    ALL_MEMBERS_VOTED = "all_members_voted"
    EXPIRED = "expired"


class CandidateSnapshot(BaseModel):
    """A candidate as captured when the vote was created or edited."""

    candidate_id: str
    display_name: str
    avatar_ref: str | None = None
    eligible_at_creation: bool = True


class VoteRecord(BaseModel):
    """A vote row as stored in the ``votes`` table."""

    id: str
    group_id: str
    creator_id: str
    kind: VoteKind
    title: str
    description: str = ""
    start_at: datetime
    end_at: datetime
    status: VoteStatus = VoteStatus.ACTIVE
    is_anonymous: bool = False
    candidates: list[CandidateSnapshot] = Field(default_factory=list)
    winner_id: str | None = None
    resolution_reason: ResolutionReason | None = None
    resolved_at: datetime | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_active(self) -> bool:
        return self.status == VoteStatus.ACTIVE

    def candidate(self, candidate_id: str) -> CandidateSnapshot | None:
        """Return the snapshot entry for ``candidate_id`` if present."""
        for candidate in self.candidates:
            if candidate.candidate_id == candidate_id:
                return candidate
        return None


class BallotRecord(BaseModel):
    """One voter's choice, stored in ``vote_ballots``."""

    vote_id: str
    candidate_id: str
    voter_id: str
    cast_at: datetime | None = None


class VoteCreate(BaseModel):
    """Request body for opening a vote."""

    kind: VoteKind
    title: str = Field("", max_length=120)
    description: str = Field("", max_length=1000)
    start_at: datetime | None = None
    end_at: datetime | None = None
    candidate_ids: list[str] = Field(default_factory=list)
    is_anonymous: bool = False


class VoteUpdate(BaseModel):
    """Request body for editing an active vote. Omitted fields are left as-is."""

    title: str | None = Field(None, max_length=120)
    description: str | None = Field(None, max_length=1000)
    end_at: datetime | None = None
    candidate_ids: list[str] | None = None


class BallotCreate(BaseModel):
    """Request body for casting a ballot."""

    candidate_id: str


class VoterView(BaseModel):
    """Display object for one voter under a candidate."""

    user_id: str
    display_name: str
    avatar_ref: str | None = None


class ParticipationView(BaseModel):
    """Turnout against the live member count."""

    ballots_cast: int
    total_members: int
    rate: float


class VoteView(VoteRecord):
    """Vote representation returned to clients."""

    winner: CandidateSnapshot | None = None
    results: dict[str, list[VoterView]] = Field(default_factory=dict)
    total_ballots: int = 0
    participation: ParticipationView
    has_voted: bool = False
