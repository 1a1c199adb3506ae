"""Group vote endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from app.dependencies import get_current_user, get_current_user_id, get_vote_service
from app.schemas.vote import BallotCreate, VoteCreate, VoteUpdate
from app.services.vote_service import VoteService

router = APIRouter()


@router.get("")
def list_votes(
    group_id: str,
    user: Any = Depends(get_current_user),
    service: VoteService = Depends(get_vote_service),
) -> dict:
    """Return all votes in the group, expiring overdue ones on the way."""
    votes = service.list_votes(group_id, get_current_user_id(user))
    return {"votes": votes}


@router.get("/{vote_id}")
def get_vote(
    group_id: str,
    vote_id: str,
    user: Any = Depends(get_current_user),
    service: VoteService = Depends(get_vote_service),
) -> dict:
    """Return one vote with results and participation."""
    vote = service.get_vote(group_id, vote_id, get_current_user_id(user))
    return {"vote": vote}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_vote(
    group_id: str,
    payload: VoteCreate,
    user: Any = Depends(get_current_user),
    service: VoteService = Depends(get_vote_service),
) -> dict:
    """Open a new vote."""
    vote = service.create_vote(group_id, get_current_user_id(user), payload)
    return {"vote": vote}


@router.patch("/{vote_id}/ballots")
def cast_ballot(
    group_id: str,
    vote_id: str,
    payload: BallotCreate,
    user: Any = Depends(get_current_user),
    service: VoteService = Depends(get_vote_service),
) -> dict:
    """Cast the current user's ballot."""
    vote = service.cast_ballot(
        group_id=group_id,
        vote_id=vote_id,
        voter_id=get_current_user_id(user),
        candidate_id=payload.candidate_id,
    )
    return {"vote": vote}


@router.put("/{vote_id}")
def edit_vote(
    group_id: str,
    vote_id: str,
    payload: VoteUpdate,
    user: Any = Depends(get_current_user),
    service: VoteService = Depends(get_vote_service),
) -> dict:
    """Edit an active vote."""
    vote = service.edit_vote(group_id, vote_id, get_current_user_id(user), payload)
    return {"vote": vote}


@router.delete("/{vote_id}")
def delete_vote(
    group_id: str,
    vote_id: str,
    user: Any = Depends(get_current_user),
    service: VoteService = Depends(get_vote_service),
) -> dict:
    """Delete a vote and its ballots."""
    service.delete_vote(group_id, vote_id, get_current_user_id(user))
    return {"deleted": True}
