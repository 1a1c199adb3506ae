"""Concurrent ballot casting tests."""

from __future__ import annotations

import threading

from conftest import GROUP_ID, InMemoryRoster, member

from app.schemas.group import GroupRole
from app.schemas.vote import VoteCreate, VoteKind, VoteStatus
from app.services.vote_service import NOTIFICATION_VOTE_ENDED, VoteService
from app.utils.errors import InvalidStateError


def _service(store, notifier, clock, voters: list[str], extra_members: int = 0) -> VoteService:
    roster = InMemoryRoster()
    roster.add_group(
        GROUP_ID,
        [member("admin", GroupRole.ADMIN), member("alice"), member("bob")]
        + [member(voter) for voter in voters]
        + [member(f"extra{index}") for index in range(extra_members)],
    )
    # Retry budget and backoff come from settings.
    return VoteService(repository=store, roster=roster, notifier=notifier, clock=clock)


def _cast_together(service: VoteService, vote_id: str, voters: list[str]) -> list[Exception]:
    barrier = threading.Barrier(len(voters))
    errors: list[Exception] = []

    def cast(voter: str) -> None:
        barrier.wait()
        try:
            service.cast_ballot(GROUP_ID, vote_id, voter, "alice")
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=cast, args=(voter,)) for voter in voters]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return errors


def _open(service: VoteService):
    return service.create_vote(
        GROUP_ID,
        "admin",
        VoteCreate(kind=VoteKind.MANAGER_ELECTION, title="Manager", candidate_ids=["alice", "bob"]),
    )


def test_more_voters_than_retry_budget_all_land(store, notifier, clock) -> None:
    """Thirty members, twelve simultaneous ballots with slow commits.

    Voters queue on the vote instead of failing, so every ballot is stored
    even though there are more voters than retry attempts.
    """
    voters = [f"v{index}" for index in range(12)]
    service = _service(store, notifier, clock, voters, extra_members=15)
    assert len(voters) > service.max_cast_retries
    vote = _open(service)
    store.commit_delay = 0.002

    errors = _cast_together(service, vote.id, voters)

    assert errors == []
    assert sorted(b.voter_id for b in store.list_ballots(vote.id)) == sorted(voters)
    final = store.get(GROUP_ID, vote.id)
    assert final.status == VoteStatus.ACTIVE
    assert final.version == len(voters)


def test_concurrent_ballots_resolve_exactly_once(store, notifier, clock) -> None:
    """Eight of fourteen members vote at once; the eighth ballot is the majority."""
    voters = [f"v{index}" for index in range(8)]
    service = _service(store, notifier, clock, voters, extra_members=3)
    vote = _open(service)
    store.commit_delay = 0.002

    errors = _cast_together(service, vote.id, voters)

    assert errors == []
    assert sorted(b.voter_id for b in store.list_ballots(vote.id)) == sorted(voters)
    final = store.get(GROUP_ID, vote.id)
    assert final.status == VoteStatus.RESOLVED
    assert final.winner_id == "alice"
    assert final.resolution_reason == "majority_reached"
    assert store.transitions.count((vote.id, "resolved")) == 1
    assert len(notifier.of_type(NOTIFICATION_VOTE_ENDED)) == 1


def test_ballots_after_mid_flight_majority_are_rejected_as_closed(store, notifier, clock) -> None:
    """Twelve voters, majority at eleven: late ballots see a closed vote, never VOTE_BUSY."""
    voters = [f"v{index}" for index in range(12)]
    service = _service(store, notifier, clock, voters, extra_members=6)
    vote = _open(service)
    store.commit_delay = 0.002

    errors = _cast_together(service, vote.id, voters)

    assert len(errors) == 1
    assert all(type(error) is InvalidStateError for error in errors)
    assert len(store.list_ballots(vote.id)) == 11
    assert store.get(GROUP_ID, vote.id).status == VoteStatus.RESOLVED
    assert store.transitions.count((vote.id, "resolved")) == 1
    assert len(notifier.of_type(NOTIFICATION_VOTE_ENDED)) == 1
