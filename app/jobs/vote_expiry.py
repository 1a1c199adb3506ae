"""Periodic vote expiry sweep job."""

from __future__ import annotations

import logging

from app.services.vote_service import VoteService
from app.utils.supabase_client import get_service_client

logger = logging.getLogger(__name__)


async def vote_expiry() -> None:
    """Close active votes whose deadline passed without anyone reading them."""
    service = VoteService.from_client(get_service_client())
    closed = service.expire_overdue()
    for vote in closed:
        logger.debug("vote_expiry closed %s in group %s as %s", vote.id, vote.group_id, vote.status)
    logger.info("vote_expiry completed with %s closed votes", len(closed))
