"""
ARQ background tasks: persist the lazy expiry of pending invitations and
purge spent link tokens that have expired.

Reads already treat overdue pending invitations as expired; the first job
only rewrites their stored status. Scheduled to run periodically (e.g., every hour).
"""

from __future__ import annotations

import structlog

from backoffice.core.database import get_session_context
from backoffice.services.invitations import expire_stale_invitations
from backoffice.services.links import purge_consumed_link_tokens

log = structlog.get_logger()


async def expire_pending_invitations(ctx: dict) -> int:
    """Mark overdue pending invitations as expired. Returns the number updated."""
    async with get_session_context() as session:
        count = await expire_stale_invitations(session)

    if count:
        log.info("invitation_sweep.expired", count=count)
    return count


async def purge_spent_link_tokens(ctx: dict) -> int:
    async with get_session_context() as session:
        count = await purge_consumed_link_tokens(session)

    if count:
        log.info("link_sweep.purged", count=count)
    return count


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [expire_pending_invitations, purge_spent_link_tokens]
    cron_jobs = [
        {
            "coroutine": expire_pending_invitations,
            "hour": None,  # every hour
            "minute": 0,
        },
        {
            "coroutine": purge_spent_link_tokens,
            "hour": None,
            "minute": 30,
        },
    ]
