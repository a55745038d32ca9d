"""Job that expires earned points past their expiry date."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict

from loguru import logger

from backoffice_api.services.loyalty import LoyaltyLedgerService
from ._session import SessionFactory, open_session


async def expire_loyalty_points(
    *,
    session_factory: SessionFactory,
    batch_size: int | None = None,
    now: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Expire due earned rows and adjust the affected aggregates."""

    async with await open_session(session_factory) as session:
        ledger = LoyaltyLedgerService(session)
        outcome = await ledger.expire_points(now or dt.datetime.now(dt.timezone.utc), limit=batch_size)
        await session.commit()

    summary = {
        "rows_expired": outcome.rows_expired,
        "points_expired": outcome.points_expired,
        "users_affected": len(outcome.users_affected),
    }
    logger.bind(summary=summary).info("Loyalty expiration sweep completed")
    return summary


__all__ = ["expire_loyalty_points"]
