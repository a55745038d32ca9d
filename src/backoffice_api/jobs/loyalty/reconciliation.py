"""Job that rebuilds drifted loyalty aggregates from history."""

from __future__ import annotations

from typing import Any, Dict, List

from loguru import logger

from backoffice_api.services.loyalty import LoyaltyLedgerService
from ._session import SessionFactory, open_session


async def reconcile_loyalty_balances(*, session_factory: SessionFactory) -> Dict[str, Any]:
    """Compare every aggregate with its history and correct any drift.

    Each user is committed on its own so one bad account does not hold back
    the rest of the sweep.
    """

    async with await open_session(session_factory) as session:
        user_ids = await LoyaltyLedgerService(session).list_account_user_ids()

    corrected: List[str] = []
    failed: List[str] = []
    for user_id in user_ids:
        async with await open_session(session_factory) as session:
            ledger = LoyaltyLedgerService(session)
            try:
                result = await ledger.reconcile(user_id)
                await session.commit()
            except Exception:
                await session.rollback()
                logger.exception("Loyalty reconciliation failed", user_id=str(user_id))
                failed.append(str(user_id))
                continue
        if result.corrected:
            corrected.append(str(user_id))

    summary = {
        "accounts_checked": len(user_ids),
        "accounts_corrected": len(corrected),
        "accounts_failed": len(failed),
    }
    logger.bind(summary=summary, corrected=corrected).info("Loyalty reconciliation sweep completed")
    if failed and len(failed) == len(user_ids):
        raise RuntimeError(f"Reconciliation failed for all {len(failed)} accounts")
    return summary


__all__ = ["reconcile_loyalty_balances"]
