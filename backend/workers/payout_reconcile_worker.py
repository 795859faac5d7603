import asyncio
import logging

from config.constants import ROLE_SYSTEM
from config.env import PAYOUT_RECONCILE_INTERVAL_SECONDS
from database import get_db
from models.payout import PayoutStatus
from utils.settlement import reconcile_payout

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = {"_id": "system", "role": ROLE_SYSTEM}


async def reconcile_processing_payouts(db) -> int:
    """
    One sweep over payouts still waiting on the provider.
    Returns how many left ``processing``.
    """
    settled = 0
    cursor = db.seller_payouts.find({"status": PayoutStatus.PROCESSING.value})

    async for payout in cursor:
        try:
            updated = await reconcile_payout(db, payout["_id"], SYSTEM_ACTOR)
            if updated["status"] != PayoutStatus.PROCESSING.value:
                settled += 1
        except Exception:
            logger.exception("PAYOUT_RECONCILE_ERROR payout=%s", payout.get("_id"))

    return settled


async def payout_reconcile_worker():
    db = get_db()

    while True:
        try:
            settled = await reconcile_processing_payouts(db)
            if settled:
                logger.info("PAYOUT_RECONCILE settled=%s", settled)
        except Exception:
            logger.exception("PAYOUT_RECONCILE_SWEEP_ERROR")

        await asyncio.sleep(PAYOUT_RECONCILE_INTERVAL_SECONDS)
