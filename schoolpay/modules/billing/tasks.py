"""Celery tasks for the billing module.

The daily renewal pass is scheduled by the beat configuration in
``schoolpay.core.celery_app``.
"""

import asyncio
import logging
from datetime import date
from typing import Optional

from schoolpay.core.celery_app import celery_app
from schoolpay.core.database import async_session_maker, engine
from schoolpay.core.logging import set_correlation_id, clear_correlation_id

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="billing.process_subscription_renewals",
)
def process_subscription_renewals_task(self, as_of: Optional[str] = None) -> dict:
    """Renew every active subscription due on or before ``as_of``.

    Args:
        as_of: ISO date (YYYY-MM-DD); defaults to today

    Returns:
        dict with the number of renewals processed, succeeded and failed
    """
    set_correlation_id(self.request.id or "renewal-task")
    try:
        return asyncio.run(
            run_renewals(date.fromisoformat(as_of) if as_of else None)
        )
    finally:
        clear_correlation_id()


async def run_renewals(as_of: Optional[date] = None) -> dict:
    """Run one renewal pass on a fresh session and summarize the outcome."""
    from schoolpay.modules.billing.renewal import RenewalProcessor

    try:
        async with async_session_maker() as session:
            results = await RenewalProcessor(session).process_due_renewals(as_of)
    finally:
        # Pooled connections are bound to this event loop
        await engine.dispose()

    failed = [result for result in results if result["status"] == "failed"]
    summary = {
        "processed": len(results),
        "succeeded": len(results) - len(failed),
        "failed": len(failed),
        "failures": failed,
    }
    logger.info(
        f"Renewal pass finished: {summary['succeeded']} succeeded, {summary['failed']} failed"
    )
    return summary
