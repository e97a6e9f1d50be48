"""Refresh Loop — periodic sweep of expired registrations and tokens.

Invariants:
    - refresh_all runs in a worker thread, never blocking the event loop
    - A failing sweep is logged and the loop continues; the sweep is idempotent
    - Cancellation (shutdown) ends the loop between sweeps

Design Decisions:
    - asyncio task owned by the FastAPI lifespan instead of a separate scheduler
      process: the store lives in this process's memory
"""

import asyncio
import logging

from account_registry.services.account_service import AccountService

logger = logging.getLogger(__name__)


async def run_refresh_loop(service: AccountService, interval_seconds: float) -> None:
    """Call service.refresh_all() every `interval_seconds` until cancelled."""
    logger.info(f"Refresh loop started (every {interval_seconds}s)")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            dropped = await asyncio.to_thread(service.refresh_all)
            if dropped:
                logger.info(
                    f"Refresh dropped {dropped} expired registrations",
                    extra={"dropped": dropped},
                )
        except Exception as e:
            logger.error(f"Error refreshing accounts: {e}", exc_info=True)
