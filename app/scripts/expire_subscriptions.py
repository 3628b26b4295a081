import os
import sys
import asyncio
import logging

# Needed to import core, models and services when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.db import get_session_factory, init_models
from core.environment import create_tables_on_startup
from core.logging import setup_logging
from services.allocation_engine import AllocationEngine
from services.expiration_service import ExpirationService

logger = logging.getLogger("scripts.expire_subscriptions")


async def run():
    """Cron entry point: expire lapsed subscriptions, then serve the pending queue."""
    setup_logging()
    if create_tables_on_startup():
        await init_models()

    session_factory = get_session_factory()
    engine = AllocationEngine(session_factory)

    report = await ExpirationService(session_factory, engine).process_expired_subscriptions()
    pending = await engine.allocate_pending()

    logger.info(
        "Expiration run finished",
        extra={
            'expired': report.count,
            'released_ports': len(report.released_ports),
            'failed': len(report.failed),
            'pending_allocated': len(pending.allocated),
            'still_pending': len(pending.still_pending),
            'pending_skipped': len(pending.skipped),
        }
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(run()))
