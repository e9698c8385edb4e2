# file: scripts/notification_scheduler.py

"""
Runs the reminder sweep as its own process, for deployments where the API
servers start with SCHEDULER_ENABLED=0.
"""

import asyncio
import logging
import signal

from app.database.connection import init_db
from app.services.notification_scheduler import SweepScheduler

logger = logging.getLogger("scripts.notification_scheduler")


async def main():
    await init_db()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    scheduler = SweepScheduler()
    scheduler.start()
    try:
        await stop_event.wait()
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("Starting notification scheduler...")
    asyncio.run(main())
