"""
Scheduler Entry Point — runs in a separate container.

Usage:
    python -m crisiscomm.scheduler_main

This does NOT run a web server. It runs the APScheduler
background loop for the no-response escalation sweep.
"""

import asyncio
import signal

import structlog

from crisiscomm.config import Settings
from crisiscomm.db.engine import close_db, create_engine, create_session_factory, init_db
from crisiscomm.logging_config import configure_logging
from crisiscomm.rooms.monitor import EscalationMonitor
from crisiscomm.rooms.service import build_service

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the escalation monitor."""
    settings = Settings()
    configure_logging(settings)
    logger.info("scheduler_starting", version=settings.app_version)

    engine = create_engine(settings)
    await init_db(engine, settings)
    service = build_service(settings, create_session_factory(engine))

    monitor = EscalationMonitor(service, interval_minutes=settings.escalation_sweep_minutes)

    # Run an initial sweep on startup
    logger.info("running_initial_sweep")
    await monitor.sweep()

    monitor.start()

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    monitor.stop()
    await close_db(engine)
    logger.info("scheduler_shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
