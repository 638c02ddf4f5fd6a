"""
Escalation Monitor — no-response escalation sweep.

Runs in the scheduler process (python -m crisiscomm.scheduler_main),
NOT inside the API process.

Job:
    Every ESCALATION_SWEEP_MINUTES, for each open room, escalate when a
    delivered alert/update/escalation went unanswered past the room's
    no-response threshold.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crisiscomm.rooms.service import CrisisRoomService
from crisiscomm.schemas.room import Escalation, utcnow

logger = structlog.get_logger(__name__)


class EscalationMonitor:
    """Background scheduler for the no-response escalation policy."""

    def __init__(
        self,
        service: CrisisRoomService,
        interval_minutes: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.service = service
        self.interval_minutes = interval_minutes
        self.clock = clock
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register and start the sweep job."""
        self.scheduler.add_job(
            self.sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            id="escalation_sweep",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("escalation_monitor_started", interval_minutes=self.interval_minutes)

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("escalation_monitor_stopped")

    async def sweep(self, now: Optional[datetime] = None) -> list[Escalation]:
        """
        Check every open room once.

        Error isolation: a failing room is logged and the sweep moves on.
        """
        now = now or self.clock()
        room_ids = await self.service.list_active_room_ids()
        logger.info("escalation_sweep_started", rooms=len(room_ids))

        triggered = []
        for room_id in room_ids:
            try:
                escalation = await self.service.escalate_unacknowledged(room_id, now)
            except Exception as e:
                logger.error("escalation_sweep_room_failed", room_id=room_id, error=str(e))
                continue
            if escalation is not None:
                logger.info(
                    "auto_escalation_triggered",
                    room_id=room_id,
                    level=escalation.level,
                    source_communication_id=escalation.source_communication_id,
                )
                triggered.append(escalation)

        logger.info("escalation_sweep_completed", rooms=len(room_ids), escalated=len(triggered))
        return triggered
