import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from epg_catchup.services.epg_load_service import EpgService


logger = logging.getLogger(__name__)

class StalenessScheduler:
    """Scheduler for periodic EPG staleness checks"""

    def __init__(self, service: EpgService, cron: str = "0 * * * *"):
        self.service = service
        self.cron = cron
        self.scheduler: AsyncIOScheduler | None = None

    async def _check_job(self) -> None:
        """Background job that re-evaluates staleness of the loaded EPG data"""
        logger.debug("Scheduled EPG staleness check triggered")
        try:
            if await self.service.check_staleness():
                logger.info("Scheduled staleness check started a background refresh")
        except Exception as e:
            logger.error(f"Exception in scheduled staleness check: {e}", exc_info=True)

    def start(self) -> None:
        """Start the scheduler with the staleness check job"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        try:
            trigger = CronTrigger.from_crontab(self.cron, timezone='UTC')
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", self.cron, exc)
            raise

        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.scheduler.add_job(
            self._check_job,
            trigger=trigger,
            id='epg_staleness_check',
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(
            "Scheduler started. Next staleness check: %s",
            next_time.isoformat() if next_time else "unknown"
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled check time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job('epg_staleness_check')
        return job.next_run_time if job else None
