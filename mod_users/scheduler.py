"""
Expiration scheduler - runs ExpirationJob.run on a cron schedule.

Configured with EXPIRATION_SCHEDULE_CRON / EXPIRATION_ENABLED and started
from the application lifespan.
"""
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from mod_users.core.config import settings
from mod_users.core.logger import get_logger
from mod_users.services.expiration import ExpirationJob

logger = get_logger(__name__)

JOB_ID = "user_expiration"


class ExpirationScheduler:
    def __init__(self, job: ExpirationJob, cron: str = settings.EXPIRATION_SCHEDULE_CRON) -> None:
        self.job = job
        self.cron = cron
        self.scheduler: Optional[AsyncIOScheduler] = None

    async def execute(self) -> None:
        results = await self.job.run()
        logger.info(
            "Expiration sweep finished: %s tenants, %s users expired",
            len(results), sum(r.succeeded for r in results),
        )

    def start(self) -> None:
        """Must be called with the event loop running."""
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.execute,
            trigger=CronTrigger.from_crontab(self.cron),
            id=JOB_ID,
            name="User expiration sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        job = self.scheduler.get_job(JOB_ID)
        logger.info(
            "Scheduled user expiration (%s), next run %s",
            self.cron, getattr(job, "next_run_time", None),
        )

    def shutdown(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Expiration scheduler stopped")
        self.scheduler = None
