import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from jobs import BackfillJob
from ledger_client import FetchError, LedgerClient


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.backfill_hour = settings.backfill_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            try:
                report = BackfillJob(LedgerClient(session)).run(apply=True)
            except FetchError as exc:
                logger.error(f"scheduler_run: source={source} fetch_failed={exc}")
                return
        logger.info(
            f"scheduler_run: source={source} inserted={report.inserted} "
            f"failed={report.failed} skipped={report.skipped}"
        )

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled (FIXED_EXPENSES_SCHEDULER_ENABLED=0)")
            return

        self._run_job("startup")

        trigger = CronTrigger(hour=self.backfill_hour, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.backfill_hour:02d}:15"],
            id="installment_backfill_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily {self.backfill_hour:02d}:15 backfill")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
