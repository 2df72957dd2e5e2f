import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from jobs import BudgetAlertChecker, MonthlyReportGenerator, RecurringTransactionTrigger
from mailer import ResendMailer
from recurrence import RecurringEvent, RecurringTransactionProcessor


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

RECURRING_CRON = "0 0 * * *"
BUDGET_ALERT_CRON = "0 */6 * * *"
MONTHLY_REPORT_CRON = "0 0 1 * *"


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _process_recurring(self, transaction_id: int, user_id: int) -> None:
        with session_scope() as session:
            result = RecurringTransactionProcessor(session).process(
                transaction_id, user_id
            )
        logger.info(
            f"scheduler_run: source=recurring_process transaction_id={transaction_id} "
            f"status={result.status} reason={result.reason}"
        )

    def _dispatch_processing(self, event: RecurringEvent) -> None:
        self.scheduler.add_job(
            self._process_recurring,
            args=[event.transaction_id, event.user_id],
            id=f"recurring_process_{event.transaction_id}",
            replace_existing=True,
            misfire_grace_time=3600,
        )

    def _run_recurring_trigger(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            count = RecurringTransactionTrigger(session).run(self._dispatch_processing)
        logger.info(f"scheduler_run: source={source} dispatched={count}")

    def _run_budget_alerts(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            summary = BudgetAlertChecker(session, ResendMailer()).run()
        logger.info(
            f"scheduler_run: source={source} checked={summary.checked} "
            f"alerts_sent={summary.alerts_sent}"
        )

    def _run_monthly_reports(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            users = MonthlyReportGenerator(session, ResendMailer()).run()
        logger.info(f"scheduler_run: source={source} users={users}")

    def start(self) -> None:
        self.scheduler.add_job(
            self._run_recurring_trigger,
            CronTrigger.from_crontab(RECURRING_CRON, timezone=self.scheduler.timezone),
            args=["daily_recurring"],
            id="recurring_trigger",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_budget_alerts,
            CronTrigger.from_crontab(BUDGET_ALERT_CRON, timezone=self.scheduler.timezone),
            args=["budget_alerts"],
            id="budget_alerts",
            replace_existing=True,
            misfire_grace_time=900,
        )
        self.scheduler.add_job(
            self._run_monthly_reports,
            CronTrigger.from_crontab(MONTHLY_REPORT_CRON, timezone=self.scheduler.timezone),
            args=["monthly_reports"],
            id="monthly_reports",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with recurring, budget alert and report jobs")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
