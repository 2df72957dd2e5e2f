from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ai_client import generate_financial_insights
from config import get_settings
from mailer import Mailer, render_email
from models import Budget, Transaction, TransactionStatus, User
from money import MonthlyStats
from periods import month_period, previous_month_period
from recurrence import Clock, RecurringEvent, local_now
from services import AccountService, ReportService, expenses_for_period

logger = logging.getLogger(__name__)

InsightsFn = Callable[[MonthlyStats, str], list[str]]


class RecurringTransactionTrigger:
    """Finds due recurring templates and hands each one to a dispatcher."""

    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or local_now

    def due_transactions(self) -> list[Transaction]:
        today = self.clock().date()
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.status == TransactionStatus.completed,
                or_(
                    Transaction.last_processed.is_(None),
                    Transaction.next_recurring_date <= today,
                ),
            )
            .order_by(Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def run(self, dispatch: Callable[[RecurringEvent], None]) -> int:
        due = self.due_transactions()
        for txn in due:
            dispatch(RecurringEvent(transaction_id=txn.id, user_id=txn.user_id))
        logger.info(f"recurring_trigger: dispatched={len(due)}")
        return len(due)


def is_new_month(last: Optional[datetime], now: datetime) -> bool:
    if last is None:
        return True
    return (last.year, last.month) != (now.year, now.month)


def should_send_budget_alert(
    percentage_used: float,
    last_alert_sent: Optional[datetime],
    now: datetime,
    threshold_pct: float = 80,
    remind_on_new_month: bool = True,
) -> bool:
    over = percentage_used >= threshold_pct
    if remind_on_new_month and last_alert_sent is not None:
        return is_new_month(last_alert_sent, now)
    return over and is_new_month(last_alert_sent, now)


@dataclass
class BudgetCheckSummary:
    checked: int = 0
    alerts_sent: int = 0
    skipped: int = 0


class BudgetAlertChecker:
    def __init__(
        self,
        session: Session,
        mailer: Mailer,
        clock: Optional[Clock] = None,
        threshold_pct: Optional[float] = None,
        remind_on_new_month: Optional[bool] = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.mailer = mailer
        self.clock = clock or local_now
        self.threshold_pct = (
            threshold_pct
            if threshold_pct is not None
            else settings.budget_alert_threshold_pct
        )
        self.remind_on_new_month = (
            remind_on_new_month
            if remind_on_new_month is not None
            else settings.budget_alert_remind_on_new_month
        )

    def run(self) -> BudgetCheckSummary:
        summary = BudgetCheckSummary()
        now = self.clock()
        try:
            budgets = self.session.scalars(select(Budget).order_by(Budget.id)).all()
        except Exception:
            logger.exception("budget_alert: failed to load budgets")
            raise

        for budget in budgets:
            summary.checked += 1
            try:
                if self._check(budget, now):
                    summary.alerts_sent += 1
                else:
                    summary.skipped += 1
            except Exception:
                self.session.rollback()
                summary.skipped += 1
                logger.exception(f"budget_alert: budget_id={budget.id} check failed")

        logger.info(
            f"budget_alert: checked={summary.checked} sent={summary.alerts_sent} "
            f"skipped={summary.skipped}"
        )
        return summary

    def _check(self, budget: Budget, now: datetime) -> bool:
        account = AccountService(self.session, budget.user_id).default_account()
        if account is None:
            logger.info(
                f"budget_alert: budget_id={budget.id} user_id={budget.user_id} "
                "no default account"
            )
            return False
        if budget.amount_cents <= 0:
            logger.info(f"budget_alert: budget_id={budget.id} zero budget")
            return False

        expenses = expenses_for_period(
            self.session, budget.user_id, month_period(now.date()), account.id
        )
        percentage_used = expenses / budget.amount_cents * 100
        if not should_send_budget_alert(
            percentage_used,
            budget.last_alert_sent,
            now,
            self.threshold_pct,
            self.remind_on_new_month,
        ):
            return False

        user = budget.user
        html = render_email(
            "budget-alert",
            user.name or user.email,
            {
                "percentage_used": percentage_used,
                "budget_amount_cents": budget.amount_cents,
                "total_expenses_cents": expenses,
                "account_name": account.name,
            },
        )
        result = self.mailer.send(user.email, f"Budget Alert for {account.name}", html)
        if not result.success:
            logger.error(
                f"budget_alert: budget_id={budget.id} send failed error={result.error}"
            )
            return False

        budget.last_alert_sent = now
        self.session.commit()
        logger.info(
            f"budget_alert: budget_id={budget.id} sent pct={percentage_used:.1f}"
        )
        return True


class MonthlyReportGenerator:
    """Emails every user a summary of the previous calendar month."""

    def __init__(
        self,
        session: Session,
        mailer: Mailer,
        insights: InsightsFn = generate_financial_insights,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.mailer = mailer
        self.insights = insights
        self.clock = clock or local_now

    def run(self) -> int:
        period = previous_month_period(self.clock().date())
        month = period.start.strftime("%B")
        users = self.session.scalars(select(User).order_by(User.id)).all()
        for user in users:
            try:
                stats = ReportService(self.session, user.id).monthly_stats(period)
                insights = self.insights(stats, month)
                html = render_email(
                    "monthly-report",
                    user.name or user.email,
                    {"month": month, "stats": stats, "insights": insights},
                )
                result = self.mailer.send(
                    user.email, f"Your Monthly Financial Report - {month}", html
                )
                if not result.success:
                    logger.error(
                        f"monthly_report: user_id={user.id} send failed error={result.error}"
                    )
            except Exception:
                logger.exception(f"monthly_report: user_id={user.id} failed")
        logger.info(f"monthly_report: month={month} users={len(users)}")
        return len(users)
