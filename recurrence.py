import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurringInterval, Transaction, TransactionStatus
from money import signed_delta

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current wall-clock time in the configured timezone, without tzinfo."""
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def add_months(base: date, months: int) -> date:
    """Calendar month step; days past the target month's end roll into the next."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, 1) + timedelta(days=base.day - 1)


def calculate_next_recurring_date(from_date: date, interval: RecurringInterval) -> date:
    if interval == RecurringInterval.daily:
        return from_date + timedelta(days=1)
    if interval == RecurringInterval.weekly:
        return from_date + timedelta(days=7)
    if interval == RecurringInterval.monthly:
        return add_months(from_date, 1)
    if interval == RecurringInterval.yearly:
        return add_months(from_date, 12)
    raise ValueError(f"Unsupported interval: {interval}")


def is_transaction_due(
    last_processed: Optional[datetime],
    next_recurring_date: Optional[date],
    now: datetime,
) -> bool:
    if last_processed is None:
        return True
    if next_recurring_date is None:
        return False
    return next_recurring_date <= now.date()


@dataclass(frozen=True)
class RecurringEvent:
    transaction_id: int
    user_id: int


@dataclass(frozen=True)
class ProcessResult:
    status: str
    reason: Optional[str] = None
    transaction_id: Optional[int] = None
    created_transaction_id: Optional[int] = None

    @property
    def processed(self) -> bool:
        return self.status == "processed"


class RecurringTransactionProcessor:
    """Applies one due recurring transaction.

    The copy, the balance adjustment and the schedule advance are committed
    together. The schedule advance is a conditional update on the
    ``last_processed`` value read at the start, so a duplicate delivery of the
    same event finds no matching row and is skipped instead of posting twice.
    """

    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or local_now

    def process(
        self, transaction_id: Optional[int], user_id: Optional[int]
    ) -> ProcessResult:
        if not transaction_id or not user_id:
            logger.error(
                f"recurring_process: invalid event transaction_id={transaction_id} "
                f"user_id={user_id}"
            )
            return ProcessResult("skipped", reason="Missing required event data")

        now = self.clock()
        template = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == user_id,
            )
        )
        if (
            template is None
            or template.next_recurring_date is None
            or template.recurring_interval is None
            or not is_transaction_due(
                template.last_processed, template.next_recurring_date, now
            )
        ):
            return ProcessResult("skipped", reason="Transaction not due or not found")

        seen_last_processed = template.last_processed
        next_date = calculate_next_recurring_date(
            now.date(), template.recurring_interval
        )

        try:
            guard = (
                Transaction.last_processed.is_(None)
                if seen_last_processed is None
                else Transaction.last_processed == seen_last_processed
            )
            advanced = self.session.execute(
                update(Transaction)
                .where(Transaction.id == template.id, guard)
                .values(last_processed=now, next_recurring_date=next_date)
                .execution_options(synchronize_session=False)
            )
            if advanced.rowcount != 1:
                self.session.rollback()
                logger.info(
                    f"recurring_process: transaction_id={transaction_id} "
                    "already processed by a concurrent run"
                )
                return ProcessResult(
                    "skipped", reason="Already processed", transaction_id=template.id
                )

            copy = Transaction(
                user_id=template.user_id,
                account_id=template.account_id,
                type=template.type,
                amount_cents=template.amount_cents,
                description=f"{template.description or ''} (Recurring)".strip(),
                date=now.date(),
                category=template.category,
                is_recurring=False,
                status=TransactionStatus.completed,
            )
            self.session.add(copy)
            from services import adjust_balance

            adjust_balance(
                self.session,
                template.account_id,
                signed_delta(template.type, template.amount_cents),
            )
            self.session.flush()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.expire_all()
        logger.info(
            f"recurring_process: transaction_id={transaction_id} "
            f"created={copy.id} next={next_date.isoformat()}"
        )
        return ProcessResult(
            "processed",
            transaction_id=template.id,
            created_transaction_id=copy.id,
        )
