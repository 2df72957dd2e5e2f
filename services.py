from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from categories import seedable
from errors import NotFoundError
from models import (
    Account,
    Budget,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from money import MonthlyStats, signed_delta, summarize_transactions, to_cents
from periods import Period, month_period
from recurrence import calculate_next_recurring_date, local_today
from schemas import AccountIn, BudgetIn, IdentityClaims, TransactionIn

logger = logging.getLogger(__name__)


def adjust_balance(session: Session, account_id: int, delta_cents: int) -> None:
    """Shift an account balance in SQL so concurrent writers cannot lose updates."""
    if delta_cents == 0:
        return
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance_cents=Account.balance_cents + delta_cents)
        .execution_options(synchronize_session="fetch")
    )


def signed_sum_for_account(session: Session, account_id: int) -> int:
    signed = case(
        (Transaction.type == TransactionType.income, Transaction.amount_cents),
        else_=-Transaction.amount_cents,
    )
    total = session.execute(
        select(func.coalesce(func.sum(signed), 0)).where(
            Transaction.account_id == account_id
        )
    ).scalar_one()
    return int(total or 0)


def expenses_for_period(
    session: Session,
    user_id: int,
    period: Period,
    account_id: Optional[int] = None,
) -> int:
    stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
        Transaction.user_id == user_id,
        Transaction.type == TransactionType.expense,
        Transaction.date.between(period.start, period.end),
    )
    if account_id is not None:
        stmt = stmt.where(Transaction.account_id == account_id)
    return int(session.execute(stmt).scalar_one() or 0)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def sync_identity(self, claims: IdentityClaims) -> User:
        user = self.session.scalar(select(User).where(User.external_id == claims.sub))
        if user is None:
            user = User(
                external_id=claims.sub,
                email=claims.email,
                name=claims.name,
                image_url=claims.image_url,
            )
            self.session.add(user)
            self.session.commit()
            logger.info(f"user_sync: created user_id={user.id} external_id={claims.sub}")
            return user
        changed = False
        for field in ("email", "name", "image_url"):
            value = getattr(claims, field)
            if value is not None and getattr(user, field) != value:
                setattr(user, field, value)
                changed = True
        if changed:
            self.session.commit()
        return user


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def default_account(self) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(
                Account.user_id == self.user_id, Account.is_default.is_(True)
            )
        )

    def _clear_default(self) -> None:
        self.session.execute(
            update(Account)
            .where(Account.user_id == self.user_id, Account.is_default.is_(True))
            .values(is_default=False)
        )

    def create(self, data: AccountIn) -> Account:
        try:
            balance_cents = data.balance_cents
        except ValueError as exc:
            raise ValueError("Invalid balance") from exc
        has_accounts = (
            self.session.execute(
                select(func.count(Account.id)).where(Account.user_id == self.user_id)
            ).scalar_one()
            > 0
        )
        should_be_default = True if not has_accounts else data.is_default
        if should_be_default:
            self._clear_default()
        account = Account(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            opening_balance_cents=balance_cents,
            balance_cents=balance_cents,
            is_default=should_be_default,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def list_with_counts(self) -> list[tuple[Account, int]]:
        stmt = (
            select(Account, func.count(Transaction.id))
            .outerjoin(Transaction, Transaction.account_id == Account.id)
            .where(Account.user_id == self.user_id)
            .group_by(Account.id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        return [(account, int(count)) for account, count in self.session.execute(stmt)]

    def get_with_transactions(self, account_id: int) -> tuple[Account, list[Transaction]]:
        account = self.get(account_id)
        transactions = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.account_id == account.id,
                Transaction.user_id == self.user_id,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        ).all()
        return account, list(transactions)

    def set_default(self, account_id: int) -> Account:
        account = self.get(account_id)
        self._clear_default()
        account.is_default = True
        self.session.commit()
        self.session.refresh(account)
        return account

    def balance(self, account_id: int) -> int:
        return self.get(account_id).balance_cents

    def recalculate_balance(self, account_id: int) -> Account:
        account = self.get(account_id)
        correct = account.opening_balance_cents + signed_sum_for_account(
            self.session, account.id
        )
        if correct != account.balance_cents:
            logger.warning(
                f"balance_recalculate: account_id={account.id} "
                f"stored={account.balance_cents} computed={correct}"
            )
        account.balance_cents = correct
        self.session.commit()
        self.session.refresh(account)
        return account


@dataclass
class TransactionFilters:
    account_id: Optional[int] = None
    type: Optional[TransactionType] = None
    period: Optional[Period] = None
    is_recurring: Optional[bool] = None


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _account(self, account_id: int) -> Account:
        return AccountService(self.session, self.user_id).get(account_id)

    @staticmethod
    def _schedule(data: TransactionIn):
        if data.is_recurring and data.recurring_interval is not None:
            return data.recurring_interval, calculate_next_recurring_date(
                data.date, data.recurring_interval
            )
        return None, None

    def create(self, data: TransactionIn) -> Transaction:
        account = self._account(data.account_id)
        amount_cents = data.amount_cents
        interval, next_date = self._schedule(data)
        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            type=data.type,
            amount_cents=amount_cents,
            description=data.description,
            date=data.date,
            category=data.category,
            receipt_url=data.receipt_url,
            is_recurring=data.is_recurring,
            recurring_interval=interval,
            next_recurring_date=next_date,
            status=data.status,
        )
        self.session.add(txn)
        adjust_balance(self.session, account.id, signed_delta(data.type, amount_cents))
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if filters.account_id is not None:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.type is not None:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.period is not None:
            stmt = stmt.where(
                Transaction.date.between(filters.period.start, filters.period.end)
            )
        if filters.is_recurring is not None:
            stmt = stmt.where(Transaction.is_recurring.is_(filters.is_recurring))
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        new_account = self._account(data.account_id)
        new_amount = data.amount_cents

        adjust_balance(
            self.session, txn.account_id, -signed_delta(txn.type, txn.amount_cents)
        )
        adjust_balance(self.session, new_account.id, signed_delta(data.type, new_amount))

        interval, next_date = self._schedule(data)
        txn.account_id = new_account.id
        txn.type = data.type
        txn.amount_cents = new_amount
        txn.description = data.description
        txn.date = data.date
        txn.category = data.category
        txn.receipt_url = data.receipt_url
        txn.is_recurring = data.is_recurring
        txn.recurring_interval = interval
        txn.next_recurring_date = next_date
        txn.status = data.status
        if not data.is_recurring:
            txn.last_processed = None
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        self.get(transaction_id)
        self.bulk_delete([transaction_id])

    def bulk_delete(self, transaction_ids: list[int]) -> int:
        if not transaction_ids:
            raise ValueError("No transaction IDs provided")
        transactions = self.session.scalars(
            select(Transaction).where(
                Transaction.id.in_(transaction_ids),
                Transaction.user_id == self.user_id,
            )
        ).all()
        if not transactions:
            raise NotFoundError("Transactions not found")

        changes: dict[int, int] = {}
        for txn in transactions:
            changes[txn.account_id] = changes.get(txn.account_id, 0) - signed_delta(
                txn.type, txn.amount_cents
            )

        for txn in transactions:
            self.session.delete(txn)
        self.session.flush()
        for account_id, delta in changes.items():
            adjust_balance(self.session, account_id, delta)
        self.session.commit()
        logger.info(
            f"transactions_deleted: user_id={self.user_id} count={len(transactions)} "
            f"accounts={sorted(changes)}"
        )
        return len(transactions)


@dataclass
class BudgetStatus:
    budget: Optional[Budget]
    current_expenses_cents: int


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Optional[Budget]:
        return self.session.scalar(select(Budget).where(Budget.user_id == self.user_id))

    def get_current(
        self, account_id: Optional[int] = None, today: Optional[date] = None
    ) -> BudgetStatus:
        today = today or local_today()
        expenses = expenses_for_period(
            self.session, self.user_id, month_period(today), account_id
        )
        return BudgetStatus(budget=self.get(), current_expenses_cents=expenses)

    def upsert(self, data: BudgetIn) -> Budget:
        amount_cents = to_cents(data.amount)
        budget = self.get()
        if budget is None:
            budget = Budget(user_id=self.user_id, amount_cents=amount_cents)
            self.session.add(budget)
        else:
            budget.amount_cents = amount_cents
        self.session.commit()
        self.session.refresh(budget)
        return budget


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def monthly_stats(self, period: Period) -> MonthlyStats:
        transactions = self.session.scalars(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
        ).all()
        return summarize_transactions(transactions)


class SeedService:
    """Fills an account with plausible demo history."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def seed_account(
        self,
        account_id: int,
        days: int = 90,
        rng: Optional[random.Random] = None,
        today: Optional[date] = None,
    ) -> int:
        if days < 0:
            raise ValueError("days must not be negative")
        rng = rng or random.Random()
        today = today or local_today()
        account = AccountService(self.session, self.user_id).get(account_id)

        self.session.execute(
            delete(Transaction).where(Transaction.account_id == account.id)
        )
        created = 0
        for offset in range(days, -1, -1):
            day = today - timedelta(days=offset)
            for _ in range(rng.randint(1, 3)):
                txn_type = (
                    TransactionType.income
                    if rng.random() < 0.4
                    else TransactionType.expense
                )
                category = rng.choice(seedable(txn_type))
                low, high = category.seed_range
                verb = "Received" if txn_type == TransactionType.income else "Paid for"
                self.session.add(
                    Transaction(
                        user_id=self.user_id,
                        account_id=account.id,
                        type=txn_type,
                        amount_cents=rng.randint(low * 100, high * 100),
                        description=f"{verb} {category.id}",
                        date=day,
                        category=category.id,
                        status=TransactionStatus.completed,
                    )
                )
                created += 1
        self.session.flush()
        account.balance_cents = account.opening_balance_cents + signed_sum_for_account(
            self.session, account.id
        )
        self.session.commit()
        logger.info(f"seed: account_id={account.id} transactions={created}")
        return created
