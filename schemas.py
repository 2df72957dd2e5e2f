import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    Account,
    AccountType,
    Budget,
    RecurringInterval,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from money import cents_to_decimal, to_cents


class IdentityClaims(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sub: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)
    image_url: Optional[str] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.current
    balance: Decimal = Decimal("0")
    is_default: bool = False

    @property
    def balance_cents(self) -> int:
        return to_cents(self.balance, allow_negative=True)


class TransactionIn(BaseModel):
    account_id: int
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    date: dt.date
    receipt_url: Optional[str] = None
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None
    status: TransactionStatus = TransactionStatus.completed

    @model_validator(mode="after")
    def _check_amount_and_recurrence(self) -> "TransactionIn":
        if to_cents(self.amount) <= 0:
            raise ValueError("Amount must be at least 0.01")
        if self.is_recurring and self.recurring_interval is None:
            raise ValueError("Recurring transactions require an interval")
        return self

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class BulkDeleteIn(BaseModel):
    transaction_ids: list[int]


class BudgetIn(BaseModel):
    amount: Decimal = Field(..., ge=0)


# Response models. Each from_model maps the *_cents columns explicitly so no
# monetary field leaves the process as a float.


class TransactionOut(BaseModel):
    id: int
    account_id: int
    type: TransactionType
    amount: Decimal
    description: Optional[str]
    date: dt.date
    category: str
    receipt_url: Optional[str]
    is_recurring: bool
    recurring_interval: Optional[RecurringInterval]
    next_recurring_date: Optional[dt.date]
    last_processed: Optional[dt.datetime]
    status: TransactionStatus
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_model(cls, txn: Transaction) -> "TransactionOut":
        return cls(
            id=txn.id,
            account_id=txn.account_id,
            type=txn.type,
            amount=cents_to_decimal(txn.amount_cents),
            description=txn.description,
            date=txn.date,
            category=txn.category,
            receipt_url=txn.receipt_url,
            is_recurring=txn.is_recurring,
            recurring_interval=txn.recurring_interval,
            next_recurring_date=txn.next_recurring_date,
            last_processed=txn.last_processed,
            status=txn.status,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class AccountOut(BaseModel):
    id: int
    name: str
    type: AccountType
    balance: Decimal
    opening_balance: Decimal
    is_default: bool
    created_at: dt.datetime
    transaction_count: Optional[int] = None

    @classmethod
    def from_model(
        cls, account: Account, transaction_count: Optional[int] = None
    ) -> "AccountOut":
        return cls(
            id=account.id,
            name=account.name,
            type=account.type,
            balance=cents_to_decimal(account.balance_cents),
            opening_balance=cents_to_decimal(account.opening_balance_cents),
            is_default=account.is_default,
            created_at=account.created_at,
            transaction_count=transaction_count,
        )


class AccountDetailOut(AccountOut):
    transactions: list[TransactionOut] = Field(default_factory=list)


class BudgetOut(BaseModel):
    id: int
    amount: Decimal
    last_alert_sent: Optional[dt.datetime]
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_model(cls, budget: Budget) -> "BudgetOut":
        return cls(
            id=budget.id,
            amount=cents_to_decimal(budget.amount_cents),
            last_alert_sent=budget.last_alert_sent,
            created_at=budget.created_at,
            updated_at=budget.updated_at,
        )


class BudgetStatusOut(BaseModel):
    budget: Optional[BudgetOut]
    current_expenses: Decimal


class ReceiptData(BaseModel):
    amount: Decimal
    date: dt.date
    description: str
    merchant_name: str
    category: str


class BulkDeleteOut(BaseModel):
    deleted: int
    message: str
