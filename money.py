from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

from models import Transaction, TransactionType

TWO_PLACES = Decimal("0.01")

AmountLike = Union[Decimal, str, int]


def to_cents(value: AmountLike, *, allow_negative: bool = False) -> int:
    """Parse an amount in currency units into integer cents.

    Floats are rejected; convert with ``Decimal(str(x))`` first.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError("Invalid amount")
    if isinstance(value, str):
        clean = value.strip().replace("$", "").replace(" ", "").replace(",", "")
    else:
        clean = value
    try:
        amount = Decimal(clean)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(TWO_PLACES)


def signed_delta(txn_type: TransactionType, amount_cents: int) -> int:
    if txn_type == TransactionType.expense:
        return -amount_cents
    return amount_cents


@dataclass
class MonthlyStats:
    total_income_cents: int = 0
    total_expenses_cents: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    transaction_count: int = 0

    @property
    def net_cents(self) -> int:
        return self.total_income_cents - self.total_expenses_cents


def summarize_transactions(transactions: Iterable[Transaction]) -> MonthlyStats:
    stats = MonthlyStats()
    for txn in transactions:
        stats.transaction_count += 1
        if txn.type == TransactionType.expense:
            stats.total_expenses_cents += txn.amount_cents
            stats.by_category[txn.category] = (
                stats.by_category.get(txn.category, 0) + txn.amount_cents
            )
        else:
            stats.total_income_cents += txn.amount_cents
    return stats


def format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${cents_to_decimal(abs(cents)):,.2f}"
