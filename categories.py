from dataclasses import dataclass
from typing import Optional

from models import TransactionType


@dataclass(frozen=True)
class CategoryDef:
    id: str
    type: TransactionType
    # typical amount range in whole currency units, used when seeding demo data
    seed_range: Optional[tuple[int, int]] = None


INCOME_CATEGORIES: tuple[CategoryDef, ...] = (
    CategoryDef("salary", TransactionType.income, (5000, 8000)),
    CategoryDef("freelance", TransactionType.income, (1000, 3000)),
    CategoryDef("investments", TransactionType.income, (500, 2000)),
    CategoryDef("business", TransactionType.income),
    CategoryDef("rental", TransactionType.income),
    CategoryDef("other-income", TransactionType.income, (100, 1000)),
)

EXPENSE_CATEGORIES: tuple[CategoryDef, ...] = (
    CategoryDef("housing", TransactionType.expense, (1000, 2000)),
    CategoryDef("transportation", TransactionType.expense, (100, 500)),
    CategoryDef("groceries", TransactionType.expense, (200, 600)),
    CategoryDef("utilities", TransactionType.expense, (100, 300)),
    CategoryDef("entertainment", TransactionType.expense, (50, 200)),
    CategoryDef("food", TransactionType.expense, (50, 150)),
    CategoryDef("shopping", TransactionType.expense, (100, 500)),
    CategoryDef("healthcare", TransactionType.expense, (100, 1000)),
    CategoryDef("education", TransactionType.expense, (200, 1000)),
    CategoryDef("personal", TransactionType.expense),
    CategoryDef("travel", TransactionType.expense, (500, 2000)),
    CategoryDef("insurance", TransactionType.expense),
    CategoryDef("gifts", TransactionType.expense),
    CategoryDef("bills", TransactionType.expense),
    CategoryDef("other-expense", TransactionType.expense),
)

FALLBACK_EXPENSE_CATEGORY = "other-expense"


def category_ids(txn_type: TransactionType) -> list[str]:
    source = INCOME_CATEGORIES if txn_type == TransactionType.income else EXPENSE_CATEGORIES
    return [c.id for c in source]


def seedable(txn_type: TransactionType) -> list[CategoryDef]:
    source = INCOME_CATEGORIES if txn_type == TransactionType.income else EXPENSE_CATEGORIES
    return [c for c in source if c.seed_range is not None]
