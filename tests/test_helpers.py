from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from auth import issue_identity_token, verify_identity_token
from errors import AuthorizationError
from money import cents_to_decimal, format_money, signed_delta, to_cents
from models import TransactionType
from periods import resolve_period
from schemas import TransactionIn


def test_to_cents_parses_and_rounds() -> None:
    assert to_cents("1,234.56") == 123456
    assert to_cents("$ 10") == 1000
    assert to_cents(Decimal("0.005")) == 1
    assert to_cents(7) == 700
    assert to_cents("-5", allow_negative=True) == -500


@pytest.mark.parametrize("value", ["abc", "", 1.5, True, "NaN"])
def test_to_cents_rejects_garbage(value) -> None:
    with pytest.raises(ValueError, match="Invalid amount"):
        to_cents(value)


def test_to_cents_rejects_negative_by_default() -> None:
    with pytest.raises(ValueError, match="Amount must be positive"):
        to_cents("-0.01")


def test_money_helpers() -> None:
    assert cents_to_decimal(-1999) == Decimal("-19.99")
    assert format_money(123456) == "$1,234.56"
    assert format_money(-500) == "-$5.00"
    assert format_money(-123456) == "-$1,234.56"
    assert format_money(0) == "$0.00"
    assert signed_delta(TransactionType.expense, 500) == -500
    assert signed_delta(TransactionType.income, 500) == 500


def test_resolve_period() -> None:
    today = date(2024, 3, 15)
    assert resolve_period(None, None, None, today=today) is None
    this_month = resolve_period("this_month", None, None, today=today)
    assert (this_month.start, this_month.end) == (date(2024, 3, 1), date(2024, 3, 31))
    last_month = resolve_period("last_month", None, None, today=today)
    assert (last_month.start, last_month.end) == (date(2024, 2, 1), date(2024, 2, 29))
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-03-10", "2024-03-01", today=today)
    with pytest.raises(ValueError):
        resolve_period("fortnight", None, None, today=today)


def test_identity_token_roundtrip_and_expiry() -> None:
    token = issue_identity_token("user_9", "nine@example.com", "Nine")
    claims = verify_identity_token(token)
    assert (claims.sub, claims.email, claims.name) == ("user_9", "nine@example.com", "Nine")

    with pytest.raises(AuthorizationError, match="expired"):
        verify_identity_token(token, max_age_secs=-1)
    with pytest.raises(AuthorizationError, match="Invalid"):
        verify_identity_token(token + "x")


@pytest.mark.parametrize("amount", ["0.001", "0.004"])
def test_transaction_amount_rounding_to_zero_is_rejected(amount) -> None:
    with pytest.raises(ValidationError, match="Amount must be at least 0.01"):
        TransactionIn(
            account_id=1,
            type=TransactionType.expense,
            amount=amount,
            category="groceries",
            date=date(2024, 3, 5),
        )

    smallest = TransactionIn(
        account_id=1,
        type=TransactionType.expense,
        amount="0.005",
        category="groceries",
        date=date(2024, 3, 5),
    )
    assert smallest.amount_cents == 1
