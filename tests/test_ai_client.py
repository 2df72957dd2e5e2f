from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from ai_client import (
    GeminiClient,
    ReceiptScanner,
    match_expense_category,
    strip_code_fences,
)
from errors import AIServiceError, ReceiptScanError


class FakeClient:
    def __init__(self, text: str = "", error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.parts: list[object] = []

    def generate(self, parts):
        self.parts = list(parts)
        if self.error:
            raise self.error
        return self.text


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences("[1, 2]") == "[1, 2]"


def test_match_expense_category() -> None:
    assert match_expense_category("Groceries") == "groceries"
    assert match_expense_category("grocerie") == "groceries"
    assert match_expense_category("spaceships") == "other-expense"
    assert match_expense_category(None) == "other-expense"
    assert match_expense_category("  ") == "other-expense"


def test_scan_receipt_extracts_fields() -> None:
    client = FakeClient(
        '```json\n{"amount": 42.5, "date": "2024-03-05T10:00:00Z", '
        '"description": "Lunch for two", "merchantName": "Cafe Luna", '
        '"category": "food"}\n```'
    )
    data = ReceiptScanner(client).scan(b"\x89PNG", "image/png")

    assert data.amount == Decimal("42.50")
    assert data.date == date(2024, 3, 5)
    assert data.description == "Lunch for two"
    assert data.merchant_name == "Cafe Luna"
    assert data.category == "food"
    assert client.parts[0] == {"mime_type": "image/png", "data": b"\x89PNG"}


def test_scan_receipt_rejects_non_receipts() -> None:
    with pytest.raises(ReceiptScanError, match="does not look like a receipt"):
        ReceiptScanner(FakeClient("{}")).scan(b"img", "image/jpeg")
    with pytest.raises(ReceiptScanError, match="Invalid response format"):
        ReceiptScanner(FakeClient("sorry, no idea")).scan(b"img", "image/jpeg")
    with pytest.raises(ReceiptScanError, match="Invalid response format"):
        ReceiptScanner(FakeClient('{"amount": "lots", "date": "2024-01-01"}')).scan(
            b"img", "image/jpeg"
        )
    with pytest.raises(ReceiptScanError, match="Empty upload"):
        ReceiptScanner(FakeClient("{}")).scan(b"", "image/jpeg")


def test_scan_receipt_wraps_model_failures() -> None:
    client = FakeClient(error=AIServiceError("quota"))
    with pytest.raises(ReceiptScanError, match="Failed to scan receipt"):
        ReceiptScanner(client).scan(b"img", "image/jpeg")


def test_gemini_client_requires_key() -> None:
    with pytest.raises(AIServiceError, match="Missing Gemini API key"):
        GeminiClient(api_key="").generate(["hello"])
