from __future__ import annotations

import json
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol, Sequence

import google.generativeai as genai
from rapidfuzz.distance import Levenshtein

from categories import FALLBACK_EXPENSE_CATEGORY, category_ids
from config import get_settings
from errors import AIServiceError, ReceiptScanError
from models import TransactionType
from money import MonthlyStats, format_money
from schemas import ReceiptData

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\n?")

FALLBACK_INSIGHTS = [
    "Your highest expense category this month might need attention.",
    "Consider setting up a budget for better financial management.",
    "Track your recurring expenses to identify potential savings.",
]


class TextGenerator(Protocol):
    def generate(self, parts: Sequence[object]) -> str: ...


class GeminiClient:
    def __init__(
        self, api_key: Optional[str] = None, model_name: Optional[str] = None
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model
        self._model: Optional[genai.GenerativeModel] = None

    def _get_model(self) -> genai.GenerativeModel:
        if not self.api_key:
            raise AIServiceError("Missing Gemini API key")
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    def generate(self, parts: Sequence[object]) -> str:
        model = self._get_model()
        try:
            response = model.generate_content(list(parts))
            return response.text
        except Exception as exc:
            raise AIServiceError(f"Gemini request failed: {exc}") from exc


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def build_insights_prompt(stats: MonthlyStats, month: str) -> str:
    categories = ", ".join(
        f"{category}: {format_money(cents)}"
        for category, cents in sorted(stats.by_category.items())
    )
    return f"""
    Analyze this financial data and provide 3 concise, actionable insights.
    Focus on spending patterns and practical advice.
    Keep it friendly and conversational.

    Financial Data for {month}:
    - Total Income: {format_money(stats.total_income_cents)}
    - Total Expenses: {format_money(stats.total_expenses_cents)}
    - Net Income: {format_money(stats.net_cents)}
    - Expense Categories: {categories or "none"}

    Format the response as a JSON array of strings, like this:
    ["insight 1", "insight 2", "insight 3"]
    """


def generate_financial_insights(
    stats: MonthlyStats, month: str, client: Optional[TextGenerator] = None
) -> list[str]:
    """Ask the model for short insights; any failure yields the fallback list."""
    client = client or GeminiClient()
    try:
        text = client.generate([build_insights_prompt(stats, month)])
        insights = json.loads(strip_code_fences(text))
    except (AIServiceError, json.JSONDecodeError) as exc:
        logger.error(f"insights: generation failed month={month} error={exc}")
        return list(FALLBACK_INSIGHTS)
    if (
        not isinstance(insights, list)
        or not insights
        or not all(isinstance(item, str) and item.strip() for item in insights)
    ):
        logger.error(f"insights: unexpected response shape month={month}")
        return list(FALLBACK_INSIGHTS)
    return [item.strip() for item in insights]


RECEIPT_PROMPT = f"""
      Analyze this receipt image and extract the following information in JSON format:
      - Total amount (just the number)
      - Date (in ISO format)
      - Description or items purchased (brief summary)
      - Merchant/store name
      - Suggested category (one of: {",".join(category_ids(TransactionType.expense))} )

      Only respond with valid JSON in this exact format:
      {{
        "amount": number,
        "date": "ISO date string",
        "description": "string",
        "merchantName": "string",
        "category": "string"
      }}

      If its not a receipt, return an empty object
    """


def match_expense_category(suggested: Optional[str]) -> str:
    raw = (suggested or "").strip().lower()
    if not raw:
        return FALLBACK_EXPENSE_CATEGORY
    known = category_ids(TransactionType.expense)
    if raw in known:
        return raw
    best_distance: Optional[int] = None
    best: list[str] = []
    for candidate in known:
        dist = int(Levenshtein.distance(raw, candidate))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [candidate]
        elif dist == best_distance:
            best.append(candidate)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]
    return FALLBACK_EXPENSE_CATEGORY


class ReceiptScanner:
    def __init__(self, client: Optional[TextGenerator] = None) -> None:
        self.client = client or GeminiClient()

    def scan(self, content: bytes, mime_type: str) -> ReceiptData:
        if not content:
            raise ReceiptScanError("Empty upload")
        image = {"mime_type": mime_type, "data": content}
        try:
            text = self.client.generate([image, RECEIPT_PROMPT])
        except AIServiceError as exc:
            logger.error(f"receipt_scan: model call failed error={exc}")
            raise ReceiptScanError("Failed to scan receipt") from exc

        try:
            data = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as exc:
            logger.error(f"receipt_scan: unparsable response error={exc}")
            raise ReceiptScanError("Invalid response format from Gemini") from exc
        if not isinstance(data, dict) or not data:
            raise ReceiptScanError("The uploaded image does not look like a receipt")

        try:
            amount = Decimal(str(data["amount"]))
            receipt_date = date.fromisoformat(str(data["date"])[:10])
        except (KeyError, InvalidOperation, ValueError) as exc:
            raise ReceiptScanError("Invalid response format from Gemini") from exc
        if not amount.is_finite() or amount < 0:
            raise ReceiptScanError("Invalid response format from Gemini")

        return ReceiptData(
            amount=amount.quantize(Decimal("0.01")),
            date=receipt_date,
            description=str(data.get("description") or ""),
            merchant_name=str(data.get("merchantName") or ""),
            category=match_expense_category(data.get("category")),
        )
