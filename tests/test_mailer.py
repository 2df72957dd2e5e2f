import io
import json
from urllib.error import HTTPError

import mailer
from mailer import ResendMailer, render_email
from money import MonthlyStats


class FakeResponse:
    def __init__(self, payload: dict) -> None:
        self.payload = payload

    def read(self) -> bytes:
        return json.dumps(self.payload).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def test_render_budget_alert() -> None:
    html = render_email(
        "budget-alert",
        "Ada",
        {
            "percentage_used": 91.25,
            "budget_amount_cents": 50000,
            "total_expenses_cents": 45625,
            "account_name": "Main",
        },
    )
    assert "Hello Ada" in html
    assert "91.2%" in html or "91.3%" in html
    assert "$500.00" in html
    assert "$43.75" in html


def test_render_monthly_report_escapes_insights() -> None:
    stats = MonthlyStats(total_income_cents=1000, total_expenses_cents=250)
    html = render_email(
        "monthly-report",
        "Ada",
        {"month": "March", "stats": stats, "insights": ["<b>save</b>"]},
    )
    assert "summary for March" in html
    assert "&lt;b&gt;save&lt;/b&gt;" in html


def test_missing_api_key_is_reported_not_raised() -> None:
    result = ResendMailer(api_key="").send("ada@example.com", "Hi", "<p>x</p>")
    assert result.success is False
    assert result.error == "Missing API key"


def test_send_posts_to_resend(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["auth"] = req.get_header("Authorization")
        captured["body"] = json.loads(req.data.decode("utf-8"))
        return FakeResponse({"id": "email_123"})

    monkeypatch.setattr(mailer, "urlopen", fake_urlopen)
    result = ResendMailer(api_key="re_test", sender="Welth <hi@welth.io>").send(
        "ada@example.com", "Hello", "<p>hi</p>"
    )
    assert result.success is True
    assert result.id == "email_123"
    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["auth"] == "Bearer re_test"
    assert captured["body"]["to"] == ["ada@example.com"]
    assert captured["body"]["from"] == "Welth <hi@welth.io>"


def test_provider_error_becomes_result(monkeypatch) -> None:
    def rejecting(req, timeout):
        raise HTTPError(
            req.full_url,
            422,
            "Unprocessable",
            {},
            io.BytesIO(b'{"message": "Invalid `to` field"}'),
        )

    monkeypatch.setattr(mailer, "urlopen", rejecting)
    result = ResendMailer(api_key="re_test").send("nope", "Hello", "<p>hi</p>")
    assert result.success is False
    assert result.error == "Invalid `to` field"
