from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import get_settings
from money import format_money

logger = logging.getLogger(__name__)

RESEND_ENDPOINT = "https://api.resend.com/emails"
TEMPLATE_DIR = Path(__file__).resolve().parent / "emails"

_templates = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)
_templates.filters["money"] = format_money


@dataclass(frozen=True)
class EmailResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class Mailer(Protocol):
    def send(self, to: str, subject: str, html: str) -> EmailResult: ...


def render_email(kind: str, user_name: str, data: dict[str, object]) -> str:
    template = _templates.get_template(f"{kind.replace('-', '_')}.html")
    return template.render(user_name=user_name, **data)


class ResendMailer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.sender = sender or settings.email_from
        self.timeout = timeout or settings.email_timeout_secs

    def send(self, to: str, subject: str, html: str) -> EmailResult:
        if not self.api_key:
            logger.error("email_send: missing Resend API key")
            return EmailResult(False, error="Missing API key")

        logger.info(f"email_send: to={to} subject={subject!r}")
        body = json.dumps(
            {"from": self.sender, "to": [to], "subject": subject, "html": html}
        ).encode("utf-8")
        req = Request(
            RESEND_ENDPOINT,
            data=body,
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8") or "{}")
        except HTTPError as exc:
            message = _error_message(exc)
            logger.error(f"email_send: provider rejected status={exc.code} {message}")
            return EmailResult(False, error=message)
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.error(f"email_send: failed to={to} error={exc}")
            return EmailResult(False, error=str(exc) or "Failed to send email")

        email_id = payload.get("id") if isinstance(payload, dict) else None
        logger.info(f"email_send: sent id={email_id}")
        return EmailResult(True, id=email_id)


def _error_message(exc: HTTPError) -> str:
    try:
        payload = json.loads(exc.read().decode("utf-8"))
    except Exception:
        return f"Failed to send email (HTTP {exc.code})"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"Failed to send email (HTTP {exc.code})"
