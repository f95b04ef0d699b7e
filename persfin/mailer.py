from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from .errors import DeliveryError

logger = logging.getLogger(__name__)


def _mask(addr: Optional[str]) -> str:
    if not addr or "@" not in addr:
        return addr or ""
    user, dom = addr.split("@", 1)
    return f"{user[:1]}***@{dom}"


@dataclass
class Message:
    to: str
    subject: str
    html: str
    text: str = ""


class ResendMailer:
    """Sends mail through the Resend HTTP API."""

    def __init__(self, api_key: str, sender: str, url: str = "https://api.resend.com/emails",
                 timeout: float = 10, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.sender = sender
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, to: str, subject: str, html: str, text: str = "") -> None:
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        if text:
            payload["text"] = text
        try:
            resp = self.session.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("mail to %s failed: %r", _mask(to), e)
            raise DeliveryError() from e
        logger.info("mail sent to %s", _mask(to))


@dataclass
class LogMailer:
    """Keeps messages in memory instead of sending them (development and tests)."""

    outbox: List[Message] = field(default_factory=list)

    def send(self, to: str, subject: str, html: str, text: str = "") -> None:
        self.outbox.append(Message(to=to, subject=subject, html=html, text=text))
        logger.info("mail to %s queued in log backend: %s", _mask(to), subject)


def build_mailer(cfg: dict):
    if cfg.get("MAIL_BACKEND") == "resend":
        return ResendMailer(
            api_key=cfg["RESEND_API_KEY"],
            sender=cfg["MAIL_FROM"],
            url=cfg.get("RESEND_URL") or "https://api.resend.com/emails",
            timeout=cfg.get("HTTP_TIMEOUT", 10),
        )
    return LogMailer()
