"""Email sending helpers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx

from catalogsync.config import BRAND_NAME

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    html: str


class EmailProvider:
    def __init__(self, session: httpx.AsyncClient | None = None) -> None:
        self.provider = os.environ.get("ESP_PROVIDER", "log")
        self.resend_api_key = os.environ.get("RESEND_API_KEY")
        self.sender = os.environ.get("EMAIL_FROM", f"{BRAND_NAME} <sync@example.com>")
        self.session = session

    async def send(self, message: EmailMessage) -> None:
        if self.provider == "resend" and self.resend_api_key:
            await self._send_resend(message)
        else:
            logger.info("Email (log) → %s: %s", message.to, message.subject)

    async def _send_resend(self, message: EmailMessage) -> None:
        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self.resend_api_key}"}
        if self.session is not None:
            response = await self.session.post(RESEND_URL, json=payload, headers=headers)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.post(RESEND_URL, json=payload, headers=headers)
            response.raise_for_status()
