"""Resend REST API client for transactional e-mail."""

from __future__ import annotations

import logging

import httpx

from src.config import settings

logger = logging.getLogger(__name__)

_RESEND_EMAILS = "https://api.resend.com/emails"


class EmailClient:
    """Send e-mail via the Resend API."""

    def __init__(self) -> None:
        if not settings.resend_api_key:
            raise RuntimeError("E-mail not configured: set SUBS_RESEND_API_KEY")
        self._headers = {
            "Authorization": f"Bearer {settings.resend_api_key}",
            "Content-Type": "application/json",
        }
        self._from = settings.email_from
        self._client = httpx.AsyncClient(timeout=10.0)

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> dict:
        """Send one message and return the provider response (contains ``id``)."""
        payload: dict = {
            "from": self._from,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        resp = await self._client.post(_RESEND_EMAILS, json=payload, headers=self._headers)
        resp.raise_for_status()
        data = resp.json()
        logger.info("E-mail sent to %s: %s (id=%s)", to, subject, data.get("id"))
        return data

    async def close(self) -> None:
        await self._client.aclose()
