"""Transactional e-mail over the Resend HTTP API."""
from __future__ import annotations

from typing import Optional

import requests
from loguru import logger

from campaigns.config import EmailProviderConfig
from campaigns.senders.base import SendResult, response_data
from campaigns.utils import mask_address


class ResendEmailSender:
    code = "resend"

    def __init__(self, config: EmailProviderConfig, timeout: float = 15.0):
        self.config = config
        self.timeout = timeout

    def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> SendResult:
        if not self.config.api_key:
            return SendResult.failed("Resend API key is not configured (RESEND_API_KEY)")
        if not to or not subject or not html:
            return SendResult.failed("Missing required email parameters: to, subject, or html")

        payload = {
            "from": self.config.from_address,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        try:
            resp = requests.post(
                self.config.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning(f"[SEND] Resend request to {mask_address(to)} failed: {exc}")
            return SendResult.failed(f"Resend request failed: {exc}")

        if not resp.ok:
            return SendResult.failed(f"Resend API error {resp.status_code}: {resp.text[:300]}")

        return SendResult.ok(message_id=response_data(resp).get("id"))
