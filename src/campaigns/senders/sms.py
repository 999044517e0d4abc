"""SMS gateways: Solapi (domestic) and Twilio (international)."""
from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import datetime, timezone

import requests
from loguru import logger

from campaigns.config import SolapiConfig, TwilioConfig
from campaigns.senders.base import SendResult, response_data
from campaigns.utils import mask_address

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def solapi_auth_header(api_key: str, api_secret: str, date: str, salt: str) -> str:
    signature = hmac.new(api_secret.encode(), f"{date}{salt}".encode(), hashlib.sha256).hexdigest()
    return f"HMAC-SHA256 apiKey={api_key}, date={date}, salt={salt}, signature={signature}"


class SolapiSmsSender:
    code = "solapi"

    def __init__(self, config: SolapiConfig, timeout: float = 15.0):
        self.config = config
        self.timeout = timeout

    def send_sms(self, phone: str, body: str) -> SendResult:
        if not self.config.api_key or not self.config.api_secret:
            return SendResult.failed("Solapi API credentials not configured")
        if not self.config.from_number:
            return SendResult.failed("Solapi sender number not configured (SOLAPI_FROM_NUMBER)")

        date = datetime.now(timezone.utc).isoformat()
        salt = uuid.uuid4().hex
        try:
            resp = requests.post(
                self.config.api_url,
                json={"message": {"to": phone, "from": self.config.from_number, "text": body}},
                headers={"Authorization": solapi_auth_header(self.config.api_key, self.config.api_secret, date, salt)},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning(f"[SEND] Solapi request to {mask_address(phone)} failed: {exc}")
            return SendResult.failed(f"Solapi request failed: {exc}")

        if not resp.ok:
            return SendResult.failed(f"Solapi API error {resp.status_code}: {resp.text[:300]}")
        data = response_data(resp)
        return SendResult.ok(message_id=data.get("messageId") or data.get("groupId"))


class TwilioSmsSender:
    code = "twilio"

    def __init__(self, config: TwilioConfig, timeout: float = 15.0):
        self.config = config
        self.timeout = timeout

    def send_sms(self, phone: str, body: str) -> SendResult:
        sid, token = self.config.account_sid, self.config.auth_token
        if not sid or not token:
            return SendResult.failed("Twilio credentials not configured")
        if not self.config.from_number:
            return SendResult.failed("Twilio sender number not configured (TWILIO_FROM_NUMBER)")

        try:
            resp = requests.post(
                TWILIO_MESSAGES_URL.format(sid=sid),
                data={"To": phone, "From": self.config.from_number, "Body": body},
                auth=(sid, token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning(f"[SEND] Twilio request to {mask_address(phone)} failed: {exc}")
            return SendResult.failed(f"Twilio request failed: {exc}")

        if not resp.ok:
            return SendResult.failed(f"Twilio API error {resp.status_code}: {resp.text[:300]}")
        return SendResult.ok(message_id=response_data(resp).get("sid"))
