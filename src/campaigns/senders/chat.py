"""Chat-bot messaging through the Kakao message API."""
from __future__ import annotations

import requests
from loguru import logger

from campaigns.config import KakaoConfig
from campaigns.senders.base import SendResult, response_data
from campaigns.utils import mask_address


class KakaoChatSender:
    code = "kakao"

    def __init__(self, config: KakaoConfig, link_url: str, timeout: float = 15.0):
        self.config = config
        self.link_url = link_url
        self.timeout = timeout

    def send_chat(self, phone: str, body: str) -> SendResult:
        if not self.config.api_key or not self.config.template_id or not self.config.sender_key:
            return SendResult.failed("Kakao API credentials not configured")

        payload = {
            # Kakao addresses recipients by uuid; phone numbers are accepted by the biz gateway
            "receiver_uuids": [phone],
            "template_object": {
                "object_type": "text",
                "text": body,
                "link": {"web_url": self.link_url},
            },
            "sender_key": self.config.sender_key,
            "template_id": self.config.template_id,
        }
        try:
            resp = requests.post(
                self.config.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning(f"[SEND] Kakao request to {mask_address(phone)} failed: {exc}")
            return SendResult.failed(f"Kakao request failed: {exc}")

        if not resp.ok:
            return SendResult.failed(f"Kakao API error {resp.status_code}: {resp.text[:300]}")
        data = response_data(resp)
        message_id = data.get("messageId") or data.get("result_code")
        return SendResult.ok(message_id=str(message_id) if message_id is not None else None)
