from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests
from loguru import logger


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None   # provider-side id when the provider returns one
    error: Optional[str] = None        # human-readable reason on failure

    @classmethod
    def ok(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(success=False, error=error)


def response_data(resp: requests.Response) -> Dict[str, Any]:
    """JSON body of an accepted provider response, or {} when it is not a JSON object."""
    try:
        data = resp.json()
    except ValueError:
        logger.warning(f"[SEND] Provider accepted the message but returned a non-JSON body ({resp.status_code})")
        return {}
    return data if isinstance(data, dict) else {}


class EmailSender(Protocol):
    def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> SendResult:
        """Send one e-mail. Provider failures come back as a failed result."""
        ...


class MessageSender(Protocol):
    def send_message(self, channel: str, address: str, body: str) -> SendResult:
        """Send one SMS or chat message to a phone number."""
        ...
