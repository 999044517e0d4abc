"""Wires configured providers behind the EmailSender / MessageSender interfaces."""
from __future__ import annotations

from campaigns.config import Settings
from campaigns.senders.base import SendResult
from campaigns.senders.chat import KakaoChatSender
from campaigns.senders.email import ResendEmailSender
from campaigns.senders.sms import SolapiSmsSender, TwilioSmsSender


class MessageGateway:
    """Routes sms/chat sends to the configured provider."""

    def __init__(self, sms_sender, chat_sender):
        self.sms_sender = sms_sender
        self.chat_sender = chat_sender

    @classmethod
    def from_settings(cls, settings: Settings) -> "MessageGateway":
        timeout = settings.provider_timeout_seconds
        if settings.sms_provider == "twilio":
            sms_sender = TwilioSmsSender(settings.twilio, timeout=timeout)
        else:
            sms_sender = SolapiSmsSender(settings.solapi, timeout=timeout)
        chat_sender = KakaoChatSender(settings.kakao, link_url=settings.public_base_url, timeout=timeout)
        return cls(sms_sender, chat_sender)

    def send_message(self, channel: str, address: str, body: str) -> SendResult:
        if not address:
            return SendResult.failed("Recipient has no phone number")
        if channel == "sms":
            return self.sms_sender.send_sms(address, body)
        if channel == "chat":
            return self.chat_sender.send_chat(address, body)
        return SendResult.failed(f"Unsupported message channel: {channel}")


def build_email_sender(settings: Settings) -> ResendEmailSender:
    return ResendEmailSender(settings.email, timeout=settings.provider_timeout_seconds)
