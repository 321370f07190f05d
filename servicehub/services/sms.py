"""SMS sending service.

Supports two backends:
- HTTP gateway via httpx (production)
- Log-only (development / testing), which logs the message instead of sending

Set SMS_BACKEND=http and configure SMS_GATEWAY_URL / SMS_API_KEY for production.
"""

import logging
from typing import Protocol

import httpx

from servicehub.config import settings

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    async def send(self, phone: str, body: str) -> None: ...


class LogSmsSender:
    """Development sender: logs the text instead of sending it."""

    async def send(self, phone: str, body: str) -> None:
        logger.info("SMS to=%s\n%s", phone, body)


class HttpSmsSender:
    """Posts to a JSON SMS gateway. Delivery confirmation is not awaited."""

    async def send(self, phone: str, body: str) -> None:
        async with httpx.AsyncClient(timeout=settings.sms_timeout_seconds) as client:
            resp = await client.post(
                settings.sms_gateway_url,
                json={"to": phone, "from": settings.sms_sender_id, "text": body},
                headers={"Authorization": f"Bearer {settings.sms_api_key}"},
            )
            resp.raise_for_status()


def get_sms_sender() -> SmsSender:
    if settings.sms_backend == "http":
        return HttpSmsSender()
    return LogSmsSender()


async def send_sms(phone: str, body: str) -> None:
    await get_sms_sender().send(phone, body)
