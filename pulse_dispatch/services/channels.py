"""
Channel Adapters: pluggable senders for each delivery channel.

Every adapter implements the same contract:

    send(flow, recipient_id, data) -> SendResult(success, error, external_id)

so the dispatcher never needs to know which provider sits behind a channel.
Push, SMS and WhatsApp have no provider integration yet; they report
success without delivering.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..models import Channel, NotificationFlow, User
from .inbox import InboxService
from .templates import render_template


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class EmailConfig:
    """Email delivery configuration."""
    service_url: str | None = None
    from_address: str = "notifications@camerpulse.cm"
    # event_type -> outbound email trigger name
    functions: dict[str, str] = field(default_factory=dict)
    unmapped_is_success: bool = True
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailConfig":
        return cls(
            service_url=settings.email_service_url,
            from_address=settings.email_from_address,
            functions=dict(settings.email_functions),
            unmapped_is_success=settings.email_unmapped_is_success,
            timeout_seconds=settings.channel_timeout_seconds,
        )


@dataclass
class SendResult:
    """Outcome of one adapter call."""
    success: bool
    error: str | None = None
    external_id: str | None = None


# =============================================================================
# ADAPTERS
# =============================================================================


class ChannelAdapter(ABC):
    """Abstract base for notification delivery channels."""

    channel: Channel

    @abstractmethod
    async def send(
        self,
        flow: NotificationFlow,
        recipient_id: UUID,
        data: dict[str, Any],
    ) -> SendResult:
        pass


class EmailChannel(ChannelAdapter):
    """Resolves the recipient address and hands off to the email trigger for the event type."""

    channel = Channel.EMAIL

    def __init__(
        self,
        session: AsyncSession,
        config: EmailConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._session = session
        self._config = config
        self._http_client = http_client

    async def send(
        self,
        flow: NotificationFlow,
        recipient_id: UUID,
        data: dict[str, Any],
    ) -> SendResult:
        recipient = await self._session.get(User, recipient_id)
        if recipient is None or not recipient.email:
            return SendResult(success=False, error="Recipient email not found")

        subject = render_template(flow.template.subject, data)
        content = render_template(flow.template.content, data)

        function_name = self._config.functions.get(flow.event_type)
        if function_name is None:
            if self._config.unmapped_is_success:
                logger.info(
                    f"[EMAIL] No email function for event type '{flow.event_type}', skipping"
                )
                return SendResult(success=True)
            return SendResult(
                success=False,
                error=f"Unsupported email event type: {flow.event_type}",
            )

        if not self._config.service_url:
            logger.info(
                f"[EMAIL] To: {recipient.email}, Subject: {subject}, Function: {function_name}"
            )
            return SendResult(success=True)

        payload = {
            "to": recipient.email,
            "from": self._config.from_address,
            "subject": subject,
            "html": content,
            "event_type": flow.event_type,
            "data": data,
        }
        url = f"{self._config.service_url.rstrip('/')}/{function_name}"

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            error_msg = f"Failed to send email: {e}"
            logger.error(error_msg)
            return SendResult(success=False, error=error_msg)

        external_id = None
        if response.headers.get("content-type", "").startswith("application/json"):
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("id") is not None:
                external_id = str(body["id"])

        return SendResult(success=True, external_id=external_id)


class InAppChannel(ChannelAdapter):
    """Writes a user-facing notification record."""

    channel = Channel.IN_APP

    def __init__(self, session: AsyncSession):
        self._inbox = InboxService(session)

    async def send(
        self,
        flow: NotificationFlow,
        recipient_id: UUID,
        data: dict[str, Any],
    ) -> SendResult:
        notification = await self._inbox.create(
            user_id=recipient_id,
            title=render_template(flow.template.subject, data),
            message=render_template(flow.template.content, data),
            notification_type=flow.event_type,
            data=data,
        )
        return SendResult(success=True, external_id=str(notification.id))


class PlaceholderChannel(ChannelAdapter):
    """Channel without a provider integration; reports success without delivering."""

    def __init__(self, channel: Channel):
        self.channel = channel

    async def send(
        self,
        flow: NotificationFlow,
        recipient_id: UUID,
        data: dict[str, Any],
    ) -> SendResult:
        logger.info(
            f"[{self.channel.value.upper()}] No provider configured; "
            f"recipient={recipient_id} event={flow.event_type}"
        )
        return SendResult(success=True)


def build_channel_registry(
    session: AsyncSession,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> dict[Channel, ChannelAdapter]:
    """One adapter per channel."""
    return {
        Channel.EMAIL: EmailChannel(session, EmailConfig.from_settings(settings), http_client),
        Channel.IN_APP: InAppChannel(session),
        Channel.PUSH: PlaceholderChannel(Channel.PUSH),
        Channel.SMS: PlaceholderChannel(Channel.SMS),
        Channel.WHATSAPP: PlaceholderChannel(Channel.WHATSAPP),
    }
