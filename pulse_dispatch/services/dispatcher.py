"""
Notification Dispatcher: fans one event out to its configured flows.

For each event this module:
1. Resolves the active flows for (event_type, recipient_type), highest priority first
2. Drops flows whose channel the recipient has explicitly disabled
3. Writes a DeliveryLog row per remaining flow
4. Sends immediately, or leaves the row pending when the event is delayed
5. Records the adapter outcome and a metrics row on success

A failing flow never aborts its siblings. Failing to read the flow registry
or the preference store aborts the whole dispatch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import (
    Channel,
    DeliveryStatus,
    NotificationDeliveryLog,
    NotificationFlow,
    NotificationMetric,
    utc_now,
)
from .channels import ChannelAdapter, SendResult, build_channel_registry
from .flows import FlowRegistry, NotificationError
from .preferences import PreferenceStore


logger = logging.getLogger(__name__)

SENT_METRIC_EVENT = "notification_sent"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class NotificationEvent:
    """An event to deliver. Transient; only its delivery logs persist."""
    event_type: str
    recipient_id: UUID
    recipient_type: str
    data: dict[str, Any] = field(default_factory=dict)
    delay_minutes: int = 0


@dataclass
class DispatchResult:
    """Outcome of one dispatch call."""
    flows_processed: int = 0
    flows_delivered: int = 0
    flows_failed: int = 0
    flows_skipped: int = 0
    flows_scheduled: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class DeliveryStats:
    """Aggregated delivery counts for the admin dashboard."""
    since_hours: int
    total: int
    by_status: dict[str, int]
    by_channel: dict[str, int]
    notifications_sent: int


# =============================================================================
# DISPATCHER
# =============================================================================


class NotificationDispatcher:
    """Resolves flows for an event and drives the channel adapters."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        channels: dict[Channel, ChannelAdapter] | None = None,
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._registry = FlowRegistry(session)
        self._preferences = PreferenceStore(session)
        self._channels = channels if channels is not None else build_channel_registry(
            session, self._settings
        )

    async def dispatch(self, event: NotificationEvent) -> DispatchResult:
        result = DispatchResult()

        flows = await self._registry.get_active_flows(event.event_type, event.recipient_type)
        if not flows:
            logger.info(
                f"No active flows for event={event.event_type} "
                f"recipient_type={event.recipient_type}"
            )
            return result

        preferences = await self._preferences.load_for_event(
            event.recipient_id, event.event_type
        )

        for flow in flows:
            # Plain values survive a rolled-back savepoint; ORM attributes may not
            flow_id, channel = flow.id, flow.channel

            if not preferences.get(channel, True):
                logger.debug(
                    f"Recipient {event.recipient_id} opted out of {channel.value} "
                    f"for {event.event_type}"
                )
                result.flows_skipped += 1
                continue

            try:
                async with self._session.begin_nested():
                    log = await self._create_log(flow, event)
                    if event.delay_minutes > 0:
                        send_result = None
                    else:
                        send_result = await self._send(flow, event)
                        await self._record_outcome(log, flow, event, send_result)

            except Exception as e:
                logger.error(f"Flow {flow_id} failed for event {event.event_type}: {e}")
                result.flows_failed += 1
                result.errors.append(f"Flow {flow_id}: {e}")
                await self._record_failure(flow_id, channel, event, str(e))
                continue

            if send_result is None:
                result.flows_scheduled += 1
                continue

            result.flows_processed += 1
            if send_result.success:
                result.flows_delivered += 1
            else:
                result.flows_failed += 1
                result.errors.append(f"Flow {flow_id}: {send_result.error}")

        await self._session.flush()

        logger.info(
            f"Dispatched {event.event_type} to {event.recipient_id}: "
            f"{result.flows_processed} processed, {result.flows_scheduled} scheduled, "
            f"{result.flows_skipped} skipped, {result.flows_failed} failed"
        )
        return result

    async def _create_log(
        self,
        flow: NotificationFlow,
        event: NotificationEvent,
    ) -> NotificationDeliveryLog:
        log = NotificationDeliveryLog(
            flow_id=flow.id,
            recipient_id=event.recipient_id,
            event_type=event.event_type,
            channel=flow.channel,
            status=DeliveryStatus.PENDING,
            template_data=event.data,
        )
        if event.delay_minutes > 0:
            log.scheduled_for = utc_now() + timedelta(minutes=event.delay_minutes)

        self._session.add(log)
        await self._session.flush()
        return log

    async def _send(self, flow: NotificationFlow, event: NotificationEvent) -> SendResult:
        adapter = self._channels.get(flow.channel)
        if adapter is None:
            raise NotificationError(f"No adapter registered for channel {flow.channel.value}")

        timeout = self._settings.channel_timeout_seconds
        try:
            return await asyncio.wait_for(
                adapter.send(flow, event.recipient_id, event.data),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return SendResult(
                success=False,
                error=f"Channel {flow.channel.value} timed out after {timeout}s",
            )

    async def _record_outcome(
        self,
        log: NotificationDeliveryLog,
        flow: NotificationFlow,
        event: NotificationEvent,
        send_result: SendResult,
    ) -> None:
        now = utc_now()
        log.sent_at = now

        if send_result.success:
            log.status = DeliveryStatus.DELIVERED
            log.delivered_at = now
            log.external_id = send_result.external_id
            self._session.add(NotificationMetric(
                log_id=log.id,
                event_type=SENT_METRIC_EVENT,
                event_metadata={
                    "channel": flow.channel.value,
                    "template_id": str(flow.template_id),
                    "source_event_type": event.event_type,
                },
            ))
        else:
            log.status = DeliveryStatus.FAILED
            log.error_message = send_result.error

        await self._session.flush()

    async def _record_failure(
        self,
        flow_id: UUID,
        channel: Channel,
        event: NotificationEvent,
        error: str,
    ) -> None:
        """Write a failed log for a flow whose savepoint was rolled back."""
        try:
            async with self._session.begin_nested():
                self._session.add(NotificationDeliveryLog(
                    flow_id=flow_id,
                    recipient_id=event.recipient_id,
                    event_type=event.event_type,
                    channel=channel,
                    status=DeliveryStatus.FAILED,
                    template_data=event.data,
                    error_message=error[:1000],
                ))
        except SQLAlchemyError as e:
            logger.error(f"Could not record failure for flow {flow_id}: {e}")

    # =========================================================================
    # STATISTICS
    # =========================================================================

    async def get_delivery_stats(self, since_hours: int = 24) -> DeliveryStats:
        since = utc_now() - timedelta(hours=since_hours)

        status_result = await self._session.execute(
            select(NotificationDeliveryLog.status, func.count())
            .where(NotificationDeliveryLog.created_at >= since)
            .group_by(NotificationDeliveryLog.status)
        )
        by_status = {status.value: count for status, count in status_result.all()}

        channel_result = await self._session.execute(
            select(NotificationDeliveryLog.channel, func.count())
            .where(NotificationDeliveryLog.created_at >= since)
            .group_by(NotificationDeliveryLog.channel)
        )
        by_channel = {channel.value: count for channel, count in channel_result.all()}

        sent_result = await self._session.execute(
            select(func.count())
            .select_from(NotificationMetric)
            .where(
                NotificationMetric.event_type == SENT_METRIC_EVENT,
                NotificationMetric.created_at >= since,
            )
        )

        return DeliveryStats(
            since_hours=since_hours,
            total=sum(by_status.values()),
            by_status=by_status,
            by_channel=by_channel,
            notifications_sent=sent_result.scalar_one(),
        )
