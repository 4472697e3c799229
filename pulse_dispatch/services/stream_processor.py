"""
Stream Processor: ingests batches of realtime events and classifies them.

Each ingested event is stored as an AnalyticsEvent and routed to a handler
chosen by the stream's type:

    social_media -> sentiment request + hashtag trending counters
    news         -> sentiment request
    government   -> intelligence alert for announcements
    economic     -> intelligence alert when a value moves past the threshold

Malformed events are reported back, never raised. Only a missing stream id,
a non-list event payload or an unknown/paused stream fail the whole call.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import (
    AlertSeverity,
    AnalyticsEvent,
    IntelligenceAlert,
    StreamConfig,
    StreamStatus,
    StreamType,
    TrendingTopic,
    as_utc,
    utc_now,
)
from .sentiment import HttpSentimentAnalyzer, SentimentAnalyzer


logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#\w+")

GOVERNMENT_ANNOUNCEMENT_TYPES = {"policy_change", "emergency_alert", "public_announcement"}

MAX_ERROR_DETAILS = 10
MIN_SENTIMENT_TEXT_LENGTH = 10
MAX_EVENT_TYPE_LENGTH = 100


# =============================================================================
# EXCEPTIONS
# =============================================================================


class StreamError(Exception):
    """Base exception for stream operations."""
    pass


class StreamValidationError(StreamError):
    """Ingest request is malformed as a whole."""
    pass


class StreamNotFoundError(StreamError):
    """Stream configuration does not exist."""
    pass


class StreamInactiveError(StreamError):
    """Stream exists but is not accepting events."""
    pass


class AlertNotFoundError(StreamError):
    """Intelligence alert does not exist."""
    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class IngestResult:
    """Outcome of one ingest call."""
    stream_id: UUID
    total_events: int
    processed_events: int = 0
    errors: int = 0
    error_details: list[str] = field(default_factory=list)


class _EventValidationError(ValueError):
    pass


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and value:
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _optional_text(raw_event: dict[str, Any], name: str, max_length: int) -> str | None:
    """Optional scalar field as text; objects, lists and over-long values are rejected."""
    value = raw_event.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise _EventValidationError(f"field '{name}' must be a string")
    text = str(value)
    if len(text) > max_length:
        raise _EventValidationError(f"field '{name}' exceeds {max_length} characters")
    return text


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# STREAM PROCESSOR
# =============================================================================


class StreamProcessor:
    """Batch ingest and per-type classification for realtime streams."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        sentiment: SentimentAnalyzer | None = None,
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._sentiment = sentiment or HttpSentimentAnalyzer(self._settings)

    # =========================================================================
    # INGEST
    # =========================================================================

    async def ingest(
        self,
        stream_id: UUID | str | None,
        events: Any,
        batch_size: int | None = None,
    ) -> IngestResult:
        """
        Store and classify a list of raw events for one stream.

        Raises:
            StreamValidationError: stream_id missing, events not a list or bad batch size
            StreamNotFoundError: Stream does not exist
            StreamInactiveError: Stream is paused
        """
        stream = await self._load_active_stream(stream_id, events)

        if batch_size is None:
            batch_size = self._settings.stream_default_batch_size
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise StreamValidationError("batch_size must be a positive integer")

        result = IngestResult(stream_id=stream.id, total_events=len(events))
        stored: list[AnalyticsEvent] = []

        for start in range(0, len(events), batch_size):
            chunk = events[start:start + batch_size]
            chunk_started_at = utc_now()
            chunk_errors = 0

            for offset, raw_event in enumerate(chunk):
                index = start + offset
                try:
                    event = self._build_event(stream, raw_event)
                except _EventValidationError as e:
                    chunk_errors += 1
                    result.error_details.append(f"Event {index}: {e}")
                    continue

                # One savepoint per event: a failed insert or handler leaves no partial rows
                try:
                    async with self._session.begin_nested():
                        self._session.add(event)
                        await self._session.flush()
                        await self._classify(stream, event)
                except Exception as e:
                    logger.error(f"Stream {stream_id}: event {index} failed: {e}")
                    chunk_errors += 1
                    result.error_details.append(f"Event {index}: {e}")
                    continue

                stored.append(event)
                result.processed_events += 1

            result.errors += chunk_errors
            await self._update_stream_stats(
                stream,
                processed=result.processed_events,
                new_errors=chunk_errors,
                window_start=self._chunk_start(chunk) or chunk_started_at,
            )

        for event in stored:
            event.processed = True
        await self._session.flush()

        result.error_details = result.error_details[:MAX_ERROR_DETAILS]

        logger.info(
            f"Stream {stream.stream_name}: ingested {result.processed_events}/"
            f"{result.total_events} events, {result.errors} errors"
        )
        return result

    async def _load_active_stream(self, stream_id: UUID | str | None, events: Any) -> StreamConfig:
        if not stream_id:
            raise StreamValidationError("stream_id is required")
        if not isinstance(events, list):
            raise StreamValidationError("events must be an array")

        if not isinstance(stream_id, UUID):
            try:
                stream_id = UUID(str(stream_id))
            except ValueError:
                raise StreamValidationError(f"Invalid stream_id: {stream_id}")

        stream = await self._session.get(StreamConfig, stream_id)
        if stream is None:
            raise StreamNotFoundError(f"Stream {stream_id} not found")
        if stream.status != StreamStatus.ACTIVE:
            raise StreamInactiveError(f"Stream {stream.stream_name} is not active")
        return stream

    def _build_event(self, stream: StreamConfig, raw_event: Any) -> AnalyticsEvent:
        if not isinstance(raw_event, dict):
            raise _EventValidationError("event must be an object")
        event_type = raw_event.get("type")
        if not event_type or not isinstance(event_type, str):
            raise _EventValidationError("missing required field 'type'")
        if len(event_type) > MAX_EVENT_TYPE_LENGTH:
            raise _EventValidationError(
                f"field 'type' exceeds {MAX_EVENT_TYPE_LENGTH} characters"
            )
        data = raw_event.get("data")
        if not isinstance(data, dict):
            raise _EventValidationError("missing required field 'data'")

        return AnalyticsEvent(
            stream_id=stream.id,
            event_type=event_type,
            event_source=_optional_text(raw_event, "source", 255) or stream.stream_name,
            event_data=data,
            user_id=_optional_text(raw_event, "user_id", 255),
            session_id=_optional_text(raw_event, "session_id", 255),
            region=_optional_text(raw_event, "region", 100),
            processed=False,
        )

    def _chunk_start(self, chunk: list[Any]) -> datetime | None:
        if chunk and isinstance(chunk[0], dict):
            return _parse_timestamp(chunk[0].get("timestamp"))
        return None

    async def _update_stream_stats(
        self,
        stream: StreamConfig,
        processed: int,
        new_errors: int,
        window_start: datetime,
    ) -> None:
        now = utc_now()
        # Floor of one minute keeps a burst from reporting an unbounded rate
        elapsed_minutes = max((now - window_start).total_seconds() / 60, 1.0)

        stream.events_per_minute = processed / elapsed_minutes
        stream.last_event_at = now
        stream.error_count = (stream.error_count or 0) + new_errors
        await self._session.flush()

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    async def _classify(self, stream: StreamConfig, event: AnalyticsEvent) -> None:
        handlers = {
            StreamType.SOCIAL_MEDIA: self._handle_social_media,
            StreamType.NEWS: self._handle_news,
            StreamType.GOVERNMENT: self._handle_government,
            StreamType.ECONOMIC: self._handle_economic,
        }
        handler = handlers.get(stream.stream_type)
        if handler is None:
            logger.debug(f"No handler for stream type {stream.stream_type}")
            return
        await handler(event)

    async def _handle_social_media(self, event: AnalyticsEvent) -> None:
        data = event.event_data
        text = str(data.get("text") or data.get("content") or "")

        if len(text) > MIN_SENTIMENT_TEXT_LENGTH:
            await self._sentiment.request_sentiment(
                text,
                source=data.get("platform") or "social_media",
                metadata={"event_id": str(event.id)},
            )

        for hashtag in HASHTAG_PATTERN.findall(text):
            await self._record_mention(hashtag.lower())

    async def _record_mention(self, topic_text: str) -> TrendingTopic:
        now = utc_now()
        window_start = now - timedelta(hours=self._settings.trending_window_hours)

        result = await self._session.execute(
            select(TrendingTopic)
            .where(
                TrendingTopic.topic_text == topic_text,
                TrendingTopic.first_detected_at >= window_start,
            )
            .order_by(TrendingTopic.first_detected_at.desc())
            .limit(1)
        )
        topic = result.scalar_one_or_none()

        if topic is None:
            topic = TrendingTopic(
                topic_text=topic_text,
                category="hashtag",
                mention_count=1,
                first_detected_at=now,
                last_updated_at=now,
            )
            self._session.add(topic)
        else:
            topic.mention_count += 1
            topic.last_updated_at = now

        await self._session.flush()
        return topic

    async def _handle_news(self, event: AnalyticsEvent) -> None:
        data = event.event_data
        text = f"{data.get('title') or ''} {data.get('content') or ''}".strip()
        if text:
            await self._sentiment.request_sentiment(
                text,
                source="news",
                metadata={"event_id": str(event.id), "url": data.get("url")},
            )

    async def _handle_government(self, event: AnalyticsEvent) -> None:
        data = event.event_data
        announcement_type = data.get("announcement_type")
        if announcement_type not in GOVERNMENT_ANNOUNCEMENT_TYPES:
            return

        severity = (
            AlertSeverity.CRITICAL
            if announcement_type == "emergency_alert"
            else AlertSeverity.INFO
        )
        self._session.add(IntelligenceAlert(
            alert_type="government_announcement",
            title=data.get("title") or f"Government {announcement_type.replace('_', ' ')}",
            description=data.get("content") or data.get("description"),
            severity=severity,
            alert_data=data,
            source_event_id=event.id,
        ))
        await self._session.flush()

    async def _handle_economic(self, event: AnalyticsEvent) -> None:
        data = event.event_data
        value = _to_float(data.get("value"))
        if value is None:
            return

        threshold = _to_float(data.get("threshold"))
        if threshold is None:
            threshold = self._settings.economic_default_threshold

        magnitude = abs(value)
        if magnitude <= threshold:
            return

        severity = (
            AlertSeverity.WARNING
            if magnitude > self._settings.economic_warning_threshold
            else AlertSeverity.INFO
        )
        indicator = data.get("indicator") or "economic indicator"
        self._session.add(IntelligenceAlert(
            alert_type="economic_indicator",
            title=f"Significant change in {indicator}",
            description=f"{indicator} moved by {value:+.2%}",
            severity=severity,
            alert_data=data,
            source_event_id=event.id,
        ))
        await self._session.flush()

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    async def create_stream(self, stream_name: str, stream_type: StreamType) -> StreamConfig:
        stream = StreamConfig(
            stream_name=stream_name,
            stream_type=stream_type,
            status=StreamStatus.ACTIVE,
        )
        self._session.add(stream)
        await self._session.flush()
        logger.info(f"Created {stream_type.value} stream {stream_name} ({stream.id})")
        return stream

    async def set_stream_status(self, stream_id: UUID, status: StreamStatus) -> StreamConfig:
        stream = await self._session.get(StreamConfig, stream_id)
        if stream is None:
            raise StreamNotFoundError(f"Stream {stream_id} not found")
        stream.status = status
        await self._session.flush()
        return stream

    async def list_alerts(
        self,
        unacknowledged_only: bool = False,
        limit: int = 50,
    ) -> list[IntelligenceAlert]:
        query = select(IntelligenceAlert).order_by(IntelligenceAlert.created_at.desc()).limit(limit)
        if unacknowledged_only:
            query = query.where(IntelligenceAlert.acknowledged.is_(False))
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def acknowledge_alert(self, alert_id: UUID, user_id: str | None = None) -> IntelligenceAlert:
        alert = await self._session.get(IntelligenceAlert, alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found")

        if not alert.acknowledged:
            alert.acknowledged = True
            alert.acknowledged_at = utc_now()
            alert.acknowledged_by = user_id
            await self._session.flush()

        return alert
