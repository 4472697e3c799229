"""
Stream API Routes: event ingest, stream administration and intelligence alerts.
"""

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core import SessionDep, SettingsDep
from ..models import AlertSeverity, StreamStatus, StreamType
from ..schemas import DispatchBaseModel
from ..services.stream_processor import (
    AlertNotFoundError,
    StreamInactiveError,
    StreamNotFoundError,
    StreamProcessor,
    StreamValidationError,
)

router = APIRouter(prefix="/streams", tags=["streams"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class IngestRequest(BaseModel):
    """
    Raw ingest payload.

    Fields are loosely typed so that a missing stream id or a non-list
    `events` is reported by the processor rather than by schema validation.
    """
    stream_id: str | None = None
    events: Any = None
    batch_size: int | None = None


class IngestResponse(BaseModel):
    success: bool = True
    stream_id: UUID
    total_events: int
    processed_events: int
    errors: int
    error_details: list[str]


class StreamCreateRequest(BaseModel):
    stream_name: str = Field(..., min_length=1, max_length=255)
    stream_type: StreamType


class StreamUpdateRequest(BaseModel):
    status: StreamStatus


class StreamResponse(DispatchBaseModel):
    id: UUID
    stream_name: str
    stream_type: StreamType
    status: StreamStatus
    events_per_minute: float
    last_event_at: datetime | None = None
    error_count: int


class AcknowledgeRequest(BaseModel):
    user_id: str | None = Field(default=None, max_length=255)


class AlertResponse(DispatchBaseModel):
    id: UUID
    alert_type: str
    title: str
    description: str | None = None
    severity: AlertSeverity
    alert_data: dict[str, Any]
    source_event_id: UUID | None = None
    acknowledged: bool
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    created_at: datetime


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_stream_processor(session: SessionDep, settings: SettingsDep) -> StreamProcessor:
    return StreamProcessor(session, settings)


StreamProcessorDep = Annotated[StreamProcessor, Depends(get_stream_processor)]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/ingest", response_model=IngestResponse, summary="Ingest a batch of stream events")
async def ingest_events(request: IngestRequest, processor: StreamProcessorDep):
    """
    Store and classify events for an active stream.

    Malformed events are counted in `errors` with their index in `error_details`.
    """
    try:
        result = await processor.ingest(request.stream_id, request.events, request.batch_size)
    except StreamValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StreamNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StreamInactiveError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return IngestResponse(
        stream_id=result.stream_id,
        total_events=result.total_events,
        processed_events=result.processed_events,
        errors=result.errors,
        error_details=result.error_details,
    )


@router.post("", response_model=StreamResponse, status_code=status.HTTP_201_CREATED)
async def create_stream(request: StreamCreateRequest, processor: StreamProcessorDep):
    return await processor.create_stream(request.stream_name, request.stream_type)


@router.patch("/{stream_id}", response_model=StreamResponse)
async def update_stream(
    stream_id: UUID,
    request: StreamUpdateRequest,
    processor: StreamProcessorDep,
):
    try:
        return await processor.set_stream_status(stream_id, request.status)
    except StreamNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(
    processor: StreamProcessorDep,
    unacknowledged_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
):
    return await processor.list_alerts(unacknowledged_only=unacknowledged_only, limit=limit)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: UUID,
    processor: StreamProcessorDep,
    request: AcknowledgeRequest | None = None,
):
    try:
        user_id = request.user_id if request else None
        return await processor.acknowledge_alert(alert_id, user_id)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
