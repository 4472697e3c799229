"""
Notification API Routes: dispatch plus the admin dashboard endpoints.

1. POST /notifications/dispatch - Fan an event out to its flows
2. /notifications/templates, /notifications/flows - Registry management
3. /notifications/preferences/{user_id} - Per-channel opt-outs
4. /notifications/inbox/{user_id} - In-app notifications
5. GET /notifications/stats - Delivery counts
"""

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core import SessionDep, SettingsDep
from ..models import Channel
from ..schemas import DispatchBaseModel
from ..services.dispatcher import NotificationDispatcher, NotificationEvent
from ..services.flows import (
    FlowInput,
    FlowNotFoundError,
    FlowRegistry,
    TemplateInput,
    TemplateInUseError,
    TemplateNotFoundError,
)
from ..services.inbox import InboxService, NotificationNotFoundError
from ..services.preferences import PreferenceStore

router = APIRouter(prefix="/notifications", tags=["notifications"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class DispatchRequest(BaseModel):
    """An event to deliver to one recipient."""
    event_type: str = Field(..., min_length=1, max_length=100)
    recipient_id: UUID
    recipient_type: str = Field(..., min_length=1, max_length=50)
    data: dict[str, Any] = Field(default_factory=dict)
    delay_minutes: int = Field(default=0, ge=0)


class DispatchResponse(BaseModel):
    success: bool = True
    flows_processed: int
    flows_delivered: int
    flows_failed: int
    flows_skipped: int
    flows_scheduled: int
    errors: list[str]
    message: str


class TemplateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(default="", max_length=500)
    content: str = ""
    category: str = Field(default="general", max_length=50)
    language: str = Field(default="en", max_length=10)

    def to_input(self) -> TemplateInput:
        return TemplateInput(
            name=self.name,
            subject=self.subject,
            content=self.content,
            category=self.category,
            language=self.language,
        )


class TemplateResponse(DispatchBaseModel):
    id: UUID
    name: str
    subject: str
    content: str
    category: str
    language: str
    variables: list[str]
    is_active: bool
    created_at: datetime


class FlowRequest(BaseModel):
    event_type: str = Field(..., min_length=1, max_length=100)
    recipient_type: str = Field(..., min_length=1, max_length=50)
    channel: Channel
    template_id: UUID
    priority: int = 0
    is_active: bool = True


class FlowUpdateRequest(BaseModel):
    is_active: bool


class FlowResponse(DispatchBaseModel):
    id: UUID
    event_type: str
    recipient_type: str
    channel: Channel
    template_id: UUID
    priority: int
    is_active: bool


class PreferenceRequest(BaseModel):
    event_type: str = Field(..., min_length=1, max_length=100)
    channel: Channel
    is_enabled: bool


class PreferenceResponse(DispatchBaseModel):
    event_type: str
    channel: Channel
    is_enabled: bool


class InboxItemResponse(DispatchBaseModel):
    id: UUID
    title: str
    message: str
    notification_type: str
    data: dict[str, Any]
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class StatsResponse(BaseModel):
    since_hours: int
    total: int
    by_status: dict[str, int]
    by_channel: dict[str, int]
    notifications_sent: int


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_dispatcher(session: SessionDep, settings: SettingsDep) -> NotificationDispatcher:
    return NotificationDispatcher(session, settings)


def get_flow_registry(session: SessionDep) -> FlowRegistry:
    return FlowRegistry(session)


DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
FlowRegistryDep = Annotated[FlowRegistry, Depends(get_flow_registry)]


# =============================================================================
# DISPATCH
# =============================================================================


@router.post(
    "/dispatch",
    response_model=DispatchResponse,
    summary="Dispatch a notification event",
)
async def dispatch_notification(request: DispatchRequest, dispatcher: DispatcherDep):
    """
    Deliver an event through every active flow for its (event_type, recipient_type).

    Per-flow failures are reported in `errors`; the call itself still succeeds.
    """
    result = await dispatcher.dispatch(NotificationEvent(
        event_type=request.event_type,
        recipient_id=request.recipient_id,
        recipient_type=request.recipient_type,
        data=request.data,
        delay_minutes=request.delay_minutes,
    ))

    return DispatchResponse(
        flows_processed=result.flows_processed,
        flows_delivered=result.flows_delivered,
        flows_failed=result.flows_failed,
        flows_skipped=result.flows_skipped,
        flows_scheduled=result.flows_scheduled,
        errors=result.errors,
        message=f"Processed {result.flows_processed} notification flows",
    )


@router.get("/stats", response_model=StatsResponse, summary="Delivery statistics")
async def get_stats(
    dispatcher: DispatcherDep,
    since_hours: int = Query(default=24, ge=1, le=24 * 90),
):
    stats = await dispatcher.get_delivery_stats(since_hours)
    return StatsResponse(
        since_hours=stats.since_hours,
        total=stats.total,
        by_status=stats.by_status,
        by_channel=stats.by_channel,
        notifications_sent=stats.notifications_sent,
    )


# =============================================================================
# TEMPLATES
# =============================================================================


@router.get("/templates", response_model=list[TemplateResponse])
async def list_templates(registry: FlowRegistryDep):
    return await registry.list_templates()


@router.post(
    "/templates",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_template(request: TemplateRequest, registry: FlowRegistryDep):
    """Create a template; its variables are extracted from {{ placeholders }}."""
    return await registry.create_template(request.to_input())


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: UUID,
    request: TemplateRequest,
    registry: FlowRegistryDep,
):
    try:
        return await registry.update_template(template_id, request.to_input())
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/templates/{template_id}")
async def delete_template(template_id: UUID, registry: FlowRegistryDep):
    try:
        await registry.delete_template(template_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TemplateInUseError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return {"success": True, "message": "Template deleted"}


# =============================================================================
# FLOWS
# =============================================================================


@router.get("/flows", response_model=list[FlowResponse])
async def list_flows(
    registry: FlowRegistryDep,
    event_type: str | None = Query(default=None),
):
    return await registry.list_flows(event_type)


@router.post(
    "/flows",
    response_model=FlowResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_flow(request: FlowRequest, registry: FlowRegistryDep):
    try:
        return await registry.create_flow(FlowInput(
            event_type=request.event_type,
            recipient_type=request.recipient_type,
            channel=request.channel,
            template_id=request.template_id,
            priority=request.priority,
            is_active=request.is_active,
        ))
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.patch("/flows/{flow_id}", response_model=FlowResponse)
async def update_flow(
    flow_id: UUID,
    request: FlowUpdateRequest,
    registry: FlowRegistryDep,
):
    try:
        return await registry.set_flow_active(flow_id, request.is_active)
    except FlowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


# =============================================================================
# PREFERENCES
# =============================================================================


@router.get("/preferences/{user_id}", response_model=list[PreferenceResponse])
async def get_preferences(user_id: UUID, session: SessionDep):
    return await PreferenceStore(session).list_for_user(user_id)


@router.put("/preferences/{user_id}", response_model=PreferenceResponse)
async def set_preference(user_id: UUID, request: PreferenceRequest, session: SessionDep):
    """Enable or disable one channel for one event type."""
    return await PreferenceStore(session).set_preference(
        user_id=user_id,
        event_type=request.event_type,
        channel=request.channel,
        is_enabled=request.is_enabled,
    )


# =============================================================================
# INBOX
# =============================================================================


@router.get("/inbox/{user_id}", response_model=list[InboxItemResponse])
async def list_inbox(
    user_id: UUID,
    session: SessionDep,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
):
    return await InboxService(session).list_inbox(user_id, unread_only=unread_only, limit=limit)


@router.post("/inbox/{notification_id}/read", response_model=InboxItemResponse)
async def mark_notification_read(notification_id: UUID, session: SessionDep):
    try:
        return await InboxService(session).mark_read(notification_id)
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
