"""
Flow Registry: maps (event type, recipient type) to ordered delivery flows.

Also owns template management, since every flow is bound to a template.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Channel, NotificationFlow, NotificationTemplate
from .templates import extract_variables


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class NotificationError(Exception):
    """Base exception for notification operations."""
    pass


class TemplateNotFoundError(NotificationError):
    """Template does not exist."""
    pass


class FlowNotFoundError(NotificationError):
    """Flow does not exist."""
    pass


class TemplateInUseError(NotificationError):
    """Template is still referenced by a flow."""
    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class TemplateInput:
    name: str
    subject: str
    content: str
    category: str = "general"
    language: str = "en"


@dataclass
class FlowInput:
    event_type: str
    recipient_type: str
    channel: Channel
    template_id: UUID
    priority: int = 0
    is_active: bool = True


# =============================================================================
# FLOW REGISTRY
# =============================================================================


class FlowRegistry:
    """Read path for the dispatcher plus the admin write path."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_active_flows(
        self,
        event_type: str,
        recipient_type: str,
    ) -> list[NotificationFlow]:
        """Active flows for the pair, highest priority first."""
        query = (
            select(NotificationFlow)
            .where(
                NotificationFlow.event_type == event_type,
                NotificationFlow.recipient_type == recipient_type,
                NotificationFlow.is_active.is_(True),
            )
            .options(selectinload(NotificationFlow.template))
            .order_by(NotificationFlow.priority.desc(), NotificationFlow.created_at.asc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_flows(self, event_type: str | None = None) -> list[NotificationFlow]:
        query = select(NotificationFlow).order_by(
            NotificationFlow.event_type, NotificationFlow.priority.desc()
        )
        if event_type:
            query = query.where(NotificationFlow.event_type == event_type)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def create_flow(self, input: FlowInput) -> NotificationFlow:
        await self.get_template(input.template_id)

        flow = NotificationFlow(
            event_type=input.event_type,
            recipient_type=input.recipient_type,
            channel=input.channel,
            template_id=input.template_id,
            priority=input.priority,
            is_active=input.is_active,
        )
        self._session.add(flow)
        await self._session.flush()

        logger.info(
            f"Created flow {flow.id}: {flow.event_type}/{flow.recipient_type} "
            f"-> {flow.channel.value} (priority {flow.priority})"
        )
        return flow

    async def set_flow_active(self, flow_id: UUID, is_active: bool) -> NotificationFlow:
        flow = await self._session.get(NotificationFlow, flow_id)
        if flow is None:
            raise FlowNotFoundError(f"Flow {flow_id} not found")

        flow.is_active = is_active
        await self._session.flush()
        return flow

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    async def get_template(self, template_id: UUID) -> NotificationTemplate:
        template = await self._session.get(NotificationTemplate, template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    async def list_templates(self) -> list[NotificationTemplate]:
        result = await self._session.execute(
            select(NotificationTemplate).order_by(NotificationTemplate.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_template(self, input: TemplateInput) -> NotificationTemplate:
        template = NotificationTemplate(
            name=input.name,
            subject=input.subject,
            content=input.content,
            category=input.category,
            language=input.language,
            variables=extract_variables(input.subject, input.content),
        )
        self._session.add(template)
        await self._session.flush()
        return template

    async def update_template(
        self,
        template_id: UUID,
        input: TemplateInput,
    ) -> NotificationTemplate:
        template = await self.get_template(template_id)

        template.name = input.name
        template.subject = input.subject
        template.content = input.content
        template.category = input.category
        template.language = input.language
        template.variables = extract_variables(input.subject, input.content)

        await self._session.flush()
        return template

    async def delete_template(self, template_id: UUID) -> None:
        template = await self.get_template(template_id)

        in_use = await self._session.execute(
            select(func.count())
            .select_from(NotificationFlow)
            .where(NotificationFlow.template_id == template_id)
        )
        if in_use.scalar_one() > 0:
            raise TemplateInUseError(
                f"Template {template_id} is referenced by one or more flows"
            )

        await self._session.delete(template)
        await self._session.flush()
