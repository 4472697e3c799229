#!/usr/bin/env python3
"""
Seed Data Script for CamerPulse Dispatch

Creates a small civic-platform scenario with:
- 3 Users (a citizen, a regional moderator, a national supervisor)
- Templates and flows for petition and poll events
- A petition-review workflow with a two-rung escalation ladder
- One stream per stream type

Run with: python seed_data.py
"""

import asyncio
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pulse_dispatch.core.config import get_settings
from pulse_dispatch.models import (
    Base,
    Channel,
    NotificationFlow,
    NotificationTemplate,
    StreamConfig,
    StreamStatus,
    StreamType,
    TriggerType,
    User,
    Workflow,
)
from pulse_dispatch.services.templates import extract_variables

settings = get_settings()


def make_template(name: str, subject: str, content: str, category: str) -> NotificationTemplate:
    return NotificationTemplate(
        id=uuid4(),
        name=name,
        subject=subject,
        content=content,
        category=category,
        variables=extract_variables(subject, content),
    )


async def seed_database():
    """Main seeding function."""
    engine = create_async_engine(settings.database_url_async, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        print("Starting database seed...")

        result = await session.execute(text("SELECT COUNT(*) FROM users"))
        count = result.scalar()
        if count and count > 0:
            print("Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # USERS
        # =================================================================
        print("\nCreating users...")

        citizen = User(id=uuid4(), email="amina@example.cm", name="Amina Njoya")
        moderator = User(id=uuid4(), email="paul@camerpulse.cm", name="Paul Etoundi")
        supervisor = User(id=uuid4(), email="grace@camerpulse.cm", name="Grace Fon")
        session.add_all([citizen, moderator, supervisor])
        await session.flush()
        for user in (citizen, moderator, supervisor):
            print(f"   Created: {user.name} <{user.email}>")

        # =================================================================
        # TEMPLATES AND FLOWS
        # =================================================================
        print("\nCreating templates and flows...")

        petition_signed = make_template(
            "Petition signed",
            "Thanks for signing {{ petition_title }}",
            "Hello {{ name }}, your signature on {{ petition_title }} has been recorded.",
            "petitions",
        )
        poll_created = make_template(
            "New poll",
            "New poll: {{ poll_title }}",
            "A new poll is open in {{ region }}. Make your voice heard.",
            "polls",
        )
        session.add_all([petition_signed, poll_created])
        await session.flush()

        session.add_all([
            NotificationFlow(
                event_type="petition_signed",
                recipient_type="citizen",
                channel=Channel.EMAIL,
                template_id=petition_signed.id,
                priority=10,
            ),
            NotificationFlow(
                event_type="petition_signed",
                recipient_type="citizen",
                channel=Channel.IN_APP,
                template_id=petition_signed.id,
                priority=5,
            ),
            NotificationFlow(
                event_type="poll_created",
                recipient_type="citizen",
                channel=Channel.IN_APP,
                template_id=poll_created.id,
            ),
        ])
        print("   Created 2 templates, 3 flows")

        # =================================================================
        # WORKFLOWS
        # =================================================================
        print("\nCreating workflows...")

        session.add(Workflow(
            name="Petition review",
            description="Route flagged petitions to moderation, escalating if unanswered",
            trigger_type=TriggerType.EVENT,
            trigger_config={
                "event_type": "petition_flagged",
                "conditions": [
                    {"field": "report_count", "operator": "greater_than", "value": 3},
                ],
            },
            actions=[
                {
                    "type": "notify",
                    "user_ids": [str(moderator.id)],
                    "title": "Petition flagged: {{ petition_title }}",
                    "message": "{{ report_count }} reports received. Please review.",
                },
            ],
            escalation_rules=[
                {"escalated_to": [str(moderator.id)], "timeout_hours": 4},
                {"escalated_to": [str(supervisor.id)], "timeout_hours": 12, "reason": "Moderator did not respond"},
            ],
            priority=10,
        ))
        print("   Created: Petition review")

        # =================================================================
        # STREAMS
        # =================================================================
        print("\nCreating streams...")

        for name, stream_type in [
            ("Social listening", StreamType.SOCIAL_MEDIA),
            ("National press", StreamType.NEWS),
            ("Government bulletins", StreamType.GOVERNMENT),
            ("Market indicators", StreamType.ECONOMIC),
        ]:
            stream = StreamConfig(stream_name=name, stream_type=stream_type, status=StreamStatus.ACTIVE)
            session.add(stream)
            await session.flush()
            print(f"   Created: {name} ({stream.id})")

        await session.commit()

    await engine.dispose()
    print("\nSeed complete.")


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "intelligence_alerts",
        "trending_topics",
        "analytics_events",
        "realtime_stream_configs",
        "workflow_escalation_history",
        "workflow_executions",
        "workflows",
        "user_notifications",
        "notification_metrics",
        "notification_delivery_logs",
        "notification_preferences",
        "notification_flows",
        "notification_templates",
        "users",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
