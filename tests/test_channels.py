"""Tests for the channel adapters."""

import json
from uuid import uuid4

import httpx
import pytest

from pulse_dispatch.models import Channel
from pulse_dispatch.services.channels import (
    EmailChannel,
    EmailConfig,
    InAppChannel,
    PlaceholderChannel,
    build_channel_registry,
)


DATA = {"name": "Amina", "petition_title": "Clean Water for Bamenda"}


def email_config(**overrides) -> EmailConfig:
    config = EmailConfig(
        service_url=None,
        functions={"petition_signed": "send-petition-email"},
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


class TestEmailChannel:

    async def test_unknown_recipient_fails(self, session, make_flow):
        flow = await make_flow(Channel.EMAIL)
        channel = EmailChannel(session, email_config())

        result = await channel.send(flow, uuid4(), DATA)

        assert result.success is False
        assert result.error == "Recipient email not found"

    async def test_unmapped_event_type_is_success_by_default(self, session, citizen, make_flow):
        flow = await make_flow(Channel.EMAIL, event_type="budget_published")
        channel = EmailChannel(session, email_config())

        result = await channel.send(flow, citizen.id, DATA)

        assert result.success is True

    async def test_unmapped_event_type_can_report_failure(self, session, citizen, make_flow):
        flow = await make_flow(Channel.EMAIL, event_type="budget_published")
        channel = EmailChannel(session, email_config(unmapped_is_success=False))

        result = await channel.send(flow, citizen.id, DATA)

        assert result.success is False
        assert result.error == "Unsupported email event type: budget_published"

    async def test_without_service_url_logs_and_succeeds(self, session, citizen, make_flow):
        flow = await make_flow(Channel.EMAIL)
        channel = EmailChannel(session, email_config())

        result = await channel.send(flow, citizen.id, DATA)

        assert result.success is True
        assert result.external_id is None

    async def test_posts_rendered_email_to_mapped_function(self, session, citizen, make_flow):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "msg-42"})

        flow = await make_flow(Channel.EMAIL)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            channel = EmailChannel(
                session,
                email_config(service_url="https://mail.example.cm/functions/"),
                http_client=http_client,
            )
            result = await channel.send(flow, citizen.id, DATA)

        assert result.success is True
        assert result.external_id == "msg-42"

        assert len(requests) == 1
        assert str(requests[0].url) == "https://mail.example.cm/functions/send-petition-email"
        payload = json.loads(requests[0].content)
        assert payload["to"] == "amina@example.cm"
        assert payload["subject"] == "Thanks for signing Clean Water for Bamenda"

    async def test_provider_error_is_a_failed_result(self, session, citizen, make_flow):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "unavailable"})

        flow = await make_flow(Channel.EMAIL)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            channel = EmailChannel(
                session,
                email_config(service_url="https://mail.example.cm"),
                http_client=http_client,
            )
            result = await channel.send(flow, citizen.id, DATA)

        assert result.success is False
        assert result.error.startswith("Failed to send email")


class TestOtherChannels:

    async def test_in_app_returns_notification_id(self, session, citizen, make_flow):
        flow = await make_flow(Channel.IN_APP)

        result = await InAppChannel(session).send(flow, citizen.id, DATA)

        assert result.success is True
        assert result.external_id is not None

    @pytest.mark.parametrize("channel", [Channel.PUSH, Channel.SMS, Channel.WHATSAPP])
    async def test_placeholder_channels_succeed(self, session, citizen, make_flow, channel):
        flow = await make_flow(channel)

        result = await PlaceholderChannel(channel).send(flow, citizen.id, DATA)

        assert result.success is True

    async def test_registry_covers_every_channel(self, session, settings):
        registry = build_channel_registry(session, settings)

        assert set(registry) == set(Channel)
        assert isinstance(registry[Channel.EMAIL], EmailChannel)
        assert isinstance(registry[Channel.IN_APP], InAppChannel)
