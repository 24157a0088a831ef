"""Tests for the heartbeat sink."""

import json
from datetime import UTC, datetime

import httpx
import pytest
from pydantic import SecretStr

from toolbox_agent.config.models.health import HealthConfig
from toolbox_agent.health.heartbeat import Heartbeat, HeartbeatInstance, HeartbeatSink
from toolbox_agent.registry.models import ContainerType, HealthStatus, TransportType

URL = "http://control-plane.test/heartbeat"


def heartbeat() -> Heartbeat:
    return Heartbeat(
        agent="test-agent",
        version="9.9.9",
        timestamp=datetime(2025, 6, 1, tzinfo=UTC),
        status=HealthStatus.HEALTHY,
        instances=[
            HeartbeatInstance(
                instance_name="svc",
                account_tool_instance_id="ati-1",
                container_id="c1",
                container_type=ContainerType.MCP_SERVER,
                transport_type=TransportType.SSE,
                health_status=HealthStatus.HEALTHY,
            )
        ],
    )


class TestHeartbeatSink:
    """Tests for HeartbeatSink.send."""

    @pytest.mark.asyncio
    async def test_unconfigured_sink_succeeds(self) -> None:
        """Without a URL heartbeats are only logged."""
        sink = HeartbeatSink(HealthConfig(heartbeat_url=None))
        assert await sink.send(heartbeat())

    @pytest.mark.asyncio
    async def test_payload_and_auth(self) -> None:
        """Heartbeats are posted camelCase with the bearer token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        sink = HeartbeatSink(
            HealthConfig(heartbeat_url=URL),
            token=SecretStr("cp-token"),
            transport=httpx.MockTransport(handler),
        )

        assert await sink.send(heartbeat())
        await sink.close()

        body = json.loads(seen[0].content)
        assert seen[0].headers["Authorization"] == "Bearer cp-token"
        assert body["agent"] == "test-agent"
        assert body["status"] == "healthy"
        assert body["instances"][0]["instanceName"] == "svc"
        assert body["instances"][0]["healthStatus"] == "healthy"

    @pytest.mark.asyncio
    async def test_failure_streak_counted_and_reset(self) -> None:
        """Failures accumulate until a send succeeds."""
        responses = [httpx.Response(503), httpx.Response(500), httpx.Response(200)]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        sink = HeartbeatSink(
            HealthConfig(heartbeat_url=URL),
            transport=httpx.MockTransport(handler),
        )

        assert not await sink.send(heartbeat())
        assert not await sink.send(heartbeat())
        assert sink.consecutive_failures == 2
        assert await sink.send(heartbeat())
        assert sink.consecutive_failures == 0
        await sink.close()

    @pytest.mark.asyncio
    async def test_network_error_is_failure(self) -> None:
        """Transport errors never raise out of send."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        sink = HeartbeatSink(HealthConfig(heartbeat_url=URL), transport=httpx.MockTransport(handler))

        assert not await sink.send(heartbeat())
        assert sink.consecutive_failures == 1
        await sink.close()
