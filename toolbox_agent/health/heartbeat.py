"""Heartbeat delivery to the control plane."""

from datetime import datetime

import httpx
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from toolbox_agent.config.models.health import HealthConfig
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import HEARTBEAT_FAILURES
from toolbox_agent.registry.models import ContainerType, HealthStatus, TransportType

logger = get_logger(__name__)


class HeartbeatInstance(BaseModel):
    """One instance entry in a heartbeat."""

    model_config = ConfigDict(populate_by_name=True)

    instance_name: str = Field(serialization_alias="instanceName")
    account_tool_instance_id: str = Field(serialization_alias="accountToolInstanceId")
    container_id: str = Field(serialization_alias="containerId")
    container_type: ContainerType = Field(serialization_alias="containerType")
    transport_type: TransportType = Field(serialization_alias="transportType")
    health_status: HealthStatus = Field(serialization_alias="healthStatus")
    last_health_check: datetime | None = Field(default=None, serialization_alias="lastHealthCheck")


class Heartbeat(BaseModel):
    """Full instance list plus host rollup."""

    agent: str
    version: str
    timestamp: datetime
    status: HealthStatus
    instances: list[HeartbeatInstance] = Field(default_factory=list)


class HeartbeatSink:
    """Fire-and-forget POST of heartbeats.

    A failed send is not retried; the next tick sends a fresh heartbeat.
    """

    def __init__(
        self,
        config: HealthConfig,
        token: SecretStr | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize sink.

        Args:
            config: Heartbeat URL, timeout and failure threshold
            token: Bearer token presented to the control plane
            transport: Optional httpx transport (tests)
        """
        self._config = config
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._consecutive_failures = 0

    @property
    def consecutive_failures(self) -> int:
        """Failed sends since the last success."""
        return self._consecutive_failures

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.heartbeat_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, heartbeat: Heartbeat) -> bool:
        """Send one heartbeat.

        Returns:
            True if delivered (or no sink is configured)
        """
        if not self._config.heartbeat_url:
            logger.debug(
                "heartbeat_built",
                status=heartbeat.status.value,
                instance_count=len(heartbeat.instances),
            )
            return True

        headers = {"Content-Type": "application/json"}
        if self._token is not None:
            headers["Authorization"] = f"Bearer {self._token.get_secret_value()}"

        error: str | None = None
        try:
            client = await self._ensure_client()
            response = await client.post(
                self._config.heartbeat_url,
                content=heartbeat.model_dump_json(by_alias=True),
                headers=headers,
            )
            if response.status_code >= 400:
                error = f"control plane returned {response.status_code}"
        except httpx.TimeoutException:
            error = f"timeout after {self._config.heartbeat_timeout_seconds}s"
        except httpx.HTTPError as e:
            error = type(e).__name__

        if error is None:
            if self._consecutive_failures:
                logger.info(
                    "heartbeat_recovered",
                    after_failures=self._consecutive_failures,
                )
            self._consecutive_failures = 0
            return True

        self._consecutive_failures += 1
        HEARTBEAT_FAILURES.inc()
        logger.warning(
            "heartbeat_failed",
            error=error,
            consecutive_failures=self._consecutive_failures,
        )
        if self._consecutive_failures >= self._config.heartbeat_failure_threshold:
            logger.error(
                "heartbeat_failure_streak",
                consecutive_failures=self._consecutive_failures,
                url=self._config.heartbeat_url,
            )
        return False
