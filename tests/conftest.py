"""Shared test fixtures for the toolbox agent test suite."""

import json
import os
from collections.abc import AsyncGenerator, Callable, Generator
from datetime import timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import structlog
from jose import jwt

from tests.fakes import FakeProbe, FakeRuntime
from toolbox_agent.bootstrap import AgentComponents, bootstrap
from toolbox_agent.config.settings import Settings, set_toml_config
from toolbox_agent.registry.models import TransportType, utc_now

JWT_SECRET = "test-secret-key-for-toolbox-agent"
BROKER_URL = "http://broker.test/credentials"
OWNER = "ati-owner-1"


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory for testing."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def mock_toml_files(test_config_dir: Path) -> Callable[[dict[str, str]], None]:
    """Factory fixture to create TOML files in the test config directory.

    Usage:
        def test_something(mock_toml_files):
            mock_toml_files({
                "default.toml": "app_name = 'test'",
                "development.toml": "debug = true",
            })
    """

    def _create_toml_files(files: dict[str, str]) -> None:
        for filename, content in files.items():
            toml_file = test_config_dir / filename
            toml_file.write_text(content)

    return _create_toml_files


class EnvOverrideContext:
    """Context manager for temporarily setting environment variables."""

    def __init__(self, overrides: dict[str, str]) -> None:
        self.overrides = overrides
        self.original_env: dict[str, str | None] = {}

    def __enter__(self) -> None:
        for key, value in self.overrides.items():
            self.original_env[key] = os.environ.get(key)
            os.environ[key] = value

    def __exit__(self, *args: Any) -> None:
        for key in self.overrides:
            if self.original_env[key] is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = self.original_env[key]


@pytest.fixture
def env_override() -> Generator[Callable[[dict[str, str]], EnvOverrideContext], None, None]:
    """Context manager for temporarily setting environment variables.

    Usage:
        def test_something(env_override):
            with env_override({"TOOLBOX_AGENT_DEBUG": "true"}):
                # test code here
    """

    def _env_override(overrides: dict[str, str]) -> EnvOverrideContext:
        return EnvOverrideContext(overrides)

    yield _env_override


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Clear settings caches and the TOML source around each test."""
    from toolbox_agent.api.dependencies import reset_dependencies
    from toolbox_agent.config import get_settings

    get_settings.cache_clear()
    reset_dependencies()
    set_toml_config({})
    yield
    get_settings.cache_clear()
    reset_dependencies()
    set_toml_config({})


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Keep structlog unconfigured so capture_logs sees every event."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture
def jwt_secret(monkeypatch: pytest.MonkeyPatch) -> str:
    """Install the JWT secret used to sign test tokens."""
    monkeypatch.setenv("TOOLBOX_AGENT_JWT_SECRET", JWT_SECRET)
    return JWT_SECRET


def make_token(claims: dict[str, Any] | None = None, secret: str = JWT_SECRET) -> str:
    """Sign a bearer token for tests."""
    payload = {"sub": "control-plane", "exp": utc_now() + timedelta(minutes=5)}
    payload.update(claims or {})
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def settings() -> Settings:
    """Settings tuned for fast, deterministic tests."""
    return Settings(
        agent={"name": "test-agent", "agent_version": "9.9.9"},
        credentials={
            "broker_url": BROKER_URL,
            "backoff_base_seconds": 0,
            "refresh_floor_seconds": 900,
            "refresh_skew_seconds": 60,
        },
        deploy={"port_range_start": 30100, "port_range_end": 30104},
        discovery={"interval_seconds": 3600, "jitter_seconds": 0, "failure_threshold": 3},
        health={"heartbeat_interval_seconds": 15, "starting_grace_seconds": 30},
        runtime={"backoff_base_seconds": 0},
    )


@pytest.fixture
def runtime() -> FakeRuntime:
    """An empty in-memory container runtime."""
    return FakeRuntime()


@pytest.fixture
def probes() -> dict[TransportType, FakeProbe]:
    """One scripted probe per MCP transport."""
    return {
        TransportType.STDIO: FakeProbe(TransportType.STDIO, tools=["read_file"]),
        TransportType.SSE: FakeProbe(TransportType.SSE, tools=["search", "fetch"]),
        TransportType.WEBSOCKET: FakeProbe(TransportType.WEBSOCKET, tools=["chat"]),
    }


class BrokerStub:
    """Scripted credential broker behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.responses: list[httpx.Response] = []
        self.expires_in = timedelta(hours=1)

    def grant(self, providers: list[str]) -> dict[str, Any]:
        expires_at = (utc_now() + self.expires_in).isoformat()
        return {
            "credentials": {
                provider: {
                    "accessToken": f"access-{provider}-SECRET",
                    "refreshToken": f"refresh-{provider}-SECRET",
                    "expiresAt": expires_at,
                    "scopes": ["read", "write"],
                }
                for provider in providers
            }
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json=self.grant(body["connectionIds"]))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def broker() -> BrokerStub:
    """Credential broker that grants every connection by default."""
    return BrokerStub()


@pytest.fixture
async def components(
    settings: Settings,
    runtime: FakeRuntime,
    probes: dict[TransportType, FakeProbe],
    broker: BrokerStub,
) -> AsyncGenerator[AgentComponents, None]:
    """A full component graph over the fake runtime and scripted probes."""
    agent = bootstrap(
        settings,
        runtime=runtime,  # type: ignore[arg-type]
        probes=probes,  # type: ignore[arg-type]
        broker_transport=broker.transport,
        heartbeat_transport=httpx.MockTransport(lambda request: httpx.Response(202)),
    )
    yield agent
    await agent.shutdown()
