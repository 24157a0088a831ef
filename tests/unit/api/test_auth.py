"""Tests for JWT caller authentication."""

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tests.conftest import OWNER, make_token
from toolbox_agent.api.dependencies import get_settings
from toolbox_agent.api.middleware.auth import OWNER_HEADER, CallerContextDep, get_jwt_secret
from toolbox_agent.config.settings import Settings
from toolbox_agent.registry.models import utc_now


@pytest.fixture
def client(settings: Settings, jwt_secret: str) -> TestClient:
    """App exposing the resolved caller context."""
    app = FastAPI()
    app.dependency_overrides[get_settings] = lambda: settings

    @app.get("/whoami")
    async def whoami(caller: CallerContextDep) -> dict[str, str | None]:
        return {"subject": caller.subject, "owner": caller.owner}

    return TestClient(app)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestGetCallerContext:
    """Tests for get_caller_context."""

    def test_valid_token_with_owner_header(self, client: TestClient) -> None:
        """The owner comes from the header."""
        response = client.get("/whoami", headers={**bearer(make_token()), OWNER_HEADER: OWNER})

        assert response.status_code == 200
        assert response.json() == {"subject": "control-plane", "owner": OWNER}

    def test_owner_from_token_claim(self, client: TestClient) -> None:
        """A pinned owner claim is used when no header is sent."""
        token = make_token({"account_tool_instance_id": OWNER})

        response = client.get("/whoami", headers=bearer(token))

        assert response.json()["owner"] == OWNER

    def test_missing_token(self, client: TestClient) -> None:
        """Requests without a bearer token are rejected."""
        response = client.get("/whoami")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_signature(self, client: TestClient) -> None:
        """Tokens signed with another key are rejected."""
        response = client.get("/whoami", headers=bearer(make_token(secret="not-the-secret")))
        assert response.status_code == 401

    def test_expired_token(self, client: TestClient) -> None:
        """Expired tokens are rejected."""
        token = make_token({"exp": utc_now() - timedelta(minutes=1)})
        response = client.get("/whoami", headers=bearer(token))
        assert response.status_code == 401

    def test_owner_header_contradicts_claim(self, client: TestClient) -> None:
        """A header that disagrees with the pinned claim is rejected."""
        token = make_token({"account_tool_instance_id": OWNER})

        response = client.get("/whoami", headers={**bearer(token), OWNER_HEADER: "ati-other"})

        assert response.status_code == 401


class TestGetJwtSecret:
    """Tests for get_jwt_secret."""

    def test_unset_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unset secret is a configuration error."""
        monkeypatch.delenv("TOOLBOX_AGENT_JWT_SECRET", raising=False)

        with pytest.raises(RuntimeError):
            get_jwt_secret()
