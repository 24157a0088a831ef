"""Client for the external credential broker."""

import asyncio
from typing import Any

import httpx
from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from toolbox_agent.config.models.credentials import CredentialsConfig
from toolbox_agent.credentials.models import OAuthCredentialBundle
from toolbox_agent.errors import CredentialUnavailableError
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import CREDENTIAL_FETCHES

logger = get_logger(__name__)


class CredentialBroker:
    """Fetch OAuth credential bundles from the control plane's broker.

    Client errors (invalid, expired or revoked connections) fail
    immediately. Network errors, timeouts and 5xx responses are retried
    with exponential backoff before failing.
    """

    def __init__(
        self,
        config: CredentialsConfig,
        token: SecretStr | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize broker client.

        Args:
            config: Broker endpoint and retry policy
            token: Bearer token presented to the broker
            transport: Optional httpx transport (tests)
        """
        self._config = config
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.fetch_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        agent_id: str | None,
        account_tool_instance_id: str,
        connection_ids: list[str],
        scopes: list[str],
    ) -> OAuthCredentialBundle:
        """Fetch a fresh bundle for the given connections.

        Raises:
            CredentialUnavailableError: Broker unset, unreachable, or denied
        """
        if not self._config.broker_url:
            CREDENTIAL_FETCHES.labels(outcome="unconfigured").inc()
            raise CredentialUnavailableError("Credential broker is not configured")

        body = {
            "agentId": agent_id,
            "accountToolInstanceId": account_tool_instance_id,
            "connectionIds": connection_ids,
            "scopes": scopes,
        }
        headers = {"Content-Type": "application/json"}
        if self._token is not None:
            headers["Authorization"] = f"Bearer {self._token.get_secret_value()}"

        client = await self._ensure_client()
        last_error = ""

        for attempt in range(self._config.max_attempts):
            try:
                response = await client.post(self._config.broker_url, json=body, headers=headers)
            except httpx.TimeoutException:
                last_error = f"timeout after {self._config.fetch_timeout_seconds}s"
            except httpx.HTTPError as e:
                last_error = type(e).__name__
            else:
                if response.status_code == 200:
                    bundle = self._parse_bundle(response)
                    CREDENTIAL_FETCHES.labels(outcome="success").inc()
                    logger.info(
                        "credentials_fetched",
                        account_tool_instance_id=account_tool_instance_id,
                        providers=bundle.providers,
                        attempt=attempt + 1,
                    )
                    return bundle

                if 400 <= response.status_code < 500:
                    CREDENTIAL_FETCHES.labels(outcome="denied").inc()
                    raise self._denied(response, account_tool_instance_id)

                last_error = f"broker returned {response.status_code}"

            logger.warning(
                "credential_fetch_failed",
                account_tool_instance_id=account_tool_instance_id,
                attempt=attempt + 1,
                max_attempts=self._config.max_attempts,
                error=last_error,
            )
            if attempt < self._config.max_attempts - 1:
                await asyncio.sleep(self._config.backoff_base_seconds * 2**attempt)

        CREDENTIAL_FETCHES.labels(outcome="unavailable").inc()
        raise CredentialUnavailableError(f"Credential broker unavailable: {last_error}")

    def _parse_bundle(self, response: httpx.Response) -> OAuthCredentialBundle:
        try:
            payload: Any = response.json()
            return OAuthCredentialBundle.model_validate(payload)
        except (ValueError, PydanticValidationError):
            CREDENTIAL_FETCHES.labels(outcome="malformed").inc()
            # Validation errors echo input values, which are tokens
            raise CredentialUnavailableError(
                "Credential broker returned a malformed bundle"
            ) from None

    def _denied(
        self, response: httpx.Response, account_tool_instance_id: str
    ) -> CredentialUnavailableError:
        reason = f"broker returned {response.status_code}"
        connection_id = None
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            reason = str(payload.get("error") or reason)
            connection_id = payload.get("connectionId")

        logger.warning(
            "credential_fetch_denied",
            account_tool_instance_id=account_tool_instance_id,
            status_code=response.status_code,
            connection_id=connection_id,
            reason=reason,
        )
        message = f"Credentials unavailable: {reason}"
        if connection_id:
            message = f"Credentials unavailable for connection '{connection_id}': {reason}"
        return CredentialUnavailableError(message, connection_id=connection_id)
