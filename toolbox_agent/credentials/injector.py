"""Credential injection into container specs and refresh of running instances.

Credential bundles are never logged, never written to disk, and are
cleared as soon as injection finishes, whether it succeeded or not.
"""

import asyncio
import re
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel

from toolbox_agent.config.models.credentials import CredentialsConfig
from toolbox_agent.containers.labels import ASIDE_SUFFIX, OAUTH_CONNECTION_IDS
from toolbox_agent.containers.models import ContainerInfo, ContainerSpec
from toolbox_agent.credentials.broker import CredentialBroker
from toolbox_agent.credentials.models import OAuthCredentialBundle
from toolbox_agent.errors import InstanceNotFoundError, ToolboxAgentError
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import ROLLBACK_COUNT
from toolbox_agent.registry.models import ManagedInstance, utc_now
from toolbox_agent.registry.registry import InstanceRegistry

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


class RecreateRuntime(Protocol):
    """Runtime operations needed for a graceful recreate."""

    async def create(self, image_ref: str, name: str, spec: ContainerSpec) -> ContainerInfo: ...

    async def start(self, name_or_id: str) -> None: ...

    async def stop(self, name_or_id: str, timeout: int | None = None) -> None: ...

    async def remove(self, name_or_id: str, force: bool = False) -> None: ...

    async def rename(self, name_or_id: str, new_name: str) -> None: ...


class InjectionResult(BaseModel):
    """Enriched spec plus the refresh schedule it implies."""

    spec: ContainerSpec
    providers: list[str]
    expires_at: datetime | None = None
    refresh_delay_seconds: float


def env_var_base(prefix: str, provider_id: str) -> str:
    """Environment variable stem for a provider, e.g. AGENTOPIA_OAUTH_GMAIL."""
    return f"{prefix}{_NON_ALNUM.sub('_', provider_id.upper())}"


def compute_refresh_delay(
    expires_at: datetime | None,
    now: datetime,
    skew_seconds: float,
    floor_seconds: float,
) -> float:
    """Seconds until the next refresh.

    min(expires_at - skew, floor), never negative. Without a declared
    expiry the floor applies.
    """
    if expires_at is None:
        return float(floor_seconds)
    until_refresh = (expires_at - now).total_seconds() - skew_seconds
    return max(0.0, min(until_refresh, float(floor_seconds)))


class CredentialInjector:
    """Fetch, inject and refresh OAuth credentials for managed containers."""

    def __init__(
        self,
        config: CredentialsConfig,
        broker: CredentialBroker,
        runtime: RecreateRuntime,
        registry: InstanceRegistry,
    ) -> None:
        """Initialize injector.

        Args:
            config: Credential configuration
            broker: Credential broker client
            runtime: Container runtime used for refresh recreates
            registry: Instance registry
        """
        self._config = config
        self._broker = broker
        self._runtime = runtime
        self._registry = registry

    @property
    def env_prefix(self) -> str:
        """Prefix shared by every injected credential variable."""
        return self._config.env_prefix

    async def fetch_credentials(
        self,
        agent_id: str | None,
        account_tool_instance_id: str,
        connection_ids: list[str],
        required_scopes: list[str],
    ) -> OAuthCredentialBundle:
        """Fetch a bundle for one injection. Never shared across instances."""
        return await self._broker.fetch(
            agent_id=agent_id,
            account_tool_instance_id=account_tool_instance_id,
            connection_ids=connection_ids,
            scopes=required_scopes,
        )

    def inject(
        self,
        spec: ContainerSpec,
        bundle: OAuthCredentialBundle,
        now: datetime | None = None,
    ) -> InjectionResult:
        """Return a copy of spec with credential variables added.

        The bundle is cleared before this returns.
        """
        try:
            env = {k: v for k, v in spec.env.items() if not k.startswith(self.env_prefix)}
            for provider_id, credential in bundle.credentials.items():
                base = env_var_base(self.env_prefix, provider_id)
                env[f"{base}_ACCESS_TOKEN"] = credential.access_token.get_secret_value()
                if credential.refresh_token is not None:
                    env[f"{base}_REFRESH_TOKEN"] = credential.refresh_token.get_secret_value()
                if credential.expires_at is not None:
                    env[f"{base}_EXPIRES_AT"] = credential.expires_at.isoformat()
                if credential.scopes:
                    env[f"{base}_SCOPES"] = " ".join(credential.scopes)

            expires_at = bundle.earliest_expiry()
            delay = compute_refresh_delay(
                expires_at,
                now or utc_now(),
                self._config.refresh_skew_seconds,
                self._config.refresh_floor_seconds,
            )
            return InjectionResult(
                spec=spec.model_copy(update={"env": env}),
                providers=bundle.providers,
                expires_at=expires_at,
                refresh_delay_seconds=delay,
            )
        finally:
            bundle.clear()

    def refresh_delay_for(self, instance: ManagedInstance, now: datetime | None = None) -> float:
        """Refresh delay for an instance whose tokens expire at a known time."""
        return compute_refresh_delay(
            instance.credentials_expire_at,
            now or utc_now(),
            self._config.refresh_skew_seconds,
            self._config.refresh_floor_seconds,
        )

    async def refresh(
        self,
        instance_name: str,
        connection_ids: list[str] | None = None,
    ) -> tuple[ManagedInstance, float]:
        """Re-fetch credentials and apply them to a running instance.

        Docker cannot change a live container's environment, so the
        container is gracefully recreated with the same name, ports and
        labels. A failed fetch leaves the running container untouched;
        a failed recreate restores the previous container.

        Returns:
            The updated instance and the delay until its next refresh
        """
        instance = await self._registry.get(instance_name)
        if instance is None:
            raise InstanceNotFoundError(instance_name)

        ids = list(connection_ids) if connection_ids is not None else instance.oauth_connection_ids
        bundle = await self.fetch_credentials(
            agent_id=instance.agent_id,
            account_tool_instance_id=instance.account_tool_instance_id,
            connection_ids=ids,
            required_scopes=instance.oauth_scopes,
        )

        labels = dict(instance.spec.labels)
        if ids:
            labels[OAUTH_CONNECTION_IDS] = ",".join(ids)
        else:
            labels.pop(OAUTH_CONNECTION_IDS, None)
        base_spec = instance.spec.model_copy(update={"labels": labels})
        result = self.inject(base_spec, bundle)

        new_container = await self._recreate(instance, result.spec)

        updated = await self._registry.update(
            instance_name,
            container_id=new_container.id,
            oauth_connection_ids=ids,
            spec=base_spec,
            last_oauth_refresh_at=utc_now(),
            credentials_expire_at=result.expires_at,
        )
        if updated is None:
            # Torn down while recreating; the orchestrator lock normally prevents this
            raise InstanceNotFoundError(instance_name)

        logger.info(
            "credentials_refreshed",
            instance_name=instance_name,
            container_id=new_container.id,
            providers=result.providers,
            next_refresh_seconds=result.refresh_delay_seconds,
        )
        return updated, result.refresh_delay_seconds

    async def _recreate(self, instance: ManagedInstance, spec: ContainerSpec) -> ContainerInfo:
        name = instance.instance_name
        aside = f"{name}{ASIDE_SUFFIX}"
        old_id = instance.container_id

        await self._runtime.stop(old_id)
        try:
            await self._runtime.rename(old_id, aside)
        except ToolboxAgentError:
            await self._runtime.start(old_id)
            raise

        new_container: ContainerInfo | None = None
        try:
            new_container = await self._runtime.create(instance.image, name, spec)
            await self._runtime.start(new_container.id)
        except BaseException as e:
            logger.warning(
                "credential_refresh_recreate_failed",
                instance_name=name,
                error=str(e) if isinstance(e, ToolboxAgentError) else type(e).__name__,
            )
            ROLLBACK_COUNT.labels(operation="refresh").inc()
            await asyncio.shield(self._restore(name, aside, old_id, new_container))
            raise

        await self._runtime.remove(old_id, force=True)
        return new_container

    async def _restore(
        self,
        name: str,
        aside: str,
        old_id: str,
        new_container: ContainerInfo | None,
    ) -> None:
        if new_container is not None:
            await self._runtime.remove(new_container.id, force=True)
        await self._runtime.rename(old_id, name)
        await self._runtime.start(old_id)
        logger.info("credential_refresh_rolled_back", instance_name=name, container_id=old_id)
