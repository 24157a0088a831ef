"""Deploy request validation and normalization."""

import re
from typing import Any

from docker.utils import parse_repository_tag
from pydantic import ValidationError as PydanticValidationError

from toolbox_agent.config.loader import merge_tables
from toolbox_agent.config.models.deploy import ContainerDefaults, DeployConfig
from toolbox_agent.configuration.models import ConfigOverride, DeployRequest, NormalizedConfig
from toolbox_agent.configuration.ports import PortAllocator
from toolbox_agent.containers.labels import ASIDE_SUFFIX, LabelData, build_labels
from toolbox_agent.containers.models import ContainerSpec
from toolbox_agent.errors import ConflictError, ValidationError
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.registry.models import ContainerType, TransportType, utc_now
from toolbox_agent.registry.registry import InstanceRegistry

logger = get_logger(__name__)

# Docker's container name grammar
INSTANCE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,127}$")

TRANSPORT_ALIASES: dict[str, TransportType] = {
    "stdio": TransportType.STDIO,
    "sse": TransportType.SSE,
    "websocket": TransportType.WEBSOCKET,
    "ws": TransportType.WEBSOCKET,
}

NETWORK_TRANSPORTS = frozenset({TransportType.SSE, TransportType.WEBSOCKET})


class ConfigurationManager:
    """Validates deploy requests into NormalizedConfig.

    Enforces transport rules, merges defaults with caller overrides
    (override wins) and rejects name collisions unless replace is set.
    """

    def __init__(
        self,
        config: DeployConfig,
        agent_name: str,
        credential_prefix: str,
        registry: InstanceRegistry,
        ports: PortAllocator,
    ) -> None:
        """Initialize configuration manager.

        Args:
            config: Deploy defaults and port range
            agent_name: Value for the management label
            credential_prefix: Env prefix reserved for injected credentials
            registry: Registry consulted for name collisions
            ports: Host port allocator
        """
        self._config = config
        self._agent_name = agent_name
        self._credential_prefix = credential_prefix
        self._registry = registry
        self._ports = ports

    @property
    def ports(self) -> PortAllocator:
        """The host port allocator."""
        return self._ports

    async def validate(self, request: DeployRequest) -> NormalizedConfig:
        """Validate and normalize a deploy request.

        Host ports for network transports without an explicit binding are
        left empty; reserve_ports fills them.

        Raises:
            ValidationError: Malformed request or override
            ConflictError: Name already managed and replace not set
        """
        name = request.instance_name_on_toolbox.strip()
        if not INSTANCE_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid instance name '{name}': must match {INSTANCE_NAME_PATTERN.pattern}",
                field="instanceNameOnToolbox",
            )
        if name.endswith(ASIDE_SUFFIX):
            raise ValidationError(
                f"Instance names may not end with '{ASIDE_SUFFIX}'",
                field="instanceNameOnToolbox",
            )

        image = request.docker_image_url.strip()
        if not image:
            raise ValidationError("dockerImageUrl must not be empty", field="dockerImageUrl")

        owner = request.account_tool_instance_id.strip()
        if not owner:
            raise ValidationError(
                "accountToolInstanceId must not be empty",
                field="accountToolInstanceId",
            )

        container_type, transport = self._resolve_transport(request)
        override = self._parse_override(request.base_config_override)
        merged = self._merge_defaults(image, override)

        env: dict[str, str] = merged.get("env", {})
        reserved = [key for key in env if key.startswith(self._credential_prefix)]
        if reserved:
            raise ValidationError(
                f"Environment variables may not use the reserved prefix "
                f"'{self._credential_prefix}'",
                keys=sorted(reserved),
            )

        bindings = dict(override.port_bindings or {})
        for host_port in bindings.values():
            if not 1 <= host_port <= 65535:
                raise ValidationError(f"Invalid host port {host_port}", field="portBindings")

        endpoint_path: str | None = None
        container_port: int | None = None
        stdin_open = False

        if transport == TransportType.STDIO:
            if bindings or override.container_port:
                raise ValidationError(
                    "stdio transport does not take port bindings",
                    field="portBindings",
                )
            if request.mcp_endpoint_path:
                raise ValidationError(
                    "stdio transport does not take an endpoint path",
                    field="mcpEndpointPath",
                )
            stdin_open = True
        elif transport in NETWORK_TRANSPORTS:
            if len(bindings) > 1:
                raise ValidationError(
                    f"{transport.value} transport takes exactly one port binding",
                    field="portBindings",
                )
            if bindings:
                container_port = next(iter(bindings))
                if override.container_port and override.container_port != container_port:
                    raise ValidationError(
                        "containerPort does not match the port binding",
                        field="containerPort",
                    )
            else:
                container_port = override.container_port or self._config.container_port
            endpoint_path = request.mcp_endpoint_path or self._default_endpoint(transport)
            if not endpoint_path.startswith("/"):
                raise ValidationError(
                    "mcpEndpointPath must start with '/'",
                    field="mcpEndpointPath",
                )
        elif request.mcp_endpoint_path:
            raise ValidationError(
                "mcpEndpointPath is only valid for MCP servers",
                field="mcpEndpointPath",
            )

        if await self._registry.contains(name) and not request.replace:
            raise ConflictError(
                f"Instance '{name}' already exists; set replace=true to redeploy",
                instance_name=name,
            )

        connection_ids = _unique(request.oauth_connection_ids)
        scopes = _unique(request.required_scopes)

        labels = build_labels(
            LabelData(
                managed_by=self._agent_name,
                tool_type=container_type.value,
                transport=transport.value if transport != TransportType.NONE else None,
                endpoint_path=endpoint_path,
                account_tool_instance_id=owner,
                agent_id=request.agent_id,
                oauth_connection_ids=connection_ids,
                oauth_scopes=scopes,
                created_at=utc_now(),
            )
        )

        spec = ContainerSpec(
            env=env,
            ports=bindings,
            labels=labels,
            command=merged.get("command"),
            memory=merged.get("memory"),
            cpu=merged.get("cpu"),
            restart_policy=merged.get("restart_policy"),
            stdin_open=stdin_open,
        )

        config = NormalizedConfig(
            instance_name=name,
            image=image,
            account_tool_instance_id=owner,
            agent_id=request.agent_id,
            container_type=container_type,
            transport_type=transport,
            endpoint_path=endpoint_path,
            container_port=container_port,
            port_bindings=bindings,
            oauth_connection_ids=connection_ids,
            required_scopes=scopes,
            replace=request.replace,
            spec=spec,
        )

        logger.debug(
            "deploy_request_validated",
            instance_name=name,
            container_type=container_type.value,
            transport=transport.value,
            port_bindings=bindings,
        )
        return config

    def reserve_ports(self, config: NormalizedConfig) -> NormalizedConfig:
        """Reserve host ports for a validated config.

        Network transports without an explicit binding get the lowest
        free port in the reserved range.

        Raises:
            ConflictError: Port held by another instance or range exhausted
        """
        name = config.instance_name
        bindings = dict(config.port_bindings)

        container_port = config.unbound_port
        if container_port is not None:
            bindings = {container_port: self._ports.reserve(name)}
        else:
            already_held = self._ports.ports_of(name)
            newly_held: set[int] = set()
            try:
                for host_port in bindings.values():
                    self._ports.reserve(name, host_port)
                    if host_port not in already_held:
                        newly_held.add(host_port)
            except ConflictError:
                self._ports.release(name, newly_held)
                raise

        return config.model_copy(
            update={
                "port_bindings": bindings,
                "spec": config.spec.model_copy(update={"ports": bindings}),
            }
        )

    def release_ports(self, instance_name: str) -> None:
        """Release every host port held by an instance."""
        self._ports.release(instance_name)

    def _resolve_transport(self, request: DeployRequest) -> tuple[ContainerType, TransportType]:
        raw_transport = (request.mcp_transport_type or "").strip().lower()
        is_mcp = bool((request.mcp_server_type or "").strip() or raw_transport)
        if not is_mcp:
            return ContainerType.STANDARD_TOOL, TransportType.NONE

        if not raw_transport:
            raise ValidationError(
                "MCP servers require mcpTransportType",
                field="mcpTransportType",
            )
        transport = TRANSPORT_ALIASES.get(raw_transport)
        if transport is None:
            raise ValidationError(
                f"Unsupported MCP transport '{request.mcp_transport_type}'",
                field="mcpTransportType",
                allowed=sorted(TRANSPORT_ALIASES),
            )
        return ContainerType.MCP_SERVER, transport

    def _parse_override(self, raw: dict[str, Any] | None) -> ConfigOverride:
        if not raw:
            return ConfigOverride()
        try:
            return ConfigOverride.model_validate(raw)
        except PydanticValidationError as e:
            problems = [
                {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError("Invalid baseConfigOverride", errors=problems) from None

    def _merge_defaults(self, image: str, override: ConfigOverride) -> dict[str, Any]:
        """Global defaults, then image defaults, then caller override."""
        merged = self._config.defaults.model_dump(exclude_none=True)

        image_defaults = self._image_defaults(image)
        if image_defaults is not None:
            merged = merge_tables(merged, image_defaults.model_dump(exclude_none=True))

        caller = override.model_dump(
            exclude_none=True,
            include={"env", "memory", "cpu", "command", "restart_policy"},
        )
        return merge_tables(merged, caller)

    def _image_defaults(self, image: str) -> ContainerDefaults | None:
        if image in self._config.image_defaults:
            return self._config.image_defaults[image]
        repository, _tag = parse_repository_tag(image)
        return self._config.image_defaults.get(repository)

    def _default_endpoint(self, transport: TransportType) -> str:
        if transport == TransportType.SSE:
            return self._config.sse_endpoint_path
        return self._config.websocket_endpoint_path


def _unique(values: list[str]) -> list[str]:
    """Strip, drop blanks and de-duplicate, keeping first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        value = value.strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)
