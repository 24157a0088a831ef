"""Root settings model for toolbox agent configuration."""

from typing import Any, Literal

from pydantic import Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from toolbox_agent.config.models.agent import AgentConfig
from toolbox_agent.config.models.api import APIConfig
from toolbox_agent.config.models.credentials import CredentialsConfig
from toolbox_agent.config.models.deploy import DeployConfig
from toolbox_agent.config.models.discovery import DiscoveryConfig
from toolbox_agent.config.models.health import HealthConfig
from toolbox_agent.config.models.observability import ObservabilityConfig
from toolbox_agent.config.models.runtime import RuntimeConfig

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Module-level variable to store TOML config for settings source
_toml_config: dict[str, Any] = {}


def set_toml_config(config: dict[str, Any]) -> None:
    """Set the TOML configuration to be used by Settings."""
    global _toml_config
    _toml_config = config


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that reads from TOML configuration."""

    def get_field_value(
        self, field: Any, field_name: str  # noqa: ARG002
    ) -> tuple[Any, str, bool]:
        """Get field value from TOML config."""
        value = _toml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        """Return the TOML config values."""
        return _toml_config.copy()


class Settings(BaseSettings):
    """Root configuration object containing all nested configuration sections.

    Configuration is loaded in this order:
    1. Pydantic model defaults (in code)
    2. config/default.toml (base configuration)
    3. config/{TOOLBOX_AGENT_ENV}.toml (environment overrides)
    4. config/local.toml (host overrides)
    5. TOOLBOX_AGENT_* environment variables (runtime overrides)
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLBOX_AGENT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="toolbox-agent", description="Application name for logging/tracing")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: LogLevel = Field(default="INFO", description="Logging level")
    control_plane_token: SecretStr | None = Field(
        default=None,
        description="Bearer token for broker and heartbeat calls (env only)",
    )

    api: APIConfig = Field(default_factory=APIConfig, description="API server configuration")
    agent: AgentConfig = Field(default_factory=AgentConfig, description="Agent identity")
    runtime: RuntimeConfig = Field(
        default_factory=RuntimeConfig,
        description="Container runtime client configuration",
    )
    credentials: CredentialsConfig = Field(
        default_factory=CredentialsConfig,
        description="Credential broker and refresh configuration",
    )
    deploy: DeployConfig = Field(
        default_factory=DeployConfig,
        description="Deployment validation and defaults",
    )
    discovery: DiscoveryConfig = Field(
        default_factory=DiscoveryConfig,
        description="MCP discovery probing configuration",
    )
    health: HealthConfig = Field(
        default_factory=HealthConfig,
        description="Health fusion and heartbeat configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include TOML config.

        Priority order (highest to lowest):
        1. init_settings (constructor arguments)
        2. env_settings (TOOLBOX_AGENT_* environment variables)
        3. toml_settings (config/*.toml files)
        4. (defaults from model)
        """
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )
