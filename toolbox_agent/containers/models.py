"""Typed request and response forms for the container runtime."""

from datetime import datetime

from pydantic import BaseModel, Field

RUNNING_STATES = frozenset({"running", "restarting", "paused"})
TERMINAL_STATES = frozenset({"created", "exited", "dead"})


class ContainerSpec(BaseModel):
    """Everything needed to create a container besides image and name.

    Environment values may carry injected credentials, so they are kept
    out of the repr.
    """

    env: dict[str, str] = Field(default_factory=dict, repr=False)
    ports: dict[int, int] = Field(
        default_factory=dict,
        description="Container port to host port (TCP)",
    )
    labels: dict[str, str] = Field(default_factory=dict)
    command: list[str] | None = None
    memory: str | None = Field(default=None, description="Memory limit, e.g. '512m'")
    cpu: float | None = Field(default=None, description="CPU limit in cores")
    restart_policy: str | None = None
    stdin_open: bool = False


class ContainerInfo(BaseModel):
    """Snapshot of a container as reported by the engine."""

    id: str
    name: str
    status: str
    image: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict, repr=False)
    ports: dict[int, int] = Field(default_factory=dict)
    entrypoint: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)
    memory: int | None = Field(default=None, description="Memory limit in bytes")
    cpu: float | None = Field(default=None, description="CPU limit in cores")
    restart_policy: str | None = None
    stdin_open: bool = False
    created: datetime | None = None

    @property
    def running(self) -> bool:
        """Whether the container is in a live state."""
        return self.status in RUNNING_STATES

    @property
    def terminal(self) -> bool:
        """Whether the container exists but is not live."""
        return self.status in TERMINAL_STATES
