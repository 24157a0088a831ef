"""Discovery state per instance."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from toolbox_agent.registry.models import CapabilitySnapshot


class DiscoveryState(str, Enum):
    """Protocol-level liveness of one MCP server."""

    PENDING = "pending"
    """No probe has completed yet."""

    DISCOVERED = "discovered"
    """Last probe succeeded."""

    STALE = "stale"
    """Recent probes failed; capabilities retained but flagged."""

    UNREACHABLE = "unreachable"
    """Failure streak reached the threshold."""


class ProbeState(BaseModel):
    """Rolling discovery state for one instance."""

    state: DiscoveryState = DiscoveryState.PENDING
    consecutive_failures: int = 0
    snapshot: CapabilitySnapshot | None = None
    last_probe_at: datetime | None = None
    last_success_at: datetime | None = None
    last_latency_ms: float | None = None
    last_error: str | None = None

    def record_success(
        self, snapshot: CapabilitySnapshot, at: datetime, latency_ms: float
    ) -> None:
        """Apply a successful probe: capabilities replaced, streak reset."""
        self.state = DiscoveryState.DISCOVERED
        self.consecutive_failures = 0
        self.snapshot = snapshot
        self.last_probe_at = at
        self.last_success_at = at
        self.last_latency_ms = latency_ms
        self.last_error = None

    def record_failure(self, error: str, at: datetime, threshold: int) -> None:
        """Apply a failed probe.

        One failure makes a discovered server stale; threshold consecutive
        failures make any server unreachable.
        """
        self.consecutive_failures += 1
        self.last_probe_at = at
        self.last_latency_ms = None
        self.last_error = error
        if self.consecutive_failures >= threshold:
            self.state = DiscoveryState.UNREACHABLE
        elif self.state == DiscoveryState.DISCOVERED:
            self.state = DiscoveryState.STALE
