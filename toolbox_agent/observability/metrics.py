"""Prometheus metrics for the toolbox agent.

Provides metrics for deployments, container runtime calls, credential
fetches, discovery probes and heartbeats.
"""

from prometheus_client import Counter, Gauge, Histogram

# Orchestration metrics
DEPLOY_COUNT = Counter(
    "toolbox_agent_deploy_total",
    "Total number of deploy requests processed",
    labelnames=["container_type", "transport", "outcome"],
)

DEPLOY_LATENCY = Histogram(
    "toolbox_agent_deploy_latency_seconds",
    "Deploy latency in seconds",
    labelnames=["container_type"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

TEARDOWN_COUNT = Counter(
    "toolbox_agent_teardown_total",
    "Total number of teardown requests processed",
    labelnames=["outcome"],
)

ROLLBACK_COUNT = Counter(
    "toolbox_agent_rollback_total",
    "Containers removed because a deploy or refresh failed part-way",
    labelnames=["operation"],
)

# Runtime metrics
RUNTIME_RETRIES = Counter(
    "toolbox_agent_runtime_retries_total",
    "Container runtime calls retried after a transient error",
    labelnames=["operation"],
)

# Credential metrics
CREDENTIAL_FETCHES = Counter(
    "toolbox_agent_credential_fetch_total",
    "Credential bundle fetches from the broker",
    labelnames=["outcome"],
)

CREDENTIAL_REFRESHES = Counter(
    "toolbox_agent_credential_refresh_total",
    "Credential refreshes applied to running instances",
    labelnames=["trigger", "outcome"],
)

# Discovery metrics
PROBE_COUNT = Counter(
    "toolbox_agent_probe_total",
    "MCP discovery probes executed",
    labelnames=["transport", "outcome"],
)

PROBE_LATENCY = Histogram(
    "toolbox_agent_probe_latency_seconds",
    "MCP discovery probe latency in seconds",
    labelnames=["transport"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Health metrics
INSTANCES = Gauge(
    "toolbox_agent_instances",
    "Managed instances by derived health status",
    labelnames=["health"],
)

HEARTBEAT_FAILURES = Counter(
    "toolbox_agent_heartbeat_failures_total",
    "Heartbeats that could not be delivered to the control plane",
)


def setup_metrics() -> None:
    """Initialize metrics configuration.

    Metrics register themselves with the default registry when defined;
    this hook pre-populates the health gauge so every status is exported.
    """
    for health in ("starting", "healthy", "degraded", "unhealthy", "stopping", "stopped"):
        INSTANCES.labels(health=health).set(0)
