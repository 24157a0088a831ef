"""In-memory stand-ins for the container runtime and discovery probes."""

from __future__ import annotations

import itertools
import json
from typing import Any

from toolbox_agent.configuration.models import DeployRequest
from toolbox_agent.containers.models import ContainerInfo, ContainerSpec
from toolbox_agent.errors import (
    ContainerAlreadyExistsError,
    RuntimeFatalError,
    RuntimeTransientError,
)
from toolbox_agent.registry.models import CapabilitySnapshot, ManagedInstance, TransportType, utc_now


class FakeRuntime:
    """Container runtime double keyed by container name.

    Failures are injected per operation through ``fail_on``; each entry
    is raised once and then removed.
    """

    supports_live_env_update = False

    def __init__(self) -> None:
        self.containers: dict[str, ContainerInfo] = {}
        self.specs: dict[str, ContainerSpec] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, BaseException] = {}
        self.missing_images: set[str] = set()
        self.fail_list = False
        self.stdio_output = b""
        self._ids = itertools.count(1)

    def _maybe_fail(self, operation: str) -> None:
        error = self.fail_on.pop(operation, None)
        if error is not None:
            raise error

    def _find(self, name_or_id: str) -> ContainerInfo | None:
        if name_or_id in self.containers:
            return self.containers[name_or_id]
        for info in self.containers.values():
            if info.id == name_or_id:
                return info
        return None

    def add(self, info: ContainerInfo) -> None:
        """Place a container in the runtime without going through create."""
        self.containers[info.name] = info

    async def list(self, labels: dict[str, str] | None = None) -> list[ContainerInfo]:
        self.calls.append(("list", ""))
        if self.fail_list:
            raise RuntimeTransientError("daemon unavailable")
        return [
            info.model_copy(deep=True)
            for info in self.containers.values()
            if all(info.labels.get(k) == v for k, v in (labels or {}).items())
        ]

    async def inspect(self, name_or_id: str) -> ContainerInfo | None:
        self._maybe_fail("inspect")
        info = self._find(name_or_id)
        return info.model_copy(deep=True) if info else None

    async def create(self, image_ref: str, name: str, spec: ContainerSpec) -> ContainerInfo:
        self.calls.append(("create", name))
        self._maybe_fail("create")
        if image_ref in self.missing_images:
            raise RuntimeFatalError(f"pull access denied for {image_ref}")
        existing = self.containers.get(name)
        if existing is not None:
            if existing.running:
                raise ContainerAlreadyExistsError(f"Container '{name}' is already running")
            del self.containers[name]

        info = ContainerInfo(
            id=f"c{next(self._ids):04d}",
            name=name,
            status="created",
            image=image_ref,
            labels=dict(spec.labels),
            env=dict(spec.env),
            ports=dict(spec.ports),
            command=list(spec.command or ["serve"]),
            stdin_open=spec.stdin_open,
            created=utc_now(),
        )
        self.containers[name] = info
        self.specs[name] = spec
        return info.model_copy(deep=True)

    async def start(self, name_or_id: str) -> None:
        self.calls.append(("start", name_or_id))
        self._maybe_fail("start")
        info = self._find(name_or_id)
        if info is None:
            raise RuntimeFatalError(f"No such container: {name_or_id}")
        info.status = "running"

    async def stop(self, name_or_id: str, timeout: int | None = None) -> None:
        self.calls.append(("stop", name_or_id))
        self._maybe_fail("stop")
        info = self._find(name_or_id)
        if info is not None:
            info.status = "exited"

    async def remove(self, name_or_id: str, force: bool = False) -> None:
        self.calls.append(("remove", name_or_id))
        self._maybe_fail("remove")
        info = self._find(name_or_id)
        if info is not None:
            del self.containers[info.name]

    async def rename(self, name_or_id: str, new_name: str) -> None:
        self.calls.append(("rename", name_or_id))
        self._maybe_fail("rename")
        info = self._find(name_or_id)
        if info is None:
            raise RuntimeFatalError(f"No such container: {name_or_id}")
        del self.containers[info.name]
        info.name = new_name
        self.containers[new_name] = info

    async def exec_stdio(
        self,
        name_or_id: str,
        command: list[str],
        stdin: bytes,
        timeout: float | None = None,
    ) -> tuple[bytes, bytes]:
        self.calls.append(("exec", name_or_id))
        self._maybe_fail("exec")
        return self.stdio_output, b""

    async def close(self) -> None:
        pass


class FakeProbe:
    """Probe double returning a fixed snapshot or raising."""

    def __init__(self, transport: TransportType, tools: list[str] | None = None) -> None:
        self.transport = transport
        self.tools = tools if tools is not None else ["search"]
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def probe(self, instance: ManagedInstance) -> CapabilitySnapshot:
        self.calls.append(instance.instance_name)
        if self.error is not None:
            raise self.error
        return CapabilitySnapshot(
            tools=[{"name": name, "inputSchema": {"type": "object"}} for name in self.tools],
            transport_type=self.transport,
            server_info={"name": "fake-server", "version": "0.1.0"},
            protocol_version="2025-06-18",
        )


def stdio_transcript(tools: list[str], with_initialize: bool = True) -> bytes:
    """Newline-delimited JSON-RPC responses as a stdio server would print them."""
    lines: list[dict[str, Any]] = []
    if with_initialize:
        lines.append(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "result": {
                    "protocolVersion": "2025-06-18",
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "stdio-server", "version": "1.2.3"},
                },
            }
        )
    lines.append(
        {
            "jsonrpc": "2.0",
            "id": 2,
            "result": {
                "tools": [{"name": t, "inputSchema": {"type": "object"}} for t in tools],
            },
        }
    )
    lines.append(
        {"jsonrpc": "2.0", "id": 3, "error": {"code": -32601, "message": "Method not found"}}
    )
    return b"starting server...\n" + b"".join(json.dumps(line).encode() + b"\n" for line in lines)


def deploy_request(name: str = "svc", owner: str = "ati-owner-1", **fields: Any) -> DeployRequest:
    """A deploy request in wire (camelCase) form."""
    payload: dict[str, Any] = {
        "dockerImageUrl": "example/tool:1.0",
        "instanceNameOnToolbox": name,
        "accountToolInstanceId": owner,
    }
    payload.update(fields)
    return DeployRequest.model_validate(payload)
