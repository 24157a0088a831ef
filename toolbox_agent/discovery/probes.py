"""Transport-specific MCP probes.

Each probe performs the MCP initialize handshake and lists the
capabilities the server exposes, returning a CapabilitySnapshot.
"""

import json
from typing import Any, Protocol

import mcp.types as types
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.websocket import websocket_client
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from toolbox_agent import __version__
from toolbox_agent.containers.models import ContainerInfo
from toolbox_agent.registry.models import CapabilitySnapshot, ManagedInstance, TransportType, utc_now

CLIENT_NAME = "toolbox-agent"

_INITIALIZE_ID = 1
_LIST_IDS = {"tools/list": 2, "resources/list": 3, "prompts/list": 4}


class ProbeError(Exception):
    """Raised when a probe completes but the server did not answer properly."""


class Probe(Protocol):
    """A discovery probe for one transport."""

    async def probe(self, instance: ManagedInstance) -> CapabilitySnapshot: ...


class ExecRuntime(Protocol):
    """Runtime operations used by the stdio probe."""

    async def inspect(self, name_or_id: str) -> ContainerInfo | None: ...

    async def exec_stdio(
        self,
        name_or_id: str,
        command: list[str],
        stdin: bytes,
        timeout: float | None = None,
    ) -> tuple[bytes, bytes]: ...


def _dump_items(items: list[BaseModel]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]


class StdioProbe:
    """Probe a stdio server by running its command once in the container.

    The handshake and list requests are written as newline-delimited
    JSON-RPC; stdin is then closed so the short-lived process exits.
    """

    def __init__(self, runtime: ExecRuntime, protocol_version: str, timeout: float) -> None:
        self._runtime = runtime
        self._protocol_version = protocol_version
        self._timeout = timeout

    def build_requests(self) -> bytes:
        """Serialized handshake followed by the list requests."""
        messages: list[dict[str, Any]] = [
            {
                "jsonrpc": "2.0",
                "id": _INITIALIZE_ID,
                "method": "initialize",
                "params": {
                    "protocolVersion": self._protocol_version,
                    "capabilities": {},
                    "clientInfo": {"name": CLIENT_NAME, "version": __version__},
                },
            },
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
        ]
        for method, request_id in _LIST_IDS.items():
            messages.append({"jsonrpc": "2.0", "id": request_id, "method": method, "params": {}})
        return b"".join(json.dumps(m).encode() + b"\n" for m in messages)

    async def probe(self, instance: ManagedInstance) -> CapabilitySnapshot:
        info = await self._runtime.inspect(instance.instance_name)
        if info is None:
            raise ProbeError(f"Container '{instance.instance_name}' not found")
        command = info.entrypoint + info.command
        if not command:
            raise ProbeError("Container has no command to probe")

        stdout, _stderr = await self._runtime.exec_stdio(
            instance.instance_name,
            command,
            self.build_requests(),
            timeout=self._timeout,
        )
        return self.parse_output(stdout)

    def parse_output(self, stdout: bytes) -> CapabilitySnapshot:
        """Turn the server's stdout into a snapshot.

        Non-JSON lines (server logging) are skipped. List requests the
        server rejects count as empty.
        """
        results: dict[int, dict[str, Any]] = {}
        for line in stdout.decode("utf-8", errors="replace").splitlines():
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                message = types.JSONRPCMessage.model_validate_json(line).root
            except PydanticValidationError:
                continue
            if isinstance(message, types.JSONRPCResponse) and isinstance(message.id, int):
                results[message.id] = message.result

        if _INITIALIZE_ID not in results:
            raise ProbeError("Server did not answer initialize")

        init = types.InitializeResult.model_validate(results[_INITIALIZE_ID])
        tools = types.ListToolsResult.model_validate(
            results.get(_LIST_IDS["tools/list"], {"tools": []})
        )
        resources = types.ListResourcesResult.model_validate(
            results.get(_LIST_IDS["resources/list"], {"resources": []})
        )
        prompts = types.ListPromptsResult.model_validate(
            results.get(_LIST_IDS["prompts/list"], {"prompts": []})
        )

        return CapabilitySnapshot(
            tools=_dump_items(list(tools.tools)),
            resources=_dump_items(list(resources.resources)),
            prompts=_dump_items(list(prompts.prompts)),
            probed_at=utc_now(),
            transport_type=TransportType.STDIO,
            server_info=init.serverInfo.model_dump(mode="json", exclude_none=True),
            protocol_version=str(init.protocolVersion),
        )


class SessionProbe:
    """Probe a network server through an MCP client session."""

    def __init__(self, transport: TransportType, host: str, timeout: float) -> None:
        self._transport = transport
        self._host = host
        self._timeout = timeout

    def url_for(self, instance: ManagedInstance) -> str:
        """Endpoint URL on the published host port."""
        port = instance.host_port
        if port is None:
            raise ProbeError(f"Instance '{instance.instance_name}' has no published port")
        scheme = "ws" if self._transport == TransportType.WEBSOCKET else "http"
        return f"{scheme}://{self._host}:{port}{instance.endpoint_path or '/'}"

    def _connect(self, url: str) -> Any:
        if self._transport == TransportType.WEBSOCKET:
            return websocket_client(url)
        return sse_client(url, timeout=self._timeout, sse_read_timeout=self._timeout)

    async def probe(self, instance: ManagedInstance) -> CapabilitySnapshot:
        url = self.url_for(instance)
        client_info = types.Implementation(name=CLIENT_NAME, version=__version__)

        async with self._connect(url) as streams:
            read_stream, write_stream = streams[0], streams[1]
            async with ClientSession(read_stream, write_stream, client_info=client_info) as session:
                init = await session.initialize()
                caps = init.capabilities

                tools: list[dict[str, Any]] = []
                resources: list[dict[str, Any]] = []
                prompts: list[dict[str, Any]] = []
                if caps.tools is not None:
                    tools = _dump_items(list((await session.list_tools()).tools))
                if caps.resources is not None:
                    resources = _dump_items(list((await session.list_resources()).resources))
                if caps.prompts is not None:
                    prompts = _dump_items(list((await session.list_prompts()).prompts))

        return CapabilitySnapshot(
            tools=tools,
            resources=resources,
            prompts=prompts,
            probed_at=utc_now(),
            transport_type=self._transport,
            server_info=init.serverInfo.model_dump(mode="json", exclude_none=True),
            protocol_version=str(init.protocolVersion),
        )
