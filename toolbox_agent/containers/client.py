"""Timeout-bounded container runtime client over the Docker Engine.

Every blocking Docker SDK call runs in a worker thread under an explicit
timeout. Transient engine failures are retried with exponential backoff;
client errors surface immediately with the engine's own message.
"""

from __future__ import annotations

import asyncio
import contextlib
import socket
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, InvalidArgument, NotFound
from docker.models.containers import Container
from docker.utils import parse_repository_tag
from docker.utils.socket import consume_socket_output, demux_adaptor, frames_iter

from toolbox_agent.config.models.runtime import RuntimeConfig
from toolbox_agent.containers.models import ContainerInfo, ContainerSpec
from toolbox_agent.errors import (
    ContainerAlreadyExistsError,
    RuntimeFatalError,
    RuntimeTransientError,
)
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import RUNTIME_RETRIES

logger = get_logger(__name__)

T = TypeVar("T")


class ContainerRuntimeClient:
    """Async facade over the Docker SDK.

    This is the only component that talks to the container daemon.
    """

    supports_live_env_update = False

    def __init__(
        self,
        config: RuntimeConfig,
        docker_client: docker.DockerClient | None = None,
    ) -> None:
        """Initialize the runtime client.

        Args:
            config: Runtime configuration (timeouts, retries)
            docker_client: Pre-built SDK client; created lazily when omitted
        """
        self._config = config
        self._client = docker_client

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            if self._config.base_url:
                self._client = docker.DockerClient(
                    base_url=self._config.base_url,
                    timeout=int(self._config.timeout_seconds),
                )
            else:
                self._client = docker.from_env(timeout=int(self._config.timeout_seconds))
        return self._client

    async def close(self) -> None:
        """Close the SDK client's connection pool."""
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None

    async def _call(
        self,
        operation: str,
        func: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        attempts: int | None = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking SDK call with timeout and retry.

        NotFound is re-raised untouched so callers can apply their own
        semantics to missing containers.
        """
        call_timeout = timeout or self._config.timeout_seconds
        max_attempts = attempts or self._config.max_attempts
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                async with asyncio.timeout(call_timeout):
                    return await asyncio.to_thread(func, *args, **kwargs)
            except NotFound:
                raise
            except APIError as e:
                if not e.is_server_error():
                    raise RuntimeFatalError(e.explanation or str(e), operation=operation) from e
                last_error = e
            except InvalidArgument as e:
                raise RuntimeFatalError(str(e), operation=operation) from e
            except (
                TimeoutError,
                requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                DockerException,
                OSError,
            ) as e:
                last_error = e

            logger.warning(
                "runtime_call_failed",
                operation=operation,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                error=str(last_error) or type(last_error).__name__,
            )
            if attempt < max_attempts - 1:
                RUNTIME_RETRIES.labels(operation=operation).inc()
                await asyncio.sleep(self._config.backoff_base_seconds * 2**attempt)

        raise RuntimeTransientError(
            f"Container runtime {operation} failed after "
            f"{max_attempts} attempts: {last_error}",
            operation=operation,
        )

    async def _get(self, name_or_id: str) -> Container:
        client = self._get_client()
        return await self._call("inspect", client.containers.get, name_or_id)

    async def inspect(self, name_or_id: str) -> ContainerInfo | None:
        """Inspect a container.

        Returns:
            ContainerInfo, or None if no such container exists
        """
        try:
            container = await self._get(name_or_id)
        except NotFound:
            return None
        return to_container_info(container)

    async def list(self, labels: dict[str, str] | None = None) -> list[ContainerInfo]:
        """List containers (including stopped ones) matching all labels."""
        client = self._get_client()
        filters: dict[str, Any] = {}
        if labels:
            filters["label"] = [f"{key}={value}" for key, value in labels.items()]
        containers = await self._call(
            "list",
            client.containers.list,
            all=True,
            filters=filters,
            ignore_removed=True,
        )
        return [to_container_info(c) for c in containers]

    async def create(self, image_ref: str, name: str, spec: ContainerSpec) -> ContainerInfo:
        """Create a container.

        An existing container with the same name is removed first when it
        is in a terminal state. A live one raises ContainerAlreadyExistsError.
        A missing image is pulled once before retrying.
        """
        existing = await self.inspect(name)
        if existing is not None:
            if existing.running:
                raise ContainerAlreadyExistsError(
                    f"Container '{name}' already exists and is {existing.status}",
                    container_id=existing.id,
                )
            logger.info(
                "removing_stale_container",
                name=name,
                container_id=existing.id,
                status=existing.status,
            )
            await self.remove(existing.id, force=True)

        kwargs = _create_kwargs(name, spec)
        try:
            container = await self._create_checked(image_ref, name, kwargs)
        except ImageNotFound:
            logger.info("image_not_found_pulling", image=image_ref)
            await self.pull(image_ref)
            try:
                container = await self._create_checked(image_ref, name, kwargs)
            except NotFound as e:
                raise RuntimeFatalError(e.explanation or str(e), operation="create") from e
        except NotFound as e:
            raise RuntimeFatalError(e.explanation or str(e), operation="create") from e

        logger.info("container_created", name=name, container_id=container.id, image=image_ref)
        return to_container_info(container)

    async def _create_checked(self, image_ref: str, name: str, kwargs: dict[str, Any]) -> Container:
        """Create a container, looking it up by name before each retry.

        A create that timed out or failed with a 5xx may still have created
        the container; it is returned instead of being created twice.
        """
        client = self._get_client()
        for attempt in range(self._config.max_attempts - 1):
            try:
                return await self._call(
                    "create", client.containers.create, image_ref, attempts=1, **kwargs
                )
            except RuntimeTransientError as e:
                logger.warning("container_create_unconfirmed", name=name, error=e.message)
            try:
                container = await self._get(name)
            except NotFound:
                RUNTIME_RETRIES.labels(operation="create").inc()
                await asyncio.sleep(self._config.backoff_base_seconds * 2**attempt)
                continue
            logger.warning("container_created_despite_error", name=name, container_id=container.id)
            return container
        return await self._call("create", client.containers.create, image_ref, attempts=1, **kwargs)

    async def pull(self, image_ref: str) -> None:
        """Pull an image from its registry."""
        client = self._get_client()
        repository, tag = parse_repository_tag(image_ref)
        try:
            await self._call(
                "pull",
                client.images.pull,
                repository,
                tag=tag or "latest",
                timeout=self._config.pull_timeout_seconds,
            )
        except NotFound as e:
            raise RuntimeFatalError(e.explanation or str(e), operation="pull") from e
        logger.info("image_pulled", image=image_ref)

    async def start(self, name_or_id: str) -> None:
        """Start a container."""
        try:
            container = await self._get(name_or_id)
            await self._call("start", container.start)
        except NotFound as e:
            raise RuntimeFatalError(e.explanation or str(e), operation="start") from e
        logger.debug("container_started", container=name_or_id)

    async def stop(self, name_or_id: str, timeout: int | None = None) -> None:
        """Stop a container. A missing container is already stopped."""
        grace = timeout if timeout is not None else self._config.stop_timeout_seconds
        try:
            container = await self._get(name_or_id)
            await self._call(
                "stop",
                lambda: container.stop(timeout=grace),
                timeout=self._config.timeout_seconds + grace,
            )
        except NotFound:
            logger.debug("container_stop_not_found", container=name_or_id)
            return
        logger.debug("container_stopped", container=name_or_id)

    async def remove(self, name_or_id: str, force: bool = False) -> None:
        """Remove a container.

        With force=True a missing container counts as removed.
        """
        try:
            container = await self._get(name_or_id)
            await self._call("remove", lambda: container.remove(force=force))
        except NotFound as e:
            if force:
                logger.debug("container_remove_not_found", container=name_or_id)
                return
            raise RuntimeFatalError(e.explanation or str(e), operation="remove") from e
        logger.debug("container_removed", container=name_or_id)

    async def rename(self, name_or_id: str, new_name: str) -> None:
        """Rename a container."""
        try:
            container = await self._get(name_or_id)
            await self._call("rename", container.rename, new_name)
        except NotFound as e:
            raise RuntimeFatalError(e.explanation or str(e), operation="rename") from e

    async def exec_stdio(
        self,
        name_or_id: str,
        command: list[str],
        stdin: bytes,
        timeout: float | None = None,
    ) -> tuple[bytes, bytes]:
        """Run a short-lived process in a container with stdin piped.

        The payload is written, stdin is closed, and output is collected
        until the process exits or the timeout expires.

        Returns:
            (stdout, stderr)
        """
        api = self._get_client().api
        try:
            created = await self._call(
                "exec_create",
                api.exec_create,
                name_or_id,
                command,
                stdin=True,
                stdout=True,
                stderr=True,
            )
        except NotFound as e:
            raise RuntimeFatalError(e.explanation or str(e), operation="exec_create") from e
        sock = await self._call("exec_start", api.exec_start, created["Id"], socket=True)
        raw = getattr(sock, "_sock", sock)

        try:
            async with asyncio.timeout(timeout or self._config.timeout_seconds):
                return await asyncio.to_thread(_exchange, raw, stdin)
        finally:
            # Unblocks the worker thread when the timeout fired mid-read
            with contextlib.suppress(OSError):
                raw.shutdown(socket.SHUT_RDWR)
            raw.close()


def _exchange(raw: Any, payload: bytes) -> tuple[bytes, bytes]:
    raw.sendall(payload)
    raw.shutdown(socket.SHUT_WR)
    frames = (demux_adaptor(*frame) for frame in frames_iter(raw, tty=False))
    stdout, stderr = consume_socket_output(frames, demux=True)
    return stdout or b"", stderr or b""


def _create_kwargs(name: str, spec: ContainerSpec) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "name": name,
        "environment": dict(spec.env),
        "labels": dict(spec.labels),
        "stdin_open": spec.stdin_open,
    }
    if spec.ports:
        kwargs["ports"] = {
            f"{container_port}/tcp": host_port for container_port, host_port in spec.ports.items()
        }
    if spec.command:
        kwargs["command"] = list(spec.command)
    if spec.memory:
        kwargs["mem_limit"] = spec.memory
    if spec.cpu:
        kwargs["nano_cpus"] = int(spec.cpu * 1_000_000_000)
    if spec.restart_policy and spec.restart_policy != "no":
        kwargs["restart_policy"] = {"Name": spec.restart_policy}
    return kwargs


def to_container_info(container: Container) -> ContainerInfo:
    """Convert an SDK container (inspect-shaped attrs) to ContainerInfo."""
    attrs = container.attrs or {}
    config = attrs.get("Config") or {}
    state = attrs.get("State") or {}
    host_config = attrs.get("HostConfig") or {}

    env: dict[str, str] = {}
    for item in config.get("Env") or []:
        key, _, value = item.partition("=")
        env[key] = value

    ports: dict[int, int] = {}
    for container_port, bindings in (host_config.get("PortBindings") or {}).items():
        if not bindings:
            continue
        host_port = bindings[0].get("HostPort")
        if host_port:
            ports[int(container_port.split("/")[0])] = int(host_port)

    created = None
    if attrs.get("Created"):
        created = _parse_docker_time(attrs["Created"])

    status = state.get("Status") if isinstance(state, dict) else None

    return ContainerInfo(
        id=attrs.get("Id") or container.id or "",
        name=(attrs.get("Name") or container.name or "").lstrip("/"),
        status=status or getattr(container, "status", None) or "unknown",
        image=config.get("Image") or "",
        labels=config.get("Labels") or {},
        env=env,
        ports=ports,
        entrypoint=_as_list(config.get("Entrypoint")),
        command=_as_list(config.get("Cmd")),
        memory=host_config.get("Memory") or None,
        cpu=(host_config.get("NanoCpus") or 0) / 1_000_000_000 or None,
        restart_policy=(host_config.get("RestartPolicy") or {}).get("Name") or None,
        stdin_open=bool(config.get("OpenStdin")),
        created=created,
    )


def _as_list(value: str | list[str] | None) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _parse_docker_time(value: str) -> datetime | None:
    # Docker reports nanosecond precision; fromisoformat accepts microseconds
    head, dot, rest = value.partition(".")
    if dot:
        fraction = "".join(ch for ch in rest if ch.isdigit())
        suffix = rest[len(fraction):]
        value = f"{head}.{fraction[:6]}{suffix}"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
