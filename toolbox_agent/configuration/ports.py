"""Host port reservation for SSE and WebSocket servers."""

from toolbox_agent.errors import ConflictError
from toolbox_agent.observability.logging import get_logger

logger = get_logger(__name__)


class PortAllocator:
    """Hands out host ports from a reserved range.

    Ports are held per instance name, both by running instances and by
    deploys still in flight. All methods are synchronous, so a check and
    its reservation never interleave with another coroutine.
    """

    def __init__(self, start: int, end: int) -> None:
        """Initialize allocator.

        Args:
            start: First port of the reserved range
            end: Last port of the reserved range (inclusive)
        """
        self._start = start
        self._end = end
        self._held: dict[str, set[int]] = {}

    def holder_of(self, port: int) -> str | None:
        """Instance name holding a port, if any."""
        for name, ports in self._held.items():
            if port in ports:
                return name
        return None

    def ports_of(self, instance_name: str) -> set[int]:
        """Ports held by an instance."""
        return set(self._held.get(instance_name, set()))

    def reserve(self, instance_name: str, port: int | None = None) -> int:
        """Reserve a specific port, or the lowest free port in range.

        Raises:
            ConflictError: Port held by another instance, or range exhausted
        """
        if port is not None:
            holder = self.holder_of(port)
            if holder is not None and holder != instance_name:
                raise ConflictError(
                    f"Host port {port} is already held by instance '{holder}'",
                    port=port,
                )
            self._held.setdefault(instance_name, set()).add(port)
            logger.debug("port_reserved", instance_name=instance_name, port=port)
            return port

        taken = set().union(*self._held.values()) if self._held else set()
        for candidate in range(self._start, self._end + 1):
            if candidate not in taken:
                self._held.setdefault(instance_name, set()).add(candidate)
                logger.debug("port_allocated", instance_name=instance_name, port=candidate)
                return candidate

        raise ConflictError(
            f"No free host port in reserved range {self._start}-{self._end}",
            range_start=self._start,
            range_end=self._end,
        )

    def claim(self, instance_name: str, ports: set[int] | list[int]) -> None:
        """Record ports already in use by an existing instance (rebuild)."""
        for port in ports:
            holder = self.holder_of(port)
            if holder is not None and holder != instance_name:
                logger.warning(
                    "port_claim_conflict",
                    instance_name=instance_name,
                    port=port,
                    holder=holder,
                )
                continue
            self._held.setdefault(instance_name, set()).add(port)

    def release(self, instance_name: str, ports: set[int] | None = None) -> None:
        """Release all (or the given) ports held by an instance."""
        if ports is None:
            self._held.pop(instance_name, None)
            return
        held = self._held.get(instance_name)
        if held is None:
            return
        held.difference_update(ports)
        if not held:
            del self._held[instance_name]
