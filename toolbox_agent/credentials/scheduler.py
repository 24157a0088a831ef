"""Background scheduler for proactive credential refresh."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from toolbox_agent.errors import InstanceNotFoundError
from toolbox_agent.observability.logging import get_logger
from toolbox_agent.observability.metrics import CREDENTIAL_REFRESHES
from toolbox_agent.registry.models import utc_now

logger = get_logger(__name__)

# Runs one refresh and returns the delay until the next one
RefreshCallback = Callable[[str], Awaitable[float]]


class CredentialRefreshScheduler:
    """Refreshes each instance's credentials when they come due.

    Schedules live in memory only. Failed refreshes are retried at the
    floor interval; the previous credentials stay in place meanwhile.
    """

    def __init__(
        self,
        refresh: RefreshCallback,
        check_interval_seconds: float = 5.0,
        retry_delay_seconds: float = 900.0,
    ) -> None:
        """Initialize scheduler.

        Args:
            refresh: Coroutine performing a locked refresh of one instance
            check_interval_seconds: How often to look for due refreshes
            retry_delay_seconds: Delay before retrying a failed refresh
        """
        self._refresh = refresh
        self._check_interval_seconds = check_interval_seconds
        self._retry_delay_seconds = retry_delay_seconds
        self._due: dict[str, datetime] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._running = False
        self._poll_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the refresh loop."""
        if self._running:
            logger.warning("credential_scheduler_already_running")
            return

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())

        logger.info(
            "credential_scheduler_started",
            check_interval_seconds=self._check_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop the refresh loop."""
        if not self._running:
            return

        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        in_flight = list(self._in_flight.values())
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)

        logger.info("credential_scheduler_stopped")

    def schedule(self, instance_name: str, delay_seconds: float, now: datetime | None = None) -> datetime:
        """Schedule (or reschedule) an instance's next refresh."""
        due_at = (now or utc_now()) + timedelta(seconds=max(0.0, delay_seconds))
        self._due[instance_name] = due_at
        logger.debug(
            "credential_refresh_scheduled",
            instance_name=instance_name,
            due_at=due_at.isoformat(),
        )
        return due_at

    def cancel(self, instance_name: str) -> bool:
        """Drop an instance's schedule. Returns True if one existed."""
        return self._due.pop(instance_name, None) is not None

    def due_at(self, instance_name: str) -> datetime | None:
        """When an instance is next due, if scheduled."""
        return self._due.get(instance_name)

    def due(self, now: datetime | None = None) -> list[str]:
        """Instance names whose refresh is due, earliest first."""
        current = now or utc_now()
        return [
            name
            for name, due_at in sorted(self._due.items(), key=lambda item: item[1])
            if due_at <= current
        ]

    def is_refreshing(self, instance_name: str) -> bool:
        """Whether a refresh of the instance is in flight."""
        return instance_name in self._in_flight

    def launch_due(self, now: datetime | None = None) -> list[asyncio.Task]:
        """Start one refresh task per due instance.

        Instances refresh in parallel; one waiting on a slow broker never
        delays another. An instance already refreshing is not started twice.

        Returns:
            The tasks started
        """
        tasks: list[asyncio.Task] = []
        for name in self.due(now):
            if name in self._in_flight:
                continue
            # Popped first so a concurrent reschedule by the refresh itself wins
            self._due.pop(name, None)
            task = asyncio.create_task(self._refresh_one(name), name=f"credential-refresh-{name}")
            self._in_flight[name] = task
            task.add_done_callback(lambda _t, n=name: self._in_flight.pop(n, None))
            tasks.append(task)
        return tasks

    async def run_due(self, now: datetime | None = None) -> int:
        """Refresh every due instance once and wait for all of them.

        Returns:
            Number of refreshes attempted
        """
        tasks = self.launch_due(now)
        await asyncio.gather(*tasks)
        return len(tasks)

    async def _refresh_one(self, name: str) -> None:
        try:
            delay = await self._refresh(name)
        except InstanceNotFoundError:
            logger.debug("credential_refresh_instance_gone", instance_name=name)
            return
        except Exception as e:
            CREDENTIAL_REFRESHES.labels(trigger="scheduled", outcome="failure").inc()
            logger.warning(
                "scheduled_credential_refresh_failed",
                instance_name=name,
                error=str(e),
                error_type=type(e).__name__,
                retry_in_seconds=self._retry_delay_seconds,
            )
            self.schedule(name, self._retry_delay_seconds)
            return
        CREDENTIAL_REFRESHES.labels(trigger="scheduled", outcome="success").inc()
        if name not in self._due:
            self.schedule(name, delay)

    async def _poll_loop(self) -> None:
        """Background loop for due refreshes."""
        while self._running:
            try:
                self.launch_due()
            except Exception as e:
                logger.error("credential_scheduler_loop_error", error=str(e))

            await asyncio.sleep(self._check_interval_seconds)
