"""Tests for per-instance locks."""

import asyncio

import pytest

from tests.conftest import OWNER
from tests.fakes import deploy_request
from toolbox_agent.bootstrap import AgentComponents
from toolbox_agent.orchestration.locks import InstanceLocks


class TestInstanceLocks:
    """Tests for InstanceLocks."""

    @pytest.mark.asyncio
    async def test_same_name_serialized(self) -> None:
        locks = InstanceLocks()
        order: list[str] = []
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first() -> None:
            async with locks.instance("svc"):
                entered.set()
                await release.wait()
                order.append("first")

        async def second() -> None:
            async with locks.instance("svc"):
                order.append("second")

        t1 = asyncio.create_task(first())
        await entered.wait()
        t2 = asyncio.create_task(second())
        await asyncio.sleep(0)
        assert order == []
        release.set()
        await asyncio.gather(t1, t2)

        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_lock_dropped_once_released(self) -> None:
        """Names that were operated on once do not accumulate."""
        locks = InstanceLocks()
        for i in range(50):
            async with locks.instance(f"svc-{i}"):
                assert locks.is_locked(f"svc-{i}")

        assert len(locks) == 0
        assert not locks.is_locked("svc-0")

    @pytest.mark.asyncio
    async def test_lock_kept_while_waiter_pending(self) -> None:
        locks = InstanceLocks()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks.instance("svc"):
                entered.set()
                await release.wait()

        async def waiter() -> None:
            async with locks.instance("svc"):
                pass

        t1 = asyncio.create_task(holder())
        await entered.wait()
        t2 = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        release.set()
        await t1
        assert len(locks) == 1

        await t2
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_releases_entry(self) -> None:
        locks = InstanceLocks()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks.instance("svc"):
                entered.set()
                await release.wait()

        async def waiter() -> None:
            async with locks.instance("svc"):
                pass

        t1 = asyncio.create_task(holder())
        await entered.wait()
        t2 = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        t2.cancel()
        with pytest.raises(asyncio.CancelledError):
            await t2
        release.set()
        await t1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_no_locks_left_after_deploy_and_teardown(
        self, components: AgentComponents
    ) -> None:
        """Deploying and tearing down instances leaves no lock entries."""
        locks = components.orchestrator._locks
        for name in ("svc-a", "svc-b"):
            await components.orchestrator.deploy(deploy_request(name=name))
            await components.orchestrator.teardown(name, OWNER)

        assert len(locks) == 0
