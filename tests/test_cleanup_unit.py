from __future__ import annotations

import asyncio
import logging
from typing import List

import pytest

from reelscan.services.cleanup import Borrowed, CleanupCoordinator, Owned, ResourceHandle


@pytest.mark.unit
@pytest.mark.asyncio
async def test_drain_runs_each_action_once_in_reverse_order() -> None:
    order: List[str] = []
    cleanup = CleanupCoordinator("test")

    async def release_server() -> None:
        order.append("server")

    cleanup.push(lambda: order.append("page"))
    cleanup.push(lambda: order.append("listeners"))
    cleanup.push(release_server)

    await cleanup.drain()
    await cleanup.drain()

    assert order == ["server", "listeners", "page"]
    assert cleanup.drained


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_action_does_not_stop_the_others(caplog: pytest.LogCaptureFixture) -> None:
    released: List[str] = []
    cleanup = CleanupCoordinator("test")

    def broken() -> None:
        raise RuntimeError("page already gone")

    cleanup.push(lambda: released.append("first"))
    cleanup.push(broken)
    cleanup.push(lambda: released.append("last"))

    with caplog.at_level(logging.WARNING, logger="reelscan.cleanup"):
        await cleanup.drain()

    assert released == ["last", "first"]
    assert "page already gone" in caplog.text


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_does_not_mask_primary_error() -> None:
    released: List[str] = []

    def broken() -> None:
        raise RuntimeError("cleanup failure")

    with pytest.raises(ValueError, match="primary"):
        async with CleanupCoordinator("test") as cleanup:
            cleanup.push(lambda: released.append("page"))
            cleanup.push(broken)
            raise ValueError("primary")

    assert released == ["page"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_push_after_drain_is_rejected() -> None:
    cleanup = CleanupCoordinator("test")
    await cleanup.drain()
    with pytest.raises(RuntimeError):
        cleanup.push(lambda: None)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resource_handle_releases_once() -> None:
    calls: List[int] = []
    handle = ResourceHandle(resource="page", _release=lambda: calls.append(1))

    await handle.release()
    await handle.release()

    assert calls == [1]
    assert handle.released


@pytest.mark.unit
def test_ownership_tags_are_explicit() -> None:
    assert Owned("browser").owned
    assert not Borrowed("browser").owned
    assert Owned("browser") != Borrowed("browser")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancellation_mid_drain_still_runs_remaining_actions() -> None:
    released: List[str] = []
    stopping = asyncio.Event()
    cleanup = CleanupCoordinator("test")

    async def slow_server_stop() -> None:
        stopping.set()
        await asyncio.sleep(5)
        released.append("server")

    cleanup.push(lambda: released.append("page"))
    cleanup.push(slow_server_stop)

    draining = asyncio.ensure_future(cleanup.drain())
    await stopping.wait()
    draining.cancel()

    with pytest.raises(asyncio.CancelledError):
        await draining
    assert released == ["page"]
    assert cleanup.drained
