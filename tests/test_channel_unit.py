from __future__ import annotations

import asyncio
from typing import List

import pytest
from playwright.async_api import Error as PlaywrightError

from reelscan.schemas import LogLevel
from reelscan.services.channel import BrowserLog, RemoteChannel
from reelscan.services.errors import RemoteOperationError, RemotePageError
from reelscan.services.protocol import GET_STATIC_COMPOSITIONS, SET_BUNDLE_MODE

from stubs import StubBrowser, StubPage, make_composition


class PageErrorPayload:
    def __init__(self, message: str, stack: str) -> None:
        self.message = message
        self.stack = stack


class ConsolePayload:
    def __init__(self, text: str, kind: str) -> None:
        self.text = text
        self.type = kind
        self.location = {"url": "http://127.0.0.1/bundle.js", "lineNumber": 3, "columnNumber": 1}


def _page(**options: object) -> StubPage:
    return StubPage(StubBrowser(), **options)  # type: ignore[arg-type]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_returns_remote_value() -> None:
    page = _page(compositions=[make_composition("intro")])
    channel = RemoteChannel(page)
    disarm = channel.arm()

    result = await channel.send(GET_STATIC_COMPOSITIONS)

    assert result[0]["id"] == "intro"
    disarm()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_remote_throw_is_attributed_to_the_call() -> None:
    page = _page(mode_error="setBundleMode exploded")
    channel = RemoteChannel(page)
    channel.arm()

    with pytest.raises(RemoteOperationError) as excinfo:
        await channel.send(SET_BUNDLE_MODE, [{"type": "evaluation"}])

    assert excinfo.value.operation == SET_BUNDLE_MODE.name
    assert excinfo.value.remote_message == "setBundleMode exploded"
    assert "bundle.js" in (excinfo.value.stack or "")
    assert not channel.faulted


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_entry_point_is_an_operation_error() -> None:
    channel = RemoteChannel(_page())
    channel.arm()

    with pytest.raises(RemoteOperationError, match="is not a function"):
        await channel.send("remotion_doesNotExist")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transport_error_becomes_operation_error() -> None:
    page = _page()

    async def broken_evaluate(script: str, arg: object = None) -> object:
        raise PlaywrightError("Target page, context or browser has been closed")

    page.evaluate = broken_evaluate  # type: ignore[assignment]
    channel = RemoteChannel(page)
    channel.arm()

    with pytest.raises(RemoteOperationError, match="has been closed"):
        await channel.send(GET_STATIC_COMPOSITIONS)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_page_fault_rejects_pending_and_later_calls() -> None:
    page = _page(hang_query=True)
    channel = RemoteChannel(page)
    channel.arm()

    pending = asyncio.ensure_future(channel.send(GET_STATIC_COMPOSITIONS))
    await asyncio.sleep(0.01)
    assert not pending.done()

    page.emit("pageerror", PageErrorPayload("Unhandled rejection in timer", "Error: late\n    at tick"))

    with pytest.raises(RemotePageError, match="Unhandled rejection in timer") as excinfo:
        await asyncio.wait_for(pending, timeout=1)
    assert excinfo.value.stack.startswith("Error: late")

    with pytest.raises(RemotePageError):
        await channel.send(SET_BUNDLE_MODE, [{"type": "evaluation"}])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_first_fault_wins() -> None:
    page = _page()
    channel = RemoteChannel(page)
    channel.arm()

    page.emit("pageerror", PageErrorPayload("first", ""))
    page.emit("crash")

    with pytest.raises(RemotePageError, match="first"):
        channel.raise_if_faulted()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_crash_is_a_page_fault() -> None:
    page = _page(hang_query=True)
    channel = RemoteChannel(page)
    channel.arm()

    pending = asyncio.ensure_future(channel.send(GET_STATIC_COMPOSITIONS))
    await asyncio.sleep(0.01)
    page.emit("crash")

    with pytest.raises(RemotePageError, match="crashed"):
        await asyncio.wait_for(pending, timeout=1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_calls_are_serialized() -> None:
    page = _page()
    channel = RemoteChannel(page)
    channel.arm()

    await asyncio.gather(*(channel.send(GET_STATIC_COMPOSITIONS) for _ in range(5)))

    assert page.max_in_flight == 1
    assert page.calls.count(GET_STATIC_COMPOSITIONS.name) == 5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disarm_removes_listeners_and_ignores_late_faults() -> None:
    page = _page()
    channel = RemoteChannel(page)
    disarm = channel.arm()
    assert page.listener_count() == 3

    disarm()
    page.emit("pageerror", PageErrorPayload("after teardown", ""))

    assert page.listener_count() == 0
    assert not channel.faulted


@pytest.mark.unit
@pytest.mark.asyncio
async def test_console_messages_reach_callback() -> None:
    logs: List[BrowserLog] = []
    page = _page()
    channel = RemoteChannel(page, log_level=LogLevel.verbose, on_browser_log=logs.append)
    channel.arm()

    page.emit("console", ConsolePayload("registry populated", "log"))

    assert logs == [
        BrowserLog(
            text="registry populated",
            type="log",
            location={"url": "http://127.0.0.1/bundle.js", "lineNumber": 3, "columnNumber": 1},
        )
    ]
