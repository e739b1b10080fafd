from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, TypeVar, Union

from playwright.async_api import Error as PlaywrightError

from reelscan.schemas import LogLevel
from reelscan.services.errors import RemoteOperationError, RemotePageError
from reelscan.services.protocol import CALL_WRAPPER, READ_GLOBAL, TYPEOF_GLOBAL, RemoteOperation

LOGGER = logging.getLogger("reelscan.channel")

T = TypeVar("T")


@dataclass
class BrowserLog:
    text: str
    type: str
    location: Optional[Dict[str, Any]] = None


BrowserLogCallback = Callable[[BrowserLog], None]


class RemoteChannel:
    """Call functions exposed by the bundle and watch the page for unrelated faults.

    One evaluation is in flight at a time. The first ``pageerror`` or ``crash``
    settles the pending fault, which makes every guarded await on this channel fail
    with :class:`RemotePageError` right away.
    """

    def __init__(
        self,
        page: Any,
        *,
        log_level: LogLevel = LogLevel.info,
        on_browser_log: Optional[BrowserLogCallback] = None,
    ) -> None:
        self._page = page
        self._log_level = log_level
        self._on_browser_log = on_browser_log
        self._lock = asyncio.Lock()
        self._fault: Optional["asyncio.Future[None]"] = None
        self._listeners: Dict[str, Callable[..., None]] = {}
        self.source_map: Optional[object] = None

    @property
    def page(self) -> Any:
        return self._page

    @property
    def faulted(self) -> bool:
        return self._fault is not None and self._fault.done() and not self._fault.cancelled()

    # -- fault listeners --------------------------------------------------------------
    def arm(self) -> Callable[[], None]:
        """Install the page listeners and return the action that removes them."""
        if self._fault is not None:
            raise RuntimeError("Channel is already armed")
        self._fault = asyncio.get_running_loop().create_future()
        self._listeners = {
            "pageerror": self._on_page_error,
            "crash": self._on_crash,
            "console": self._on_console,
        }
        for event, handler in self._listeners.items():
            self._page.on(event, handler)
        return self.disarm

    def disarm(self) -> None:
        listeners, self._listeners = self._listeners, {}
        for event, handler in listeners.items():
            self._page.remove_listener(event, handler)
        fault = self._fault
        if fault is None:
            return
        if fault.done():
            if not fault.cancelled():
                # Mark the exception as retrieved; it was either raised or is moot now.
                fault.exception()
        else:
            fault.cancel()

    def fail(self, error: BaseException) -> None:
        if self._fault is None or self._fault.done():
            return
        LOGGER.debug("Page fault settled: %s", error)
        self._fault.set_exception(error)

    def _on_page_error(self, error: Any) -> None:
        message = getattr(error, "message", None) or str(error)
        stack = getattr(error, "stack", None)
        self.fail(RemotePageError(message, stack, self.source_map))

    def _on_crash(self, *_: Any) -> None:
        self.fail(RemotePageError("The browser page crashed"))

    def _on_console(self, message: Any) -> None:
        log = BrowserLog(
            text=_attr(message, "text"),
            type=_attr(message, "type"),
            location=_attr(message, "location"),
        )
        if self._log_level == LogLevel.verbose:
            LOGGER.debug("[browser:%s] %s", log.type, log.text)
        if self._on_browser_log is not None:
            self._on_browser_log(log)

    def raise_if_faulted(self) -> None:
        if self.faulted:
            assert self._fault is not None
            exc = self._fault.exception()
            if exc is not None:
                raise exc

    # -- exchanges --------------------------------------------------------------------
    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless a page fault settles first."""
        task = asyncio.ensure_future(awaitable)
        if self._fault is None or self._fault.cancelled():
            return await task
        try:
            if not self._fault.done():
                await asyncio.wait({task, self._fault}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self.raise_if_faulted()
        return task.result()

    async def send(
        self,
        operation: Union[RemoteOperation, str],
        args: Sequence[Any] = (),
        frame: Any = None,
    ) -> Any:
        name = str(operation)
        target = frame if frame is not None else self._page
        async with self._lock:
            try:
                envelope = await self.guard(target.evaluate(CALL_WRAPPER, [name, list(args)]))
            except PlaywrightError as exc:
                raise RemoteOperationError(name, _attr(exc, "message") or str(exc)) from exc
        if not isinstance(envelope, dict) or envelope.get("type") not in ("success", "error"):
            raise RemoteOperationError(name, f"Unexpected response from the page: {envelope!r}")
        if envelope["type"] == "error":
            raise RemoteOperationError(name, envelope.get("message") or "Unknown error", envelope.get("stack"))
        return envelope.get("value")

    async def read_global(self, name: str, *, wrap_errors: bool = True) -> Any:
        return await self._evaluate(READ_GLOBAL, name, wrap_errors)

    async def typeof_global(self, name: str, *, wrap_errors: bool = True) -> str:
        return await self._evaluate(TYPEOF_GLOBAL, name, wrap_errors)

    async def _evaluate(self, script: str, name: str, wrap_errors: bool) -> Any:
        """Read a global; with ``wrap_errors=False`` transport errors propagate as raised by Playwright."""
        async with self._lock:
            try:
                return await self.guard(self._page.evaluate(script, name))
            except PlaywrightError as exc:
                if not wrap_errors:
                    raise
                raise RemoteOperationError(f"window.{name}", _attr(exc, "message") or str(exc)) from exc


def _attr(obj: Any, name: str) -> Any:
    # Properties on Playwright objects, methods on some event payloads.
    value = getattr(obj, name, None)
    return value() if callable(value) else value
