from __future__ import annotations

import asyncio
import logging

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from reelscan.services.channel import RemoteChannel
from reelscan.services.errors import ReadinessTimeoutError, RemoteOperationError
from reelscan.services.protocol import CANCELLED_ERROR, READY_EXPRESSION

LOGGER = logging.getLogger("reelscan.readiness")


async def wait_for_ready(channel: RemoteChannel, timeout_ms: float) -> None:
    """Block until the bundle reports its composition registry is populated.

    A page fault on ``channel`` ends the wait immediately. If the bundle cancels
    instead of becoming ready, the cancellation message is raised.
    """
    wait = channel.page.wait_for_function(READY_EXPRESSION, timeout=timeout_ms)
    try:
        await asyncio.wait_for(channel.guard(wait), timeout=timeout_ms / 1000)
    except (asyncio.TimeoutError, PlaywrightTimeoutError) as exc:
        raise ReadinessTimeoutError(timeout_ms) from exc

    cancelled = await channel.read_global(CANCELLED_ERROR)
    if cancelled is not None:
        message = cancelled if isinstance(cancelled, str) else str(cancelled)
        raise RemoteOperationError("waitForReady", message)
    LOGGER.debug("Bundle signalled readiness")
