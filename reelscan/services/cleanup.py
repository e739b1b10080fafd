from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

LOGGER = logging.getLogger("reelscan.cleanup")

T = TypeVar("T")

ReleaseAction = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Owned(Generic[T]):
    """A resource created by reelscan; reelscan is responsible for releasing it."""

    resource: T

    @property
    def owned(self) -> bool:
        return True


@dataclass(frozen=True)
class Borrowed(Generic[T]):
    """A resource supplied by the caller; reelscan must never release it."""

    resource: T

    @property
    def owned(self) -> bool:
        return False


Ownership = Union[Owned[T], Borrowed[T]]


async def _invoke(action: ReleaseAction) -> None:
    result = action()
    if inspect.isawaitable(result):
        await result


@dataclass
class ResourceHandle(Generic[T]):
    """Pairs an acquired resource with a release action that runs at most once."""

    resource: T
    _release: Optional[ReleaseAction] = field(default=None, repr=False)
    released: bool = False

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self._release is not None:
            await _invoke(self._release)


class CleanupCoordinator:
    """Collect release actions during acquisition and drain them once at settlement.

    Actions are pushed right after the matching acquisition succeeds, so a failure
    halfway through acquisition still releases everything acquired so far. Draining
    runs the actions in reverse push order; a failing action is logged and the
    remaining ones still run. A cancellation that lands mid-drain is re-raised
    once every action has run.
    """

    def __init__(self, label: str = "call") -> None:
        self._label = label
        self._actions: List[ReleaseAction] = []
        self._drained = False

    @property
    def drained(self) -> bool:
        return self._drained

    def __len__(self) -> int:
        return len(self._actions)

    def push(self, action: ReleaseAction) -> ReleaseAction:
        if self._drained:
            raise RuntimeError(f"Cleanup for {self._label} already ran; release the resource directly")
        self._actions.append(action)
        return action

    async def drain(self) -> None:
        if self._drained:
            return
        self._drained = True
        actions, self._actions = self._actions, []
        cancelled: Optional[asyncio.CancelledError] = None
        for action in reversed(actions):
            try:
                await _invoke(action)
            except asyncio.CancelledError as exc:
                LOGGER.warning("Release action %r for %s was cancelled; releasing the rest", action, self._label)
                if cancelled is None:
                    cancelled = exc
            except Exception as exc:
                LOGGER.warning("Release action %r for %s failed: %s", action, self._label, exc)
        if cancelled is not None:
            raise cancelled

    async def __aenter__(self) -> "CleanupCoordinator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.drain()
