from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
from pydantic import ValidationError

from reelscan.schemas import ChromiumOptions, CompositionMetadata, LogLevel
from reelscan.services.browser import SessionProvider
from reelscan.services.channel import BrowserLogCallback, RemoteChannel
from reelscan.services.cleanup import CleanupCoordinator
from reelscan.services.errors import (
    BundleNavigationError,
    CompositionNotFoundError,
    DiscoveryTimeoutError,
    DuplicateCompositionError,
    IncompatibleBundleError,
    InvalidCompositionError,
    InvalidInputPropsError,
    InvalidTimeoutError,
    RemoteOperationError,
)
from reelscan.services.protocol import (
    BUNDLE_PROTOCOL_VERSION,
    EVALUATION_MODE,
    GET_STATIC_COMPOSITIONS,
    SET_BUNDLE_MODE,
    SITE_VERSION,
    build_init_script,
    normalize_serve_url,
)
from reelscan.services.readiness import wait_for_ready
from reelscan.services.server import ServerHandle, ServerRegistry, get_server_registry

LOGGER = logging.getLogger("reelscan.discovery")

DEFAULT_TIMEOUT_MS = 30000
NAVIGATION_RETRIES = 2
TRANSIENT_NAVIGATION_ERRORS = (
    "net::ERR_CONNECTION_REFUSED",
    "net::ERR_CONNECTION_RESET",
    "net::ERR_EMPTY_RESPONSE",
    "Execution context was destroyed",
)

T = TypeVar("T")


@dataclass
class DiscoveryOptions:
    input_props: Dict[str, Any] = field(default_factory=dict)
    env_variables: Dict[str, str] = field(default_factory=dict)
    timeout_in_milliseconds: Any = DEFAULT_TIMEOUT_MS
    chromium_options: ChromiumOptions = field(default_factory=ChromiumOptions)
    browser_executable: Optional[str] = None
    device_scale_factor: Optional[float] = None
    browser: Any = None
    server: Optional[ServerHandle] = None
    port: Optional[int] = None
    on_browser_log: Optional[BrowserLogCallback] = None
    log_level: LogLevel = LogLevel.info


class DiscoveryState(str, Enum):
    idle = "idle"
    props_injected = "props_injected"
    mode_switched = "mode_switched"
    ready = "ready"
    queried = "queried"
    done = "done"
    faulted = "faulted"


def validate_timeout(value: Any) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidTimeoutError(value)
    if math.isnan(value) or math.isinf(value) or value <= 0:
        raise InvalidTimeoutError(value)
    return float(value)


def _check_serializable(options: DiscoveryOptions) -> None:
    for name, value in (("inputProps", options.input_props), ("envVariables", options.env_variables)):
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise InvalidInputPropsError(f"{name} must be JSON-serializable: {exc}") from exc


def _is_transient(exc: PlaywrightError) -> bool:
    if isinstance(exc, PlaywrightTimeoutError):
        return True
    message = getattr(exc, "message", None) or str(exc)
    return any(marker in message for marker in TRANSIENT_NAVIGATION_ERRORS)


def parse_compositions(raw: Any) -> List[CompositionMetadata]:
    if not isinstance(raw, list):
        raise RemoteOperationError(
            GET_STATIC_COMPOSITIONS.name, f"Expected a list of compositions, got {type(raw).__name__}"
        )
    compositions: List[CompositionMetadata] = []
    seen = set()
    for item in raw:
        try:
            composition = CompositionMetadata.model_validate(item)
        except ValidationError as exc:
            raise InvalidCompositionError(f"The bundle returned malformed composition metadata: {exc}") from exc
        if composition.id in seen:
            raise DuplicateCompositionError(composition.id)
        seen.add(composition.id)
        compositions.append(composition)
    return compositions


class DiscoveryProtocol:
    """Drive one page through prop injection, evaluation mode, readiness and the query."""

    def __init__(
        self,
        channel: RemoteChannel,
        server: ServerHandle,
        options: DiscoveryOptions,
        timeout_ms: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._server = server
        self._options = options
        self._timeout_ms = timeout_ms
        self._clock = clock
        self._deadline = clock() + timeout_ms / 1000
        self.state = DiscoveryState.idle

    def _advance(self, state: DiscoveryState) -> None:
        LOGGER.debug("Discovery %s -> %s", self.state.value, state.value)
        self.state = state

    def _remaining_ms(self) -> float:
        return (self._deadline - self._clock()) * 1000

    async def _step(self, name: str, awaitable: Awaitable[T]) -> T:
        remaining = self._remaining_ms()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DiscoveryTimeoutError(self._timeout_ms, name)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining / 1000)
        except asyncio.TimeoutError as exc:
            raise DiscoveryTimeoutError(self._timeout_ms, name) from exc

    async def run(self) -> List[CompositionMetadata]:
        try:
            await self._step("inject props", self._inject_props())
            self._advance(DiscoveryState.props_injected)

            await self._step("switch mode", self._channel.send(SET_BUNDLE_MODE, [EVALUATION_MODE]))
            self._advance(DiscoveryState.mode_switched)

            # The gate gets the full timeout; the remaining budget is enforced by the step.
            await self._step("wait for ready", wait_for_ready(self._channel, self._timeout_ms))
            self._advance(DiscoveryState.ready)

            raw = await self._step("query compositions", self._channel.send(GET_STATIC_COMPOSITIONS))
            self._advance(DiscoveryState.queried)

            compositions = parse_compositions(raw)
            self._advance(DiscoveryState.done)
            return compositions
        except BaseException:
            self._advance(DiscoveryState.faulted)
            raise

    async def _inject_props(self) -> None:
        page = self._channel.page
        page.set_default_timeout(self._timeout_ms)
        script = build_init_script(
            self._options.input_props,
            self._options.env_variables,
            self._server.proxy_port,
        )
        # Registered before navigation so the values exist when the bundle evaluates its registry.
        try:
            await page.add_init_script(script=script)
        except PlaywrightError as exc:
            raise RemoteOperationError("addInitScript", getattr(exc, "message", None) or str(exc)) from exc
        url = normalize_serve_url(self._server.serve_url)
        retries = NAVIGATION_RETRIES
        while True:
            try:
                await self._navigate(url)
                return
            except PlaywrightError as exc:
                if retries <= 0 or not _is_transient(exc):
                    raise BundleNavigationError(url, None, getattr(exc, "message", None) or str(exc)) from exc
                retries -= 1
                LOGGER.warning("Transient error while loading %s (%s); retrying, %s attempts left", url, exc, retries)

    async def _navigate(self, url: str) -> None:
        response = await self._channel.guard(self._channel.page.goto(url))
        status = response.status if response is not None else None
        if status is not None and status != 304 and not 200 <= status < 300:
            raise BundleNavigationError(url, status)

        kind = await self._channel.typeof_global(GET_STATIC_COMPOSITIONS.name, wrap_errors=False)
        if kind != "function":
            raise IncompatibleBundleError(
                f"Tried to go to {url} and verify that it is a composition bundle by checking if "
                f"window.{GET_STATIC_COMPOSITIONS.name} is defined. However, it was {kind}. "
                "Make sure the URL points to the index.html of a bundle."
            )
        version = await self._channel.read_global(SITE_VERSION, wrap_errors=False)
        if version != BUNDLE_PROTOCOL_VERSION:
            raise IncompatibleBundleError(
                f"Incompatible bundle: expected protocol version {BUNDLE_PROTOCOL_VERSION}, "
                f"but the bundle at {url} reports {version!r}. Rebuild the bundle with a matching version."
            )


async def discover_compositions(
    bundle_location: str,
    options: Optional[DiscoveryOptions] = None,
    *,
    session_provider: Optional[SessionProvider] = None,
    servers: Optional[ServerRegistry] = None,
) -> List[CompositionMetadata]:
    """List the compositions defined by the bundle at ``bundle_location``.

    ``bundle_location`` is a bundle directory or an http(s) serve URL. Browser,
    page, page listeners and server reference are released when the call settles,
    except for a browser or server supplied through ``options``.
    """
    options = options or DiscoveryOptions()
    timeout_ms = validate_timeout(options.timeout_in_milliseconds)
    _check_serializable(options)
    provider = session_provider or SessionProvider()
    registry = servers or get_server_registry()

    cleanup = CleanupCoordinator(f"discovery of {bundle_location}")
    try:
        page_handle = await provider.acquire_page(
            browser=options.browser,
            browser_executable=options.browser_executable,
            chromium_options=options.chromium_options,
            device_scale_factor=options.device_scale_factor,
        )
        cleanup.push(page_handle.release)

        channel = RemoteChannel(
            page_handle.resource,
            log_level=options.log_level,
            on_browser_log=options.on_browser_log,
        )
        cleanup.push(channel.arm())

        lease = await registry.make_or_reuse(options.server, bundle_location, port=options.port)
        cleanup.push(lease.release)
        channel.source_map = lease.resource.source_map

        protocol = DiscoveryProtocol(channel, lease.resource, options, timeout_ms)
        compositions = await protocol.run()
    finally:
        await cleanup.drain()

    LOGGER.info("Discovered %s composition(s) in %s", len(compositions), bundle_location)
    return compositions


async def select_composition(
    bundle_location: str,
    identifier: str,
    options: Optional[DiscoveryOptions] = None,
    *,
    session_provider: Optional[SessionProvider] = None,
    servers: Optional[ServerRegistry] = None,
) -> CompositionMetadata:
    compositions = await discover_compositions(
        bundle_location,
        options,
        session_provider=session_provider,
        servers=servers,
    )
    for composition in compositions:
        if composition.id == identifier:
            return composition
    raise CompositionNotFoundError(identifier, [composition.id for composition in compositions])
