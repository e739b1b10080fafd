from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, List, Optional, TypeVar

from fastapi import Depends

from reelscan.schemas import (
    ChromiumOptions,
    CompositionMetadata,
    DimensionOverrides,
    DiscoverRequest,
    LogLevel,
    ProbeKind,
    ProbeRequest,
    ProbeStatus,
    ValidateRequest,
)
from reelscan.services.browser import SessionProvider
from reelscan.services.discovery import DiscoveryOptions, discover_compositions
from reelscan.services.server import ServerRegistry
from reelscan.services.storage import ReelscanRepository, get_repository
from reelscan.services.validation import validate_composition

LOGGER = logging.getLogger("reelscan.compositions")

T = TypeVar("T")


class CompositionService:
    """Apply stored defaults to probe requests, run them and keep the probe log."""

    def __init__(
        self,
        repo: Optional[ReelscanRepository] = None,
        *,
        session_provider: Optional[SessionProvider] = None,
        servers: Optional[ServerRegistry] = None,
    ) -> None:
        self._repo = repo or get_repository()
        self._session_provider = session_provider or SessionProvider()
        self._servers = servers or ServerRegistry()

    @property
    def servers(self) -> ServerRegistry:
        return self._servers

    def _options(self, request: ProbeRequest) -> DiscoveryOptions:
        config = self._repo.get_config()
        timeout = request.timeout_in_milliseconds
        if timeout is None:
            timeout = config["default_timeout_in_milliseconds"]
        chromium_options = request.chromium_options or ChromiumOptions.model_validate(config["chromium_options"])
        return DiscoveryOptions(
            input_props=dict(request.input_props),
            env_variables=dict(request.env_variables),
            timeout_in_milliseconds=timeout,
            chromium_options=chromium_options,
            browser_executable=request.browser_executable or config["browser_executable"],
            device_scale_factor=config["device_scale_factor"],
            port=request.port if request.port is not None else config["port"],
            log_level=request.log_level or LogLevel(config["log_level"]),
        )

    async def _record(
        self,
        kind: ProbeKind,
        request: ProbeRequest,
        composition_id: Optional[str],
        run: Callable[[], Awaitable[T]],
        collect_ids: Callable[[T], List[str]],
    ) -> T:
        probe = self._repo.create_probe(
            {
                "kind": kind.value,
                "bundle_location": request.bundle_location,
                "composition_id": composition_id,
            }
        )
        started = time.monotonic()
        try:
            result = await run()
        except Exception as exc:
            self._repo.complete_probe(
                probe["id"],
                {
                    "status": ProbeStatus.failed.value,
                    "error_type": type(exc).__name__,
                    "message": str(exc),
                    "duration_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )
            LOGGER.warning("Probe %s (%s %s) failed: %s", probe["id"], kind.value, request.bundle_location, exc)
            raise
        self._repo.complete_probe(
            probe["id"],
            {
                "status": ProbeStatus.finished.value,
                "composition_ids": collect_ids(result),
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return result

    async def discover(self, request: DiscoverRequest) -> List[CompositionMetadata]:
        options = self._options(request)
        return await self._record(
            ProbeKind.discover,
            request,
            None,
            lambda: discover_compositions(
                request.bundle_location,
                options,
                session_provider=self._session_provider,
                servers=self._servers,
            ),
            lambda compositions: [composition.id for composition in compositions],
        )

    async def validate(self, request: ValidateRequest) -> CompositionMetadata:
        options = self._options(request)
        overrides = DimensionOverrides(width=request.force_width, height=request.force_height)
        return await self._record(
            ProbeKind.validate,
            request,
            request.composition_id,
            lambda: validate_composition(
                request.bundle_location,
                request.composition_id,
                overrides,
                options,
                frame=request.frame,
                session_provider=self._session_provider,
                servers=self._servers,
            ),
            lambda composition: [composition.id],
        )

    async def shutdown(self) -> None:
        await self._servers.close_all()


_service: Optional[CompositionService] = None


def get_composition_service() -> CompositionService:
    global _service
    if _service is None:
        _service = CompositionService()
    return _service


ServiceDep = Depends(get_composition_service)


async def shutdown_composition_service() -> None:
    if _service is not None:
        await _service.shutdown()
