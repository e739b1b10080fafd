from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException

from reelscan.schemas import CompositionMetadata, DiscoverRequest, Probe, ValidateRequest
from reelscan.services.compositions import CompositionService, ServiceDep
from reelscan.services.errors import (
    BundleNotFoundError,
    CompositionNotFoundError,
    DiscoveryTimeoutError,
    InvalidCompositionError,
    InvalidInputPropsError,
    InvalidTimeoutError,
    ReadinessTimeoutError,
    ReelscanError,
)
from reelscan.services.storage import ReelscanRepository, RepositoryDep

router = APIRouter(prefix="/api", tags=["api"])


def _status_for(exc: ReelscanError) -> int:
    if isinstance(exc, (CompositionNotFoundError, BundleNotFoundError)):
        return 404
    if isinstance(exc, (InvalidTimeoutError, InvalidCompositionError, InvalidInputPropsError)):
        return 422
    if isinstance(exc, (DiscoveryTimeoutError, ReadinessTimeoutError)):
        return 504
    return 502


def _http_error(exc: ReelscanError) -> HTTPException:
    detail = {"error": type(exc).__name__, "message": str(exc)}
    stack = getattr(exc, "stack", None)
    if stack:
        detail["stack"] = stack
    return HTTPException(status_code=_status_for(exc), detail=detail)


# Compositions --------------------------------------------------------------------
@router.post("/compositions/discover", response_model=List[CompositionMetadata])
async def discover(
    payload: DiscoverRequest, service: CompositionService = ServiceDep
) -> List[CompositionMetadata]:
    try:
        return await service.discover(payload)
    except ReelscanError as exc:
        raise _http_error(exc) from exc


@router.post("/compositions/validate", response_model=CompositionMetadata)
async def validate(payload: ValidateRequest, service: CompositionService = ServiceDep) -> CompositionMetadata:
    try:
        return await service.validate(payload)
    except ReelscanError as exc:
        raise _http_error(exc) from exc


# Probes --------------------------------------------------------------------------
@router.get("/probes", response_model=List[Probe])
async def list_probes(
    bundle_location: Optional[str] = None, repo: ReelscanRepository = RepositoryDep
) -> List[Probe]:
    return repo.list_probes(bundle_location=bundle_location)


@router.get("/probes/{probe_id}", response_model=Probe)
async def get_probe(probe_id: str, repo: ReelscanRepository = RepositoryDep) -> Probe:
    probe = repo.get_probe(probe_id)
    if not probe:
        raise HTTPException(status_code=404, detail="Probe not found")
    return probe


@router.delete("/probes/{probe_id}", status_code=204)
async def delete_probe(probe_id: str, repo: ReelscanRepository = RepositoryDep) -> None:
    repo.delete_probe(probe_id)
