from __future__ import annotations

from fastapi import APIRouter, HTTPException

from reelscan.schemas import ConfigResponse, ConfigUpdate
from reelscan.services.storage import ReelscanRepository, RepositoryDep

router = APIRouter(prefix="/api", tags=["config"])


@router.get("/config", response_model=ConfigResponse)
async def get_config(repo: ReelscanRepository = RepositoryDep) -> ConfigResponse:
    return ConfigResponse.model_validate(repo.get_config())


@router.patch("/config", response_model=ConfigResponse)
async def update_config(payload: ConfigUpdate, repo: ReelscanRepository = RepositoryDep) -> ConfigResponse:
    changes = payload.model_dump(exclude_unset=True)
    try:
        if "default_timeout_in_milliseconds" in changes:
            repo.set_default_timeout(changes["default_timeout_in_milliseconds"])
        if "browser_executable" in changes:
            repo.set_browser_executable(changes["browser_executable"])
        if "chromium_options" in changes:
            repo.set_chromium_options(payload.chromium_options.model_dump(mode="json") if payload.chromium_options else {})
        if "port" in changes:
            repo.set_port(changes["port"])
        if "device_scale_factor" in changes:
            repo.set_device_scale_factor(changes["device_scale_factor"])
        if "log_level" in changes:
            repo.set_log_level(payload.log_level.value if payload.log_level else "info")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ConfigResponse.model_validate(repo.get_config())
