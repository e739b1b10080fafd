from __future__ import annotations

import json
import math
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends

from reelscan.constants import DEFAULT_CONFIG, LOG_LEVELS

STATE_VERSION = 1


def _utcnow() -> str:
    """Return timezone-aware ISO timestamp."""
    return datetime.now(tz=timezone.utc).isoformat()


def _default_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "probes": {},
        "config": dict(DEFAULT_CONFIG),
    }


class LocalJsonStorage:
    """Small collection store persisted to a single JSON file.

    Each top-level collection maps primary identifiers to records. All writes are
    synchronised via an internal lock and flushed to disk immediately.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._state = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return _default_state()
        with self._path.open("r", encoding="utf-8") as handle:
            state = json.load(handle)
        state.setdefault("probes", {})
        state_config = state.setdefault("config", {})
        for key, value in DEFAULT_CONFIG.items():
            state_config.setdefault(key, value)
        return state

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as handle:
            json.dump(self._state, handle, indent=2, sort_keys=True)

    def _collection(self, name: str) -> Dict[str, Any]:
        return self._state.setdefault(name, {})

    def get_config(self) -> Dict[str, Any]:
        return self._state.setdefault("config", dict(DEFAULT_CONFIG))

    def update_config(self, **changes: Any) -> Dict[str, Any]:
        with self._lock:
            config = self.get_config()
            for key, value in changes.items():
                if key not in DEFAULT_CONFIG:
                    raise KeyError(f"Unknown config key '{key}'")
                config[key] = value
            self._persist()
            return config

    def upsert(self, collection: str, item_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._collection(collection)[item_id] = payload
            self._persist()
            return payload

    def get(self, collection: str, item_id: str) -> Optional[Dict[str, Any]]:
        return self._collection(collection).get(item_id)

    def delete(self, collection: str, item_id: str) -> None:
        with self._lock:
            if item_id in self._collection(collection):
                del self._collection(collection)[item_id]
                self._persist()

    def list(self, collection: str) -> List[Dict[str, Any]]:
        return list(self._collection(collection).values())


class ReelscanRepository:
    """Repository offering domain-focused helpers on top of LocalJsonStorage."""

    def __init__(self, storage: LocalJsonStorage) -> None:
        self._storage = storage

    # -- Config -------------------------------------------------------------------
    def get_config(self) -> Dict[str, Any]:
        config = self._storage.get_config()
        return {
            "default_timeout_in_milliseconds": float(
                config.get("default_timeout_in_milliseconds", DEFAULT_CONFIG["default_timeout_in_milliseconds"])
            ),
            "browser_executable": config.get("browser_executable"),
            "chromium_options": dict(config.get("chromium_options") or {}),
            "port": config.get("port"),
            "device_scale_factor": float(config.get("device_scale_factor", 1.0)),
            "log_level": config.get("log_level", DEFAULT_CONFIG["log_level"]),
        }

    def set_default_timeout(self, milliseconds: float) -> Dict[str, Any]:
        if math.isnan(milliseconds) or math.isinf(milliseconds) or milliseconds <= 0:
            raise ValueError("Default timeout must be a positive number of milliseconds.")
        self._storage.update_config(default_timeout_in_milliseconds=float(milliseconds))
        return self.get_config()

    def set_browser_executable(self, path: Optional[str]) -> Dict[str, Any]:
        normalized = path.strip() if path else None
        if normalized and not Path(normalized).exists():
            raise ValueError(f"Browser executable {normalized} does not exist.")
        self._storage.update_config(browser_executable=normalized or None)
        return self.get_config()

    def set_chromium_options(self, options: Dict[str, Any]) -> Dict[str, Any]:
        self._storage.update_config(chromium_options=dict(options))
        return self.get_config()

    def set_port(self, port: Optional[int]) -> Dict[str, Any]:
        if port is not None and not 0 <= port <= 65535:
            raise ValueError("Port must be between 0 and 65535.")
        self._storage.update_config(port=port)
        return self.get_config()

    def set_device_scale_factor(self, factor: float) -> Dict[str, Any]:
        if not 0 < factor <= 16:
            raise ValueError("Device scale factor must be greater than 0 and at most 16.")
        self._storage.update_config(device_scale_factor=float(factor))
        return self.get_config()

    def set_log_level(self, level: str) -> Dict[str, Any]:
        normalized = level.lower()
        if normalized not in LOG_LEVELS:
            raise ValueError("Log level must be one of: " + ", ".join(LOG_LEVELS))
        self._storage.update_config(log_level=normalized)
        return self.get_config()

    # -- Probes -------------------------------------------------------------------
    def list_probes(self, *, bundle_location: Optional[str] = None) -> List[Dict[str, Any]]:
        probes = self._storage.list("probes")
        if bundle_location is not None:
            probes = [probe for probe in probes if probe.get("bundle_location") == bundle_location]
        return sorted(probes, key=lambda it: it["created_at"], reverse=True)

    def get_probe(self, probe_id: str) -> Optional[Dict[str, Any]]:
        return self._storage.get("probes", probe_id)

    def create_probe(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        now = _utcnow()
        probe_id = str(uuid.uuid4())
        record = {
            "id": probe_id,
            "kind": payload["kind"],
            "bundle_location": payload["bundle_location"],
            "composition_id": payload.get("composition_id"),
            "status": payload.get("status", "executing"),
            "composition_ids": [],
            "error_type": None,
            "message": None,
            "duration_ms": None,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
        }
        return self._storage.upsert("probes", probe_id, record)

    def update_probe(self, probe_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = self.get_probe(probe_id)
        if not record:
            return None
        record = dict(record)
        record.update(payload)
        record["updated_at"] = _utcnow()
        return self._storage.upsert("probes", probe_id, record)

    def complete_probe(self, probe_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.update_probe(probe_id, {**payload, "completed_at": _utcnow()})

    def delete_probe(self, probe_id: str) -> None:
        self._storage.delete("probes", probe_id)


_repository: Optional[ReelscanRepository] = None


def get_repository() -> ReelscanRepository:
    """FastAPI dependency to retrieve the singleton repository instance."""
    global _repository
    if _repository is None:
        storage_path = Path(os.environ.get("REELSCAN_DB_PATH", "reelscan.db.json"))
        backend = LocalJsonStorage(storage_path)
        _repository = ReelscanRepository(backend)
    return _repository


RepositoryDep = Depends(get_repository)
