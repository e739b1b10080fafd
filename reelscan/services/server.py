from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from reelscan.services.cleanup import Borrowed, Owned, Ownership, ResourceHandle
from reelscan.services.errors import BundleNotFoundError, ContentServerError

LOGGER = logging.getLogger("reelscan.server")


@dataclass
class SourceMapContext:
    root: Path
    files: List[Path] = field(default_factory=list)


@dataclass
class ServerHandle:
    serve_url: str
    proxy_port: Optional[int]
    bundle_location: str
    source_map: Optional[SourceMapContext] = None


def _is_url(location: str) -> bool:
    return location.startswith("http://") or location.startswith("https://")


def reuse_key(bundle_location: str) -> str:
    if _is_url(bundle_location):
        return bundle_location.rstrip("/")
    return str(Path(bundle_location).expanduser().resolve())


class ContentServer:
    async def start(self, bundle_location: str, port: Optional[int]) -> ServerHandle:  # pragma: no cover - interface stub
        raise NotImplementedError

    async def stop(self, force: bool = False) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: object) -> None:  # noqa: A002 - signature mandated by BaseHTTPRequestHandler
        LOGGER.debug("%s - %s", self.address_string(), format % args)


class StaticBundleServer(ContentServer):
    """Serve a bundle directory from a background thread on localhost."""

    def __init__(self, host: str = "127.0.0.1") -> None:
        self._host = host
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def _serve(self, directory: Path, port: Optional[int]) -> Tuple[ThreadingHTTPServer, threading.Thread]:
        handler = partial(_QuietHandler, directory=str(directory))
        try:
            server = ThreadingHTTPServer((self._host, port or 0), handler)
        except OSError as exc:
            raise ContentServerError(f"Could not serve {directory} on port {port}: {exc}") from exc
        server.daemon_threads = True
        bound_port = server.server_address[1]
        thread = threading.Thread(target=server.serve_forever, name=f"reelscan-serve-{bound_port}", daemon=True)
        thread.start()
        return server, thread

    async def start(self, bundle_location: str, port: Optional[int]) -> ServerHandle:
        directory = Path(bundle_location).expanduser().resolve()
        if not directory.is_dir():
            raise BundleNotFoundError(bundle_location)
        self._server, self._thread = await run_in_threadpool(self._serve, directory, port)
        bound_port = self._server.server_address[1]
        maps = sorted(directory.glob("*.map"))
        LOGGER.info("Serving bundle %s on port %s", directory, bound_port)
        return ServerHandle(
            serve_url=f"http://{self._host}:{bound_port}",
            proxy_port=bound_port,
            bundle_location=bundle_location,
            source_map=SourceMapContext(root=directory, files=maps) if maps else None,
        )

    def _shutdown(self, force: bool) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None and not force:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None

    async def stop(self, force: bool = False) -> None:
        await run_in_threadpool(self._shutdown, force)
        LOGGER.info("Stopped bundle server")


class UrlBundleServer(ContentServer):
    """A bundle that is already hosted elsewhere; nothing is started locally."""

    async def start(self, bundle_location: str, port: Optional[int]) -> ServerHandle:
        return ServerHandle(serve_url=bundle_location, proxy_port=port, bundle_location=bundle_location)

    async def stop(self, force: bool = False) -> None:
        return None


def create_content_server(bundle_location: str) -> ContentServer:
    if _is_url(bundle_location):
        return UrlBundleServer()
    if Path(bundle_location).expanduser().is_dir():
        return StaticBundleServer()
    raise BundleNotFoundError(bundle_location)


@dataclass
class ServerLease(ResourceHandle[ServerHandle]):
    server: Optional[Ownership] = None


@dataclass
class _Entry:
    server: ContentServer
    handle: ServerHandle
    refs: int = 0


class ServerRegistry:
    """Share internally created bundle servers between overlapping calls.

    Creation is single-flight per reuse key; each lease holds one reference and
    the server stops once the last lease asking for teardown is released.
    """

    def __init__(self, factory: Callable[[str], ContentServer] = create_content_server) -> None:
        self._factory = factory
        self._entries: Dict[str, _Entry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Hold the per-key lock; it is dropped once no entry or caller needs it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key] and key not in self._entries:
                del self._lock_users[key]
                self._locks.pop(key, None)

    def active(self) -> Dict[str, int]:
        return {key: entry.refs for key, entry in self._entries.items()}

    async def make_or_reuse(
        self,
        server: Optional[ServerHandle],
        bundle_location: str,
        *,
        port: Optional[int] = None,
        teardown: bool = True,
    ) -> ServerLease:
        if server is not None:
            return ServerLease(resource=server, server=Borrowed(server))

        key = reuse_key(bundle_location)
        async with self._locked(key):
            entry = self._entries.get(key)
            if entry is None:
                content = self._factory(bundle_location)
                handle = await content.start(bundle_location, port)
                entry = _Entry(server=content, handle=handle)
                self._entries[key] = entry
            else:
                LOGGER.debug("Reusing bundle server for %s (%s references)", key, entry.refs)
            entry.refs += 1

        async def _release() -> None:
            async with self._locked(key):
                current = self._entries.get(key)
                if current is None:
                    return
                current.refs -= 1
                if current.refs > 0 or not teardown:
                    return
                del self._entries[key]
                await current.server.stop(force=True)

        return ServerLease(resource=entry.handle, _release=_release, server=Owned(entry.handle))

    async def close_all(self) -> None:
        entries = list(self._entries.items())
        self._entries.clear()
        for key in [key for key in self._locks if not self._lock_users.get(key)]:
            del self._locks[key]
        for key, entry in entries:
            try:
                await entry.server.stop(force=True)
            except Exception as exc:
                LOGGER.warning("Failed to stop bundle server for %s: %s", key, exc)


_registry: Optional[ServerRegistry] = None


def get_server_registry() -> ServerRegistry:
    global _registry
    if _registry is None:
        _registry = ServerRegistry()
    return _registry
