"""
processing/scratch.py
---------------------
Request-scoped ownership of on-disk scratch artifacts.

Each decode request gets its own directory ``<root>/<token>/`` so concurrent
requests can never collide. Files are handed out as :class:`ScratchHandle`
objects; leaving :meth:`TempResourceManager.scope` deletes every handle the
scope issued and the directory itself, whether the body returned or raised.

Usage::

    manager = TempResourceManager(cfg.scratch_dir_path())
    with manager.scope(request.token) as scratch:
        handle = scratch.acquire(request.data, suffix=".jpg")
        ...
    # nothing from this request is left on disk here
"""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScratchHandle:
    """Reference to one scratch file."""

    path: Path

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


def _unlink(path: Path) -> None:
    try:
        path.unlink()
        logger.debug("Scratch file removed: %s", path.name)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not delete scratch file %s: %s", path, exc)


class ScratchScope:
    """Scratch files belonging to one request."""

    def __init__(self, directory: Path) -> None:
        self._dir = directory
        self._handles: list[ScratchHandle] = []
        self._counter = itertools.count()
        self._closed = False

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def open_handles(self) -> list[ScratchHandle]:
        return list(self._handles)

    def acquire(self, data: bytes, suffix: str = ".bin", name: str = "scratch") -> ScratchHandle:
        """Write *data* to a new file in this scope and return its handle."""
        if self._closed:
            raise RuntimeError("ScratchScope already closed")
        path = self._dir / f"{next(self._counter):02d}_{name}{suffix}"
        handle = ScratchHandle(path)
        # Track before writing so a failed write is still cleaned up.
        self._handles.append(handle)
        path.write_bytes(data)
        logger.debug("Scratch file written: %s (%d bytes)", path.name, len(data))
        return handle

    def release(self, handle: ScratchHandle) -> None:
        """Delete *handle*'s file. Idempotent; deletion errors are logged only."""
        _unlink(handle.path)
        try:
            self._handles.remove(handle)
        except ValueError:
            pass

    def close(self) -> None:
        """Release every outstanding handle and remove the directory."""
        for handle in list(self._handles):
            self.release(handle)
        self._closed = True
        try:
            self._dir.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove scratch directory %s: %s", self._dir, exc)


class TempResourceManager:
    """Creates per-request :class:`ScratchScope` directories under *root*."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()
        self._active: set[str] = set()

    @property
    def root(self) -> Path:
        return self._root

    @contextmanager
    def scope(self, token: str) -> Iterator[ScratchScope]:
        """Guaranteed-cleanup scratch scope for the request identified by *token*."""
        with self._lock:
            if token in self._active:
                raise RuntimeError(f"Scratch token already in use: {token}")
            self._active.add(token)

        directory = self._root / token
        try:
            directory.mkdir(parents=True, exist_ok=False)
        except BaseException:
            with self._lock:
                self._active.discard(token)
            raise

        scratch = ScratchScope(directory)
        try:
            yield scratch
        finally:
            scratch.close()
            with self._lock:
                self._active.discard(token)

    def leftovers(self, token: str) -> list[Path]:
        """Files still on disk for *token* (empty once its scope has exited)."""
        directory = self._root / token
        if not directory.exists():
            return []
        return sorted(p for p in directory.iterdir())

    @property
    def active_tokens(self) -> list[str]:
        with self._lock:
            return sorted(self._active)
