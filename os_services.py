"""
os_services.py
==============
Thin asynchronous wrappers around the operating system services that JDK
detection depends on.

Capabilities:
  - Locate executables on the process search path
  - Run a program and capture exit code, stdout and stderr
  - Resolve real (symlink-free) paths and stat paths
  - Read string values from the Windows registry (HKLM)
  - Watch a directory for changes (watchdog observer per directory)

Everything here is swappable: the resolver, validator and detector take an
``OsServices`` instance so tests can substitute a mock.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Process Result
# ──────────────────────────────────────────────

@dataclass
class ProcessResult:
    """Outcome of a finished subprocess."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessError(RuntimeError):
    """Raised when a program exits with a non-zero status."""

    def __init__(self, executable: str, args: List[str], result: ProcessResult) -> None:
        super().__init__(
            f"{executable} {' '.join(args)} exited with code {result.exit_code}"
        )
        self.executable = executable
        self.args_list = args
        self.result = result


# ──────────────────────────────────────────────
#  Directory Watching
# ──────────────────────────────────────────────

class _TargetFilterHandler(FileSystemEventHandler):
    """Forward events that concern ``target`` (or anything under it)."""

    def __init__(self, target: str, callback: Callable[[], None]) -> None:
        super().__init__()
        self._target = os.path.normcase(os.path.abspath(target))
        self._callback = callback

    def _concerns_target(self, path: str) -> bool:
        if not path:
            return False
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        path = os.path.normcase(os.path.abspath(path))
        if path == self._target:
            return True
        # Something inside the target, or a missing parent of it, changed
        return (
            path.startswith(self._target + os.sep)
            or self._target.startswith(path + os.sep)
        )

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(self._concerns_target(p) for p in paths):
            self._callback()


def _nearest_existing(path: str) -> Optional[str]:
    current = os.path.abspath(path)
    while not os.path.isdir(current):
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent
    return current


class _DirectoryWatch:
    """
    One observer watching ``target``.

    While ``target`` is missing the observer sits on ``anchor`` (its nearest
    existing ancestor). Once ``target`` appears a second watch is scheduled
    on it so changes inside it are seen too; if it vanishes again that watch
    is dropped and the anchor picks up its next creation.
    """

    def __init__(self, observer, target: str, anchor: str,
                 callback: Callable[[], None], recursive: bool = False) -> None:
        self.observer = observer
        self.target = os.path.abspath(target)
        self.anchor = anchor
        self.recursive = recursive
        self._callback = callback
        self._lock = threading.Lock()
        self._target_watch = None
        self.handler = _TargetFilterHandler(target, self._on_change)

    def start(self) -> None:
        self.observer.schedule(
            self.handler,
            self.anchor,
            recursive=self.recursive and self.anchor == self.target,
        )
        self.observer.daemon = True
        self.observer.start()

    def stop(self) -> None:
        self.observer.stop()
        if self.observer.is_alive():
            self.observer.join(timeout=5)

    def _on_change(self) -> None:
        self._callback()
        if self.anchor == self.target:
            return
        # Runs on the dispatch thread, which holds the observer's re-entrant lock
        with self._lock:
            present = os.path.isdir(self.target)
            if present and self._target_watch is None:
                self._attach()
            elif not present and self._target_watch is not None:
                self._detach()

    def _attach(self) -> None:
        try:
            self._target_watch = self.observer.schedule(
                self.handler, self.target, recursive=self.recursive
            )
        except OSError as exc:
            logger.warning("Cannot watch %s yet: %s", self.target, exc)
            return
        logger.debug("Watching %s directly", self.target)

    def _detach(self) -> None:
        watch, self._target_watch = self._target_watch, None
        try:
            self.observer.unschedule(watch)
        except KeyError:
            logger.debug("Watch on %s already gone", self.target)
            return
        logger.debug("%s disappeared; watching via %s", self.target, self.anchor)


# ──────────────────────────────────────────────
#  OsServices
# ──────────────────────────────────────────────

class OsServices:
    """
    Default implementation of the OS service layer.

    Args:
        recursive: Watch directories recursively instead of just their
                   immediate entries.
    """

    def __init__(self, recursive: bool = False) -> None:
        self.recursive = recursive

    # ── Executables ───────────────────────────

    async def which(self, name: str) -> Optional[str]:
        """Return the absolute path of ``name`` on PATH, or None."""
        return await asyncio.to_thread(shutil.which, name)

    async def run(self, executable: str, args: List[str]) -> ProcessResult:
        """
        Run ``executable`` with ``args`` and wait for it to finish.

        Raises:
            OSError:      the program could not be spawned
            ProcessError: the program exited with a non-zero status
        """
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await proc.communicate()
        result = ProcessResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=out.decode("utf-8", errors="replace"),
            stderr=err.decode("utf-8", errors="replace"),
        )
        if not result.ok:
            raise ProcessError(executable, list(args), result)
        return result

    # ── Filesystem ────────────────────────────

    @staticmethod
    def realpath(path: str) -> str:
        return os.path.realpath(path)

    @staticmethod
    def exists(path: str) -> bool:
        return os.path.exists(path)

    @staticmethod
    def is_dir(path: str) -> bool:
        return os.path.isdir(path)

    @staticmethod
    def is_file(path: str) -> bool:
        return os.path.isfile(path)

    @staticmethod
    def list_dirs(path: str) -> List[str]:
        """Return the immediate subdirectories of ``path`` (sorted)."""
        found: List[str] = []
        with os.scandir(path) as entries:
            for entry in entries:
                if entry.is_dir():
                    found.append(entry.path)
        return sorted(found)

    # ── Registry ──────────────────────────────

    async def query_registry(self, key: str, value: str) -> Optional[str]:
        """
        Read ``value`` from ``HKEY_LOCAL_MACHINE\\<key>``.

        Returns None when not on Windows or when the key/value is missing.
        """
        if sys.platform != "win32":
            return None
        return await asyncio.to_thread(self._read_registry, key, value)

    @staticmethod
    def _read_registry(key: str, value: str) -> Optional[str]:
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key.strip("\\")) as handle:
                data, _ = winreg.QueryValueEx(handle, value)
        except OSError:
            return None
        return str(data) if data else None

    # ── Watching ──────────────────────────────

    def watch_directory(self, path: str, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Call ``callback`` (from a watcher thread) whenever ``path`` changes.

        A path that does not exist yet is watched through its nearest
        existing ancestor until it is created, then watched directly.

        Returns:
            A function that stops watching.
        """
        anchor = _nearest_existing(path)
        if anchor is None:
            raise FileNotFoundError(f"No existing ancestor to watch for {path}")

        watch = _DirectoryWatch(Observer(), path, anchor, callback, recursive=self.recursive)
        watch.start()
        logger.debug("Watching %s (via %s)", path, anchor)

        def unwatch() -> None:
            watch.stop()
            logger.debug("Stopped watching %s", path)

        return unwatch
