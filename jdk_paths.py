"""
jdk_paths.py
============
Work out which directories to search for JDKs.

Sources, in order:
  1. Static paths    – derived from ``javac`` on PATH and JAVA_HOME.
                       These cannot change while the process runs, so they
                       are computed once and cached.
  2. Platform paths  – well-known install roots for the current OS
                       (registry lookups on Windows). Cached as well.
  3. Caller paths    – recomputed on every call.

The merged list is de-duplicated and sorted.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from os_services import OsServices

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

LINUX_SEARCH_PATHS: List[str] = ["/usr/lib/jvm"]

DARWIN_SEARCH_PATHS: List[str] = [
    "/Library/Java/JavaVirtualMachines",
    "/System/Library/Java/JavaVirtualMachines",
]

WINDOWS_REGISTRY_KEYS: List[str] = [
    r"SOFTWARE\JavaSoft\Java Development Kit",
    r"SOFTWARE\Wow6432Node\JavaSoft\Java Development Kit",
]


# ──────────────────────────────────────────────
#  Caller Path Validation
# ──────────────────────────────────────────────

def normalize_jdk_paths(jdk_paths: Any) -> List[str]:
    """
    Turn the caller's ``jdk_paths`` argument into a list of strings.

    Accepts None, a single path, or a list/tuple of paths. Path objects are
    converted with ``os.fspath``.

    Raises:
        TypeError: anything else, or an empty path inside the list
    """
    if jdk_paths is None:
        return []
    if isinstance(jdk_paths, (str, os.PathLike)):
        jdk_paths = [jdk_paths]
    elif not isinstance(jdk_paths, (list, tuple)) or not all(
        isinstance(p, (str, os.PathLike)) for p in jdk_paths
    ):
        raise TypeError("Expected jdk_paths to be a path or a list of paths")

    normalized: List[str] = []
    for p in jdk_paths:
        p = os.fspath(p)
        if not isinstance(p, str) or not p:
            raise TypeError("Invalid path in jdk_paths")
        normalized.append(p)
    return normalized


# ──────────────────────────────────────────────
#  Single-flight Memo
# ──────────────────────────────────────────────

class SingleFlight(Generic[T]):
    """
    Lazily computed value shared by concurrent first callers.

    The first ``get()`` starts the computation; callers arriving while it is
    in flight await the same task. ``reset()`` forgets the value.
    """

    def __init__(self, compute: Callable[[], Awaitable[T]]) -> None:
        self._compute = compute
        self._value: Optional[T] = None
        self._computed = False
        self._task: Optional[asyncio.Future] = None

    @property
    def computed(self) -> bool:
        return self._computed

    async def get(self) -> T:
        if self._computed:
            return self._value  # type: ignore[return-value]

        task = self._task
        if task is None:
            task = self._task = asyncio.ensure_future(self._compute())

        try:
            value = await asyncio.shield(task)
        except Exception:
            if self._task is task:
                self._task = None
            raise
        # A reset() during the computation discards this result
        if self._task is task:
            self._value = value
            self._computed = True
            self._task = None
        return value

    def reset(self) -> None:
        self._value = None
        self._computed = False
        self._task = None


# ──────────────────────────────────────────────
#  SearchPathCache
# ──────────────────────────────────────────────

class SearchPathCache:
    """
    Process-wide cache of static and platform search paths.

    Args:
        services:      OS service layer
        platform:      ``sys.platform`` style identifier
        java_home_env: Name of the environment variable naming a JDK home
        compiler:      Executable looked up on PATH to find a JDK
    """

    def __init__(
        self,
        services: Optional[OsServices] = None,
        platform: str = sys.platform,
        java_home_env: str = "JAVA_HOME",
        compiler: str = "javac",
    ) -> None:
        self.services = services or OsServices()
        self.platform = "linux" if platform.startswith("linux") else platform
        self.java_home_env = java_home_env
        self.compiler = compiler
        self._static = SingleFlight(self._find_static_paths)
        self._platform_paths = SingleFlight(self._find_platform_paths)

    async def static_paths(self) -> List[str]:
        return list(await self._static.get())

    async def platform_paths(self) -> List[str]:
        return list(await self._platform_paths.get())

    def reset(self) -> None:
        self._static.reset()
        self._platform_paths.reset()
        logger.debug("Search path cache cleared")

    # ── Static paths ──────────────────────────

    async def _find_static_paths(self) -> List[str]:
        found = await asyncio.gather(self._from_compiler(), self._from_java_home())
        paths: List[str] = []
        for p in found:
            if p and p not in paths:
                paths.append(p)
        logger.debug("Static JDK paths: %s", paths)
        return paths

    async def _from_compiler(self) -> Optional[str]:
        """compiler on PATH → real path → bin/ → JDK root."""
        try:
            binary = await self.services.which(self.compiler)
            if not binary:
                return None
            return os.path.dirname(os.path.dirname(self.services.realpath(binary)))
        except Exception as exc:
            logger.debug("Could not locate %s on PATH: %s", self.compiler, exc)
            return None

    async def _from_java_home(self) -> Optional[str]:
        java_home = os.environ.get(self.java_home_env)
        if not java_home:
            return None
        try:
            if not self.services.is_dir(java_home):
                return None
            return self.services.realpath(java_home)
        except Exception as exc:
            logger.debug("Ignoring %s=%s: %s", self.java_home_env, java_home, exc)
            return None

    # ── Platform paths ────────────────────────

    async def _find_platform_paths(self) -> List[str]:
        if self.platform == "linux":
            paths = list(LINUX_SEARCH_PATHS)
        elif self.platform == "darwin":
            paths = list(DARWIN_SEARCH_PATHS)
        elif self.platform == "win32":
            found = await asyncio.gather(
                *(self._search_registry(key) for key in WINDOWS_REGISTRY_KEYS)
            )
            paths = [p for p in found if p]
        else:
            paths = []
        logger.debug("Platform JDK paths (%s): %s", self.platform, paths)
        return paths

    async def _search_registry(self, key: str) -> Optional[str]:
        """``<key>\\CurrentVersion`` → ``<key>\\<version>\\JavaHome``."""
        try:
            current = await self.services.query_registry(key, "CurrentVersion")
            if not current:
                return None
            return await self.services.query_registry(f"{key}\\{current}", "JavaHome")
        except Exception as exc:
            logger.debug("Registry lookup under %s failed: %s", key, exc)
            return None


# ──────────────────────────────────────────────
#  PathResolver
# ──────────────────────────────────────────────

class PathResolver:
    """Builds the sorted, duplicate-free list of directories to scan."""

    def __init__(self, cache: SearchPathCache) -> None:
        self.cache = cache
        self.services = cache.services

    async def resolve(
        self,
        extra_paths: Any = None,
        skip_platform_paths: bool = False,
    ) -> List[str]:
        """
        Args:
            extra_paths:         One path or a list of paths from the caller
            skip_platform_paths: Leave out the well-known OS locations

        Raises:
            TypeError: ``extra_paths`` is malformed
        """
        extra = normalize_jdk_paths(extra_paths)

        paths: List[str] = []
        paths.extend(await self.cache.static_paths())
        if not skip_platform_paths:
            paths.extend(await self.cache.platform_paths())
        paths.extend(self._resolve_extra(extra))

        return sorted(set(paths))

    def _resolve_extra(self, extra: Sequence[str]) -> List[str]:
        resolved: List[str] = []
        for p in extra:
            try:
                if not self.services.exists(p):
                    # Not there yet; it may appear before a later scan
                    resolved.append(p)
                elif self.services.is_dir(p):
                    resolved.append(self.services.realpath(p))
                else:
                    logger.debug("Skipping %s: not a directory", p)
            except OSError as exc:
                logger.debug("Skipping %s: %s", p, exc)
        return resolved
