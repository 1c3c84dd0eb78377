"""
detector.py
===========
JDK detection service.

  detect()  – one-shot scan of every search path
  watch()   – initial scan, then re-scan each directory when it changes
  reset()   – forget cached search paths and scan results

The module-level functions delegate to a process-wide default detector:

    results = await detect(jdk_paths=["/opt/jdk1"])
    handle = watch()
    handle.on("results", print)
    ...
    handle.stop()
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional, Union

from config import Settings
from jdk_paths import PathResolver, SearchPathCache, normalize_jdk_paths
from jdk_validator import JdkValidator
from os_services import OsServices
from scanner import ResultSet, Scanner, hash_paths
from watcher import Debouncer, WatchHandle

logger = logging.getLogger(__name__)

Results = Union[ResultSet, Dict[str, Any]]


# ──────────────────────────────────────────────
#  JdkDetector
# ──────────────────────────────────────────────

class JdkDetector:
    """
    Orchestrates path resolution, scanning and watching.

    Args:
        services: OS service layer shared by every component
        scanner:  Scan engine (owns the result cache)
        platform: ``sys.platform`` style identifier
        settings: Detection settings
    """

    def __init__(
        self,
        services: Optional[OsServices] = None,
        scanner: Optional[Scanner] = None,
        platform: str = sys.platform,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.services = services or OsServices(recursive=self.settings.watch_recursive)
        self.scanner = scanner or Scanner(self.services)
        self.path_cache = SearchPathCache(
            self.services,
            platform=platform,
            java_home_env=self.settings.java_home_env,
            compiler=self.settings.compiler,
        )
        self.resolver = PathResolver(self.path_cache)
        self.validator = JdkValidator(self.services, platform=platform)

    # ================================================================
    #  ONE-SHOT DETECTION
    # ================================================================

    async def detect(
        self,
        jdk_paths: Any = None,
        ignore_platform_paths: bool = False,
        gawk: bool = False,
        force: bool = False,
    ) -> Results:
        """
        Detect installed JDKs.

        Args:
            jdk_paths:             One or more extra paths to search
            ignore_platform_paths: Skip the well-known OS install locations
            gawk:                  Return the live ``ResultSet`` instead of a dict
            force:                 Bypass the scanner's cached results

        Raises:
            TypeError: ``jdk_paths`` is not a path or list of paths
        """
        extra = normalize_jdk_paths(jdk_paths)
        paths = await self.resolver.resolve(extra, ignore_platform_paths)
        logger.debug("Searching for JDKs in %s", paths)

        results = await self.scanner.scan(
            paths, self.validator.validate, path_hash=hash_paths(paths), force=force,
        )
        logger.info("Detected %d JDK(s)", len(results))
        return results if gawk else results.to_dict()

    # ================================================================
    #  WATCHING
    # ================================================================

    def watch(
        self,
        jdk_paths: Any = None,
        ignore_platform_paths: bool = False,
        gawk: bool = False,
    ) -> WatchHandle:
        """
        Detect JDKs and keep watching the search paths for changes.

        Must be called while an event loop is running. The returned handle
        emits ``results`` after the initial scan and whenever the result set
        changes, and ``error`` (after stopping itself) if anything fails.

        Raises:
            TypeError: ``jdk_paths`` is not a path or list of paths
        """
        extra = normalize_jdk_paths(jdk_paths)
        handle = WatchHandle()
        handle.spawn(self._run_watch(handle, extra, ignore_platform_paths, gawk))
        return handle

    async def _run_watch(
        self,
        handle: WatchHandle,
        extra: List[str],
        ignore_platform_paths: bool,
        gawk: bool,
    ) -> None:
        try:
            paths = await self.resolver.resolve(extra, ignore_platform_paths)
            path_hash = hash_paths(paths)
            results = await self.scanner.scan(
                paths, self.validator.validate, path_hash=path_hash, force=True,
            )
        except Exception as exc:
            handle.fail(exc)
            return

        if handle.stopped:
            return

        def project() -> Results:
            return results if gawk else results.to_dict()

        handle.add_unwatcher(results.watch(lambda _r: handle.emit_results(project())))

        loop = asyncio.get_running_loop()
        try:
            for directory in paths:
                self._watch_directory(handle, directory, path_hash, loop)
        except Exception as exc:
            handle.fail(exc)
            return

        logger.info("Watching %d path(s) for JDK changes", len(paths))
        handle.emit_results(project())

    def _watch_directory(
        self,
        handle: WatchHandle,
        directory: str,
        path_hash: str,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        debounced = Debouncer(
            self.settings.debounce_seconds,
            lambda: handle.spawn(self._rescan(handle, directory, path_hash)),
            loop,
        )
        unwatch = self.services.watch_directory(directory, debounced.notify_threadsafe)

        def release() -> None:
            debounced.cancel()
            unwatch()

        handle.add_unwatcher(release)

    async def _rescan(self, handle: WatchHandle, directory: str, path_hash: str) -> None:
        logger.debug("Change under %s, re-scanning", directory)
        try:
            await self.scanner.scan(
                [directory], self.validator.validate, path_hash=path_hash, force=True,
            )
        except Exception as exc:
            handle.fail(exc)

    # ================================================================
    #  CACHE CONTROL
    # ================================================================

    def reset(self) -> None:
        """Clear the search path cache and the scanner's result cache."""
        self.scanner.reset_cache()
        self.path_cache.reset()


# ──────────────────────────────────────────────
#  Process-wide default
# ──────────────────────────────────────────────

_default: Optional[JdkDetector] = None


def get_detector() -> JdkDetector:
    global _default
    if _default is None:
        _default = JdkDetector()
    return _default


def set_detector(detector: Optional[JdkDetector]) -> None:
    """Replace the detector behind the module-level functions."""
    global _default
    _default = detector


async def detect(
    jdk_paths: Any = None,
    ignore_platform_paths: bool = False,
    gawk: bool = False,
    force: bool = False,
) -> Results:
    return await get_detector().detect(
        jdk_paths=jdk_paths,
        ignore_platform_paths=ignore_platform_paths,
        gawk=gawk,
        force=force,
    )


def watch(
    jdk_paths: Any = None,
    ignore_platform_paths: bool = False,
    gawk: bool = False,
) -> WatchHandle:
    return get_detector().watch(
        jdk_paths=jdk_paths,
        ignore_platform_paths=ignore_platform_paths,
        gawk=gawk,
    )


def reset() -> None:
    get_detector().reset()
