"""
scanner.py
==========
Generic path scanning engine with a live result cache.

``Scanner.scan()`` applies a detect function to each root path (and, when
the root itself is not a match, to each of its immediate subdirectories),
de-duplicates matches by their ``key`` and merges them into a ``ResultSet``
cached under a hash of the search space.

The engine knows nothing about JDKs: a detect function is any coroutine
``detect_fn(directory) -> item | None`` where ``item`` exposes ``key`` and,
for plain-data output, ``to_dict()``.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from os_services import OsServices

logger = logging.getLogger(__name__)

DetectFn = Callable[[str], Awaitable[Optional[Any]]]


def hash_paths(paths: Sequence[str]) -> str:
    """SHA-1 of the JSON-encoded path list, identifying a search space."""
    return hashlib.sha1(json.dumps(list(paths)).encode("utf-8")).hexdigest()


# ──────────────────────────────────────────────
#  ResultSet
# ──────────────────────────────────────────────

class ResultSet(Mapping):
    """
    Live mapping of identity key → detected item.

    Every root keeps its own contribution per key, so a later scan of that
    root only withdraws what it provided. A key stays while any root still
    provides it. Subscribers registered with ``watch()`` are called when a
    key appears, disappears or exposes a different item.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}
        self._roots: Dict[str, str] = {}
        self._sources: Dict[str, Dict[str, Any]] = {}
        self._listeners: List[Callable[["ResultSet"], None]] = []

    # ── Mapping protocol ──────────────────────

    def __getitem__(self, key: str) -> Any:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ResultSet({sorted(self._entries)})"

    def root_of(self, key: str) -> Optional[str]:
        """Root whose item is exposed for ``key``."""
        return self._roots.get(key)

    def roots_of(self, key: str) -> List[str]:
        """Every root currently providing ``key``."""
        return list(self._sources.get(key, {}))

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data projection: ``{key: item.to_dict()}``."""
        return {
            key: item.to_dict() if hasattr(item, "to_dict") else item
            for key, item in self._entries.items()
        }

    # ── Updates ───────────────────────────────

    def merge(self, roots: Sequence[str], found: Sequence[Tuple[str, Any]]) -> bool:
        """
        Apply the outcome of scanning ``roots``.

        Args:
            roots: Root paths that were scanned
            found: ``(root, item)`` pairs that matched

        Returns:
            True when the set changed (listeners have been notified).
        """
        scanned = set(roots)
        fresh: Dict[str, Dict[str, Any]] = {}
        for root, item in found:
            fresh.setdefault(root, {}).setdefault(item.key, item)

        for key, by_root in self._sources.items():
            for root in [r for r in by_root if r in scanned and key not in fresh.get(r, {})]:
                del by_root[root]

        for root, items in fresh.items():
            for key, item in items.items():
                self._sources.setdefault(key, {})[root] = item

        before = dict(self._entries)
        for key in [k for k, by_root in self._sources.items() if not by_root]:
            del self._sources[key]

        self._entries = {}
        roots_now: Dict[str, str] = {}
        for key, by_root in self._sources.items():
            # The exposed root sticks while it still provides the key
            root = self._roots.get(key)
            if root not in by_root:
                root = next(iter(by_root))
            roots_now[key] = root
            self._entries[key] = by_root[root]
        self._roots = roots_now

        changed = before != self._entries
        if changed:
            self._notify()
        return changed

    def clear(self) -> None:
        if self._entries:
            self._entries.clear()
            self._roots.clear()
            self._sources.clear()
            self._notify()

    # ── Subscriptions ─────────────────────────

    def watch(self, callback: Callable[["ResultSet"], None]) -> Callable[[], None]:
        """Call ``callback(self)`` after every change; returns an unsubscribe function."""
        self._listeners.append(callback)

        def unwatch() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unwatch

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)


# ──────────────────────────────────────────────
#  Scanner
# ──────────────────────────────────────────────

class Scanner:
    """
    Scans root paths with a detect function and caches the results.

    At most one pass per directory is in flight at a time; concurrent scans
    of the same directory share it.
    """

    def __init__(self, services: Optional[OsServices] = None) -> None:
        self.services = services or OsServices()
        self._cache: Dict[str, ResultSet] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}

    async def scan(
        self,
        paths: Sequence[str],
        detect_fn: DetectFn,
        path_hash: Optional[str] = None,
        force: bool = False,
    ) -> ResultSet:
        """
        Args:
            paths:     Root directories to scan
            detect_fn: Coroutine returning a match for a directory or None
            path_hash: Cache key; defaults to ``hash_paths(paths)``
            force:     Re-scan even when cached results exist

        Returns:
            The (live) ResultSet for ``path_hash``.
        """
        path_hash = path_hash or hash_paths(paths)
        results = self._cache.get(path_hash)
        if results is not None and not force:
            return results
        if results is None:
            results = self._cache[path_hash] = ResultSet()

        batches = await asyncio.gather(*(self._scan_root(p, detect_fn) for p in paths))
        found = [(root, item) for root, items in zip(paths, batches) for item in items]
        if results.merge(paths, found):
            logger.info("Scan of %d path(s) now has %d result(s)", len(paths), len(results))
        return results

    def reset_cache(self) -> None:
        self._cache.clear()
        self._in_flight.clear()

    async def _scan_root(self, root: str, detect_fn: DetectFn) -> List[Any]:
        pending = self._in_flight.get(root)
        if pending is None:
            pending = asyncio.ensure_future(self._detect_under(root, detect_fn))
            self._in_flight[root] = pending
            pending.add_done_callback(lambda _f: self._forget(root, pending))
        return list(await asyncio.shield(pending))

    def _forget(self, root: str, task: asyncio.Future) -> None:
        if self._in_flight.get(root) is task:
            del self._in_flight[root]

    async def _detect_under(self, root: str, detect_fn: DetectFn) -> List[Any]:
        if not self.services.is_dir(root):
            return []

        item = await detect_fn(root)
        if item is not None:
            return [item]

        try:
            children = self.services.list_dirs(root)
        except OSError as exc:
            logger.warning("Cannot list %s: %s", root, exc)
            return []

        matches = await asyncio.gather(*(detect_fn(child) for child in children))
        return [m for m in matches if m is not None]
