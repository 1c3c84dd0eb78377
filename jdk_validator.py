"""
jdk_validator.py
================
Decide whether a directory is a JDK and extract its identity.

A directory is a JDK when:
  1. the JVM shared library sits at one of the known relative locations,
  2. ``bin/`` holds java, javac, keytool and jarsigner, and
  3. ``javac -version`` can be run (first with ``-d64``, then without).

Failing any step yields ``None``; nothing in here raises for a directory
that merely is not a JDK.

Layout notes:
  Linux    – lib/<arch>/<vm>/libjvm.so (JDK 8: under jre/)
  macOS    – bundles wrap the real root in Contents/Home
  Windows  – jre/bin/<vm>/jvm.dll, executables carry .exe
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from os_services import OsServices

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

REQUIRED_EXECUTABLES: Tuple[str, ...] = ("java", "javac", "keytool", "jarsigner")

# Relative locations of the JVM library, checked before spawning anything
LIBJVM_LOCATIONS: Dict[str, List[str]] = {
    "linux": [
        "lib/amd64/client/libjvm.so",
        "lib/amd64/server/libjvm.so",
        "lib/i386/client/libjvm.so",
        "lib/i386/server/libjvm.so",
        "jre/lib/amd64/client/libjvm.so",
        "jre/lib/amd64/server/libjvm.so",
        "jre/lib/i386/client/libjvm.so",
        "jre/lib/i386/server/libjvm.so",
        # JDK 9+ dropped the arch directory and the jre/ wrapper
        "lib/client/libjvm.so",
        "lib/server/libjvm.so",
        "jre/lib/server/libjvm.so",
    ],
    "darwin": [
        "jre/lib/server/libjvm.dylib",
        "../Libraries/libjvm.dylib",
        "lib/server/libjvm.dylib",
    ],
    "win32": [
        "jre/bin/server/jvm.dll",
        "jre/bin/client/jvm.dll",
        "bin/server/jvm.dll",
        "bin/client/jvm.dll",
    ],
}

ARCH_64 = "64bit"
ARCH_32 = "32bit"

_VERSION_RE = re.compile(r"javac (.+)_(.+)")


# ──────────────────────────────────────────────
#  JdkInfo
# ──────────────────────────────────────────────

@dataclass
class JdkInfo:
    """A validated JDK installation."""

    path: str
    version: Optional[str] = None
    build: Optional[str] = None
    architecture: Optional[str] = None     # 64bit | 32bit
    executables: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Identity key ``<version>_<build>``; absent parts render as ``null``."""
        version = self.version if self.version is not None else "null"
        build = self.build if self.build is not None else "null"
        return f"{version}_{build}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "version": self.version,
            "build": self.build,
            "architecture": self.architecture,
            "executables": dict(self.executables),
        }


def parse_version_banner(output: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Extract ``(version, build)`` from ``javac -version`` output.

    >>> parse_version_banner("javac 1.8.0_202")
    ('1.8.0', '202')
    >>> parse_version_banner("javac 17.0.2")
    (None, None)
    """
    match = _VERSION_RE.search(output or "")
    if not match:
        return None, None
    return match.group(1).strip(), match.group(2).strip()


# ──────────────────────────────────────────────
#  JdkValidator
# ──────────────────────────────────────────────

class JdkValidator:
    """
    Validates candidate JDK directories.

    Args:
        services: OS service layer (filesystem checks, process spawning)
        platform: ``sys.platform`` style identifier (linux | darwin | win32)
    """

    def __init__(
        self,
        services: Optional[OsServices] = None,
        platform: str = sys.platform,
    ) -> None:
        self.services = services or OsServices()
        self.platform = "linux" if platform.startswith("linux") else platform
        self.exe_suffix = ".exe" if self.platform == "win32" else ""

    async def validate(self, directory: str) -> Optional[JdkInfo]:
        """
        Return a ``JdkInfo`` when ``directory`` holds a JDK, otherwise None.

        Never raises for a directory that is not a JDK or is broken.
        """
        try:
            return await self._validate(directory)
        except Exception as exc:
            logger.debug("Validation of %s failed: %s", directory, exc)
            return None

    __call__ = validate

    async def _validate(self, directory: str) -> Optional[JdkInfo]:
        fs = self.services

        if self.platform == "darwin":
            bundle_home = os.path.join(directory, "Contents", "Home")
            if fs.exists(bundle_home):
                directory = bundle_home

        if not self._has_libjvm(directory):
            logger.debug("No libjvm under %s", directory)
            return None

        executables: Dict[str, str] = {}
        for tool in REQUIRED_EXECUTABLES:
            candidate = os.path.join(directory, "bin", tool + self.exe_suffix)
            if not fs.is_file(candidate):
                logger.debug("Missing %s in %s", tool, directory)
                return None
            executables[tool] = fs.realpath(candidate)

        reply = await self._query_compiler(executables["javac"])
        if reply is None:
            return None
        output, architecture = reply

        version, build = parse_version_banner(output)
        if version is None:
            logger.debug("Unrecognised javac banner in %s: %r", directory, output.strip())

        info = JdkInfo(
            path=directory,
            version=version,
            build=build,
            architecture=architecture,
            executables=executables,
        )
        logger.debug("JDK %s (%s) at %s", info.key, architecture, directory)
        return info

    def _has_libjvm(self, directory: str) -> bool:
        locations = LIBJVM_LOCATIONS.get(self.platform)
        if not locations:
            return False
        return any(
            self.services.exists(os.path.normpath(os.path.join(directory, rel)))
            for rel in locations
        )

    async def _query_compiler(self, javac: str) -> Optional[Tuple[str, str]]:
        """Run ``javac -version``; returns ``(stderr, architecture)`` or None."""
        try:
            result = await self.services.run(javac, ["-version", "-d64"])
            return result.stderr, ARCH_64
        except Exception as exc:
            logger.debug("64-bit version query of %s failed (%s), retrying", javac, exc)

        try:
            result = await self.services.run(javac, ["-version"])
            return result.stderr, ARCH_32
        except Exception as exc:
            logger.debug("javac version query failed for %s: %s", javac, exc)
            return None
