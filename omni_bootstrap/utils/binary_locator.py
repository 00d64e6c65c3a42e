"""
Discovery of the Omni server binary inside the container image.

The upstream image does not guarantee where ``omni`` lives, so the entrypoint
tries a fixed sequence of strategies and stops at the first hit:

    1. fixed paths         /usr/bin/omni, /usr/local/bin/omni, /bin/omni, /sbin/omni
    2. PATH lookup         ``omni``
    3. install dirs        /usr /bin /sbin /opt /workspace /app, depth 3
    4. working directory   ./omni
    5. deep search         from /, depth 6, skipping virtual mounts
    6. alternate names     omni-server, omni-linux-amd64, omni-linux-arm64 on PATH
    7. override / handoff  OMNI_BINARY, else the image's own entrypoint script

Search roots, depths and exclusions live in ``LocatorSettings`` and all
filesystem access goes through ``FileSystem`` so the order can be exercised
against a fake tree.
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from omni_bootstrap.errors import BinaryNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocatorSettings:
    binary_name: str = 'omni'
    fixed_paths: Tuple[str, ...] = (
        '/usr/bin/omni',
        '/usr/local/bin/omni',
        '/bin/omni',
        '/sbin/omni',
    )
    install_dirs: Tuple[str, ...] = ('/usr', '/bin', '/sbin', '/opt', '/workspace', '/app')
    install_search_depth: int = 3
    deep_search_root: str = '/'
    deep_search_depth: int = 6
    deep_search_exclude: Tuple[str, ...] = (
        '/proc',
        '/sys',
        '/dev',
        '/tmp',
        '/run',
        '/var/run',
        '/var/tmp',
    )
    alternate_names: Tuple[str, ...] = ('omni-server', 'omni-linux-amd64', 'omni-linux-arm64')
    fallback_entrypoints: Tuple[str, ...] = (
        '/docker-entrypoint.sh',
        '/usr/local/bin/docker-entrypoint.sh',
    )


@dataclass(frozen=True)
class LocatedBinary:
    """
    Result of a successful search.

    ``delegate`` is True when ``path`` is a fallback entrypoint script that
    should be exec'd as-is instead of the Omni binary.
    """
    path: str
    strategy: str
    delegate: bool = False


class FileSystem:
    """Filesystem primitives used by the locator."""

    def is_executable_file(self, path: str) -> bool:
        return os.path.isfile(path) and os.access(path, os.X_OK)

    def which(self, name: str, path: Optional[str] = None) -> Optional[str]:
        return shutil.which(name, path=path)

    def getcwd(self) -> str:
        return os.getcwd()

    def walk(self, root: str) -> Iterator[Tuple[str, List[str], List[str]]]:
        """Top-down ``os.walk``; callers may prune the yielded dir list in place."""
        return os.walk(root, topdown=True, followlinks=False)

    def realpath(self, path: str) -> str:
        return os.path.realpath(path)


def _depth(root: str, path: str) -> int:
    rel = os.path.relpath(path, root)
    return 0 if rel == '.' else rel.count(os.sep) + 1


class BinaryLocator:
    """Find the executable to launch, trying each strategy in a fixed order."""

    def __init__(self, settings: Optional[LocatorSettings] = None, fs: Optional[FileSystem] = None,
                 search_path: Optional[str] = None, binary_override: str = '',
                 fallback_entrypoint: str = '', self_path: Optional[str] = None):
        self.settings = settings or LocatorSettings()
        self.fs = fs or FileSystem()
        self.search_path = search_path if search_path is not None else os.environ.get('PATH', '')
        self.binary_override = binary_override
        self.fallback_entrypoint = fallback_entrypoint
        self.self_path = self_path if self_path is not None else os.path.abspath(sys.argv[0])

    @classmethod
    def from_config(cls, config, **kwargs) -> 'BinaryLocator':
        kwargs.setdefault('search_path', config.search_path)
        return cls(
            binary_override=config.binary_override,
            fallback_entrypoint=config.fallback_entrypoint,
            **kwargs,
        )

    def strategies(self):
        """Ordered (description, callable) pairs."""
        s = self.settings
        return [
            (f"fixed paths ({', '.join(s.fixed_paths)})", self._fixed_paths),
            (f"PATH lookup of '{s.binary_name}'", self._path_lookup),
            (f"search of {', '.join(s.install_dirs)} (depth {s.install_search_depth})", self._install_dirs),
            ("current working directory", self._working_directory),
            (f"filesystem search from {s.deep_search_root} (depth {s.deep_search_depth})", self._deep_search),
            (f"alternate names on PATH ({', '.join(s.alternate_names)})", self._alternate_names),
            ("OMNI_BINARY override or fallback entrypoint", self._override_or_fallback),
        ]

    def locate(self) -> LocatedBinary:
        """
        Run the strategies in order and return the first hit.

        Raises:
            BinaryNotFound: Listing every strategy that was attempted.
        """
        logger.info("No command provided, searching for %s binary...", self.settings.binary_name)
        attempted = []
        for description, strategy in self.strategies():
            attempted.append(description)
            found = strategy()
            if found is not None:
                located = found if isinstance(found, LocatedBinary) else LocatedBinary(found, description)
                logger.info("Found %s at: %s (via %s)", self.settings.binary_name, located.path, description)
                return located
            logger.debug("Strategy '%s' found nothing", description)

        raise BinaryNotFound(f"{self.settings.binary_name} binary not found", attempted)

    def _fixed_paths(self) -> Optional[str]:
        for path in self.settings.fixed_paths:
            if self.fs.is_executable_file(path):
                return path
        return None

    def _path_lookup(self) -> Optional[str]:
        return self.fs.which(self.settings.binary_name, path=self.search_path)

    def _install_dirs(self) -> Optional[str]:
        for root in self.settings.install_dirs:
            found = self.search(root, self.settings.binary_name, self.settings.install_search_depth)
            if found:
                return found
        return None

    def _working_directory(self) -> Optional[str]:
        path = os.path.join(self.fs.getcwd(), self.settings.binary_name)
        if self.fs.is_executable_file(path):
            return path
        return None

    def _deep_search(self) -> Optional[str]:
        logger.info("Searching for %s binary in filesystem...", self.settings.binary_name)
        return self.search(
            self.settings.deep_search_root,
            self.settings.binary_name,
            self.settings.deep_search_depth,
            self.settings.deep_search_exclude,
        )

    def _alternate_names(self) -> Optional[str]:
        for name in self.settings.alternate_names:
            found = self.fs.which(name, path=self.search_path)
            if found:
                return found
        return None

    def _override_or_fallback(self) -> Optional[LocatedBinary]:
        if self.binary_override:
            if self.fs.is_executable_file(self.binary_override):
                return LocatedBinary(self.binary_override, 'OMNI_BINARY override')
            logger.warning("OMNI_BINARY=%s is not an executable file", self.binary_override)

        candidates = [self.fallback_entrypoint] if self.fallback_entrypoint else []
        candidates += list(self.settings.fallback_entrypoints)
        own = self.fs.realpath(self.self_path)
        for path in candidates:
            if self.fs.is_executable_file(path) and self.fs.realpath(path) != own:
                logger.warning("Delegating startup to fallback entrypoint %s", path)
                return LocatedBinary(path, 'fallback entrypoint', delegate=True)
        return None

    def search(self, root: str, name: str, max_depth: int,
               exclude: Sequence[str] = ()) -> Optional[str]:
        """
        Bounded-depth search for an executable file called ``name``.

        Directories are visited in sorted order so the first match is
        deterministic. Directories listed in ``exclude`` are never entered.
        """
        excluded = {os.path.normpath(p) for p in exclude}
        for top, dirs, files in self.fs.walk(root):
            depth = _depth(root, top)
            dirs[:] = sorted(
                d for d in dirs
                if os.path.normpath(os.path.join(top, d)) not in excluded
            )
            if depth + 1 >= max_depth:
                dirs[:] = []
            if depth + 1 > max_depth:
                continue
            if name in files:
                candidate = os.path.join(top, name)
                if self.fs.is_executable_file(candidate):
                    return candidate
        return None
