"""
Locate the per-project artifact cache (DerivedData) and the files inside it.

Nothing here is cached: each call re-reads the filesystem, because the
"latest" log or bundle can change between two polling iterations.
"""

import os
import plistlib
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .config import settings
from .logger_config import get_logger, log_calls
from .models import BuildLogInfo, ResultBundleInfo
from .utils import CommandExecutor

PROJECT_EXTENSIONS = (".xcodeproj", ".xcworkspace")
BUILD_LOG_EXTENSION = ".xcactivitylog"
RESULT_BUNDLE_EXTENSION = ".xcresult"
MANIFEST_NAME = "info.plist"
DEFAULT_ARTIFACT_ROOT = Path("~/Library/Developer/Xcode/DerivedData")


def split_project_path(project_path: str) -> Tuple[str, str]:
    """Return ``(project_name, project_dir)`` for a project file or a directory containing one."""
    path = Path(project_path)
    if path.suffix in PROJECT_EXTENSIONS:
        return path.stem, str(path.parent)

    try:
        for entry in sorted(os.listdir(path)):
            entry_path = Path(entry)
            if entry_path.suffix in PROJECT_EXTENSIONS:
                return entry_path.stem, str(path)
    except OSError:
        pass
    return path.stem, str(path)


def _is_within(child: str, parent: str) -> bool:
    return child.startswith(parent.rstrip(os.sep) + os.sep)


def paths_match(project_dir: str, recorded_path: str) -> bool:
    """Exact match, or one path nested inside the other."""
    project = os.path.abspath(project_dir)
    recorded = os.path.abspath(recorded_path)
    return project == recorded or _is_within(recorded, project) or _is_within(project, recorded)


def read_manifest_workspace_path(cache_dir: str) -> Optional[str]:
    """Return the source path recorded in a cache directory's manifest, if readable."""
    manifest = Path(cache_dir) / MANIFEST_NAME
    try:
        with open(manifest, "rb") as f:
            data = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException, ValueError):
        return None
    workspace_path = data.get("WorkspacePath") if isinstance(data, dict) else None
    return workspace_path if isinstance(workspace_path, str) and workspace_path else None


def _newest_first(entries: List[Tuple[str, float]]) -> List[Tuple[str, float]]:
    return sorted(entries, key=lambda entry: entry[1], reverse=True)


class ArtifactLocator:
    """Finds build logs and result bundles for a project."""

    def __init__(
        self,
        override_location: Optional[str] = None,
        executor: Any = CommandExecutor,
        logger: Any = None,
    ):
        self.override_location = override_location if override_location is not None else settings.artifact_root_override
        self.executor = executor
        self.logger = logger or get_logger(__name__)

    def read_ide_custom_location(self) -> Optional[str]:
        """Custom artifact location configured in the IDE's preferences, if any."""
        result = self.executor.run_command(
            [settings.defaults_command, "read", "com.apple.dt.Xcode", "IDECustomDerivedDataLocation"],
            timeout=CommandExecutor.DEFAULT_TIMEOUTS["defaults"],
        )
        location = result.stdout.strip() if result.success else ""
        return location or None

    def find_artifact_root(self, project_path: str, override_location: Optional[str] = None) -> str:
        """Resolve the artifact root for ``project_path``.

        An absolute override is used as-is; a relative one is resolved against
        the directory holding the project file; without an override the
        per-user default applies.
        """
        override = override_location or self.override_location or self.read_ide_custom_location()
        if not override:
            return str(DEFAULT_ARTIFACT_ROOT.expanduser())
        if os.path.isabs(override):
            return override
        return os.path.join(os.path.dirname(project_path), override)

    @log_calls
    def find_project_cache_dir(self, root: str, project_name: str, project_dir: str) -> Optional[str]:
        """Pick the ``<project_name>-<hash>`` directory that belongs to ``project_dir``.

        With several candidates, the first whose manifest records a matching
        source path wins. Returns None when nothing matches.
        """
        try:
            entries = sorted(os.listdir(root))
        except OSError:
            return None

        candidates = [os.path.join(root, entry) for entry in entries if entry.startswith(f"{project_name}-") and os.path.isdir(os.path.join(root, entry))]
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]

        for candidate in candidates:
            recorded = read_manifest_workspace_path(candidate)
            if recorded and paths_match(project_dir, recorded):
                return candidate

        self.logger.debug(f"No cache directory among {len(candidates)} candidates matches {project_dir}")
        return None

    def find_project_cache(self, project_path: str) -> Optional[str]:
        project_name, project_dir = split_project_path(project_path)
        root = self.find_artifact_root(project_path)
        return self.find_project_cache_dir(root, project_name, project_dir)

    def _list_entries(self, project_path: str, subdir: str, extension: str) -> List[Tuple[str, float]]:
        cache_dir = self.find_project_cache(project_path)
        if not cache_dir:
            return []
        directory = os.path.join(cache_dir, "Logs", subdir)
        entries: List[Tuple[str, float]] = []
        try:
            names = os.listdir(directory)
        except OSError:
            return []
        for name in names:
            if not name.endswith(extension):
                continue
            full_path = os.path.join(directory, name)
            try:
                entries.append((full_path, os.stat(full_path).st_mtime))
            except OSError:
                # Deleted between listing and stat
                continue
        return _newest_first(entries)

    def get_latest_build_log(self, project_path: str) -> Optional[BuildLogInfo]:
        entries = self._list_entries(project_path, "Build", BUILD_LOG_EXTENSION)
        if not entries:
            return None
        path, mtime = entries[0]
        return BuildLogInfo(path=path, modified_time=mtime)

    def get_recent_build_logs(self, project_path: str, since: float) -> List[BuildLogInfo]:
        """Logs modified strictly after ``since``, newest first; falls back to the latest log."""
        entries = self._list_entries(project_path, "Build", BUILD_LOG_EXTENSION)
        recent = [BuildLogInfo(path=path, modified_time=mtime) for path, mtime in entries if mtime > since]
        if not recent and entries:
            self.logger.warning("No recent build logs found, falling back to latest log")
            path, mtime = entries[0]
            return [BuildLogInfo(path=path, modified_time=mtime)]
        return recent

    def list_result_bundles(self, project_path: str) -> List[ResultBundleInfo]:
        """All result bundles for the project, newest first."""
        return [ResultBundleInfo(path=path, modified_time=mtime) for path, mtime in self._list_entries(project_path, "Test", RESULT_BUNDLE_EXTENSION)]

    def get_latest_result_bundle(self, project_path: str) -> Optional[ResultBundleInfo]:
        bundles = self.list_result_bundles(project_path)
        return bundles[0] if bundles else None
