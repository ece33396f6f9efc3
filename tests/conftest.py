"""
Pytest configuration and fixtures for Auto-Xcode tests.
"""

import sys
from pathlib import Path

# Ensure 'src' directory is on sys.path so 'auto_xcode' package is importable everywhere
_repo_root = Path(__file__).resolve().parents[1]
_src_path = _repo_root / "src"
if str(_src_path) not in sys.path:
    sys.path.insert(0, str(_src_path))

import json
import os
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from auto_xcode.config import settings
from auto_xcode.utils import CommandResult


class CapturingLogger:
    """Diagnostics sink that records (level, message) pairs."""

    def __init__(self):
        self.records: List[Tuple[str, str]] = []

    def _record(self, level: str, message: str, *args, **kwargs) -> None:
        self.records.append((level, str(message)))

    def debug(self, message, *args, **kwargs):
        self._record("debug", message)

    def info(self, message, *args, **kwargs):
        self._record("info", message)

    def warning(self, message, *args, **kwargs):
        self._record("warning", message)

    def error(self, message, *args, **kwargs):
        self._record("error", message)

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [message for lvl, message in self.records if level is None or lvl == level]


class FakeClock:
    """Wall clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeExecutor:
    """Stands in for CommandExecutor; replies from a queue or a responder function."""

    def __init__(self, responses: Optional[List[CommandResult]] = None, responder: Optional[Callable] = None):
        self.responses = list(responses or [])
        self.responder = responder
        self.calls: List[Tuple[List[str], Optional[float]]] = []

    def run_command(self, cmd, timeout=None, cwd=None, env=None) -> CommandResult:
        self.calls.append((list(cmd), timeout))
        if self.responder is not None:
            return self.responder(list(cmd))
        if self.responses:
            return self.responses.pop(0)
        return ok("")


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(success=True, stdout=stdout, stderr="", returncode=0)


def failed(stderr: str, returncode: int = 1) -> CommandResult:
    return CommandResult(success=False, stdout="", stderr=stderr, returncode=returncode)


class FakeBridge:
    """Script bridge that answers by matching substrings of the script text.

    ``replies`` maps a substring to either a string or an exception instance.
    The first matching key wins; unmatched scripts return ``default``.
    """

    def __init__(self, replies: Optional[Dict[str, object]] = None, default: str = "ok"):
        self.replies = dict(replies or {})
        self.default = default
        self.scripts: List[str] = []

    def execute(self, script: str, timeout: Optional[float] = None) -> str:
        self.scripts.append(script)
        for marker, reply in self.replies.items():
            if marker in script:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        return self.default

    def ran(self, marker: str) -> bool:
        return any(marker in script for script in self.scripts)


def listing(names: List[str], active: Optional[str] = None) -> str:
    return json.dumps({"names": names, "active": active})


def set_mtime(path, mtime: float) -> None:
    os.utime(path, (mtime, mtime))


@pytest.fixture
def capturing_logger() -> CapturingLogger:
    return CapturingLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def project_path(tmp_path) -> str:
    """A minimal on-disk .xcodeproj that passes path validation."""
    project = tmp_path / "Demo" / "Demo.xcodeproj"
    project.mkdir(parents=True)
    (project / "project.pbxproj").write_text("// !$*UTF8*$!\n")
    return str(project)


@pytest.fixture
def artifact_root(tmp_path) -> Path:
    root = tmp_path / "DerivedData"
    root.mkdir()
    return root


@pytest.fixture(autouse=True)
def _isolated_export_dir(tmp_path, monkeypatch):
    """Keep exported attachments inside the test's temporary directory."""
    export_dir = tmp_path / "exports"
    monkeypatch.setattr(settings, "attachment_export_dir", str(export_dir))
    monkeypatch.setattr(settings, "artifact_root_override", None)
    return export_dir
