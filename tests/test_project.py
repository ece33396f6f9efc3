"""Tests for project validation and opening."""

import json

import pytest

from auto_xcode.exceptions import ExternalToolFailure, UnexpectedOutputFormat
from auto_xcode.project import (
    ProjectSession,
    list_destinations,
    list_schemes,
    preferred_open_path,
    validate_project_path,
)
from conftest import CapturingLogger, FakeBridge, FakeExecutor, failed, listing, ok

STATUS = "isLoaded"
RUNNING = "'not-running'"
LAUNCH = "app.launch()"
OPEN = "app.open("
LOADED = "workspace.loaded()"


def _session(replies, executor=None):
    bridge = FakeBridge(replies)
    sleeps = []
    session = ProjectSession(bridge=bridge, executor=executor or FakeExecutor(), sleep=sleeps.append, logger=CapturingLogger())
    return session, bridge, sleeps


class TestValidation:
    def test_valid_project(self, project_path):
        assert validate_project_path(project_path) is None

    @pytest.mark.parametrize(
        "path, fragment",
        [
            ("", "Project path is required"),
            ("Demo/Demo.xcodeproj", "must be absolute"),
            ("/work/Demo/Demo.txt", "must end with .xcodeproj or .xcworkspace"),
            ("/definitely/missing/Demo.xcodeproj", "does not exist"),
        ],
    )
    def test_invalid_paths(self, path, fragment):
        result = validate_project_path(path)

        assert result.is_error
        assert fragment in result.first_text

    def test_project_without_pbxproj(self, tmp_path):
        project = tmp_path / "Broken.xcodeproj"
        project.mkdir()

        result = validate_project_path(str(project))

        assert "missing project.pbxproj" in result.first_text

    def test_workspace_without_contents(self, tmp_path):
        workspace = tmp_path / "Broken.xcworkspace"
        workspace.mkdir()

        result = validate_project_path(str(workspace))

        assert "missing contents.xcworkspacedata" in result.first_text

    def test_sibling_workspace_is_preferred(self, project_path, tmp_path):
        assert preferred_open_path(project_path) == project_path

        workspace = tmp_path / "Demo" / "Demo.xcworkspace"
        workspace.mkdir()

        assert preferred_open_path(project_path) == str(workspace)


class TestListings:
    def test_list_schemes(self):
        bridge = FakeBridge({"workspace.schemes().map": listing(["App", "AppTests"], "App")})

        assert list_schemes(bridge) == (["App", "AppTests"], "App")

    def test_list_destinations(self):
        bridge = FakeBridge({"workspace.runDestinations().map": listing(["My Mac"])})

        assert list_destinations(bridge) == (["My Mac"], None)

    def test_garbage_listing(self):
        bridge = FakeBridge({"workspace.schemes().map": "not json"})

        with pytest.raises(UnexpectedOutputFormat) as exc_info:
            list_schemes(bridge)

        assert exc_info.value.raw == "not json"


class TestProjectSession:
    def test_already_open_project_is_not_reopened(self, project_path):
        session, bridge, _ = _session({STATUS: json.dumps({"isOpen": True, "isLoaded": True})})

        result = session.open_project_and_wait(project_path)

        assert result.first_text == "Project is already open and loaded"
        assert not bridge.ran(OPEN)

    def test_opens_and_waits_until_loaded(self, project_path):
        loaded_replies = iter(["loading", "loading", "loaded"])

        class SequencedBridge(FakeBridge):
            def execute(self, script, timeout=None):
                if LOADED in script:
                    self.scripts.append(script)
                    return next(loaded_replies)
                return super().execute(script, timeout)

        bridge = SequencedBridge({STATUS: json.dumps({"isOpen": False}), RUNNING: "running", OPEN: "Project opened successfully"})
        sleeps = []
        session = ProjectSession(bridge=bridge, executor=FakeExecutor(), sleep=sleeps.append, logger=CapturingLogger())

        result = session.open_project_and_wait(project_path)

        assert not result.is_error
        assert result.first_text == "Project opened and loaded successfully"
        assert sleeps == [1.0, 1.0]
        assert json.dumps(project_path) in next(s for s in bridge.scripts if OPEN in s)

    def test_gives_up_when_never_loaded(self):
        session, _, sleeps = _session({LOADED: "loading"})

        result = session.wait_for_project_to_load(max_retries=3, delay=1.0)

        assert result.is_error
        assert "failed to load after 3 attempts" in result.first_text
        assert sleeps == [1.0, 1.0]

    def test_invalid_path_stops_before_the_ide(self):
        session, bridge, _ = _session({})

        result = session.open_project("relative/Demo.xcodeproj")

        assert result.is_error
        assert bridge.scripts == []

    def test_launches_ide_when_not_running(self, project_path):
        executor = FakeExecutor([ok("/Applications/Xcode.app/Contents/Developer\n")])
        session, bridge, _ = _session({RUNNING: "not-running", LAUNCH: "launched", OPEN: "Project opened successfully"}, executor)

        result = session.open_project(project_path)

        assert result.first_text == "Project opened successfully"
        launch = next(s for s in bridge.scripts if LAUNCH in s)
        assert '"/Applications/Xcode.app"' in launch

    def test_missing_ide_installation(self, project_path):
        executor = FakeExecutor([failed("xcode-select: error: unable to get active developer directory")])
        session, _, _ = _session({RUNNING: "not-running"}, executor)

        result = session.open_project(project_path)

        assert result.is_error
        assert "No Xcode installation found" in result.first_text

    def test_open_failure_is_reported(self, project_path):
        session, _, _ = _session({RUNNING: "running", OPEN: ExternalToolFailure("Script execution failed: boom")})

        result = session.open_project(project_path)

        assert result.is_error
        assert result.first_text == "Failed to open project: Script execution failed: boom"
