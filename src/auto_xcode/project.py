"""
Project path validation and getting a project open and loaded in the IDE.
"""

import json
import os
import time
from typing import Any, Callable, List, Optional, Tuple

from . import jxa_scripts
from .error_guidance import create_error_with_guidance, project_not_found_guidance
from .exceptions import AutoXcodeError, UnexpectedOutputFormat
from .logger_config import get_logger
from .models import ToolResult
from .script_bridge import ScriptBridge
from .utils import CommandExecutor

PROJECT_SUFFIX = ".xcodeproj"
WORKSPACE_SUFFIX = ".xcworkspace"

_ABSOLUTE_PATH_GUIDANCE = "\n".join(
    [
        "• Use an absolute path starting with /",
        "• Example: /Users/username/MyApp/MyApp.xcodeproj",
        "• Avoid relative paths like ./MyApp.xcodeproj",
    ]
)


def _corrupted_guidance(kind: str) -> str:
    return "\n".join(
        [
            f"• The {kind} file appears to be corrupted or incomplete",
            f"• Try recreating the {kind} in Xcode",
            "• Check if you have the correct permissions to access the file",
            f"• Make sure the {kind} wasn't partially copied",
        ]
    )


def validate_project_path(project_path: str) -> Optional[ToolResult]:
    """Return an error result describing what is wrong with ``project_path``, or None if it is usable."""
    if not project_path:
        guidance = "\n".join(
            [
                "• Specify the absolute path to your .xcodeproj or .xcworkspace file",
                "• Example: /Users/username/MyApp/MyApp.xcodeproj",
            ]
        )
        return ToolResult.text(create_error_with_guidance("Project path is required", guidance), is_error=True)

    if not os.path.isabs(project_path):
        return ToolResult.text(
            create_error_with_guidance(f"Project path must be absolute, got: {project_path}", _ABSOLUTE_PATH_GUIDANCE),
            is_error=True,
        )

    if not project_path.endswith((PROJECT_SUFFIX, WORKSPACE_SUFFIX)):
        return ToolResult.text(
            create_error_with_guidance(
                f"Project path must end with {PROJECT_SUFFIX} or {WORKSPACE_SUFFIX}, got: {project_path}",
                project_not_found_guidance(project_path),
            ),
            is_error=True,
        )

    if not os.path.exists(project_path):
        return ToolResult.text(
            create_error_with_guidance(f"Project file does not exist: {project_path}", project_not_found_guidance(project_path)),
            is_error=True,
        )

    if project_path.endswith(PROJECT_SUFFIX):
        pbxproj = os.path.join(project_path, "project.pbxproj")
        if not os.path.exists(pbxproj):
            return ToolResult.text(
                create_error_with_guidance(f"Project is missing project.pbxproj file: {pbxproj}", _corrupted_guidance("project")),
                is_error=True,
            )
    else:
        workspace_data = os.path.join(project_path, "contents.xcworkspacedata")
        if not os.path.exists(workspace_data):
            return ToolResult.text(
                create_error_with_guidance(
                    f"Workspace is missing contents.xcworkspacedata file: {workspace_data}",
                    _corrupted_guidance("workspace"),
                ),
                is_error=True,
            )

    return None


def preferred_open_path(project_path: str) -> str:
    """A sibling ``.xcworkspace`` is opened instead of the ``.xcodeproj`` when present."""
    if project_path.endswith(PROJECT_SUFFIX):
        workspace = project_path[: -len(PROJECT_SUFFIX)] + WORKSPACE_SUFFIX
        if os.path.exists(workspace):
            return workspace
    return project_path


def _parse_listing(output: str) -> Tuple[List[str], Optional[str]]:
    try:
        data = json.loads(output)
    except ValueError as e:
        raise UnexpectedOutputFormat(f"Unexpected listing output from the IDE: {e}", raw=output) from e
    names = [str(name) for name in data.get("names") or []] if isinstance(data, dict) else []
    return names, data.get("active") if isinstance(data, dict) else None


def list_schemes(bridge: ScriptBridge) -> Tuple[List[str], Optional[str]]:
    """Enumerate scheme names live from the IDE. Returns ``(names, active_name)``."""
    return _parse_listing(bridge.execute(jxa_scripts.list_schemes_script()))


def list_destinations(bridge: ScriptBridge) -> Tuple[List[str], Optional[str]]:
    return _parse_listing(bridge.execute(jxa_scripts.list_destinations_script()))


class ProjectSession:
    """Opens projects in the IDE and waits for them to finish loading."""

    def __init__(
        self,
        bridge: Optional[ScriptBridge] = None,
        executor: Any = CommandExecutor,
        sleep: Callable[[float], None] = time.sleep,
        logger: Any = None,
    ):
        self.bridge = bridge or ScriptBridge()
        self.executor = executor
        self.sleep = sleep
        self.logger = logger or get_logger(__name__)

    def _ide_app_path(self) -> Optional[str]:
        result = self.executor.run_command(["xcode-select", "-p"], timeout=10)
        developer_dir = result.stdout.strip() if result.success else ""
        if not developer_dir:
            return None
        return developer_dir.replace("/Contents/Developer", "")

    def ensure_ide_running(self) -> Optional[ToolResult]:
        """Launch the IDE if needed. Returns an error result when it cannot be started."""
        try:
            if self.bridge.execute(jxa_scripts.ide_running_script()) == "running":
                return None
        except AutoXcodeError as e:
            self.logger.debug(f"IDE running check failed, attempting launch: {e.message}")

        app_path = self._ide_app_path()
        if not app_path:
            return ToolResult.text(
                "❌ No Xcode installation found\n\n💡 To fix this:\n"
                "• Install Xcode from the Mac App Store\n"
                "• Run: sudo xcode-select -s /Applications/Xcode.app/Contents/Developer",
                is_error=True,
            )

        try:
            status = self.bridge.execute(jxa_scripts.launch_ide_script(app_path), timeout=60)
        except AutoXcodeError as e:
            return ToolResult.text(f"❌ Failed to launch Xcode: {e.message}", is_error=True)

        if status != "launched":
            return ToolResult.text(
                "❌ Failed to launch Xcode - timed out after 30 seconds\n\n💡 Try:\n"
                "• Manually launching Xcode once\n• Checking Xcode installation",
                is_error=True,
            )
        self.logger.info(f"Launched Xcode from {app_path}")
        return None

    def open_project(self, project_path: str) -> ToolResult:
        validation_error = validate_project_path(project_path)
        if validation_error:
            return validation_error

        actual_path = preferred_open_path(project_path)

        ide_error = self.ensure_ide_running()
        if ide_error:
            return ide_error

        try:
            result = self.bridge.execute(jxa_scripts.open_project_script(actual_path))
        except AutoXcodeError as e:
            return ToolResult.text(f"Failed to open project: {e.message}", is_error=True)

        if actual_path != project_path:
            return ToolResult.text(f"Opened workspace instead of project: {result}")
        return ToolResult.text(result)

    def wait_for_project_to_load(self, max_retries: int = 30, delay: float = 1.0) -> Optional[ToolResult]:
        """Poll until the active workspace reports loaded. Returns an error result on give-up."""
        last_status = "unknown"
        for attempt in range(max_retries):
            try:
                last_status = self.bridge.execute(jxa_scripts.workspace_loaded_script())
            except AutoXcodeError as e:
                last_status = e.message
            if last_status == "loaded":
                return None
            self.logger.debug(f"Project not loaded yet ({last_status}), attempt {attempt + 1}/{max_retries}")
            if attempt < max_retries - 1:
                self.sleep(delay)

        return ToolResult.text(
            f"❌ Project failed to load after {max_retries} attempts ({max_retries * delay:g}s)\n\n"
            f"Last status: {last_status}\n\n💡 Try:\n"
            "• Manually opening the project in Xcode\n"
            "• Checking if the project file is corrupted",
            is_error=True,
        )

    def open_project_and_wait(self, project_path: str) -> ToolResult:
        """Make sure ``project_path`` is the active, loaded workspace."""
        try:
            status = json.loads(self.bridge.execute(jxa_scripts.active_workspace_status_script(project_path)))
            if status.get("isOpen") and status.get("isLoaded"):
                return ToolResult.text("Project is already open and loaded")
        except (AutoXcodeError, ValueError, AttributeError) as e:
            self.logger.debug(f"Could not query the active workspace, opening project: {e}")

        open_result = self.open_project(project_path)
        if open_result.is_error:
            return open_result

        wait_error = self.wait_for_project_to_load()
        if wait_error:
            return wait_error
        return ToolResult.text("Project opened and loaded successfully")
