"""
Utility classes for running the external tools Auto-Xcode drives.
"""

import os
import shlex
import signal
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

from .logger_config import get_logger

logger = get_logger(__name__)


VERBOSE_ENV_FLAG = "AUTO_XCODE_VERBOSE"


@dataclass
class CommandResult:
    """Result of a command execution."""

    success: bool
    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False
    spawn_failed: bool = False


class CommandExecutor:
    """Utility class for executing commands with consistent error handling."""

    # Default timeouts for different command types (seconds)
    DEFAULT_TIMEOUTS = {
        "osascript": 30,
        "xclogparser": 300,
        "xcrun": 15,
        "ffmpeg": 120,
        "defaults": 10,
        "default": 60,
    }

    # Grace period between SIGTERM and SIGKILL when a command times out
    TERMINATE_GRACE = 0.5

    @staticmethod
    def _terminate(process: "subprocess.Popen[str]") -> None:
        """Stop a child that overran its timeout. Errors on an already-exited process are ignored."""
        try:
            process.send_signal(signal.SIGTERM)
        except (ProcessLookupError, OSError):
            return
        try:
            process.wait(timeout=CommandExecutor.TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            try:
                process.kill()
            except (ProcessLookupError, OSError):
                pass
            try:
                process.wait(timeout=CommandExecutor.TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process {process.pid} did not exit after SIGKILL")

    @classmethod
    def run_command(
        cls,
        cmd: List[str],
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run a command with consistent error handling.

        Never raises for process-level failures: a timeout, a missing
        executable, or a non-zero exit all come back as a ``CommandResult``.
        """
        if timeout is None:
            cmd_type = os.path.basename(cmd[0]) if cmd else "default"
            timeout = cls.DEFAULT_TIMEOUTS.get(cmd_type, cls.DEFAULT_TIMEOUTS["default"])

        command_display = shlex.join(cmd) if cmd else ""
        log_message = f"Executing command (timeout={timeout}s): {command_display[:300]}"
        if os.environ.get(VERBOSE_ENV_FLAG, "").strip().lower() in {"1", "true", "yes"}:
            logger.info(log_message)
        else:
            logger.debug(log_message)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=cwd,
                env=env,
            )
        except OSError as e:
            logger.error(f"Failed to spawn command: {cmd[0] if cmd else ''}: {e}")
            return CommandResult(success=False, stdout="", stderr=str(e), returncode=-1, spawn_failed=True)

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            cls._terminate(process)
            logger.error(f"Command timed out after {timeout}s: {command_display[:300]}")
            return CommandResult(
                success=False,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                returncode=-1,
                timed_out=True,
            )

        return CommandResult(success=process.returncode == 0, stdout=stdout or "", stderr=stderr or "", returncode=process.returncode)
