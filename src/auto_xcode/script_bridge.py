"""Send automation scripts to the IDE through the OS scripting host."""

from typing import Any, List, Optional

from .config import settings
from .error_guidance import parse_common_errors
from .exceptions import AutomationTimeoutError, ExternalToolFailure
from .logger_config import get_logger
from .utils import CommandExecutor


class ScriptBridge:
    """Runs a script through ``osascript -l JavaScript -e <script>``.

    The script text is opaque to this class. Output is returned trimmed on a
    zero exit; anything else raises.
    """

    def __init__(
        self,
        script_host: Optional[str] = None,
        dialect: Optional[str] = None,
        default_timeout: Optional[float] = None,
        executor: Any = CommandExecutor,
        logger: Any = None,
    ):
        self.script_host = script_host or settings.script_host
        self.dialect = dialect or settings.script_dialect
        self.default_timeout = default_timeout if default_timeout is not None else settings.bridge_timeout
        self.executor = executor
        self.logger = logger or get_logger(__name__)

    def build_command(self, script: str) -> List[str]:
        return [self.script_host, "-l", self.dialect, "-e", script]

    def execute(self, script: str, timeout: Optional[float] = None) -> str:
        """Execute ``script`` and return its trimmed stdout.

        Raises:
            AutomationTimeoutError: the host did not exit within ``timeout``; the child was terminated.
            ExternalToolFailure: non-zero exit or the host could not be spawned. The
                message carries recovery guidance when the failure is recognized.
        """
        effective_timeout = timeout if timeout is not None else self.default_timeout
        result = self.executor.run_command(self.build_command(script), timeout=effective_timeout)

        if result.timed_out:
            raise AutomationTimeoutError(f"Script execution timed out after {effective_timeout} seconds", timeout=effective_timeout)

        if result.spawn_failed:
            message = f"Failed to spawn {self.script_host}: {result.stderr}"
            raise ExternalToolFailure(parse_common_errors(result.stderr) or message, stderr=result.stderr, returncode=result.returncode)

        if result.returncode != 0:
            stderr = result.stderr.strip()
            self.logger.debug(f"Script host exited with {result.returncode}: {stderr}")
            enhanced = parse_common_errors(stderr)
            raise ExternalToolFailure(enhanced or f"Script execution failed: {stderr}", stderr=stderr, returncode=result.returncode)

        return result.stdout.strip()
