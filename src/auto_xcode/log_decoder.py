"""
Decode binary build logs with XCLogParser.

A log that is still being written makes the decoder fail with one of a few
recognizable messages. Those failures are retried on a fixed delay table.
When the retry budget runs out, or the decoder is missing, exits with a
non-transient error or prints garbage, ``decode`` returns a
``ParsedBuildResults`` with ``decoder_failure`` set instead of raising, so
polling code can tell "keep waiting" from "give up". Only the retry-exhausted
diagnostic means "keep waiting".
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import settings
from .exceptions import AutomationTimeoutError, TransientParseFailure
from .logger_config import get_logger
from .models import ParsedBuildResults
from .utils import CommandExecutor

RETRY_DELAYS = (1, 2, 3, 5, 8, 13)
MAX_ATTEMPTS = 6

TRANSIENT_SIGNATURES = (
    "not a valid SLF log",
    "not a valid xcactivitylog file",
    "corrupted",
    "incomplete",
    "Error while parsing",
    "Failed to parse",
)

DECODER_FAILURE_MARKER = "XCLogParser failed to parse the build log."


def is_transient_failure(message: str) -> bool:
    return any(signature in message for signature in TRANSIENT_SIGNATURES)


def format_issue(issue: Dict[str, Any]) -> str:
    """Render one decoder issue as ``file[:line[:col]]: title``."""
    document_url = issue.get("documentURL") or ""
    location = document_url.replace("file://", "") if document_url else "Unknown file"
    line = issue.get("startingLineNumber")
    column = issue.get("startingColumnNumber")
    if isinstance(line, int) and line > 0:
        location += f":{line}"
        if isinstance(column, int) and column > 0:
            location += f":{column}"
    return f"{location}: {issue.get('title', '')}"


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def exhausted_result(error_details: str) -> ParsedBuildResults:
    return ParsedBuildResults(
        errors=[
            DECODER_FAILURE_MARKER,
            "",
            "This may indicate:",
            "• The log file is corrupted or incomplete",
            "• An unsupported Xcode version was used",
            "• XCLogParser needs to be updated",
            "",
            f"Error details: {error_details}",
        ],
        decoder_failure=True,
    )


def not_installed_result() -> ParsedBuildResults:
    return ParsedBuildResults(
        errors=[
            "XCLogParser is required to parse Xcode build logs but is not installed.",
            "",
            "Please install XCLogParser using one of these methods:",
            "• Homebrew: brew install xclogparser",
            "• From source: https://github.com/MobileNativeFoundation/XCLogParser",
        ],
        decoder_failure=True,
    )


def unexpected_output_result(details: str) -> ParsedBuildResults:
    return ParsedBuildResults(
        errors=[
            "Failed to parse XCLogParser JSON output.",
            "",
            "This may indicate:",
            "• XCLogParser returned unexpected output format",
            "• XCLogParser version incompatibility",
            "",
            f"Parse error: {details}",
        ],
        decoder_failure=True,
    )


def tool_failed_result(returncode: int, error_details: str) -> ParsedBuildResults:
    return ParsedBuildResults(
        errors=[
            f"XCLogParser exited with status {returncode}.",
            "",
            "This may indicate:",
            "• The build log is not readable",
            "• XCLogParser is misconfigured",
            "",
            f"Error details: {error_details}",
        ],
        decoder_failure=True,
    )


def parse_decoder_output(stdout: str) -> ParsedBuildResults:
    """Turn the decoder's ``issues`` JSON into de-duplicated error and warning lists."""
    data = json.loads(stdout)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return ParsedBuildResults(
        errors=_unique([format_issue(issue) for issue in data.get("errors") or []]),
        warnings=_unique([format_issue(issue) for issue in data.get("warnings") or []]),
        build_status=data.get("buildStatus"),
    )


class LogDecoder:
    """Runs ``xclogparser parse --reporter issues`` with retries on transient failures."""

    def __init__(
        self,
        command: Optional[str] = None,
        delays: Sequence[float] = RETRY_DELAYS,
        max_attempts: int = MAX_ATTEMPTS,
        timeout: Optional[float] = None,
        executor: Any = CommandExecutor,
        sleep: Callable[[float], None] = time.sleep,
        logger: Any = None,
    ):
        self.command = command or settings.log_decoder_command
        self.delays = tuple(delays)
        self.max_attempts = max_attempts
        self.timeout = timeout if timeout is not None else CommandExecutor.DEFAULT_TIMEOUTS["xclogparser"]
        self.executor = executor
        self.sleep = sleep
        self.logger = logger or get_logger(__name__)

    def _decode_once(self, log_path: str) -> ParsedBuildResults:
        result = self.executor.run_command([self.command, "parse", "--file", log_path, "--reporter", "issues"], timeout=self.timeout)

        if result.spawn_failed:
            self.logger.error(f"Failed to run {self.command}: {result.stderr}")
            return not_installed_result()

        if result.timed_out:
            raise AutomationTimeoutError(f"{self.command} timed out after {self.timeout}s on {log_path}", timeout=self.timeout)

        if result.returncode != 0:
            error_message = result.stderr.strip() or "No error details available"
            if is_transient_failure(error_message):
                raise TransientParseFailure(error_message, stderr=result.stderr)
            self.logger.error(f"{self.command} exited with {result.returncode}: {error_message}")
            return tool_failed_result(result.returncode, error_message)

        try:
            return parse_decoder_output(result.stdout)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            self.logger.error(f"Failed to parse {self.command} output: {e}")
            return unexpected_output_result(str(e))

    def decode(self, log_path: str) -> ParsedBuildResults:
        """Decode ``log_path``, retrying transient failures.

        At most ``max_attempts`` decoder runs are made; the delay table is
        consulted by attempt number between runs.

        Raises:
            AutomationTimeoutError: the decoder process itself overran its timeout.
        """
        attempt = 0
        while True:
            try:
                return self._decode_once(log_path)
            except TransientParseFailure as e:
                if attempt + 1 >= self.max_attempts:
                    self.logger.error(f"{self.command} failed after {attempt + 1} attempts: {e.message}")
                    return exhausted_result(e.message)
                delay = self.delays[min(attempt, len(self.delays) - 1)]
                self.logger.warning(f"{self.command} failed (attempt {attempt + 1}/{self.max_attempts}): {e.message}")
                self.logger.debug(f"Retrying in {delay}s...")
                self.sleep(delay)
                attempt += 1


def is_still_being_written(results: ParsedBuildResults) -> bool:
    """True for the retry-exhausted diagnostic, which usually means the log is still growing."""
    return results.decoder_failure and bool(results.errors) and results.errors[0] == DECODER_FAILURE_MARKER
