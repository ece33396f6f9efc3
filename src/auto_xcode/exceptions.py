"""
Custom exceptions used across Auto-Xcode.

Every exception carries a machine-readable ``code`` so callers at a protocol
boundary can report failures without parsing messages.
"""

from typing import List, Optional, Sequence


class AutoXcodeError(RuntimeError):
    """Base class for all Auto-Xcode errors."""

    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AutoXcodeError):
    """A path or parameter is invalid. Raised before the IDE is touched."""

    code = "invalid_params"


class NotFoundError(AutoXcodeError):
    """A scheme, destination, test, or attachment does not exist.

    ``candidates`` lists what was available and ``suggestion`` holds the
    closest candidate when one could be derived. The suggestion is advisory;
    nothing is ever substituted for the requested name.
    """

    code = "not_found"

    def __init__(
        self,
        message: str,
        requested: Optional[str] = None,
        candidates: Optional[Sequence[str]] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message)
        self.requested = requested
        self.candidates: List[str] = list(candidates or [])
        self.suggestion = suggestion


class ExternalToolFailure(AutoXcodeError):
    """An external process exited with a non-zero status."""

    code = "external_tool_failure"

    def __init__(self, message: str, stderr: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class TransientParseFailure(AutoXcodeError):
    """The build-log decoder reported a corruption or incomplete-file signature."""

    code = "transient_parse_failure"

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class AutomationTimeoutError(AutoXcodeError):
    """A subprocess or bounded wait exceeded its time budget."""

    code = "timeout"

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class UnexpectedOutputFormat(AutoXcodeError):
    """A tool produced output that could not be parsed. ``raw`` keeps the original text."""

    code = "unexpected_output"

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class BuildFailedError(AutoXcodeError):
    """A build (or the build step of a run) finished with decoded errors."""

    code = "build_failed"

    def __init__(self, message: str, errors: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.errors: List[str] = list(errors or [])
