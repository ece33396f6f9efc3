"""
Auto-Xcode: drive Xcode through its scripting bridge and read the artifacts it produces.
"""

__version__ = "2026.10.19.1"
__author__ = "Auto-Xcode Team"
__description__ = "Automate Xcode builds, tests and runs, and analyze build logs and xcresult bundles"

from .exceptions import (
    AutomationTimeoutError,
    AutoXcodeError,
    BuildFailedError,
    ExternalToolFailure,
    NotFoundError,
    TransientParseFailure,
    UnexpectedOutputFormat,
    ValidationError,
)
from .models import TextContent, ToolResult

__all__ = [
    "__version__",
    "AutoXcodeError",
    "AutomationTimeoutError",
    "BuildFailedError",
    "ExternalToolFailure",
    "NotFoundError",
    "TextContent",
    "ToolResult",
    "TransientParseFailure",
    "UnexpectedOutputFormat",
    "ValidationError",
]
