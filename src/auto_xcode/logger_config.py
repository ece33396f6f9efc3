"""Loguru setup for auto-xcode.

Components log through a diagnostics sink: any object with
``debug``/``info``/``warning``/``error``. The default sink is the loguru logger
bound to the module name; tests pass their own object instead.

Records carry ``extra[short_path]``, the emitting file relative to ``src/``,
so console lines read ``auto_xcode/orchestrator.py:120``.
"""

import os
import sys
from functools import wraps
from inspect import signature
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, TypeVar

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

from .config import settings

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_SOURCE_ROOT = Path(__file__).resolve().parent.parent

_TIME = "{time:YYYY-MM-DD HH:mm:ss.SSS}"
_ORIGIN_WITH_FILE = "{extra[short_path]}:{line} in {function}"
_ORIGIN_NAME_ONLY = "{name}"


def format_path_for_log(file_path: str) -> str:
    """``file_path`` relative to the source root, or its resolved absolute form."""
    path = Path(file_path)
    try:
        path = path.resolve()
    except OSError:
        pass
    try:
        return path.relative_to(_SOURCE_ROOT).as_posix()
    except ValueError:
        return str(path)


def _add_short_path(record: Dict[str, Any]) -> None:
    record["extra"]["short_path"] = format_path_for_log(record["file"].path)


def _line_format(include_file_info: bool, colored: bool) -> str:
    origin = _ORIGIN_WITH_FILE if include_file_info else _ORIGIN_NAME_ONLY
    if not colored:
        return f"{_TIME} | {{level: <8}} | {origin} - {{message}}"
    if include_file_info:
        origin = origin.replace("{function}", "<cyan>{function}</cyan>")
    else:
        origin = f"<cyan>{origin}</cyan>"
    return f"<green>{_TIME}</green> | <level>{{level: <8}}</level> | {origin} - <level>{{message}}</level>"


def _validated_level(log_level: Optional[str]) -> str:
    level = (log_level or settings.log_level).upper()
    if level not in LEVELS:
        raise ValueError(f"Invalid log level '{log_level or settings.log_level}'. Must be one of: {', '.join(LEVELS)}")
    return level


def setup_logger(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    include_file_info: bool = True,
    stream: Any = sys.stderr,
) -> None:
    """Replace every loguru sink with a console sink and, optionally, a rotating file.

    Args:
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL; defaults to ``settings.log_level``.
        log_file: Also write plain-text records to this path (parent directories are created).
        include_file_info: Show ``path:line in function`` instead of the logger name.
        stream: Console destination; stderr keeps tool output on stdout clean.

    Raises:
        ValueError: If the level is not recognized.
    """
    level = _validated_level(log_level)

    logger.remove()
    logger.configure(patcher=_add_short_path if include_file_info else None)

    # The background queue is left off under pytest so records are flushed synchronously.
    enqueue = not os.environ.get("PYTEST_CURRENT_TEST")

    logger.add(stream, format=_line_format(include_file_info, colored=True), level=level, colorize=True, enqueue=enqueue)

    if not log_file:
        return

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        format=_line_format(include_file_info, colored=False),
        level=level,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=enqueue,
    )


def get_logger(name: str) -> "Logger":
    return logger.bind(name=name)


F = TypeVar("F", bound=Callable[..., Any])


def _describe_call(func: Callable[..., Any], args: Any, kwargs: Any, limit: int = 120) -> str:
    bound = signature(func).bind_partial(*args, **kwargs)
    bound.apply_defaults()
    rendered = ", ".join(f"{key}={value!r}" for key, value in bound.arguments.items())
    return rendered if len(rendered) <= limit else rendered[:limit] + "…"


def log_calls(func: F) -> F:
    """Log each call of ``func`` with its bound arguments, and its return value, at DEBUG."""
    where = f"{getattr(func, '__module__', '<module>')}.{getattr(func, '__qualname__', func.__name__)}"

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger.opt(depth=1).debug(f"CALL {where}({_describe_call(func, args, kwargs)})")
        result = func(*args, **kwargs)
        logger.opt(depth=1).debug(f"RET  {where} -> {result!r}")
        return result

    return wrapper  # type: ignore


setup_logger()
