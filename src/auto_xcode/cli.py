"""Command Line Interface for Auto-Xcode."""

import functools
import sys
from typing import Any, Callable, Optional, Tuple

import click
from dotenv import load_dotenv

from . import __version__ as AUTO_XCODE_VERSION
from .exceptions import AutoXcodeError
from .logger_config import setup_logger
from .models import ToolResult
from .orchestrator import XcodeOrchestrator
from .result_browser import ResultBrowser

# Load environment variables
load_dotenv()


def emit(result: ToolResult) -> None:
    """Print every text block of ``result``; exit non-zero for error results."""
    for block in result.content:
        click.echo(block.text)
    if result.is_error:
        sys.exit(1)


def reports_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Map raised ``AutoXcodeError`` to a ``ClickException`` carrying its code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AutoXcodeError as e:
            raise click.ClickException(f"[{e.code}] {e.message}") from e

    return wrapper


def _arguments(values: Tuple[str, ...]) -> Optional[list]:
    return list(values) if values else None


@click.group(help="Auto-Xcode: drive Xcode builds, tests and runs, and inspect their results.")
@click.version_option(version=AUTO_XCODE_VERSION, package_name="auto-xcode")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also write logs to this file")
def main(log_level: Optional[str], log_file: Optional[str]) -> None:
    # Route log output to stderr so tool output on stdout stays clean
    setup_logger(log_level=log_level, log_file=log_file, stream=sys.stderr)


main.name = "auto-xcode"

project_argument = click.argument("project_path", type=click.Path())
arg_option = click.option("--arg", "command_line_arguments", multiple=True, help="Command line argument passed to the app (repeatable)")


@main.command()
@project_argument
@click.option("--scheme", required=True, help="Scheme to build")
@click.option("--destination", default=None, help="Run destination, e.g. 'iPhone 15 Pro'")
@reports_errors
def build(project_path: str, scheme: str, destination: Optional[str]) -> None:
    """Build a scheme and report errors and warnings."""
    emit(XcodeOrchestrator().build(project_path, scheme, destination))


@main.command()
@project_argument
@reports_errors
def clean(project_path: str) -> None:
    """Clean the build folder of the active scheme."""
    emit(XcodeOrchestrator().clean(project_path))


@main.command()
@project_argument
@arg_option
@reports_errors
def test(project_path: str, command_line_arguments: Tuple[str, ...]) -> None:
    """Run tests and summarize the resulting xcresult bundle."""
    emit(XcodeOrchestrator().test(project_path, _arguments(command_line_arguments)))


@main.command()
@project_argument
@click.option("--scheme", required=True, help="Scheme to run")
@arg_option
@reports_errors
def run(project_path: str, scheme: str, command_line_arguments: Tuple[str, ...]) -> None:
    """Build and run a scheme."""
    emit(XcodeOrchestrator().run(project_path, scheme, _arguments(command_line_arguments)))


@main.command()
@project_argument
@click.option("--scheme", default=None, help="Scheme to debug")
@click.option("--skip-building", is_flag=True, help="Debug without building first")
@reports_errors
def debug(project_path: str, scheme: Optional[str], skip_building: bool) -> None:
    """Start a debugging session."""
    emit(XcodeOrchestrator().debug(project_path, scheme, skip_building))


@main.command()
@reports_errors
def stop() -> None:
    """Stop the current action."""
    emit(XcodeOrchestrator().stop())


@main.command()
@project_argument
@reports_errors
def schemes(project_path: str) -> None:
    """List schemes, marking the active one."""
    emit(XcodeOrchestrator().get_schemes(project_path))


@main.command()
@project_argument
@reports_errors
def destinations(project_path: str) -> None:
    """List run destinations, marking the active one."""
    emit(XcodeOrchestrator().get_run_destinations(project_path))


@main.command(name="set-scheme")
@project_argument
@click.argument("scheme")
@reports_errors
def set_scheme(project_path: str, scheme: str) -> None:
    """Make a scheme active."""
    emit(XcodeOrchestrator().set_scheme(project_path, scheme))


@main.command(name="set-destination")
@project_argument
@click.argument("destination")
@reports_errors
def set_destination(project_path: str, destination: str) -> None:
    """Make a run destination active."""
    emit(XcodeOrchestrator().set_destination(project_path, destination))


@main.group(name="xcresult")
def xcresult_group() -> None:
    """Inspect .xcresult bundles."""


bundle_argument = click.argument("bundle_path", type=click.Path())


@xcresult_group.command()
@bundle_argument
@click.argument("test_id", required=False)
@click.option("--include-console", is_flag=True, help="Include console output and activities")
@reports_errors
def browse(bundle_path: str, test_id: Optional[str], include_console: bool) -> None:
    """List tests, or show one test by id or index."""
    emit(ResultBrowser().xcresult_browse(bundle_path, test_id, include_console))


@xcresult_group.command()
@bundle_argument
@reports_errors
def summary(bundle_path: str) -> None:
    """Show pass/fail counts and the first failures."""
    emit(ResultBrowser().xcresult_summary(bundle_path))


@xcresult_group.command()
@bundle_argument
@click.argument("test_id")
@reports_errors
def console(bundle_path: str, test_id: str) -> None:
    """Show console output and activities for a test."""
    emit(ResultBrowser().xcresult_get_console(bundle_path, test_id))


@xcresult_group.command()
@bundle_argument
@click.argument("test_id")
@reports_errors
def attachments(bundle_path: str, test_id: str) -> None:
    """List attachments recorded for a test."""
    emit(ResultBrowser().xcresult_list_attachments(bundle_path, test_id))


@xcresult_group.command(name="export-attachment")
@bundle_argument
@click.argument("test_id")
@click.argument("attachment_index", type=int)
@click.option("--convert-to-json", is_flag=True, help="Convert App UI hierarchy attachments to JSON")
@reports_errors
def export_attachment(bundle_path: str, test_id: str, attachment_index: int, convert_to_json: bool) -> None:
    """Export one attachment by its 1-based index."""
    emit(ResultBrowser().xcresult_export_attachment(bundle_path, test_id, attachment_index, convert_to_json))


@xcresult_group.command(name="ui-hierarchy")
@bundle_argument
@click.argument("test_id")
@click.option("--timestamp", type=float, default=None, help="Seconds since test start")
@click.option("--full-hierarchy", is_flag=True, help="Export the full hierarchy instead of the slim one")
@reports_errors
def ui_hierarchy(bundle_path: str, test_id: str, timestamp: Optional[float], full_hierarchy: bool) -> None:
    """Export a UI hierarchy snapshot as JSON."""
    emit(ResultBrowser().xcresult_get_ui_hierarchy(bundle_path, test_id, timestamp, full_hierarchy))


@xcresult_group.command(name="ui-element")
@click.argument("hierarchy_json_path", type=click.Path())
@click.argument("element_index", type=int)
@click.option("--include-children", is_flag=True, help="Include direct children")
@reports_errors
def ui_element(hierarchy_json_path: str, element_index: int, include_children: bool) -> None:
    """Show one element of a saved full hierarchy."""
    emit(ResultBrowser().xcresult_get_ui_element(hierarchy_json_path, element_index, include_children))


@xcresult_group.command()
@bundle_argument
@click.argument("test_id")
@click.argument("timestamp", type=float)
@reports_errors
def screenshot(bundle_path: str, test_id: str, timestamp: float) -> None:
    """Export or extract the screenshot closest to a timestamp."""
    emit(ResultBrowser().xcresult_get_screenshot(bundle_path, test_id, timestamp))


if __name__ == "__main__":
    main()
