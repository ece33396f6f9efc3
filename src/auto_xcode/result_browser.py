"""
High-level result bundle operations that answer with a ``ToolResult``.

Bad input and missing tests come back as error results. Query tool
failures are raised, enriched with installation guidance.
"""

import functools
import json
import os
import time
from typing import Any, Callable, Optional

from .attachments import AttachmentResolver, is_ui_hierarchy, select_closest
from .exceptions import (
    AutomationTimeoutError,
    ExternalToolFailure,
    NotFoundError,
    UnexpectedOutputFormat,
    ValidationError,
)
from .hierarchy import get_ui_element, load_hierarchy_text, safe_name, save_hierarchy_json
from .logger_config import get_logger
from .models import TestAttachment, TestNode, ToolResult
from .result_parser import ResultTreeParser

RESULT_BUNDLE_SUFFIX = ".xcresult"


def validate_result_bundle(bundle_path: str) -> None:
    """
    Raises:
        ValidationError: missing path, wrong extension, or no manifest yet.
    """
    if not os.path.exists(bundle_path):
        raise ValidationError(f"XCResult file not found: {bundle_path}")
    if not bundle_path.rstrip(os.sep).endswith(RESULT_BUNDLE_SUFFIX):
        raise ValidationError(f"Path must be an .xcresult file: {bundle_path}")
    if not ResultTreeParser.is_readable(bundle_path):
        raise ValidationError(f"XCResult file is not readable or incomplete: {bundle_path}")


def _reported(action: str) -> Callable:
    """Turn validation, lookup, timeout and format failures of ``action`` into error results."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self: "ResultBrowser", *args: Any, **kwargs: Any) -> ToolResult:
            try:
                return func(self, *args, **kwargs)
            except (ValidationError, NotFoundError) as e:
                return ToolResult.text(f"❌ {e.message}", is_error=True)
            except AutomationTimeoutError as e:
                return ToolResult.text(f"⏱️ {action} timed out: {e.message}", is_error=True)
            except UnexpectedOutputFormat as e:
                text = f"⚠️ {action}: {e.message}"
                if e.raw:
                    text += f"\n\nRaw output:\n{e.raw}"
                return ToolResult.text(text, is_error=True)
            except ExternalToolFailure as e:
                self.logger.error(f"{action} failed: {e.message}")
                raise ExternalToolFailure(
                    f"XCResult parsing failed. Make sure Xcode Command Line Tools are installed: {e.message}",
                    stderr=e.stderr,
                    returncode=e.returncode,
                ) from e

        return wrapper

    return decorator


class ResultBrowser:
    """Browse tests, console output, attachments and UI hierarchies in a result bundle."""

    def __init__(
        self,
        parser_factory: Callable[[str], ResultTreeParser] = ResultTreeParser,
        attachment_resolver: Optional[AttachmentResolver] = None,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.parser_factory = parser_factory
        self.attachment_resolver = attachment_resolver or AttachmentResolver(clock=clock)
        self.clock = clock
        self.logger = logger or get_logger(__name__)

    def _open(self, bundle_path: str) -> ResultTreeParser:
        validate_result_bundle(bundle_path)
        return self.parser_factory(bundle_path)

    def _test_node(self, parser: ResultTreeParser, test_id: str) -> TestNode:
        if not test_id or not str(test_id).strip():
            raise ValidationError("Test ID or index is required")
        try:
            node = parser.find_node(test_id)
        except NotFoundError as e:
            raise NotFoundError(
                f"{e.message}. Run 'xcresult browse \"{parser.bundle_path}\"' to see all available tests",
                requested=test_id,
            ) from e
        if not node.node_identifier:
            raise ValidationError(f"Test '{test_id}' does not have a valid identifier for attachment retrieval")
        return node

    def _stamp(self) -> int:
        return int(self.clock() * 1000)

    @_reported("Analyze XCResult")
    def xcresult_browse(self, bundle_path: str, test_id: Optional[str] = None, include_console: bool = False) -> ToolResult:
        parser = self._open(bundle_path)
        if test_id:
            return ToolResult.text(parser.format_test_details(test_id, include_console))

        usage = "\n".join(
            [
                "",
                "💡 Usage:",
                "  View test details: xcresult browse <path> <test-id-or-index>",
                "  View with console: xcresult browse <path> <test-id-or-index> --include-console",
                "  Get console only: xcresult console <path> <test-id-or-index>",
                "  Examples:",
                f'    xcresult browse "{bundle_path}" 0',
                f'    xcresult browse "{bundle_path}" "SomeTest/testMethod()" --include-console',
            ]
        )
        return ToolResult.text(parser.format_test_list() + usage + "\n")

    @_reported("Analyze XCResult")
    def xcresult_summary(self, bundle_path: str) -> ToolResult:
        parser = self._open(bundle_path)
        analysis = parser.analyze()
        lines = [
            f"📊 XCResult Summary - {bundle_path}",
            "=" * 80,
            "",
            f"Result: {'❌' if analysis.result == 'Failed' else '✅'} {analysis.result}",
            f"Total: {analysis.total_tests} | Passed: {analysis.passed_tests} ✅ | Failed: {analysis.failed_tests} ❌ | Skipped: {analysis.skipped_tests} ⏭️",
            f"Pass Rate: {analysis.pass_rate:.1f}%",
            f"Duration: {analysis.duration}",
            "",
        ]
        if analysis.failed_tests > 0:
            failures = analysis.summary.get("testFailures") or []
            lines.append("❌ Failed Tests:")
            for failure in failures[:5]:
                text = str(failure.get("failureText", ""))
                lines.append(f"  • {failure.get('testName', '')}: {text[:100]}{'...' if len(text) > 100 else ''}")
            if len(failures) > 5:
                lines.append(f"  ... and {len(failures) - 5} more")
            lines.append("")
        lines.append(f"💡 Use 'xcresult browse \"{bundle_path}\"' to explore detailed results.")
        return ToolResult.text("\n".join(lines))

    @_reported("Get console output")
    def xcresult_get_console(self, bundle_path: str, test_id: str) -> ToolResult:
        parser = self._open(bundle_path)
        if not test_id or not str(test_id).strip():
            raise ValidationError("Test ID or index is required")
        try:
            node = parser.find_node(test_id)
        except NotFoundError:
            return ToolResult.text(
                f"❌ Test '{test_id}' not found\n\nRun 'xcresult browse \"{bundle_path}\"' to see all available tests",
                is_error=True,
            )

        output = [f"📟 Console Output for: {node.name}", "=" * 80, "", "Console Log:", parser.get_console_output(node.node_identifier), ""]
        if node.node_identifier:
            output.extend(["🔬 Test Activities:", parser.get_test_activities(node.node_identifier)])
        return ToolResult.text("\n".join(output))

    @_reported("List attachments")
    def xcresult_list_attachments(self, bundle_path: str, test_id: str) -> ToolResult:
        parser = self._open(bundle_path)
        node = self._test_node(parser, test_id)
        attachments = parser.get_attachments(node.node_identifier)

        lines = [f"📎 Attachments for test: {node.name}", f"Found {len(attachments)} attachments", "=" * 80, ""]
        if not attachments:
            lines.append("No attachments found for this test.")
        else:
            for position, attachment in enumerate(attachments, start=1):
                lines.append(f"[{position}] {attachment.display_name}")
                lines.append(f"    Type: {attachment.type_identifier or 'unknown'}")
                if attachment.timestamp is not None:
                    lines.append(f"    Timestamp: {attachment.timestamp:g}s")
                if attachment.size:
                    lines.append(f"    Size: {attachment.size} bytes")
                lines.append("")
            lines.append("💡 To export a specific attachment, use 'xcresult export-attachment' with the attachment index.")
        return ToolResult.text("\n".join(lines) + "\n")

    @_reported("Export attachment")
    def xcresult_export_attachment(self, bundle_path: str, test_id: str, attachment_index: int, convert_to_json: bool = False) -> ToolResult:
        """Export the ``attachment_index``-th (1-based, as listed) attachment of a test."""
        parser = self._open(bundle_path)
        if attachment_index < 1:
            raise ValidationError("Attachment index must be 1 or greater")
        node = self._test_node(parser, test_id)

        attachments = parser.get_attachments(node.node_identifier)
        if not attachments:
            raise NotFoundError(f"No attachments found for test '{node.name}'.", requested=test_id)
        if attachment_index > len(attachments):
            raise NotFoundError(
                f"Invalid attachment index {attachment_index}. Test has {len(attachments)} attachments.",
                requested=str(attachment_index),
            )

        attachment = attachments[attachment_index - 1]
        if not attachment.payload_id:
            raise NotFoundError("Attachment does not have a valid ID for export", requested=str(attachment_index))

        filename = attachment.filename or attachment.name or f"attachment_{attachment_index}"
        exported = parser.export_attachment(attachment.payload_id, filename)

        if convert_to_json and is_ui_hierarchy(attachment):
            return ToolResult.text(json.dumps(load_hierarchy_text(exported).to_dict()))

        return ToolResult.text(f"Attachment exported to: {exported}\nFilename: {filename}\nType: {attachment.type_identifier or 'unknown'}")

    def _select_ui_hierarchy(self, node: TestNode, attachments: list, timestamp: Optional[float]) -> TestAttachment:
        candidates = [attachment for attachment in attachments if is_ui_hierarchy(attachment)]
        if not candidates:
            names = ", ".join(attachment.display_name for attachment in attachments)
            raise NotFoundError(
                f"No App UI hierarchy attachments found for test '{node.name}'. Available attachments: {names}",
                requested=node.node_identifier,
            )
        if timestamp is not None and len(candidates) > 1:
            choice = select_closest(candidates, timestamp, self.attachment_resolver.policy, self.logger)
            if choice:
                return choice[0]
        elif len(candidates) > 1:
            self.logger.info(f"Multiple UI hierarchy attachments found ({len(candidates)}). Using the first one.")
        return candidates[0]

    @_reported("Get UI hierarchy")
    def xcresult_get_ui_hierarchy(
        self,
        bundle_path: str,
        test_id: str,
        timestamp: Optional[float] = None,
        full_hierarchy: bool = False,
    ) -> ToolResult:
        """Export a UI hierarchy dump as JSON; slim by default, with the full form saved for element lookups."""
        parser = self._open(bundle_path)
        node = self._test_node(parser, test_id)
        attachments = parser.get_attachments(node.node_identifier)
        if not attachments:
            raise NotFoundError(f"No attachments found for test '{node.name}'. This test may not have UI snapshots.", requested=test_id)

        selected = self._select_ui_hierarchy(node, attachments, timestamp)
        if not selected.payload_id:
            raise NotFoundError("App UI hierarchy attachment does not have a valid ID for export", requested=test_id)

        name = safe_name(node.name)
        text_path = parser.export_attachment(selected.payload_id, f"ui_hierarchy_{name}_{self._stamp()}.txt")
        hierarchy = load_hierarchy_text(text_path)
        full_data = hierarchy.to_dict()

        if full_hierarchy:
            full_path = save_hierarchy_json(full_data, f"ui_hierarchy_full_{name}_{self._stamp()}.json", parser.export_dir)
            size_kb = round(len(json.dumps(full_data)) / 1024)
            return ToolResult.text(
                f"⚠️  LARGE FILE WARNING: Full UI hierarchy exported ({size_kb} KB)\n\n"
                f"📄 Full hierarchy: {full_path}\n\n"
                "💡 For AI analysis, consider using the slim version instead (omit --full-hierarchy)."
            )

        slim_path = save_hierarchy_json(hierarchy.slim_dict(), f"ui_hierarchy_{name}_{self._stamp()}.json", parser.export_dir)
        full_path = save_hierarchy_json(full_data, f"ui_hierarchy_full_{name}_{self._stamp()}.json", parser.export_dir)

        screenshot_info = ""
        screenshot_time = timestamp if timestamp is not None else selected.timestamp
        if screenshot_time is not None:
            try:
                selection = self.attachment_resolver.get_screenshot(parser, node, screenshot_time)
                screenshot_info = f"\n📸 Screenshot at timestamp {screenshot_time:g}s: {selection.path}"
            except (NotFoundError, ValidationError, ExternalToolFailure, AutomationTimeoutError) as e:
                self.logger.info(f"Could not extract screenshot at timestamp {screenshot_time}s: {e.message}")

        return ToolResult.text(
            f"🤖 AI-readable UI hierarchy: {slim_path}\n\n"
            "💡 Slim version properties:\n"
            "  • t = type (element type like Button, StaticText, etc.)\n"
            "  • l = label (visible text/accessibility label)\n"
            "  • c = children (array of child elements)\n"
            "  • j = index (reference to full element in original JSON)\n\n"
            f"🔍 Use 'xcresult ui-element \"{full_path}\" <index>' to get full details of any element.\n"
            f"⚠️  To get the full hierarchy (several MB), use --full-hierarchy{screenshot_info}"
        )

    @_reported("Read UI element")
    def xcresult_get_ui_element(self, hierarchy_json_path: str, element_index: int, include_children: bool = False) -> ToolResult:
        return ToolResult.text(json.dumps(get_ui_element(hierarchy_json_path, element_index, include_children)))

    @_reported("Get screenshot")
    def xcresult_get_screenshot(self, bundle_path: str, test_id: str, timestamp: float) -> ToolResult:
        parser = self._open(bundle_path)
        node = self._test_node(parser, test_id)
        selection = self.attachment_resolver.get_screenshot(parser, node, timestamp)

        if selection.source == "video":
            return ToolResult.text(f"Screenshot extracted from video for test '{node.name}' at {timestamp:g}s: {selection.path}")

        text = f"Screenshot exported for test '{node.name}': {selection.path}"
        if selection.heuristic:
            text += f"\nNote: no attachment carried a timestamp; chosen by attachment order (threshold {self.attachment_resolver.policy.threshold:g}s)."
        elif selection.delta is not None:
            text += f"\nOffset from requested time: {selection.delta:+.2f}s"
        return ToolResult.text(text)
