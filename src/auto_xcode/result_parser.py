"""
Query result bundles with ``xcresulttool`` and turn the JSON into a test tree.

Test cases are addressed either by identifier (``Suite/testMethod()``) or by
their 0-based position in the pre-order list of test cases, which is the index
printed by :meth:`ResultTreeParser.format_test_list`.
"""

import json
import os
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import settings
from .exceptions import AutomationTimeoutError, ExternalToolFailure, NotFoundError, UnexpectedOutputFormat
from .logger_config import get_logger
from .models import (
    CASE_NODE_TYPES,
    SUITE_NODE_TYPES,
    TestAttachment,
    TestNode,
    TestNodeType,
    TestResultsAnalysis,
    TestTree,
)
from .utils import CommandExecutor

MANIFEST_NAME = "Info.plist"
_LONG_FLOAT = re.compile(r"(\d+\.\d{10,})")

# Alternate field names used by different xcresulttool versions, in priority order
_PAYLOAD_ID_KEYS = ("payloadId", "payload_uuid", "payloadUUID")
_TYPE_KEYS = ("uniform_type_identifier", "uniformTypeIdentifier")
_SIZE_KEYS = ("payloadSize", "payload_size")


def clean_json_floats(text: str) -> str:
    """Round over-precise floats the tool sometimes emits to 6 decimals."""
    return _LONG_FLOAT.sub(lambda match: f"{float(match.group(1)):.6f}", text)


def load_tool_json(text: str) -> Any:
    try:
        return json.loads(clean_json_floats(text))
    except ValueError as e:
        raise UnexpectedOutputFormat(f"xcresulttool returned invalid JSON: {e}", raw=text) from e


def format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    if minutes > 0:
        return f"{minutes}m {remaining}s"
    return f"{remaining}s"


def _number(value: Any) -> Optional[float]:
    """Read a plain number or the tool's ``{"value": n}`` wrapper."""
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def status_icon(result: str) -> str:
    lowered = (result or "").lower()
    if "pass" in lowered or "success" in lowered:
        return "✅"
    if "fail" in lowered:
        return "❌"
    if "skip" in lowered:
        return "⏭️"
    return "❓"


def classify_node_type(raw_type: str) -> TestNodeType:
    if raw_type in CASE_NODE_TYPES:
        return TestNodeType.CASE
    if raw_type in SUITE_NODE_TYPES:
        return TestNodeType.SUITE
    return TestNodeType.OTHER


def build_test_tree(test_nodes: List[Dict[str, Any]]) -> TestTree:
    """Flatten the tool's nested ``testNodes`` into an index-linked arena."""
    tree = TestTree()

    def add(raw: Dict[str, Any], parent_index: Optional[int]) -> int:
        raw_type = str(raw.get("nodeType", ""))
        node = TestNode(
            name=str(raw.get("name", "")),
            node_type=classify_node_type(raw_type),
            raw_type=raw_type,
            result=str(raw.get("result", "")),
            node_identifier=raw.get("nodeIdentifier"),
            duration=raw.get("duration"),
            duration_seconds=_number(raw.get("durationInSeconds")),
            index=len(tree.nodes),
            parent_index=parent_index,
        )
        tree.nodes.append(node)
        for child in raw.get("children") or []:
            node.child_indices.append(add(child, node.index))
        return node.index

    for raw in test_nodes:
        tree.roots.append(add(raw, None))
    return tree


def normalize_attachment(raw: Dict[str, Any], timestamp: Optional[float] = None) -> TestAttachment:
    """Map one attachment record, whatever its field names, onto :class:`TestAttachment`."""

    def first(keys: tuple) -> Any:
        for key in keys:
            if raw.get(key) not in (None, ""):
                return raw[key]
        return None

    size = first(_SIZE_KEYS)
    own_timestamp = _number(raw.get("timestamp"))
    if own_timestamp is not None:
        timestamp = own_timestamp
    return TestAttachment(
        name=raw.get("name") or raw.get("filename") or "",
        filename=raw.get("filename") or raw.get("name") or "",
        type_identifier=first(_TYPE_KEYS) or "",
        payload_id=first(_PAYLOAD_ID_KEYS),
        timestamp=timestamp,
        size=int(size) if isinstance(size, (int, float)) else None,
    )


def extract_attachments(activity_json: Any, parent_timestamp: Optional[float] = None) -> List[TestAttachment]:
    """Collect attachments from an activities dump, depth-first in document order.

    Each attachment inherits the nearest enclosing activity timestamp.
    """
    found: List[TestAttachment] = []
    if not isinstance(activity_json, dict):
        return found

    timestamp = parent_timestamp
    own = _number(activity_json.get("timestamp"))
    if own is not None:
        timestamp = own

    for raw in activity_json.get("attachments") or []:
        if isinstance(raw, dict):
            found.append(normalize_attachment(raw, timestamp))

    for key in ("testRuns", "activities", "childActivities"):
        for child in activity_json.get(key) or []:
            found.extend(extract_attachments(child, timestamp))
    return found


class ResultTreeParser:
    """Reads one ``.xcresult`` bundle through ``xcresulttool``."""

    def __init__(
        self,
        bundle_path: str,
        tool_command: Optional[List[str]] = None,
        export_dir: Optional[str] = None,
        executor: Any = CommandExecutor,
        logger: Any = None,
    ):
        self.bundle_path = bundle_path
        self.tool_command = list(tool_command or settings.result_tool_command)
        self.export_dir = export_dir or settings.attachment_export_dir
        self.executor = executor
        self.logger = logger or get_logger(__name__)
        self._tree: Optional[TestTree] = None
        self._summary: Optional[Dict[str, Any]] = None

    # -- readiness ---------------------------------------------------------

    @staticmethod
    def manifest_path(bundle_path: str) -> str:
        return os.path.join(bundle_path, MANIFEST_NAME)

    @staticmethod
    def is_readable(bundle_path: str) -> bool:
        return os.path.isdir(bundle_path) and os.path.exists(ResultTreeParser.manifest_path(bundle_path))

    @staticmethod
    def _manifest_size(bundle_path: str) -> Optional[int]:
        try:
            return os.stat(ResultTreeParser.manifest_path(bundle_path)).st_size
        except OSError:
            return None

    @staticmethod
    def is_ready(bundle_path: str, sample_interval: float = 0.5, sleep: Callable[[float], None] = time.sleep) -> bool:
        """Manifest exists, is non-empty, and kept its size across two samples."""
        first = ResultTreeParser._manifest_size(bundle_path)
        if not first:
            return False
        sleep(sample_interval)
        return ResultTreeParser._manifest_size(bundle_path) == first

    @staticmethod
    def wait_for_readiness(
        bundle_path: str,
        timeout: float = 60.0,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> bool:
        start = clock()
        while clock() - start < timeout:
            if ResultTreeParser.is_ready(bundle_path, sleep=sleep):
                return True
            sleep(interval)
        return False

    # -- tool access -------------------------------------------------------

    def run_tool(self, args: List[str], timeout: float = 15) -> str:
        cmd = self.tool_command + args
        result = self.executor.run_command(cmd, timeout=timeout)
        if result.timed_out:
            raise AutomationTimeoutError(f"xcresulttool command timed out after {timeout}s", timeout=timeout)
        if result.spawn_failed or result.returncode != 0:
            raise ExternalToolFailure(
                f"xcresulttool failed with code {result.returncode}: {result.stderr.strip()}",
                stderr=result.stderr,
                returncode=result.returncode,
            )
        return result.stdout

    def get_summary(self) -> Dict[str, Any]:
        if self._summary is None:
            output = self.run_tool(["get", "test-results", "summary", "--path", self.bundle_path, "--format", "json"])
            self._summary = load_tool_json(output)
        return self._summary

    def get_tests(self) -> TestTree:
        if self._tree is None:
            output = self.run_tool(["get", "test-results", "tests", "--path", self.bundle_path, "--format", "json"])
            data = load_tool_json(output)
            self._tree = build_test_tree(data.get("testNodes") or [] if isinstance(data, dict) else [])
        return self._tree

    # -- analysis ----------------------------------------------------------

    def analyze(self) -> TestResultsAnalysis:
        summary = self.get_summary()
        total = int(summary.get("totalTestCount") or 0)
        passed = int(summary.get("passedTests") or 0)
        start = _number(summary.get("startTime")) or 0.0
        finish = _number(summary.get("finishTime")) or start
        return TestResultsAnalysis(
            summary=summary,
            total_tests=total,
            passed_tests=passed,
            failed_tests=int(summary.get("failedTests") or 0),
            skipped_tests=int(summary.get("skippedTests") or 0),
            pass_rate=(passed / total * 100) if total > 0 else 0.0,
            duration=format_duration(finish - start),
        )

    def extract_test_details(self) -> Dict[str, List[Dict[str, str]]]:
        details: Dict[str, List[Dict[str, str]]] = {"failed": [], "passed": [], "skipped": []}
        for node in self.get_tests().cases():
            bucket = node.result.lower()
            if bucket in details:
                details[bucket].append({"name": node.name, "id": node.node_identifier or "unknown"})
        return details

    def find_node(self, id_or_index: str) -> TestNode:
        """Find a test case by 0-based index or by identifier.

        Raises:
            NotFoundError: index out of range, or no identifier matches.
        """
        tree = self.get_tests()
        key = str(id_or_index).strip()
        if re.fullmatch(r"\d+", key, re.ASCII):
            cases = tree.cases()
            index = int(key)
            if index < len(cases):
                return cases[index]
            raise NotFoundError(f"Test index {index} out of range (0-{len(cases) - 1})", requested=key)

        nodes = list(tree.walk())
        for node in nodes:
            if node.node_identifier == key:
                return node
        for node in nodes:
            if node.node_identifier and key and key in node.node_identifier:
                return node
        raise NotFoundError(f"Test '{key}' not found", requested=key)

    def get_console_output(self, test_id: Optional[str] = None) -> str:
        args = ["get", "log", "--path", self.bundle_path, "--type", "console"]
        if test_id:
            args.extend(["--test-id", test_id])
        try:
            output = self.run_tool(args, timeout=30)
        except (ExternalToolFailure, AutomationTimeoutError) as e:
            return f"Error retrieving console output: {e.message}"
        return output or "No console output available"

    def get_activities_json(self, test_id: str, timeout: float = 600) -> Any:
        output = self.run_tool(
            ["get", "test-results", "activities", "--test-id", test_id, "--path", self.bundle_path, "--format", "json"],
            timeout=timeout,
        )
        return load_tool_json(output)

    def get_test_activities(self, test_id: str) -> str:
        try:
            data = self.get_activities_json(test_id, timeout=30)
        except (ExternalToolFailure, AutomationTimeoutError) as e:
            return f"Error retrieving test activities: {e.message}"
        except UnexpectedOutputFormat as e:
            return f"Error parsing test activities: {e.message}\n{e.raw}"
        return format_activities(data)

    def get_attachments(self, test_id: str) -> List[TestAttachment]:
        self.logger.info(f"Attempting to get test attachments for test: {test_id}")
        try:
            data = self.get_activities_json(test_id)
        except AutomationTimeoutError as e:
            raise AutomationTimeoutError(
                f"xcresulttool timed out when trying to get attachments for test '{test_id}'. "
                "This result bundle may be corrupted, incomplete, or too large.",
                timeout=e.timeout,
            ) from e
        attachments = extract_attachments(data)
        self.logger.info(f"Found {len(attachments)} attachments for test: {test_id}")
        return attachments

    def export_attachment(self, payload_id: str, filename: Optional[str] = None) -> str:
        Path(self.export_dir).mkdir(parents=True, exist_ok=True)
        output_path = os.path.join(self.export_dir, filename or f"attachment_{payload_id}")
        self.run_tool(
            [
                "export",
                "object",
                "--legacy",
                "--path",
                self.bundle_path,
                "--id",
                payload_id,
                "--type",
                "file",
                "--output-path",
                output_path,
            ],
            timeout=30,
        )
        return output_path

    # -- text rendering ----------------------------------------------------

    def _summary_lines(self, analysis: TestResultsAnalysis) -> List[str]:
        return [
            f"Result: {'❌' if analysis.result == 'Failed' else '✅'} {analysis.result}",
            f"Total: {analysis.total_tests} | Passed: {analysis.passed_tests} ✅ | Failed: {analysis.failed_tests} ❌ | Skipped: {analysis.skipped_tests} ⏭️",
            f"Pass Rate: {analysis.pass_rate:.1f}%",
            f"Duration: {analysis.duration}",
        ]

    def format_summary_text(self) -> str:
        return "📊 Test Results Summary:\n" + "\n".join(self._summary_lines(self.analyze())) + "\n"

    def format_test_list(self) -> str:
        analysis = self.analyze()
        tree = self.get_tests()
        case_positions = {node.index: position for position, node in enumerate(tree.cases())}

        lines = [f"🔍 XCResult Analysis - {self.bundle_path}", "=" * 80, "", "📊 Test Summary"]
        lines.extend(self._summary_lines(analysis))
        lines.extend(["", "📋 All Tests:", "-" * 80])

        def render(node: TestNode, prefix: str) -> None:
            if node.is_case:
                duration = f" ({node.duration})" if node.duration else ""
                lines.append(f"{prefix}[{case_positions[node.index]}] {status_icon(node.result)} {node.name}{duration}")
                lines.append(f"{prefix}    ID: {node.node_identifier or 'unknown'}")
            elif node.node_type is TestNodeType.SUITE:
                passed, total = _count_cases(tree, node)
                rate = f" - {passed / total * 100:.1f}% pass rate ({passed}/{total})" if total else ""
                lines.append(f"{prefix}📁 {node.name}{rate}")
            for child in tree.children(node):
                render(child, prefix + "  ")

        for root in tree.roots:
            render(tree.nodes[root], "")
        return "\n".join(lines) + "\n"

    def format_test_details(self, id_or_index: str, include_console: bool = False) -> str:
        node = self.find_node(id_or_index)
        tree = self.get_tests()

        lines = [
            "🔍 Test Details",
            "=" * 80,
            f"Name: {node.name}",
            f"ID: {node.node_identifier or 'unknown'}",
            f"Type: {node.raw_type}",
            f"Result: {status_icon(node.result)} {node.result}",
        ]
        if node.duration:
            lines.append(f"Duration: {node.duration}")
        lines.append("")

        if "fail" in node.result.lower():
            failures = self.get_summary().get("testFailures") or []
            failure = next((f for f in failures if f.get("testIdentifierString") == node.node_identifier), None)
            if failure:
                lines.extend(["❌ Failure Details:", f"Target: {failure.get('targetName', '')}", f"Error: {failure.get('failureText', '')}", ""])
            messages = [child for child in tree.children(node) if child.raw_type == "Failure Message"]
            if messages:
                lines.append("📍 Detailed Failure Information:")
                for child in messages:
                    location, sep, message = child.name.partition(": ")
                    if sep:
                        lines.extend([f"Location: {location}", f"Message: {message}"])
                    else:
                        lines.append(f"Details: {child.name}")
                    lines.append("")

        if include_console and node.node_identifier:
            lines.extend(["📟 Console Output:", self.get_console_output(node.node_identifier), ""])
            lines.extend(["🔬 Test Activities:", self.get_test_activities(node.node_identifier)])
        return "\n".join(lines) + "\n"


def _count_cases(tree: TestTree, node: TestNode) -> tuple:
    passed = total = 0
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_case:
            total += 1
            lowered = current.result.lower()
            if "pass" in lowered or "success" in lowered:
                passed += 1
            continue
        stack.extend(tree.children(current))
    return passed, total


def format_activities(data: Any) -> str:
    """Render activities as ``t = <seconds>s`` lines relative to the test start."""
    lines: List[str] = []

    def render(activity: Dict[str, Any], base_time: Optional[float], indent: str) -> None:
        title = activity.get("title")
        if not title:
            return
        start = _number(activity.get("startTime"))
        if start is not None and base_time is not None:
            prefix = f"t = {start - base_time:8.2f}s "
        else:
            prefix = " " * 11
        marker = "❌ " if activity.get("isAssociatedWithFailure") else "   "
        lines.append(f"{indent}{prefix}{marker}{title}")
        for child in activity.get("childActivities") or []:
            render(child, base_time, indent + "  ")

    for test_run in (data.get("testRuns") or []) if isinstance(data, dict) else []:
        activities = test_run.get("activities") or []
        base_time = next(
            (_number(a.get("startTime")) for a in activities if "Start Test at" in str(a.get("title", "")) and a.get("startTime") is not None),
            None,
        )
        for activity in activities:
            render(activity, base_time, "")

    return "\n".join(lines) if lines else "No test activities found"
