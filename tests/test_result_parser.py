"""Tests for result-bundle querying and the test tree."""

import json

import pytest

from auto_xcode.exceptions import AutomationTimeoutError, ExternalToolFailure, NotFoundError, UnexpectedOutputFormat
from auto_xcode.models import TestNodeType
from auto_xcode.result_parser import (
    ResultTreeParser,
    build_test_tree,
    clean_json_floats,
    extract_attachments,
    format_activities,
    format_duration,
    normalize_attachment,
)
from auto_xcode.utils import CommandResult
from conftest import CapturingLogger, FakeClock, FakeExecutor, failed, ok

BUNDLE = "/tmp/Run.xcresult"

TEST_NODES = [
    {
        "name": "DemoTests",
        "nodeType": "Unit test bundle",
        "result": "Failed",
        "children": [
            {
                "name": "LoginTests",
                "nodeType": "Test Suite",
                "result": "Failed",
                "children": [
                    {"name": "testA()", "nodeType": "Test Case", "nodeIdentifier": "LoginTests/testA()", "result": "Passed", "duration": "0.1s"},
                    {
                        "name": "testB()",
                        "nodeType": "Test Case",
                        "nodeIdentifier": "LoginTests/testB()",
                        "result": "Failed",
                        "duration": "0.3s",
                        "children": [
                            {"name": "LoginTests.swift:42: XCTAssertEqual failed", "nodeType": "Failure Message", "result": "Failed"},
                        ],
                    },
                ],
            },
            {
                "name": "SettingsTests",
                "nodeType": "Test Suite",
                "result": "Skipped",
                "children": [
                    {"name": "testC()", "nodeType": "Test Case", "nodeIdentifier": "SettingsTests/testC()", "result": "Skipped"},
                ],
            },
        ],
    }
]

SUMMARY = {
    "result": "Failed",
    "totalTestCount": 3,
    "passedTests": 1,
    "failedTests": 1,
    "skippedTests": 1,
    "startTime": 1700000000.123456789012,
    "finishTime": 1700000075.5,
    "testFailures": [{"testIdentifierString": "LoginTests/testB()", "targetName": "DemoTests", "failureText": "XCTAssertEqual failed"}],
}


def _respond(cmd):
    if "summary" in cmd:
        return ok(json.dumps(SUMMARY))
    if "tests" in cmd:
        return ok(json.dumps({"testNodes": TEST_NODES}))
    if "log" in cmd:
        return ok("console line\n")
    if "activities" in cmd:
        return ok(json.dumps({"testRuns": []}))
    return ok("")


def _parser(responder=_respond):
    executor = FakeExecutor(responder=responder)
    return ResultTreeParser(BUNDLE, tool_command=["xcrun", "xcresulttool"], executor=executor, logger=CapturingLogger()), executor


class TestHelpers:
    def test_clean_json_floats(self):
        assert clean_json_floats('{"t": 1700000000.123456789012}') == '{"t": 1700000000.123457}'
        assert clean_json_floats('{"t": 1.5}') == '{"t": 1.5}'

    @pytest.mark.parametrize("seconds, expected", [(0, "0s"), (59.9, "59s"), (75.4, "1m 15s"), (3600, "60m 0s")])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestTreeBuilding:
    def test_arena_links(self):
        tree = build_test_tree(TEST_NODES)

        assert len(tree.nodes) == 7
        assert tree.roots == [0]
        for node in tree.nodes:
            for child_index in node.child_indices:
                assert tree.nodes[child_index].parent_index == node.index

    def test_cases_in_pre_order(self):
        tree = build_test_tree(TEST_NODES)

        assert [node.name for node in tree.cases()] == ["testA()", "testB()", "testC()"]
        assert tree.nodes[0].node_type is TestNodeType.SUITE
        assert tree.nodes[4].node_type is TestNodeType.OTHER


class TestFindNode:
    @pytest.mark.parametrize("index, identifier", [(0, "LoginTests/testA()"), (1, "LoginTests/testB()"), (2, "SettingsTests/testC()")])
    def test_valid_indices(self, index, identifier):
        parser, _ = _parser()

        assert parser.find_node(str(index)).node_identifier == identifier

    @pytest.mark.parametrize("key", ["3", "-1", "99"])
    def test_out_of_range_and_negative_indices(self, key):
        parser, _ = _parser()

        with pytest.raises(NotFoundError):
            parser.find_node(key)

    def test_exact_identifier_before_substring(self):
        parser, _ = _parser()

        assert parser.find_node("LoginTests/testB()").name == "testB()"
        assert parser.find_node("testC").node_identifier == "SettingsTests/testC()"

    def test_unknown_identifier(self):
        parser, _ = _parser()

        with pytest.raises(NotFoundError) as exc_info:
            parser.find_node("NoSuchTest")

        assert exc_info.value.message == "Test 'NoSuchTest' not found"

    @pytest.mark.parametrize("key", ["²", "١"])
    def test_non_ascii_digits_are_identifiers(self, key):
        parser, _ = _parser()

        with pytest.raises(NotFoundError) as exc_info:
            parser.find_node(key)

        assert exc_info.value.message == f"Test '{key}' not found"

    def test_tree_is_queried_once(self):
        parser, executor = _parser()

        parser.find_node("0")
        parser.find_node("1")

        assert sum(1 for cmd, _ in executor.calls if "tests" in cmd) == 1


class TestAnalysis:
    def test_analyze(self):
        parser, _ = _parser()

        analysis = parser.analyze()

        assert analysis.total_tests == 3
        assert analysis.pass_rate == pytest.approx(100 / 3)
        assert analysis.duration == "1m 15s"
        assert analysis.result == "Failed"

    def test_extract_test_details(self):
        parser, _ = _parser()

        details = parser.extract_test_details()

        assert details["failed"] == [{"name": "testB()", "id": "LoginTests/testB()"}]
        assert len(details["passed"]) == 1
        assert len(details["skipped"]) == 1

    def test_test_list_shows_case_indices(self):
        parser, _ = _parser()

        text = parser.format_test_list()

        assert "[0] ✅ testA() (0.1s)" in text
        assert "[1] ❌ testB() (0.3s)" in text
        assert "[2] ⏭️ testC()" in text
        assert "📁 LoginTests - 50.0% pass rate (1/2)" in text

    def test_failure_details(self):
        parser, _ = _parser()

        text = parser.format_test_details("1")

        assert "Target: DemoTests" in text
        assert "Location: LoginTests.swift:42" in text
        assert "Message: XCTAssertEqual failed" in text

    def test_details_with_console(self):
        parser, _ = _parser()

        text = parser.format_test_details("0", include_console=True)

        assert "📟 Console Output:\nconsole line" in text
        assert "No test activities found" in text

    def test_invalid_json_keeps_raw_output(self):
        parser, _ = _parser(lambda cmd: ok("<html>nope</html>"))

        with pytest.raises(UnexpectedOutputFormat) as exc_info:
            parser.get_summary()

        assert exc_info.value.raw == "<html>nope</html>"


class TestToolFailures:
    def test_non_zero_exit(self):
        parser, _ = _parser(lambda cmd: failed("Error: bundle is corrupt"))

        with pytest.raises(ExternalToolFailure) as exc_info:
            parser.get_tests()

        assert "bundle is corrupt" in exc_info.value.message

    def test_timeout(self):
        timed_out = CommandResult(success=False, stdout="", stderr="", returncode=-1, timed_out=True)
        parser, _ = _parser(lambda cmd: timed_out)

        with pytest.raises(AutomationTimeoutError):
            parser.get_attachments("LoginTests/testA()")

    def test_console_failure_is_reported_inline(self):
        parser, _ = _parser(lambda cmd: failed("no log"))

        assert parser.get_console_output("x").startswith("Error retrieving console output:")

    def test_export_command(self, tmp_path):
        parser, executor = _parser()
        parser.export_dir = str(tmp_path / "out")

        path = parser.export_attachment("0~abc", "shot.png")

        assert path == str(tmp_path / "out" / "shot.png")
        cmd = executor.calls[-1][0]
        assert cmd[:5] == ["xcrun", "xcresulttool", "export", "object", "--legacy"]
        assert cmd[cmd.index("--id") + 1] == "0~abc"


class TestAttachments:
    def test_alternate_field_names(self):
        modern = normalize_attachment({"name": "Screenshot", "payloadId": "p1", "uniform_type_identifier": "public.png", "payloadSize": 10})
        legacy = normalize_attachment({"filename": "Screenshot", "payloadUUID": "p1", "uniformTypeIdentifier": "public.png", "payload_size": 10})

        assert modern == legacy
        assert modern.payload_id == "p1"
        assert modern.size == 10

    def test_timestamps_inherit_from_nearest_activity(self):
        data = {
            "testRuns": [
                {
                    "activities": [
                        {
                            "title": "Tap",
                            "timestamp": 10.0,
                            "attachments": [{"name": "a"}],
                            "childActivities": [{"title": "inner", "timestamp": 12.0, "attachments": [{"name": "b"}, {"name": "c", "timestamp": 13.5}]}],
                        }
                    ]
                }
            ]
        }

        attachments = extract_attachments(data)

        assert [(a.name, a.timestamp) for a in attachments] == [("a", 10.0), ("b", 12.0), ("c", 13.5)]

    def test_format_activities_relative_to_test_start(self):
        data = {
            "testRuns": [
                {
                    "activities": [
                        {"title": "Start Test at 2024-01-01", "startTime": 100.0},
                        {"title": "Tap button", "startTime": 101.5, "isAssociatedWithFailure": True, "childActivities": [{"title": "Wait", "startTime": 102.0}]},
                    ]
                }
            ]
        }

        lines = format_activities(data).splitlines()

        assert lines[0] == "t =     0.00s    Start Test at 2024-01-01"
        assert lines[1] == "t =     1.50s ❌ Tap button"
        assert lines[2] == "  t =     2.00s    Wait"


class TestReadiness:
    def test_missing_manifest_is_not_ready(self, tmp_path):
        assert not ResultTreeParser.is_ready(str(tmp_path), sleep=lambda s: None)

    def test_empty_manifest_is_not_ready(self, tmp_path):
        (tmp_path / "Info.plist").write_bytes(b"")

        assert not ResultTreeParser.is_ready(str(tmp_path), sleep=lambda s: None)

    def test_stable_manifest_is_ready(self, tmp_path):
        (tmp_path / "Info.plist").write_bytes(b"<plist/>")

        assert ResultTreeParser.is_ready(str(tmp_path), sleep=lambda s: None)
        assert ResultTreeParser.is_readable(str(tmp_path))

    def test_growing_manifest_is_not_ready(self, tmp_path):
        manifest = tmp_path / "Info.plist"
        manifest.write_bytes(b"<plist")

        def grow(_):
            manifest.write_bytes(b"<plist></plist>")

        assert not ResultTreeParser.is_ready(str(tmp_path), sleep=grow)

    def test_wait_gives_up_after_timeout(self, tmp_path):
        clock = FakeClock()

        ready = ResultTreeParser.wait_for_readiness(str(tmp_path), timeout=5, interval=1, sleep=clock.sleep, clock=clock)

        assert ready is False
        assert clock.now - 1_700_000_000.0 >= 5
