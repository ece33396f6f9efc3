"""Tests for the result-bundle browsing operations."""

import json
import os
import re

import pytest

from auto_xcode.attachments import AttachmentResolver, FrameExtractor
from auto_xcode.exceptions import ExternalToolFailure
from auto_xcode.result_browser import ResultBrowser
from auto_xcode.result_parser import ResultTreeParser
from auto_xcode.utils import CommandResult
from conftest import CapturingLogger, FakeExecutor, failed, ok

UI_DUMP = """Application, pid: 4242, label: 'Demo'
  Window (Main), {{0.0, 0.0}, {390.0, 844.0}}
    Button, identifier: "login", label: 'Log In'
"""

TEST_NODES = [
    {
        "name": "LoginTests",
        "nodeType": "Test Suite",
        "result": "Failed",
        "children": [
            {"name": "testA()", "nodeType": "Test Case", "nodeIdentifier": "LoginTests/testA()", "result": "Passed"},
            {"name": "testB()", "nodeType": "Test Case", "nodeIdentifier": "LoginTests/testB()", "result": "Failed"},
        ],
    }
]

SUMMARY = {
    "result": "Failed",
    "totalTestCount": 2,
    "passedTests": 1,
    "failedTests": 1,
    "skippedTests": 0,
    "startTime": 100.0,
    "finishTime": 104.0,
    "testFailures": [{"testName": "testB()", "testIdentifierString": "LoginTests/testB()", "failureText": "XCTAssertTrue failed"}],
}

ACTIVITIES = {
    "testRuns": [
        {
            "activities": [
                {
                    "title": "Tap Log In",
                    "timestamp": 2.0,
                    "attachments": [
                        {"name": "App UI hierarchy for Demo", "payloadId": "ui1", "uniform_type_identifier": "public.plain-text"},
                        {"name": "Screenshot", "filename": "Screenshot.png", "payloadId": "img1", "uniform_type_identifier": "public.png", "payloadSize": 2048},
                    ],
                }
            ]
        }
    ]
}

EXPORTS = {"ui1": UI_DUMP.encode(), "img1": b"\x89PNG"}


def _responder(cmd):
    if "export" in cmd:
        payload = EXPORTS[cmd[cmd.index("--id") + 1]]
        with open(cmd[cmd.index("--output-path") + 1], "wb") as f:
            f.write(payload)
        return ok("")
    if "summary" in cmd:
        return ok(json.dumps(SUMMARY))
    if "tests" in cmd:
        return ok(json.dumps({"testNodes": TEST_NODES}))
    if "activities" in cmd:
        return ok(json.dumps(ACTIVITIES))
    if "log" in cmd:
        return ok("2024-01-01 app started\n")
    return ok("")


@pytest.fixture
def bundle(tmp_path):
    path = tmp_path / "Run-Demo.xcresult"
    path.mkdir()
    (path / "Info.plist").write_bytes(b"<plist/>")
    return str(path)


def _browser(responder=_responder):
    logger = CapturingLogger()
    resolver = AttachmentResolver(
        frame_extractor=FrameExtractor(candidates=["ffmpeg"], executor=FakeExecutor(), logger=logger),
        clock=lambda: 1000.0,
        logger=logger,
    )
    return ResultBrowser(
        parser_factory=lambda path: ResultTreeParser(path, executor=FakeExecutor(responder=responder), logger=logger),
        attachment_resolver=resolver,
        clock=lambda: 1000.0,
        logger=logger,
    )


class TestBundleValidation:
    def test_missing_bundle(self, tmp_path):
        result = _browser().xcresult_browse(str(tmp_path / "Nope.xcresult"))

        assert result.is_error
        assert result.first_text.startswith("❌ XCResult file not found")

    def test_wrong_extension(self, tmp_path):
        result = _browser().xcresult_summary(str(tmp_path))

        assert result.is_error
        assert "must be an .xcresult" in result.first_text

    def test_incomplete_bundle(self, tmp_path):
        path = tmp_path / "Half.xcresult"
        path.mkdir()

        result = _browser().xcresult_summary(str(path))

        assert "not readable or incomplete" in result.first_text


class TestBrowse:
    def test_list(self, bundle):
        result = _browser().xcresult_browse(bundle)

        assert not result.is_error
        assert "[0] ✅ testA()" in result.first_text
        assert "[1] ❌ testB()" in result.first_text
        assert "💡 Usage:" in result.first_text

    def test_details_by_index(self, bundle):
        result = _browser().xcresult_browse(bundle, "1")

        assert "Name: testB()" in result.first_text
        assert "Error: XCTAssertTrue failed" in result.first_text

    def test_unknown_test(self, bundle):
        result = _browser().xcresult_browse(bundle, "5")

        assert result.is_error
        assert "out of range" in result.first_text

    def test_summary(self, bundle):
        result = _browser().xcresult_summary(bundle)

        assert "Pass Rate: 50.0%" in result.first_text
        assert "  • testB(): XCTAssertTrue failed" in result.first_text

    def test_console(self, bundle):
        result = _browser().xcresult_get_console(bundle, "LoginTests/testA()")

        assert "📟 Console Output for: testA()" in result.first_text
        assert "2024-01-01 app started" in result.first_text

    def test_console_unknown_test(self, bundle):
        result = _browser().xcresult_get_console(bundle, "9")

        assert result.is_error
        assert result.first_text.startswith("❌ Test '9' not found")

    def test_tool_failure_carries_installation_hint(self, bundle):
        with pytest.raises(ExternalToolFailure) as exc_info:
            _browser(lambda cmd: failed("xcrun: error: unable to find utility")).xcresult_summary(bundle)

        assert "Make sure Xcode Command Line Tools are installed" in exc_info.value.message

    def test_timeout_is_reported(self, bundle):
        timed_out = CommandResult(success=False, stdout="", stderr="", returncode=-1, timed_out=True)

        result = _browser(lambda cmd: timed_out).xcresult_summary(bundle)

        assert result.is_error
        assert result.first_text.startswith("⏱️ Analyze XCResult timed out")

    def test_garbage_output_is_shown(self, bundle):
        result = _browser(lambda cmd: ok("garbage")).xcresult_summary(bundle)

        assert result.is_error
        assert "Raw output:\ngarbage" in result.first_text


class TestAttachments:
    def test_list_is_one_based(self, bundle):
        result = _browser().xcresult_list_attachments(bundle, "0")

        assert "Found 2 attachments" in result.first_text
        assert "[1] App UI hierarchy for Demo" in result.first_text
        assert "[2] Screenshot" in result.first_text
        assert "Size: 2048 bytes" in result.first_text

    @pytest.mark.parametrize("index, fragment", [(0, "must be 1 or greater"), (3, "Invalid attachment index 3")])
    def test_export_index_bounds(self, bundle, index, fragment):
        result = _browser().xcresult_export_attachment(bundle, "0", index)

        assert result.is_error
        assert fragment in result.first_text

    def test_export_file(self, bundle, tmp_path):
        result = _browser().xcresult_export_attachment(bundle, "0", 2)

        assert result.first_text.startswith(f"Attachment exported to: {tmp_path / 'exports' / 'Screenshot.png'}")

    def test_export_ui_hierarchy_as_json(self, bundle):
        result = _browser().xcresult_export_attachment(bundle, "0", 1, convert_to_json=True)

        data = json.loads(result.first_text)
        assert data["parseMethod"] == "indented_text"
        assert len(data["flatElements"]) == 3

    def test_screenshot_reports_offset(self, bundle):
        result = _browser().xcresult_get_screenshot(bundle, "0", 3.5)

        assert "Screenshot exported for test 'testA()'" in result.first_text
        assert "Offset from requested time: -1.50s" in result.first_text


class TestUIHierarchy:
    def test_slim_hierarchy_and_screenshot(self, bundle):
        result = _browser().xcresult_get_ui_hierarchy(bundle, "0")

        slim_path = re.search(r"AI-readable UI hierarchy: (\S+)", result.first_text).group(1)
        with open(slim_path) as f:
            slim = json.load(f)
        assert slim["parseMethod"] == "slim_ui_tree"
        assert slim["rootElement"]["c"][0]["c"][0] == {"t": "Button", "j": 2, "l": "Log In"}
        assert "📸 Screenshot at timestamp 2s" in result.first_text

    def test_full_hierarchy_and_element_lookup(self, bundle):
        browser = _browser()
        result = browser.xcresult_get_ui_hierarchy(bundle, "0", full_hierarchy=True)

        full_path = re.search(r"Full hierarchy: (\S+)", result.first_text).group(1)
        assert os.path.exists(full_path)

        element = json.loads(browser.xcresult_get_ui_element(full_path, 1).first_text)
        assert element["type"] == "Window"
        assert element["childrenCount"] == 1

        missing = browser.xcresult_get_ui_element(full_path, 9)
        assert missing.is_error
        assert "out of range" in missing.first_text

    def test_test_without_hierarchy(self, bundle):
        activities = {"testRuns": [{"activities": [{"title": "x", "attachments": [{"name": "Screenshot", "payloadId": "img1"}]}]}]}

        def responder(cmd):
            if "activities" in cmd:
                return ok(json.dumps(activities))
            return _responder(cmd)

        result = _browser(responder).xcresult_get_ui_hierarchy(bundle, "0")

        assert result.is_error
        assert "No App UI hierarchy attachments found" in result.first_text
