"""Tests for XCLogParser decoding and its retry policy."""

import json

import pytest

from auto_xcode.exceptions import AutomationTimeoutError
from auto_xcode.log_decoder import (
    DECODER_FAILURE_MARKER,
    MAX_ATTEMPTS,
    RETRY_DELAYS,
    LogDecoder,
    format_issue,
    is_still_being_written,
    is_transient_failure,
    parse_decoder_output,
)
from auto_xcode.models import BuildOutcome
from auto_xcode.utils import CommandResult
from conftest import CapturingLogger, FakeExecutor, failed, ok

ISSUES = {
    "errors": [
        {"title": "Cannot find 'foo' in scope", "documentURL": "file:///work/App/View.swift", "startingLineNumber": 12, "startingColumnNumber": 5},
        {"title": "Cannot find 'foo' in scope", "documentURL": "file:///work/App/View.swift", "startingLineNumber": 12, "startingColumnNumber": 5},
    ],
    "warnings": [{"title": "Unused variable 'x'", "documentURL": "file:///work/App/Model.swift", "startingLineNumber": 3}],
    "buildStatus": "failed",
}

TRANSIENT = failed("Error: The file is not a valid SLF log")


def _decoder(responses):
    executor = FakeExecutor(responses)
    sleeps = []
    decoder = LogDecoder(command="xclogparser", executor=executor, sleep=sleeps.append, logger=CapturingLogger())
    return decoder, executor, sleeps


class TestFormatting:
    def test_full_location(self):
        issue = {"title": "boom", "documentURL": "file:///a/b.swift", "startingLineNumber": 4, "startingColumnNumber": 9}

        assert format_issue(issue) == "/a/b.swift:4:9: boom"

    def test_column_requires_line(self):
        issue = {"title": "boom", "documentURL": "file:///a/b.swift", "startingLineNumber": 0, "startingColumnNumber": 9}

        assert format_issue(issue) == "/a/b.swift: boom"

    def test_unknown_file(self):
        assert format_issue({"title": "Linker failed"}) == "Unknown file: Linker failed"

    def test_output_is_deduplicated_in_order(self):
        results = parse_decoder_output(json.dumps(ISSUES))

        assert results.errors == ["/work/App/View.swift:12:5: Cannot find 'foo' in scope"]
        assert results.warnings == ["/work/App/Model.swift:3: Unused variable 'x'"]
        assert results.build_status == "failed"
        assert results.outcome is BuildOutcome.FAILURE

    def test_transient_signatures(self):
        assert is_transient_failure("The log is corrupted")
        assert not is_transient_failure("Permission denied")


class TestRetryPolicy:
    @pytest.mark.parametrize("transient_failures", range(0, MAX_ATTEMPTS))
    def test_succeeds_after_transient_failures(self, transient_failures):
        decoder, executor, sleeps = _decoder([TRANSIENT] * transient_failures + [ok(json.dumps(ISSUES))])

        results = decoder.decode("/logs/build.xcactivitylog")

        assert len(executor.calls) == transient_failures + 1
        assert sleeps == list(RETRY_DELAYS[:transient_failures])
        assert results.decoder_failure is False
        assert len(results.errors) == 1

    @pytest.mark.parametrize("transient_failures", [MAX_ATTEMPTS, MAX_ATTEMPTS + 1])
    def test_gives_up_after_max_attempts(self, transient_failures):
        decoder, executor, sleeps = _decoder([TRANSIENT] * transient_failures + [ok(json.dumps(ISSUES))])

        results = decoder.decode("/logs/build.xcactivitylog")

        assert len(executor.calls) == MAX_ATTEMPTS
        assert sleeps == list(RETRY_DELAYS[: MAX_ATTEMPTS - 1])
        assert results.decoder_failure is True
        assert results.errors[0] == DECODER_FAILURE_MARKER
        assert "Error details: Error: The file is not a valid SLF log" in results.errors
        assert is_still_being_written(results)

    def test_command_line(self):
        decoder, executor, _ = _decoder([ok("{}")])

        decoder.decode("/logs/build.xcactivitylog")

        assert executor.calls[0][0] == ["xclogparser", "parse", "--file", "/logs/build.xcactivitylog", "--reporter", "issues"]


class TestDecoderFailures:
    def test_missing_decoder_is_not_retried(self):
        missing = CommandResult(success=False, stdout="", stderr="No such file or directory", returncode=-1, spawn_failed=True)
        decoder, executor, sleeps = _decoder([missing])

        results = decoder.decode("/logs/build.xcactivitylog")

        assert len(executor.calls) == 1
        assert sleeps == []
        assert results.decoder_failure is True
        assert "not installed" in results.errors[0]
        assert not is_still_being_written(results)

    def test_non_transient_failure_is_not_retried(self):
        decoder, executor, sleeps = _decoder([failed("Permission denied")])

        results = decoder.decode("/logs/build.xcactivitylog")

        assert len(executor.calls) == 1
        assert sleeps == []
        assert results.errors[-1] == "Error details: Permission denied"
        assert results.decoder_failure is True
        assert results.errors[0] == "XCLogParser exited with status 1."
        assert not is_still_being_written(results)

    def test_unparseable_output(self):
        decoder, _, _ = _decoder([ok("this is not json")])

        results = decoder.decode("/logs/build.xcactivitylog")

        assert results.decoder_failure is True
        assert results.errors[0] == "Failed to parse XCLogParser JSON output."
        assert not is_still_being_written(results)

    def test_decoder_timeout_raises(self):
        timed_out = CommandResult(success=False, stdout="", stderr="timed out", returncode=-1, timed_out=True)
        decoder, _, _ = _decoder([timed_out])

        with pytest.raises(AutomationTimeoutError):
            decoder.decode("/logs/build.xcactivitylog")

    def test_clean_build(self):
        decoder, _, _ = _decoder([ok(json.dumps({"errors": [], "warnings": []}))])

        results = decoder.decode("/logs/build.xcactivitylog")

        assert results.outcome is BuildOutcome.SUCCESS
