"""
Drive build, clean, test, run, debug and stop actions in the IDE.

Each action follows the same shape: select scheme and destination, trigger
the action through the script bridge, wait for the artifact the action
produces, wait for that artifact to stop changing, then classify it. Every
wait is a bounded polling loop; running out of attempts is reported as a
timed-out result, not raised.
"""

import json
import os
import time
from typing import Any, Callable, Iterable, List, Optional, Sequence, Set, Tuple

from . import jxa_scripts
from .artifact_locator import ArtifactLocator
from .config import settings
from .error_guidance import (
    build_log_not_found_guidance,
    create_error_with_guidance,
    destination_not_found_guidance,
    parse_common_errors,
    scheme_not_found_guidance,
)
from .exceptions import AutoXcodeError, AutomationTimeoutError, BuildFailedError, ExternalToolFailure, NotFoundError
from .log_decoder import LogDecoder, is_still_being_written
from .logger_config import get_logger
from .models import (
    BuildLogInfo,
    BuildOutcome,
    BuildReport,
    OrchestrationState,
    ParsedBuildResults,
    ResultBundleInfo,
    ToolResult,
)
from .name_resolver import NameResolver
from .project import ProjectSession, list_destinations, list_schemes, validate_project_path
from .result_parser import ResultTreeParser
from .script_bridge import ScriptBridge

BUILD_LOG_WAIT_ATTEMPTS = 1800
BUILD_LOG_POLL_INTERVAL = 1.0
BUILD_STABILITY_ATTEMPTS = 1200
BUILD_STABLE_SAMPLES = 1

RESULT_BUNDLE_WAIT_ATTEMPTS = 30
RESULT_BUNDLE_POLL_INTERVAL = 1.0
RESULT_BUNDLE_SLACK = 5.0
RESULT_BUNDLE_MAX_AGE = 3600.0
RESULT_BUNDLE_READY_TIMEOUT = 60.0

RUN_LOG_WAIT_ATTEMPTS = 60
RUN_POLL_INTERVAL = 0.5
RUN_STABILITY_ATTEMPTS = 600
RUN_STABLE_SAMPLES = 6

BundleSnapshot = Set[Tuple[str, float]]


def snapshot_bundles(bundles: Iterable[ResultBundleInfo]) -> BundleSnapshot:
    return {(bundle.path, bundle.modified_time) for bundle in bundles}


def find_new_bundle(
    bundles: Sequence[ResultBundleInfo],
    snapshot: BundleSnapshot,
    start_time: float,
    slack: float = RESULT_BUNDLE_SLACK,
) -> Optional[ResultBundleInfo]:
    """First bundle (newest first) absent from ``snapshot`` and modified at or after ``start_time - slack``.

    A bundle counts as present in the snapshot only when both its path and its
    modification time are unchanged.
    """
    for bundle in bundles:
        if (bundle.path, bundle.modified_time) in snapshot:
            continue
        if bundle.modified_time >= start_time - slack:
            return bundle
    return None


def classify_build(results: ParsedBuildResults, log_path: Optional[str] = None, context: str = "") -> BuildReport:
    """Turn decoded issues into a report with a human-readable message."""
    if results.errors:
        lines = [f"❌ BUILD FAILED{context} ({len(results.errors)} errors)", "", "ERRORS:"]
        lines.extend(f"  • {error}" for error in results.errors)
        return BuildReport(BuildOutcome.FAILURE, results, log_path, "\n".join(lines))
    if results.warnings:
        lines = [f"⚠️ BUILD COMPLETED WITH WARNINGS{context} ({len(results.warnings)} warnings)", "", "WARNINGS:"]
        lines.extend(f"  • {warning}" for warning in results.warnings)
        return BuildReport(BuildOutcome.WARNINGS, results, log_path, "\n".join(lines))
    return BuildReport(BuildOutcome.SUCCESS, results, log_path, f"✅ BUILD SUCCESSFUL{context}")


class XcodeOrchestrator:
    """Composes the bridge, artifact locator, decoder and name resolver into IDE actions.

    ``sleep`` and ``clock`` are injected so polling can be driven by a fake
    clock. ``clock`` must return wall-clock seconds because it is compared
    against file modification times.
    """

    def __init__(
        self,
        bridge: Optional[ScriptBridge] = None,
        locator: Optional[ArtifactLocator] = None,
        decoder: Optional[LogDecoder] = None,
        resolver: Optional[NameResolver] = None,
        ensure_loaded: Optional[Callable[[str], ToolResult]] = None,
        parser_factory: Callable[[str], ResultTreeParser] = ResultTreeParser,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.logger = logger or get_logger(__name__)
        self.bridge = bridge or ScriptBridge(logger=self.logger)
        self.locator = locator or ArtifactLocator(logger=self.logger)
        self.decoder = decoder or LogDecoder(sleep=sleep, logger=self.logger)
        self.resolver = resolver or NameResolver(logger=self.logger)
        self.ensure_loaded = ensure_loaded or ProjectSession(self.bridge, sleep=sleep, logger=self.logger).open_project_and_wait
        self.parser_factory = parser_factory
        self.sleep = sleep
        self.clock = clock
        self.state = OrchestrationState.IDLE
        self.last_report: Optional[BuildReport] = None

    def _transition(self, state: OrchestrationState) -> None:
        self.logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    def _prepare(self, project_path: str) -> Optional[ToolResult]:
        self._transition(OrchestrationState.IDLE)
        validation_error = validate_project_path(project_path)
        if validation_error:
            return validation_error
        loaded = self.ensure_loaded(project_path)
        if loaded is not None and loaded.is_error:
            return loaded
        return None

    @staticmethod
    def _bridge_failure(prefix: str, error: AutoXcodeError) -> ToolResult:
        if isinstance(error, ExternalToolFailure):
            enhanced = parse_common_errors(error.stderr or error.message)
            if enhanced:
                return ToolResult.text(enhanced, is_error=True)
        return ToolResult.text(f"{prefix}: {error.message}", is_error=True)

    # -- scheme / destination ----------------------------------------------

    def _scheme_not_found(self, error: NotFoundError) -> ToolResult:
        if not error.candidates:
            return ToolResult.text(
                create_error_with_guidance(f"Scheme '{error.requested}' not found", scheme_not_found_guidance(error.requested or "")),
                is_error=True,
            )
        lines = [f"❌ Scheme '{error.requested}' not found", "", "Available schemes:"]
        for scheme in error.candidates:
            marker = " ← Did you mean this?" if scheme == error.suggestion else ""
            lines.append(f"  • {scheme}{marker}")
        return ToolResult.text("\n".join(lines) + "\n", is_error=True)

    def _destination_not_found(self, error: NotFoundError) -> ToolResult:
        guidance = destination_not_found_guidance(error.requested or "", error.candidates)
        if error.suggestion and error.suggestion != error.requested:
            guidance += f"\n• Did you mean '{error.suggestion}'?"
        return ToolResult.text(create_error_with_guidance(f"Destination '{error.requested}' not found", guidance), is_error=True)

    def _select_scheme(self, scheme: str) -> Tuple[Optional[str], Optional[ToolResult]]:
        try:
            names, _ = list_schemes(self.bridge)
            exact = self.resolver.resolve_scheme(scheme, names)
            self.bridge.execute(jxa_scripts.set_scheme_script(exact))
        except NotFoundError as e:
            return None, self._scheme_not_found(e)
        except AutoXcodeError as e:
            return None, self._bridge_failure(f"Failed to set scheme '{scheme}'", e)
        self._transition(OrchestrationState.SCHEME_SET)
        return exact, None

    def _select_destination(self, destination: str) -> Tuple[Optional[str], Optional[ToolResult]]:
        try:
            names, _ = list_destinations(self.bridge)
            exact = self.resolver.resolve_destination(destination, names)
            self.bridge.execute(jxa_scripts.set_destination_script(exact))
        except NotFoundError as e:
            return None, self._destination_not_found(e)
        except AutoXcodeError as e:
            return None, self._bridge_failure(f"Failed to set destination '{destination}'", e)
        self._transition(OrchestrationState.DESTINATION_SET)
        return exact, None

    def set_scheme(self, project_path: str, scheme: str) -> ToolResult:
        error = self._prepare(project_path)
        if error:
            return error
        exact, error = self._select_scheme(scheme)
        return error or ToolResult.text(f"Active scheme set to: {exact}")

    def set_destination(self, project_path: str, destination: str) -> ToolResult:
        error = self._prepare(project_path)
        if error:
            return error
        exact, error = self._select_destination(destination)
        return error or ToolResult.text(f"Active destination set to: {exact}")

    def _listing(self, project_path: str, kind: str, lister: Callable[[ScriptBridge], Tuple[List[str], Optional[str]]]) -> ToolResult:
        error = self._prepare(project_path)
        if error:
            return error
        try:
            names, active = lister(self.bridge)
        except AutoXcodeError as e:
            return self._bridge_failure(f"Failed to list {kind}", e)
        if not names:
            return ToolResult.text(f"No {kind} found in the project")
        lines = [f"Available {kind}:"]
        lines.extend(f"  • {name}{' (active)' if name == active else ''}" for name in names)
        return ToolResult.text("\n".join(lines))

    def get_schemes(self, project_path: str) -> ToolResult:
        return self._listing(project_path, "schemes", list_schemes)

    def get_run_destinations(self, project_path: str) -> ToolResult:
        return self._listing(project_path, "run destinations", list_destinations)

    # -- build -------------------------------------------------------------

    def wait_for_new_build_log(self, project_path: str, trigger_time: float) -> Optional[BuildLogInfo]:
        """Poll for a build log modified strictly after ``trigger_time``."""
        self._transition(OrchestrationState.AWAITING_ARTIFACT)
        for attempt in range(BUILD_LOG_WAIT_ATTEMPTS):
            log = self.locator.get_latest_build_log(project_path)
            if log and log.modified_time > trigger_time:
                self.logger.info(f"Found new build log created after build start: {log.path}")
                return log
            if attempt % 30 == 0:
                self.logger.debug(f"No new build log yet, attempt {attempt + 1}/{BUILD_LOG_WAIT_ATTEMPTS}")
            self.sleep(BUILD_LOG_POLL_INTERVAL)
        return None

    def wait_for_stable_build_log(self, project_path: str, log: BuildLogInfo, trigger_time: float) -> Optional[Tuple[BuildLogInfo, ParsedBuildResults]]:
        """Decode ``log`` once its size holds still; keep going while the decoder says it is mid-write.

        Returns None when the attempt budget runs out.
        """
        self._transition(OrchestrationState.AWAITING_STABILITY)
        last_size = 0
        stable_count = 0
        for _ in range(BUILD_STABILITY_ATTEMPTS):
            try:
                size = os.stat(log.path).st_size
            except OSError:
                # The IDE can replace the log file while building
                current = self.locator.get_latest_build_log(project_path)
                if current and current.path != log.path and current.modified_time > trigger_time:
                    self.logger.debug(f"Build log changed to: {current.path}")
                    log = current
                    last_size = 0
                    stable_count = 0
                self.sleep(BUILD_LOG_POLL_INTERVAL)
                continue

            if size == last_size:
                stable_count += 1
                if stable_count >= BUILD_STABLE_SAMPLES:
                    results = self.decoder.decode(log.path)
                    if not is_still_being_written(results):
                        return log, results
                    self.logger.debug("Decoder could not read the log yet, waiting")
            else:
                last_size = size
                stable_count = 0
            self.sleep(BUILD_LOG_POLL_INTERVAL)
        return None

    def build(self, project_path: str, scheme: str, destination: Optional[str] = None) -> ToolResult:
        """Build ``scheme`` and report the decoded outcome.

        Raises:
            BuildFailedError: the build finished with errors.
        """
        error = self._prepare(project_path)
        if error:
            return error

        exact_scheme, error = self._select_scheme(scheme)
        if error:
            return error
        if destination:
            _, error = self._select_destination(destination)
            if error:
                return error

        trigger_time = self.clock()
        try:
            self.bridge.execute(jxa_scripts.build_script())
        except AutoXcodeError as e:
            return self._bridge_failure("Failed to start build", e)
        self._transition(OrchestrationState.ACTION_TRIGGERED)

        log = self.wait_for_new_build_log(project_path, trigger_time)
        if log is None:
            self._transition(OrchestrationState.TIMED_OUT)
            return ToolResult.text(
                create_error_with_guidance(
                    f"Build started but no new build log appeared within {BUILD_LOG_WAIT_ATTEMPTS} seconds",
                    build_log_not_found_guidance(),
                ),
                is_error=True,
            )

        self.logger.info(f"Monitoring build completion for log: {log.path}")
        try:
            decoded = self.wait_for_stable_build_log(project_path, log, trigger_time)
        except AutomationTimeoutError as e:
            return self._decoder_timed_out(e)
        if decoded is None:
            self._transition(OrchestrationState.TIMED_OUT)
            return ToolResult.text(f"Build timed out after {BUILD_STABILITY_ATTEMPTS} seconds", is_error=True)

        log, results = decoded
        context = f" for scheme '{exact_scheme}'" + (f" and destination '{destination}'" if destination else "")
        return self._finish_build(results, log.path, context)

    def _decoder_timed_out(self, error: AutomationTimeoutError, prefix: str = "") -> ToolResult:
        self.logger.error(f"Build log decoding timed out: {error.message}")
        self._transition(OrchestrationState.TIMED_OUT)
        return ToolResult.text(f"{prefix}Build log decoding timed out: {error.message}", is_error=True)

    def _finish_build(self, results: ParsedBuildResults, log_path: str, context: str = "", prefix: str = "") -> ToolResult:
        self._transition(OrchestrationState.PARSED)
        if results.decoder_failure:
            # Decoder missing or producing garbage: nothing to classify
            self._transition(OrchestrationState.FAILURE)
            self.last_report = BuildReport(BuildOutcome.FAILURE, results, log_path, "\n".join(results.errors))
            return ToolResult.text(prefix + self.last_report.message, is_error=True)

        report = classify_build(results, log_path, context)
        self.last_report = report
        self.logger.info(f"Build completed{context} - {len(results.errors)} errors, {len(results.warnings)} warnings")

        if report.outcome is BuildOutcome.FAILURE:
            self._transition(OrchestrationState.FAILURE)
            for line in results.errors:
                self.logger.error(f"Build error: {line}")
            raise BuildFailedError(prefix + report.message, errors=results.errors)

        if report.outcome is BuildOutcome.WARNINGS:
            self._transition(OrchestrationState.WARNINGS)
            for line in results.warnings:
                self.logger.warning(f"Build warning: {line}")
        else:
            self._transition(OrchestrationState.SUCCESS)
        return ToolResult.text(prefix + report.message)

    # -- clean -------------------------------------------------------------

    def clean(self, project_path: str) -> ToolResult:
        error = self._prepare(project_path)
        if error:
            return error
        try:
            output = self.bridge.execute(jxa_scripts.clean_script(), timeout=settings.action_timeout)
        except AutomationTimeoutError as e:
            self._transition(OrchestrationState.TIMED_OUT)
            return ToolResult.text(f"Clean timed out: {e.message}", is_error=True)
        except AutoXcodeError as e:
            return self._bridge_failure("Failed to clean", e)
        self._transition(OrchestrationState.SUCCESS)
        return ToolResult.text(output)

    # -- test --------------------------------------------------------------

    def wait_for_new_result_bundle(self, project_path: str, snapshot: BundleSnapshot, start_time: float) -> Optional[ResultBundleInfo]:
        """Poll for a bundle the test run produced, falling back to a recent one."""
        self._transition(OrchestrationState.AWAITING_ARTIFACT)
        for _ in range(RESULT_BUNDLE_WAIT_ATTEMPTS):
            bundle = find_new_bundle(self.locator.list_result_bundles(project_path), snapshot, start_time)
            if bundle:
                self.logger.info(f"Found new xcresult file: {bundle.path}")
                return bundle
            self.sleep(RESULT_BUNDLE_POLL_INTERVAL)

        latest = self.locator.get_latest_result_bundle(project_path)
        if latest and self.clock() - latest.modified_time < RESULT_BUNDLE_MAX_AGE:
            self.logger.warning(f"Using most recent xcresult file: {latest.path}")
            return latest
        return None

    def test(self, project_path: str, command_line_arguments: Optional[List[str]] = None) -> ToolResult:
        error = self._prepare(project_path)
        if error:
            return error

        snapshot = snapshot_bundles(self.locator.list_result_bundles(project_path))
        start_time = self.clock()
        args_info = f" with arguments {json.dumps(command_line_arguments)}" if command_line_arguments else ""
        header = f"🧪 TESTS COMPLETED{args_info}\n\n"

        try:
            output = self.bridge.execute(jxa_scripts.run_tests_script(command_line_arguments), timeout=settings.action_timeout)
        except AutomationTimeoutError as e:
            self._transition(OrchestrationState.TIMED_OUT)
            return ToolResult.text(f"Test action timed out: {e.message}", is_error=True)
        except AutoXcodeError as e:
            return self._bridge_failure("Failed to run tests", e)
        self._transition(OrchestrationState.ACTION_TRIGGERED)

        try:
            status = json.loads(output)
        except ValueError:
            status = {"status": output or "unknown"}
        test_status = status.get("status", "unknown") if isinstance(status, dict) else "unknown"

        bundle = self.wait_for_new_result_bundle(project_path, snapshot, start_time)
        if bundle is None:
            self._transition(OrchestrationState.FAILURE if test_status == "failed" else OrchestrationState.SUCCESS)
            if test_status == "failed":
                return ToolResult.text(
                    f"❌ TEST FAILED\n\n{status.get('error') or 'Test execution failed'}\n\nNote: No XCResult file found for detailed analysis.",
                    is_error=True,
                )
            return ToolResult.text(f"{header}Status: {test_status}\n\nNote: No XCResult file found for detailed analysis.")

        self._transition(OrchestrationState.AWAITING_STABILITY)
        ready = ResultTreeParser.wait_for_readiness(bundle.path, timeout=RESULT_BUNDLE_READY_TIMEOUT, sleep=self.sleep, clock=self.clock)
        if not ready:
            self._transition(OrchestrationState.TIMED_OUT)
            return ToolResult.text(
                f"{header}XCResult Path: {bundle.path}\nStatus: {test_status}\n\n"
                "⚠️ XCResult file found but not ready for parsing within timeout.\n"
                f"Use 'xcresult browse \"{bundle.path}\"' to explore results once file is ready."
            )

        try:
            analysis = self.parser_factory(bundle.path).analyze()
        except AutoXcodeError as e:
            self.logger.warning(f"Failed to parse xcresult: {e.message}")
            self._transition(OrchestrationState.PARSED)
            return ToolResult.text(
                f"{header}XCResult Path: {bundle.path}\nStatus: {test_status}\n\n"
                f"Note: XCResult parsing failed ({e.message}), but the bundle is available for manual inspection.\n"
                f"Use 'xcresult browse \"{bundle.path}\"' to explore results."
            )

        self._transition(OrchestrationState.PARSED)
        lines = [
            "📊 Test Results Summary:",
            f"XCResult Path: {bundle.path}",
            f"Result: {'❌' if analysis.result == 'Failed' else '✅'} {analysis.result}",
            f"Total: {analysis.total_tests} | Passed: {analysis.passed_tests} ✅ | Failed: {analysis.failed_tests} ❌ | Skipped: {analysis.skipped_tests} ⏭️",
            f"Pass Rate: {analysis.pass_rate:.1f}%",
            f"Duration: {analysis.duration}",
            "",
        ]
        if analysis.failed_tests > 0:
            self._transition(OrchestrationState.FAILURE)
            lines.append(f"❌ Some tests failed. Use 'xcresult browse \"{bundle.path}\"' to explore detailed results.")
            lines.append(f"For console output: 'xcresult console \"{bundle.path}\" <test-id>'")
        else:
            self._transition(OrchestrationState.SUCCESS)
            lines.append(f"✅ All tests passed! Use 'xcresult browse \"{bundle.path}\"' to explore detailed results.")
        return ToolResult.text(header + "\n".join(lines))

    # -- run / debug / stop ------------------------------------------------

    def _wait_for_run_log(self, project_path: str, initial: Optional[BuildLogInfo], initial_time: float) -> Optional[BuildLogInfo]:
        self._transition(OrchestrationState.AWAITING_ARTIFACT)
        for _ in range(RUN_LOG_WAIT_ATTEMPTS):
            log = self.locator.get_latest_build_log(project_path)
            if log and (initial is None or log.path != initial.path or log.modified_time > initial_time):
                return log
            self.sleep(RUN_POLL_INTERVAL)
        return None

    def _wait_for_run_log_to_settle(self, project_path: str) -> bool:
        self._transition(OrchestrationState.AWAITING_STABILITY)
        last_modified: Optional[float] = None
        stable_count = 0
        for _ in range(RUN_STABILITY_ATTEMPTS):
            current = self.locator.get_latest_build_log(project_path)
            if current:
                if current.modified_time == last_modified:
                    stable_count += 1
                    if stable_count >= RUN_STABLE_SAMPLES:
                        return True
                else:
                    last_modified = current.modified_time
                    stable_count = 0
            self.sleep(RUN_POLL_INTERVAL)
        return False

    def run(self, project_path: str, scheme: str, command_line_arguments: Optional[List[str]] = None) -> ToolResult:
        """Run ``scheme`` and report the build part of the run.

        Raises:
            BuildFailedError: the build step finished with errors.
        """
        error = self._prepare(project_path)
        if error:
            return error
        _, error = self._select_scheme(scheme)
        if error:
            return error

        initial_log = self.locator.get_latest_build_log(project_path)
        initial_time = self.clock()
        try:
            run_result = self.bridge.execute(jxa_scripts.run_script(command_line_arguments))
        except AutoXcodeError as e:
            return self._bridge_failure("Failed to run", e)
        self._transition(OrchestrationState.ACTION_TRIGGERED)

        log = self._wait_for_run_log(project_path, initial_log, initial_time)
        if log is None:
            self._transition(OrchestrationState.SUCCESS)
            return ToolResult.text(f"{run_result}\n\nNote: Run triggered but no build log found (app may have launched without building)")

        if not self._wait_for_run_log_to_settle(project_path):
            self._transition(OrchestrationState.TIMED_OUT)
            return ToolResult.text(
                f"{run_result}\n\nBuild log did not settle within {RUN_STABILITY_ATTEMPTS * RUN_POLL_INTERVAL:g} seconds: {log.path}",
                is_error=True,
            )

        try:
            results = self.decoder.decode(log.path)
        except AutomationTimeoutError as e:
            return self._decoder_timed_out(e, prefix=f"{run_result}\n\n")
        result = self._finish_build(results, log.path, prefix=f"{run_result}\n\n")
        if self.last_report and self.last_report.outcome is BuildOutcome.SUCCESS:
            return ToolResult.text(result.first_text + " - App should be launching")
        return result

    def debug(self, project_path: str, scheme: Optional[str] = None, skip_building: bool = False) -> ToolResult:
        error = self._prepare(project_path)
        if error:
            return error
        if scheme:
            exact, error = self._select_scheme(scheme)
            if error:
                return error
            scheme = exact
        try:
            output = self.bridge.execute(jxa_scripts.debug_script(scheme, skip_building))
        except AutoXcodeError as e:
            return self._bridge_failure("Failed to start debugging", e)
        self._transition(OrchestrationState.SUCCESS)
        return ToolResult.text(output)

    def stop(self) -> ToolResult:
        try:
            output = self.bridge.execute(jxa_scripts.stop_script())
        except AutoXcodeError as e:
            return self._bridge_failure("Failed to stop", e)
        self._transition(OrchestrationState.IDLE)
        return ToolResult.text(output)
