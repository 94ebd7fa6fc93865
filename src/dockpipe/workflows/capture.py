"""Build a TestResult from whatever a finished test task left behind."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import TYPE_CHECKING

from dockpipe.workflows.models import TestResult

if TYPE_CHECKING:
    from dockpipe.workflows.tasks import TaskHandle, TaskOutcome

logger = logging.getLogger(__name__)


def _safe_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(float(value))
    except ValueError:
        return default


def read_junit_reports(reports_dir: Path | None) -> TestResult | None:
    """Aggregate every JUnit XML report in *reports_dir*.

    Returns None when the directory is missing or holds no readable report.
    """
    if reports_dir is None or not reports_dir.is_dir():
        return None

    tests = failures = errors = skipped = 0
    found = False
    for report in sorted(reports_dir.glob("*.xml")):
        try:
            root = ET.parse(report).getroot()
        except (ET.ParseError, OSError) as exc:
            logger.warning("Skipping unreadable test report %s: %s", report, exc)
            continue
        suites = [root] if root.tag == "testsuite" else root.findall("testsuite")
        for suite in suites:
            found = True
            tests += _safe_int(suite.get("tests"))
            failures += _safe_int(suite.get("failures"))
            errors += _safe_int(suite.get("errors"))
            skipped += _safe_int(suite.get("skipped"))

    if not found:
        return None
    failure_count = failures + errors
    executed = tests - skipped
    if failure_count:
        return TestResult.failing(total_count=tests, executed=executed, failure_count=failure_count, skipped=skipped)
    return TestResult.passing(total_count=tests, executed=executed, skipped=skipped)


def result_from_outcome(outcome: TaskOutcome) -> TestResult:
    executed = outcome.executed + outcome.failed
    if outcome.failed:
        return TestResult.failing(
            total_count=outcome.total,
            executed=executed,
            failure_count=outcome.failed,
            skipped=outcome.skipped,
        )
    return TestResult(
        success=True,
        executed=executed,
        up_to_date=outcome.up_to_date,
        skipped=outcome.skipped,
        failure_count=0,
        total_count=outcome.total,
    )


class TestResultCapture:
    """Derives TestResults from JUnit reports or a task's reported outcome."""

    __test__ = False

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    def capture_from_task(self, task: TaskHandle) -> TestResult:
        reported = read_junit_reports(getattr(task, "reports_dir", None))
        if reported is not None:
            self._logger.info("Captured test result from reports: %s", reported)
            return reported
        outcome = getattr(task, "outcome", None)
        if outcome is not None:
            result = result_from_outcome(outcome)
            self._logger.info("Captured test result from task outcome: %s", result)
            return result
        self._logger.info("No test reports for task %s, assuming success", task.name)
        return TestResult(success=True, executed=1, up_to_date=0, skipped=0, failure_count=0, total_count=1)

    def capture_failure(self, task: TaskHandle, exc: BaseException) -> TestResult:
        reported = read_junit_reports(getattr(task, "reports_dir", None))
        if reported is not None:
            if reported.success:
                # the task raised, so report at least one failure
                return TestResult(
                    success=False,
                    executed=reported.executed,
                    up_to_date=reported.up_to_date,
                    skipped=reported.skipped,
                    failure_count=1,
                    total_count=reported.total_count,
                )
            return reported
        self._logger.info("Recording failure for task %s: %s", task.name, exc)
        return TestResult(success=False, executed=0, up_to_date=0, skipped=0, failure_count=1, total_count=0)
