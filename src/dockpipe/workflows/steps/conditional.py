"""Routes a finished test step to the success or failure path."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from dockpipe.config.models import FailureStepDef, SuccessStepDef
from dockpipe.workflows.models import PipelineContext, TestResult

if TYPE_CHECKING:
    from dockpipe.workflows.steps.failure import FailureStepExecutor
    from dockpipe.workflows.steps.success import SuccessStepExecutor

logger = logging.getLogger(__name__)


def select_path(result: TestResult | None) -> Literal["success", "failure"] | None:
    """Pure decision: which path a result leads to, or None without a result."""
    if result is None:
        return None
    return "success" if result.success else "failure"


class ConditionalExecutor:
    """Invokes exactly one of the success or failure executors."""

    def __init__(
        self,
        success_executor: SuccessStepExecutor,
        failure_executor: FailureStepExecutor,
        log: logging.Logger | None = None,
    ) -> None:
        self._success = success_executor
        self._failure = failure_executor
        self._logger = log or logger

    async def execute(
        self,
        test_result: TestResult | None,
        success_spec: SuccessStepDef | None,
        failure_spec: FailureStepDef | None,
        context: PipelineContext,
    ) -> PipelineContext:
        path = select_path(test_result)
        if path is None:
            self._logger.warning("No test result available, skipping conditional step")
            return context
        assert test_result is not None
        self._logger.info(
            "Evaluating test result: success=%s, failures=%d, total=%d",
            test_result.success,
            test_result.failure_count,
            test_result.total_count,
        )
        if path == "success":
            return await self._success.execute(success_spec, context)
        return await self._failure.execute(failure_spec, context)
