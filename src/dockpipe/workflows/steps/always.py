"""Cleanup that runs after every pipeline, pass or fail."""

from __future__ import annotations

import logging

from dockpipe.compose.service import ComposeService
from dockpipe.config.models import AlwaysStepDef
from dockpipe.workflows.models import PipelineContext

logger = logging.getLogger(__name__)


class AlwaysStepExecutor:
    """Removes test containers unless asked to keep them. Never raises."""

    def __init__(
        self,
        compose_service: ComposeService | None = None,
        project_name: str | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._compose = compose_service
        self._project_name = project_name
        self._logger = log or logger

    async def execute(self, spec: AlwaysStepDef | None, context: PipelineContext) -> None:
        if spec is None:
            return
        if not spec.remove_test_containers:
            self._logger.info("Keeping test containers (remove_test_containers is off)")
            return
        tests_failed = context.test_result is not None and not context.test_result.success
        if tests_failed and spec.keep_failed_containers:
            self._logger.info("Tests failed; keeping containers of project %s for inspection", self._project_name)
            return
        if self._compose is None or not self._project_name:
            self._logger.warning("Cannot remove test containers - no compose service or project name available")
            return
        try:
            await self._compose.down(self._project_name)
        except Exception as exc:
            self._logger.warning("Failed to remove test containers for project %s: %s", self._project_name, exc)
