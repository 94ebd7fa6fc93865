"""Pipeline step executors."""

from __future__ import annotations

from dockpipe.workflows.steps.always import AlwaysStepExecutor
from dockpipe.workflows.steps.build import BuildStepExecutor
from dockpipe.workflows.steps.conditional import ConditionalExecutor, select_path
from dockpipe.workflows.steps.failure import FailureStepExecutor
from dockpipe.workflows.steps.success import SuccessStepExecutor
from dockpipe.workflows.steps.test import TestStepExecutor, should_delegate_compose

__all__ = [
    "AlwaysStepExecutor",
    "BuildStepExecutor",
    "ConditionalExecutor",
    "FailureStepExecutor",
    "SuccessStepExecutor",
    "TestStepExecutor",
    "select_path",
    "should_delegate_compose",
]
