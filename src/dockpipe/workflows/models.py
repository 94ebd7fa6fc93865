"""Data models for pipeline execution state and test results."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dockpipe.config.models import ImageDef


class Lifecycle(str, Enum):
    """Container lifecycle used by a test step.

    CLASS keeps one stack up around the whole test task. METHOD restarts the
    stack per test method and hands compose management to the test framework.
    """

    CLASS = "class"
    METHOD = "method"

    @classmethod
    def parse(cls, value: str | Lifecycle) -> Lifecycle:
        if isinstance(value, Lifecycle):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown lifecycle {value!r}; expected 'class' or 'method'")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown lifecycle {value!r}; expected 'class' or 'method'") from None


@dataclass(frozen=True)
class TestResult:
    """Outcome of one test task execution.

    The ``passing`` and ``failing`` factories keep ``success`` consistent with
    ``failure_count``. The plain constructor accepts any combination so that
    exceptional failures can be encoded when the real counts are unknown.
    """

    __test__ = False

    success: bool
    executed: int = 0
    up_to_date: int = 0
    skipped: int = 0
    failure_count: int = 0
    total_count: int = 0

    @classmethod
    def passing(cls, total_count: int, executed: int, skipped: int = 0) -> TestResult:
        return cls(
            success=True,
            executed=executed,
            up_to_date=0,
            skipped=skipped,
            failure_count=0,
            total_count=total_count,
        )

    @classmethod
    def failing(cls, total_count: int, executed: int, failure_count: int, skipped: int = 0) -> TestResult:
        return cls(
            success=False,
            executed=executed,
            up_to_date=0,
            skipped=skipped,
            failure_count=failure_count,
            total_count=total_count,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "executed": self.executed,
            "up_to_date": self.up_to_date,
            "skipped": self.skipped,
            "failure_count": self.failure_count,
            "total_count": self.total_count,
        }

    def __str__(self) -> str:
        return (
            f"TestResult(success={self.success}, executed={self.executed}, "
            f"failures={self.failure_count}, skipped={self.skipped}, total={self.total_count})"
        )


@dataclass(frozen=True)
class PipelineContext:
    """State threaded through build, test and conditional steps.

    Never mutated: every ``with_*`` method returns an updated copy.
    """

    pipeline_name: str
    built_image: ImageDef | None = None
    test_result: TestResult | None = None
    applied_tags: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    build_completed: bool = False
    test_completed: bool = False

    @classmethod
    def create(cls, pipeline_name: str) -> PipelineContext:
        return cls(pipeline_name=pipeline_name)

    def with_built_image(self, image: ImageDef) -> PipelineContext:
        return replace(self, built_image=image, build_completed=True)

    def with_test_result(self, result: TestResult) -> PipelineContext:
        return replace(self, test_result=result, test_completed=True)

    def with_applied_tags(self, tags: Iterable[str]) -> PipelineContext:
        return replace(self, applied_tags=self.applied_tags + tuple(tags))

    def with_applied_tag(self, tag: str) -> PipelineContext:
        return self.with_applied_tags([tag])

    def with_metadata(self, key: str, value: Any) -> PipelineContext:
        return replace(self, metadata={**self.metadata, key: value})

    @property
    def build_successful(self) -> bool:
        return self.build_completed and self.built_image is not None

    @property
    def test_successful(self) -> bool:
        return self.test_completed and self.test_result is not None and self.test_result.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "built_image": self.built_image.name if self.built_image is not None else None,
            "test_result": self.test_result.to_dict() if self.test_result is not None else None,
            "applied_tags": list(self.applied_tags),
            "metadata": dict(self.metadata),
            "build_completed": self.build_completed,
            "test_completed": self.test_completed,
        }
