"""Tests for the conditional router and the success, failure and always steps."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from dockpipe.config.models import (
    AlwaysStepDef,
    FailureStepDef,
    ImageDef,
    PublishDef,
    PublishTargetDef,
    SaveDef,
    SuccessStepDef,
)
from dockpipe.errors import PipelineError
from dockpipe.workflows.models import PipelineContext, TestResult
from dockpipe.workflows.steps.always import AlwaysStepExecutor
from dockpipe.workflows.steps.conditional import ConditionalExecutor, select_path
from dockpipe.workflows.steps.failure import FailureStepExecutor
from dockpipe.workflows.steps.success import SuccessStepExecutor

IMAGE = ImageDef(name="webApp", registry="registry.example.com", namespace="acme", image_name="web-app", tags=["1.2.0"])
PASSED = TestResult.passing(total_count=10, executed=10)
FAILED = TestResult.failing(total_count=10, executed=10, failure_count=2)


def _built() -> PipelineContext:
    return PipelineContext.create("ci").with_built_image(IMAGE)


# ─── conditional router ───


class TestSelectPath:
    def test_none(self):
        assert select_path(None) is None

    def test_success_and_failure(self):
        assert select_path(PASSED) == "success"
        assert select_path(FAILED) == "failure"

    def test_idempotent(self):
        assert select_path(FAILED) == select_path(FAILED)
        assert select_path(PASSED) == select_path(PASSED)

    def test_only_success_flag_matters(self):
        odd = TestResult(success=True, executed=0, up_to_date=0, skipped=0, failure_count=3, total_count=3)
        assert select_path(odd) == "success"


class TestConditionalExecutor:
    def _executor(self) -> tuple[ConditionalExecutor, MagicMock, MagicMock]:
        success = MagicMock()
        success.execute = AsyncMock(side_effect=lambda spec, ctx: ctx.with_applied_tag("ok"))
        failure = MagicMock()
        failure.execute = AsyncMock(side_effect=lambda spec, ctx: ctx.with_applied_tag("bad"))
        return ConditionalExecutor(success, failure), success, failure

    @pytest.mark.asyncio
    async def test_no_result_is_noop(self):
        executor, success, failure = self._executor()
        ctx = PipelineContext.create("ci")
        assert await executor.execute(None, SuccessStepDef(), FailureStepDef(), ctx) is ctx
        success.execute.assert_not_awaited()
        failure.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatches_success(self):
        executor, success, failure = self._executor()
        spec = SuccessStepDef(additional_tags=["tested"])
        ctx = await executor.execute(PASSED, spec, FailureStepDef(), PipelineContext.create("ci"))
        assert ctx.applied_tags == ("ok",)
        success.execute.assert_awaited_once()
        assert success.execute.call_args.args[0] is spec
        failure.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatches_failure(self):
        executor, success, failure = self._executor()
        ctx = await executor.execute(FAILED, None, None, PipelineContext.create("ci"))
        assert ctx.applied_tags == ("bad",)
        success.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_logs_evaluation(self, caplog):
        executor, _, _ = self._executor()
        with caplog.at_level(logging.INFO, logger="dockpipe.workflows.steps.conditional"):
            await executor.execute(FAILED, None, None, PipelineContext.create("ci"))
        assert "success=False, failures=2, total=10" in caplog.text


# ─── success path ───


class TestSuccessStep:
    @pytest.mark.asyncio
    async def test_none_spec_is_noop(self, image_service):
        ctx = _built()
        assert await SuccessStepExecutor(image_service).execute(None, ctx) is ctx
        image_service.tag_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_applies_tags(self, image_service):
        ctx = await SuccessStepExecutor(image_service).execute(SuccessStepDef(additional_tags=["tested"]), _built())
        assert ctx.applied_tags == ("tested",)
        image_service.tag_image.assert_awaited_once_with(
            "registry.example.com/acme/web-app:1.2.0",
            ["registry.example.com/acme/web-app:tested"],
        )

    @pytest.mark.asyncio
    async def test_tags_without_image_is_fatal(self, image_service):
        with pytest.raises(PipelineError, match="no built image"):
            await SuccessStepExecutor(image_service).execute(
                SuccessStepDef(additional_tags=["tested"]), PipelineContext.create("ci")
            )

    @pytest.mark.asyncio
    async def test_empty_tags_skip_image_requirement(self, image_service):
        hook = MagicMock()
        ctx = PipelineContext.create("ci")
        result = await SuccessStepExecutor(image_service).execute(SuccessStepDef(after_success=hook), ctx)
        assert result.applied_tags == ()
        hook.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_without_image_service_records_tags_only(self):
        ctx = await SuccessStepExecutor().execute(SuccessStepDef(additional_tags=["a", "b"]), _built())
        assert ctx.applied_tags == ("a", "b")

    @pytest.mark.asyncio
    async def test_fixed_order_tags_save_publish_hook(self, image_service, tmp_path: Path):
        order: list[str] = []
        image_service.tag_image.side_effect = lambda *a: order.append("tag")
        image_service.save_image.side_effect = lambda *a: order.append("save")
        image_service.push_image.side_effect = lambda *a: order.append("push")
        spec = SuccessStepDef(
            additional_tags=["tested"],
            save=SaveDef(output_file=str(tmp_path / "app.tar.gz"), compression="gzip"),
            publish=PublishDef(targets=[PublishTargetDef(name="hub", registry="docker.io", tags=["stable"])]),
            after_success=lambda: order.append("hook"),
        )
        await SuccessStepExecutor(image_service).execute(spec, _built())
        # publish tags under the target's coordinates before pushing
        assert order == ["tag", "save", "tag", "push", "hook"]

    @pytest.mark.asyncio
    async def test_save_without_image_is_fatal(self, image_service):
        spec = SuccessStepDef(save=SaveDef(output_file="out.tar"))
        with pytest.raises(PipelineError, match="Cannot save image"):
            await SuccessStepExecutor(image_service).execute(spec, PipelineContext.create("ci"))

    @pytest.mark.asyncio
    async def test_publish_without_image_is_fatal(self, image_service):
        spec = SuccessStepDef(publish=PublishDef(targets=[PublishTargetDef(registry="docker.io")]))
        with pytest.raises(PipelineError, match="Cannot publish image"):
            await SuccessStepExecutor(image_service).execute(spec, PipelineContext.create("ci"))

    @pytest.mark.asyncio
    async def test_tag_service_error_is_wrapped(self, image_service):
        image_service.tag_image.side_effect = RuntimeError("daemon down")
        with pytest.raises(PipelineError, match="Failed to apply tags to image"):
            await SuccessStepExecutor(image_service).execute(SuccessStepDef(additional_tags=["x"]), _built())


# ─── failure path ───


class TestFailureStep:
    @pytest.mark.asyncio
    async def test_applies_failure_tags(self, image_service):
        ctx = await FailureStepExecutor(image_service).execute(FailureStepDef(additional_tags=["failed"]), _built())
        assert ctx.applied_tags == ("failed",)
        image_service.tag_image.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_image_warns_and_continues(self, image_service, caplog):
        ctx = PipelineContext.create("ci").with_applied_tag("earlier")
        hook = MagicMock()
        result = await FailureStepExecutor(image_service).execute(
            FailureStepDef(additional_tags=["failed"], after_failure=hook), ctx
        )
        assert result.applied_tags == ("earlier",)
        image_service.tag_image.assert_not_awaited()
        hook.assert_called_once_with()
        assert "no built image" in caplog.text

    @pytest.mark.asyncio
    async def test_saves_failure_logs(self, compose_service, tmp_path: Path):
        logs_dir = tmp_path / "failure-logs"
        executor = FailureStepExecutor(compose_service=compose_service, project_name="webapp-it")
        await executor.execute(FailureStepDef(save_failure_logs_dir=str(logs_dir), include_services=["web"]), _built())

        files = list(logs_dir.glob("failure-logs-*.log"))
        assert len(files) == 1
        assert files[0].name.removeprefix("failure-logs-").removesuffix(".log").isdigit()
        assert files[0].read_text() == "web-1  | boom\n"
        project, logs_config = compose_service.capture_logs.call_args.args
        assert project == "webapp-it"
        assert logs_config.services == ["web"]
        assert logs_config.tail_lines == 1000

    @pytest.mark.asyncio
    async def test_default_service_filter_is_all(self, compose_service, tmp_path: Path):
        executor = FailureStepExecutor(compose_service=compose_service, project_name="p")
        await executor.execute(FailureStepDef(save_failure_logs_dir=str(tmp_path)), _built())
        logs_config = compose_service.capture_logs.call_args.args[1]
        assert not logs_config.has_specific_services

    @pytest.mark.asyncio
    async def test_log_capture_errors_are_swallowed(self, compose_service, tmp_path: Path):
        compose_service.capture_logs.side_effect = RuntimeError("compose gone")
        hook = MagicMock()
        executor = FailureStepExecutor(compose_service=compose_service, project_name="p")
        ctx = await executor.execute(
            FailureStepDef(save_failure_logs_dir=str(tmp_path), after_failure=hook), _built()
        )
        assert ctx.built_image is IMAGE
        hook.assert_called_once_with()
        assert list(tmp_path.glob("*.log")) == []

    @pytest.mark.asyncio
    async def test_tag_errors_do_not_stop_log_capture(self, image_service, compose_service, tmp_path: Path, caplog):
        image_service.tag_image.side_effect = RuntimeError("daemon hiccup")
        hook = MagicMock()
        spec = FailureStepDef(additional_tags=["failed"], save_failure_logs_dir=str(tmp_path), after_failure=hook)
        ctx = await FailureStepExecutor(image_service, compose_service, "p").execute(spec, _built())

        assert ctx.applied_tags == ()
        assert len(list(tmp_path.glob("failure-logs-*.log"))) == 1
        hook.assert_called_once_with()
        assert "not applied" in caplog.text

    @pytest.mark.asyncio
    async def test_no_compose_service_skips_logs(self, tmp_path: Path):
        executor = FailureStepExecutor()
        assert await executor.save_failure_logs(tmp_path, []) is None

    @pytest.mark.asyncio
    async def test_order_tags_logs_hook(self, image_service, compose_service, tmp_path: Path):
        order: list[str] = []
        image_service.tag_image.side_effect = lambda *a: order.append("tag")
        compose_service.capture_logs.side_effect = lambda *a: order.append("logs") or "text"
        spec = FailureStepDef(
            additional_tags=["failed"],
            save_failure_logs_dir=str(tmp_path),
            after_failure=lambda: order.append("hook"),
        )
        await FailureStepExecutor(image_service, compose_service, "p").execute(spec, _built())
        assert order == ["tag", "logs", "hook"]


# ─── always step ───


class TestAlwaysStep:
    @pytest.mark.asyncio
    async def test_removes_containers(self, compose_service):
        await AlwaysStepExecutor(compose_service, "p").execute(AlwaysStepDef(), PipelineContext.create("ci"))
        compose_service.down.assert_awaited_once_with("p")

    @pytest.mark.asyncio
    async def test_none_spec(self, compose_service):
        await AlwaysStepExecutor(compose_service, "p").execute(None, PipelineContext.create("ci"))
        compose_service.down.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_removal_disabled(self, compose_service):
        spec = AlwaysStepDef(remove_test_containers=False)
        await AlwaysStepExecutor(compose_service, "p").execute(spec, PipelineContext.create("ci"))
        compose_service.down.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_keeps_failed_containers(self, compose_service):
        ctx = PipelineContext.create("ci").with_test_result(FAILED)
        await AlwaysStepExecutor(compose_service, "p").execute(AlwaysStepDef(keep_failed_containers=True), ctx)
        compose_service.down.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_keep_failed_ignored_when_tests_pass(self, compose_service):
        ctx = PipelineContext.create("ci").with_test_result(PASSED)
        await AlwaysStepExecutor(compose_service, "p").execute(AlwaysStepDef(keep_failed_containers=True), ctx)
        compose_service.down.assert_awaited_once_with("p")

    @pytest.mark.asyncio
    async def test_errors_never_raise(self, compose_service):
        compose_service.down.side_effect = RuntimeError("gone")
        await AlwaysStepExecutor(compose_service, "p").execute(AlwaysStepDef(), PipelineContext.create("ci"))
