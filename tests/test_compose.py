"""Tests for compose models, the state file, the compose CLI and stack tasks."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dockpipe.compose.models import (
    ComposeState,
    LogsConfig,
    PortMapping,
    ServiceInfo,
    ServiceStatus,
    StackConfig,
    WaitConfig,
)
from dockpipe.compose.service import DockerComposeCli, parse_ps_output
from dockpipe.compose.state import read_state_file, state_file_path, state_to_dict, write_state_file
from dockpipe.compose.tasks import ComposeDownTask, ComposeUpTask, register_stack_tasks, stack_config
from dockpipe.config.models import StackDef, WaitDef
from dockpipe.errors import ComposeErrorType, ComposeServiceError, PipelineError
from dockpipe.workflows.tasks import TaskRegistry


def _process(stdout: str = "", stderr: str = "", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout.encode(), stderr.encode()))
    proc.returncode = returncode
    return proc


def _ps_line(service: str, state: str = "running", health: str = "", ports: list[dict] | None = None) -> str:
    return json.dumps({
        "ID": f"id-{service}",
        "Name": f"proj-{service}-1",
        "Service": service,
        "State": state,
        "Health": health,
        "Publishers": ports or [],
    })


# ─── model tests ───


class TestComposeModels:
    def test_service_status(self):
        info = ServiceInfo(container_id="c1", container_name="web-1", state="running", health="healthy")
        assert info.is_running
        assert info.is_healthy
        assert info.has_status(ServiceStatus.HEALTHY)
        assert info.status_label == "healthy"

    def test_running_without_health(self):
        info = ServiceInfo(container_id="c1", container_name="web-1", state="Running")
        assert info.has_status(ServiceStatus.RUNNING)
        assert not info.has_status(ServiceStatus.HEALTHY)
        assert info.status_label == "Running"

    def test_host_port(self):
        info = ServiceInfo(
            container_id="c1",
            container_name="web-1",
            state="running",
            published_ports=(PortMapping(container_port=8080, host_port=32768),),
        )
        assert info.host_port(8080) == 32768
        assert info.host_port(9090) is None

    def test_wait_config_defaults_for_non_positive_values(self):
        config = WaitConfig(project_name="p", timeout_seconds=0, poll_seconds=-1)
        assert config.timeout_seconds == 60
        assert config.poll_seconds == 2
        assert config.total_wait_attempts == 30

    def test_wait_attempts_at_least_one(self):
        assert WaitConfig(project_name="p", timeout_seconds=1, poll_seconds=5).total_wait_attempts == 1

    def test_logs_config(self):
        config = LogsConfig(tail_lines=0)
        assert config.tail_lines == 1
        assert not config.has_specific_services
        assert LogsConfig(services=["web"]).to_dict() == {"services": ["web"], "tail_lines": 100, "follow": False}

    def test_stack_config_validate(self, tmp_path: Path):
        with pytest.raises(ComposeServiceError) as exc_info:
            StackConfig(stack_name="s", project_name="p", compose_files=[]).validate()
        assert exc_info.value.error_type is ComposeErrorType.COMPOSE_FILE_NOT_FOUND

        missing = StackConfig(stack_name="s", project_name="p", compose_files=[tmp_path / "nope.yml"])
        with pytest.raises(ComposeServiceError, match="nope.yml"):
            missing.validate()


# ─── state file tests ───


class TestStateFile:
    def _state(self) -> ComposeState:
        return ComposeState(
            stack_name="webStack",
            project_name="webapp-it",
            services={
                "web": ServiceInfo(
                    container_id="abc",
                    container_name="webapp-it-web-1",
                    state="running",
                    health="healthy",
                    published_ports=(PortMapping(container_port=8080, host_port=32768),),
                ),
                "db": ServiceInfo(container_id="def", container_name="", state="running"),
            },
        )

    def test_field_names(self):
        data = state_to_dict(self._state())
        assert set(data) == {"stackName", "projectName", "lifecycle", "timestamp", "services"}
        assert data["lifecycle"] == "class"
        assert data["timestamp"].endswith("Z")
        web = data["services"]["web"]
        assert web == {
            "containerId": "abc",
            "containerName": "webapp-it-web-1",
            "state": "healthy",
            "publishedPorts": [{"container": 8080, "host": 32768, "protocol": "tcp"}],
        }

    def test_default_container_name(self):
        data = state_to_dict(self._state())
        assert data["services"]["db"]["containerName"] == "db-webapp-it-1"

    def test_write_and_read(self, tmp_path: Path):
        state_dir = tmp_path / "build" / "compose-state"
        path = write_state_file(self._state(), state_dir)
        assert path == state_file_path(state_dir, "webStack")
        assert path.name == "webStack-state.json"

        loaded = read_state_file(path)
        assert loaded.stack_name == "webStack"
        assert loaded.project_name == "webapp-it"
        assert loaded.services["web"].host_port(8080) == 32768


# ─── docker compose CLI tests ───


class TestParsePsOutput:
    def test_ndjson(self):
        output = "\n".join([
            _ps_line("web", health="healthy", ports=[{"TargetPort": 8080, "PublishedPort": 32768, "Protocol": "tcp"}]),
            _ps_line("db"),
        ])
        services = parse_ps_output(output)
        assert set(services) == {"web", "db"}
        assert services["web"].is_healthy
        assert services["web"].host_port(8080) == 32768

    def test_json_array_skips_unpublished_ports(self):
        output = json.dumps([json.loads(_ps_line("web", ports=[{"TargetPort": 5432, "PublishedPort": 0}]))])
        services = parse_ps_output(output)
        assert services["web"].published_ports == ()

    def test_empty(self):
        assert parse_ps_output("  \n") == {}


class TestDockerComposeCli:
    @pytest.mark.asyncio
    async def test_up_builds_command(self, tmp_path: Path):
        compose_file = tmp_path / "compose.yml"
        compose_file.write_text("services: {}\n")
        config = StackConfig(
            stack_name="webStack",
            project_name="webapp-it",
            compose_files=[compose_file],
            env_files=[tmp_path / ".env"],
            environment={"APP_MODE": "test"},
        )
        spawn = AsyncMock(side_effect=[_process(), _process(_ps_line("web"))])
        with patch("asyncio.create_subprocess_exec", spawn):
            state = await DockerComposeCli().up(config)

        up_args = spawn.call_args_list[0].args
        assert up_args == (
            "docker", "compose", "-p", "webapp-it",
            "-f", str(compose_file),
            "--env-file", str(tmp_path / ".env"),
            "up", "-d",
        )
        assert spawn.call_args_list[0].kwargs["env"]["APP_MODE"] == "test"
        assert state.project_name == "webapp-it"
        assert set(state.services) == {"web"}

    @pytest.mark.asyncio
    async def test_up_failure_maps_error(self, tmp_path: Path):
        compose_file = tmp_path / "compose.yml"
        compose_file.write_text("services: {}\n")
        config = StackConfig(stack_name="s", project_name="p", compose_files=[compose_file])
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_process(stderr="port in use", returncode=1))):
            with pytest.raises(ComposeServiceError, match="port in use") as exc_info:
                await DockerComposeCli().up(config)
        assert exc_info.value.error_type is ComposeErrorType.SERVICE_START_FAILED

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("docker"))):
            with pytest.raises(ComposeServiceError) as exc_info:
                await DockerComposeCli().down("p")
        assert exc_info.value.error_type is ComposeErrorType.COMPOSE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_down(self):
        spawn = AsyncMock(return_value=_process())
        with patch("asyncio.create_subprocess_exec", spawn):
            await DockerComposeCli().down("webapp-it")
        assert spawn.call_args.args == ("docker", "compose", "-p", "webapp-it", "down", "--remove-orphans")

    @pytest.mark.asyncio
    async def test_wait_polls_until_healthy(self):
        sleep = AsyncMock()
        spawn = AsyncMock(side_effect=[
            _process(_ps_line("web", health="starting")),
            _process(_ps_line("web", health="healthy")),
        ])
        config = WaitConfig(project_name="p", services=["web"], timeout_seconds=10, poll_seconds=1)
        with patch("asyncio.create_subprocess_exec", spawn):
            status = await DockerComposeCli(sleep=sleep).wait_for_services(config)
        assert status is ServiceStatus.HEALTHY
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        sleep = AsyncMock()
        spawn = AsyncMock(side_effect=lambda *a, **kw: _process(_ps_line("web", state="exited")))
        config = WaitConfig(
            project_name="p",
            services=["web"],
            timeout_seconds=3,
            poll_seconds=1,
            target_status=ServiceStatus.RUNNING,
        )
        with patch("asyncio.create_subprocess_exec", spawn):
            with pytest.raises(ComposeServiceError, match="did not become running within 3s") as exc_info:
                await DockerComposeCli(sleep=sleep).wait_for_services(config)
        assert exc_info.value.error_type is ComposeErrorType.SERVICE_TIMEOUT
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_capture_logs(self):
        spawn = AsyncMock(return_value=_process("web-1 | started\n"))
        with patch("asyncio.create_subprocess_exec", spawn):
            text = await DockerComposeCli().capture_logs("p", LogsConfig(services=["web"], tail_lines=50))
        assert text == "web-1 | started\n"
        assert spawn.call_args.args == ("docker", "compose", "-p", "p", "logs", "--no-color", "--tail", "50", "web")


# ─── stack task tests ───


class TestStackTasks:
    def _stack(self, **kwargs) -> StackDef:
        return StackDef(name="webStack", compose_files=["compose.yml"], project_name="webapp-it", **kwargs)

    def test_stack_config_resolves_paths(self, tmp_path: Path):
        config = stack_config(self._stack(env_files=["ci.env"]), tmp_path)
        assert config.compose_files == [tmp_path / "compose.yml"]
        assert config.env_files == [tmp_path / "ci.env"]
        assert config.project_name == "webapp-it"

    @pytest.mark.asyncio
    async def test_compose_up_waits_and_writes_state(self, compose_service, tmp_path: Path):
        stack = self._stack(
            wait_for_healthy=WaitDef(services=["web"], timeout_seconds=30),
            wait_for_running=WaitDef(services=["worker"]),
        )
        task = ComposeUpTask(stack, compose_service, tmp_path / "state", tmp_path)
        assert task.name == "composeUpWebStack"
        await task.run()

        waits = [call.args[0] for call in compose_service.wait_for_services.await_args_list]
        assert [(w.services, w.target_status) for w in waits] == [
            (["web"], ServiceStatus.HEALTHY),
            (["worker"], ServiceStatus.RUNNING),
        ]
        assert task.state_file == tmp_path / "state" / "webStack-state.json"
        assert json.loads(task.state_file.read_text())["projectName"] == "webapp-it"

    @pytest.mark.asyncio
    async def test_compose_up_failure_wrapped(self, compose_service, tmp_path: Path):
        compose_service.wait_for_services.side_effect = ComposeServiceError(
            ComposeErrorType.SERVICE_TIMEOUT, "web never became healthy"
        )
        task = ComposeUpTask(self._stack(wait_for_healthy=WaitDef(services=["web"])), compose_service, tmp_path)
        with pytest.raises(PipelineError, match="Failed to start compose stack 'webStack'") as exc_info:
            await task.run()
        assert isinstance(exc_info.value.__cause__, ComposeServiceError)
        assert task.state_file is None

    @pytest.mark.asyncio
    async def test_compose_down(self, compose_service):
        task = ComposeDownTask(self._stack(), compose_service)
        assert task.name == "composeDownWebStack"
        await task.run()
        compose_service.down.assert_awaited_once_with("webapp-it")

    def test_register_stack_tasks(self, compose_service, tmp_path: Path):
        registry = TaskRegistry()
        register_stack_tasks(registry, {"webStack": self._stack()}, compose_service, tmp_path)
        assert registry.names() == ["composeDownWebStack", "composeUpWebStack"]
