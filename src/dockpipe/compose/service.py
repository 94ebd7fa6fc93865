"""Compose service protocol and the ``docker compose`` CLI implementation."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from dockpipe.compose.models import (
    ComposeState,
    LogsConfig,
    PortMapping,
    ServiceInfo,
    ServiceStatus,
    StackConfig,
    WaitConfig,
)
from dockpipe.errors import ComposeErrorType, ComposeServiceError

logger = logging.getLogger(__name__)


@runtime_checkable
class ComposeService(Protocol):
    """Stack operations the pipeline needs."""

    async def up(self, config: StackConfig) -> ComposeState: ...

    async def down(self, project_name: str) -> None: ...

    async def wait_for_services(self, config: WaitConfig) -> ServiceStatus: ...

    async def capture_logs(self, project_name: str, config: LogsConfig) -> str: ...


def parse_ps_output(output: str) -> dict[str, ServiceInfo]:
    """Parse ``docker compose ps --format json``.

    Older Compose releases print one JSON array, newer ones one object per line.
    """
    text = output.strip()
    if not text:
        return {}
    entries: list[dict[str, Any]]
    if text.startswith("["):
        entries = json.loads(text)
    else:
        entries = [json.loads(line) for line in text.splitlines() if line.strip()]

    services: dict[str, ServiceInfo] = {}
    for entry in entries:
        ports = tuple(
            PortMapping(
                container_port=int(pub.get("TargetPort", 0)),
                host_port=int(pub.get("PublishedPort", 0)),
                protocol=pub.get("Protocol") or "tcp",
            )
            for pub in entry.get("Publishers") or []
            if pub.get("PublishedPort")
        )
        name = entry.get("Service") or entry.get("Name", "")
        services[name] = ServiceInfo(
            container_id=entry.get("ID", ""),
            container_name=entry.get("Name", ""),
            state=entry.get("State", ""),
            health=entry.get("Health", ""),
            published_ports=ports,
        )
    return services


class DockerComposeCli:
    """ComposeService that shells out to ``docker compose``."""

    def __init__(
        self,
        executable: str = "docker",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._executable = executable
        self._sleep = sleep

    async def _run(
        self,
        args: list[str],
        error_type: ComposeErrorType,
        env: dict[str, str] | None = None,
    ) -> str:
        cmd = [self._executable, "compose", *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ComposeServiceError(
                ComposeErrorType.COMPOSE_UNAVAILABLE,
                f"'{self._executable}' executable not found",
            ) from exc
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or f"exit status {process.returncode}"
            raise ComposeServiceError(error_type, f"docker compose {' '.join(args)} failed: {detail}")
        return stdout.decode(errors="replace")

    async def services(self, project_name: str) -> dict[str, ServiceInfo]:
        output = await self._run(
            ["-p", project_name, "ps", "--all", "--format", "json"],
            ComposeErrorType.UNKNOWN,
        )
        return parse_ps_output(output)

    async def up(self, config: StackConfig) -> ComposeState:
        config.validate()
        args = ["-p", config.project_name]
        for compose_file in config.compose_files:
            args += ["-f", str(compose_file)]
        for env_file in config.env_files:
            args += ["--env-file", str(env_file)]
        env = {**os.environ, **config.environment}
        logger.info("Starting stack '%s' (project %s)", config.stack_name, config.project_name)
        await self._run([*args, "up", "-d"], ComposeErrorType.SERVICE_START_FAILED, env=env)
        services = await self.services(config.project_name)
        return ComposeState(
            stack_name=config.stack_name,
            project_name=config.project_name,
            services=services,
        )

    async def down(self, project_name: str) -> None:
        logger.info("Stopping compose project %s", project_name)
        await self._run(["-p", project_name, "down", "--remove-orphans"], ComposeErrorType.SERVICE_STOP_FAILED)

    async def wait_for_services(self, config: WaitConfig) -> ServiceStatus:
        target = config.target_status
        pending: list[str] = list(config.services)
        for attempt in range(1, config.total_wait_attempts + 1):
            services = await self.services(config.project_name)
            names = config.services or list(services)
            pending = [n for n in names if n not in services or not services[n].has_status(target)]
            if names and not pending:
                logger.info("Services %s are %s", ", ".join(names), target.value)
                return target
            logger.debug(
                "Waiting for %s to be %s (attempt %d/%d)",
                ", ".join(pending) or "services",
                target.value,
                attempt,
                config.total_wait_attempts,
            )
            await self._sleep(config.poll_seconds)
        raise ComposeServiceError(
            ComposeErrorType.SERVICE_TIMEOUT,
            f"Services {', '.join(pending) or '(none found)'} did not become {target.value} "
            f"within {config.timeout_seconds}s",
        )

    async def capture_logs(self, project_name: str, config: LogsConfig) -> str:
        args = ["-p", project_name, "logs", "--no-color", "--tail", str(config.tail_lines)]
        if config.follow:
            args.append("--follow")
        args += config.services
        return await self._run(args, ComposeErrorType.LOGS_CAPTURE_FAILED)
