"""Pydantic models for dockpipe configuration."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from dockpipe.images.models import AuthConfig, SaveCompression, build_image_references
from dockpipe.workflows.models import Lifecycle


class ProjectIdentity(BaseModel):
    """Top-level project metadata."""

    name: str = "dockpipe"
    version: str = "0.1.0"


class ImageDef(BaseModel):
    """An image built by the pipeline."""

    name: str = ""
    context: str = "."
    dockerfile: str = "Dockerfile"
    build_args: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    registry: str = ""
    namespace: str = ""
    repository: str = ""
    image_name: str = ""
    tags: list[str] = Field(default_factory=lambda: ["latest"])

    @property
    def source_tag(self) -> str:
        return self.tags[0] if self.tags else "latest"

    def references(self, tags: list[str] | None = None) -> list[str]:
        """Full image references for *tags* (default: the image's own tags)."""
        return build_image_references(
            self.registry,
            self.namespace,
            self.repository,
            self.image_name,
            self.tags if tags is None else tags,
        )


class AuthDef(BaseModel):
    """Registry credentials; values support ${ENV_VAR} interpolation."""

    username: str = ""
    password: str = ""
    registry_token: str = ""
    server_address: str = ""

    def to_auth_config(self) -> AuthConfig:
        return AuthConfig(
            username=self.username,
            password=self.password,
            registry_token=self.registry_token,
            server_address=self.server_address,
        )


class SaveDef(BaseModel):
    """Save the built image to an archive on disk."""

    output_file: str
    compression: SaveCompression = SaveCompression.NONE

    @field_validator("compression", mode="before")
    @classmethod
    def _parse_compression(cls, value: Any) -> SaveCompression:
        return SaveCompression.parse(value)


class PublishTargetDef(BaseModel):
    """One registry to publish the built image to."""

    name: str = ""
    registry: str = ""
    namespace: str = ""
    repository: str = ""
    image_name: str = ""
    tags: list[str] = Field(default_factory=list)
    auth: AuthDef | None = None


class PublishDef(BaseModel):
    """Publish the built image to one or more registries."""

    tags: list[str] = Field(default_factory=list)
    targets: list[PublishTargetDef] = Field(default_factory=list)


class WaitDef(BaseModel):
    """Readiness criteria for services in a stack."""

    services: list[str] = Field(default_factory=list)
    timeout_seconds: int = 60
    poll_seconds: int = 2


class StackDef(BaseModel):
    """A named Docker Compose stack."""

    name: str = ""
    compose_files: list[str] = Field(default_factory=list)
    env_files: list[str] = Field(default_factory=list)
    project_name: str = ""
    environment: dict[str, str] = Field(default_factory=dict)
    wait_for_healthy: WaitDef | None = None
    wait_for_running: WaitDef | None = None

    @property
    def effective_project_name(self) -> str:
        return self.project_name or self.name


class TaskDef(BaseModel):
    """A shell command registered as a named task (usually a test task)."""

    command: str
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    reports_dir: str | None = None


class BuildStepDef(BaseModel):
    """Build step: which configured image to build."""

    image: str
    before_build: Callable[..., Any] | None = Field(default=None, exclude=True)
    after_build: Callable[..., Any] | None = Field(default=None, exclude=True)


class TestStepDef(BaseModel):
    """Test step: compose stack, test task and container lifecycle."""

    __test__ = False

    stack: str | None = None
    test_task: str | None = None
    lifecycle: Lifecycle = Lifecycle.CLASS
    delegate_stack_management: bool = False
    before_test: Callable[..., Any] | None = Field(default=None, exclude=True)
    after_test: Callable[..., Any] | None = Field(default=None, exclude=True)

    @field_validator("lifecycle", mode="before")
    @classmethod
    def _parse_lifecycle(cls, value: Any) -> Lifecycle:
        return Lifecycle.parse(value)


class SuccessStepDef(BaseModel):
    """Actions taken when tests pass."""

    additional_tags: list[str] = Field(default_factory=list)
    save: SaveDef | None = None
    publish: PublishDef | None = None
    after_success: Callable[..., Any] | None = Field(default=None, exclude=True)


class FailureStepDef(BaseModel):
    """Actions taken when tests fail."""

    additional_tags: list[str] = Field(default_factory=list)
    save_failure_logs_dir: str | None = None
    include_services: list[str] = Field(default_factory=list)
    after_failure: Callable[..., Any] | None = Field(default=None, exclude=True)


class AlwaysStepDef(BaseModel):
    """Cleanup that runs whatever the outcome."""

    remove_test_containers: bool = True
    keep_failed_containers: bool = False


class PipelineDef(BaseModel):
    """A named pipeline definition."""

    name: str = ""
    description: str = ""
    build: BuildStepDef | None = None
    test: TestStepDef | None = None
    on_test_success: SuccessStepDef | None = None
    on_success: SuccessStepDef | None = None
    on_test_failure: FailureStepDef | None = None
    on_failure: FailureStepDef | None = None
    always: AlwaysStepDef | None = None

    def success_spec(self) -> SuccessStepDef | None:
        return self.on_test_success or self.on_success

    def failure_spec(self) -> FailureStepDef | None:
        return self.on_test_failure or self.on_failure


class WebhookConfig(BaseModel):
    """Configuration for a single webhook endpoint."""

    url: str
    events: list[str] = Field(default_factory=lambda: ["pipeline.completed"])
    secret: str = ""  # HMAC signing key, supports ${ENV_VAR}


class DockpipeConfig(BaseModel):
    """Root configuration model for .dockpipe.yaml."""

    project: ProjectIdentity = Field(default_factory=ProjectIdentity)
    images: dict[str, ImageDef] = Field(default_factory=dict)
    stacks: dict[str, StackDef] = Field(default_factory=dict)
    tasks: dict[str, TaskDef] = Field(default_factory=dict)
    pipelines: dict[str, PipelineDef] = Field(default_factory=dict)
    webhooks: list[WebhookConfig] = Field(default_factory=list)
    state_dir: str = "build/compose-state"

    @model_validator(mode="after")
    def _fill_names(self) -> DockpipeConfig:
        for key, image in self.images.items():
            image.name = image.name or key
            if not image.repository and not image.image_name:
                image.image_name = key
        for key, stack in self.stacks.items():
            stack.name = stack.name or key
        for key, pipeline in self.pipelines.items():
            pipeline.name = pipeline.name or key
        return self
