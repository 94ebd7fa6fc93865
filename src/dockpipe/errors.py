"""Exception hierarchy shared across dockpipe."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dockpipe.workflows.models import PipelineContext, TestResult


class DockpipeError(Exception):
    """Base exception for dockpipe-specific errors."""


class PipelineError(DockpipeError):
    """Raised when a pipeline cannot continue."""


class ConfigurationError(PipelineError):
    """Raised for malformed or inconsistent pipeline configuration.

    Always raised before any side effect takes place.
    """


class TaskNotFoundError(PipelineError):
    """Raised when a named task cannot be resolved."""

    def __init__(self, task_name: str, message: str | None = None) -> None:
        super().__init__(message or f"Task '{task_name}' not found")
        self.task_name = task_name


class TaskExecutionError(DockpipeError):
    """Raised when a task blows up while running (not a reported test failure)."""

    def __init__(self, task_name: str, message: str) -> None:
        super().__init__(f"Task '{task_name}' failed: {message}")
        self.task_name = task_name


class TestExecutionError(PipelineError):
    """Raised after teardown when running the test task raised.

    The failing ``TestResult`` and the context carrying it travel with the
    exception so callers can still route the failure path.
    """

    __test__ = False

    def __init__(
        self,
        message: str,
        *,
        test_result: TestResult,
        context: PipelineContext,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(f"Test execution failed: {message}")
        self.test_result = test_result
        self.context = context
        self.cause = cause


class ImageErrorType(Enum):
    """Classification of image-service failures with a default remediation hint."""

    DAEMON_UNAVAILABLE = "Ensure the Docker daemon is running and DOCKER_HOST is reachable"
    NETWORK_ERROR = "Check network connectivity to the registry"
    AUTHENTICATION_FAILED = "Verify registry credentials (username/password or token)"
    IMAGE_NOT_FOUND = "Build the image first or check the image reference"
    BUILD_FAILED = "Check the Dockerfile and build context for errors"
    TAG_FAILED = "Verify the source image exists and the tag format is valid"
    PUSH_FAILED = "Check registry permissions and that the repository exists"
    PULL_FAILED = "Check the image reference and registry availability"
    SAVE_FAILED = "Check the output path is writable and has free space"
    UNKNOWN = "Check the Docker daemon logs for details"

    @property
    def suggestion(self) -> str:
        return self.value


class ComposeErrorType(Enum):
    """Classification of compose-service failures with a default remediation hint."""

    COMPOSE_UNAVAILABLE = "Install Docker Compose v2 and ensure 'docker compose' is on PATH"
    COMPOSE_FILE_NOT_FOUND = "Check the compose file paths configured for the stack"
    SERVICE_START_FAILED = "Inspect 'docker compose logs' for the failing service"
    SERVICE_STOP_FAILED = "Remove leftover containers with 'docker compose down'"
    SERVICE_TIMEOUT = "Increase the wait timeout or check the service health check"
    PLATFORM_UNSUPPORTED = "Run on a platform supported by Docker Compose"
    LOGS_CAPTURE_FAILED = "Check that the compose project is still running"
    UNKNOWN = "Check the Docker daemon logs for details"

    @property
    def suggestion(self) -> str:
        return self.value


class ServiceError(DockpipeError):
    """Structured collaborator failure carrying an error type and a remediation hint."""

    def __init__(
        self,
        error_type: ImageErrorType | ComposeErrorType,
        message: str,
        *,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.suggestion = suggestion or error_type.suggestion

    @property
    def formatted_message(self) -> str:
        return f"{self.message}\nSuggestion: {self.suggestion}"


class ImageServiceError(ServiceError):
    """Raised by image services (build, tag, save, push)."""

    def __init__(self, error_type: ImageErrorType, message: str, *, suggestion: str | None = None) -> None:
        super().__init__(error_type, message, suggestion=suggestion)


class ComposeServiceError(ServiceError):
    """Raised by compose services (up, down, wait, logs)."""

    def __init__(self, error_type: ComposeErrorType, message: str, *, suggestion: str | None = None) -> None:
        super().__init__(error_type, message, suggestion=suggestion)
