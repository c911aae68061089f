"""Custom exceptions for deploywatch."""

from typing import Any


class DeployWatchError(Exception):
    """Base exception for deploywatch."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(DeployWatchError):
    """Validation error."""

    status_code = 400


class ResourceNotFoundError(DeployWatchError):
    """Resource is not known to the registry."""

    status_code = 404

    def __init__(self, resource_id: str):
        super().__init__(
            f"Resource not found: {resource_id}",
            {"resource_id": resource_id},
        )
        self.resource_id = resource_id


class ContainerNotAssignedError(DeployWatchError):
    """Resource exists but was never scheduled onto a container."""

    status_code = 404

    def __init__(self, resource_id: str):
        super().__init__(
            f"Resource has no container: {resource_id}",
            {"resource_id": resource_id},
        )
        self.resource_id = resource_id


class ContainerNotFoundError(DeployWatchError):
    """The runtime does not know the requested container."""

    status_code = 404

    def __init__(self, container_id: str):
        super().__init__(
            f"Container not found: {container_id[:12]}",
            {"container_id": container_id},
        )
        self.container_id = container_id


class RuntimeUnavailableError(DeployWatchError):
    """The container runtime could not be reached or returned an error."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None):
        details = {}
        if status is not None:
            details["status"] = status
        super().__init__(f"Container runtime error: {message}", details)
        self.status = status


class EventStoreUnavailableError(DeployWatchError):
    """The progress event store is transiently unavailable."""

    status_code = 503

    def __init__(self, message: str):
        super().__init__(f"Event store unavailable: {message}")


class RegistryUnavailableError(DeployWatchError):
    """The resource registry is transiently unavailable."""

    status_code = 503

    def __init__(self, message: str):
        super().__init__(f"Resource registry unavailable: {message}")
