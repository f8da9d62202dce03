"""Custom exceptions for bcdeploy."""

from typing import Any, List, Optional


class PublishError(Exception):
    """Base exception for all publishing errors.

    ``app`` and ``stage`` are filled in by the orchestrator when the error is
    tied to one package of a batch; ``completed`` holds the results of the
    packages that were published before the failure.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.app: Optional[str] = None
        self.stage: Optional[str] = None
        self.completed: List[Any] = []

    def __str__(self) -> str:
        message = super().__str__()
        if self.app and self.stage:
            return f"{message} (app={self.app}, stage={self.stage})"
        return message


class InvalidPackage(PublishError):
    """Package file cannot be read or has an invalid manifest."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid package {path}: {reason}", code="invalid_package")
        self.path = path
        self.reason = reason


class CyclicDependency(PublishError):
    """Declared dependencies of a batch contain a cycle."""

    def __init__(self, apps: List[str]):
        super().__init__(
            f"Cyclic dependency between apps: {', '.join(apps)}",
            code="cyclic_dependency",
        )
        self.apps = apps


class VisibilityMismatch(PublishError):
    """Package code visibility differs from the required value."""

    def __init__(self, app: str, expected: bool, actual: bool):
        super().__init__(
            f"App {app} has ShowMyCode={actual}, required ShowMyCode={expected}",
            code="visibility_mismatch",
        )
        self.expected = expected
        self.actual = actual


class UnsupportedTarget(PublishError):
    """Target cannot be published to with the requested options."""
    pass


class InvalidScope(PublishError):
    """Requested publish scope is not supported by the selected transport."""
    pass


class PublishRejected(PublishError):
    """Development endpoint answered with a non-success status."""

    def __init__(self, status_code: int, reason: str, message: str):
        super().__init__(f"{status_code} {reason}: {message}", code="publish_rejected")
        self.status_code = status_code
        self.reason = reason
        self.detail = message


class RemoteOperationFailed(PublishError):
    """A step executed through the remote command channel failed."""

    def __init__(self, step: str, message: str):
        super().__init__(f"Remote step '{step}' failed: {message}", code="remote_operation_failed")
        self.step = step
        self.detail = message


class AuthExpired(PublishError):
    """Access token could not be renewed."""
    pass


class ConfigurationError(PublishError):
    """Configuration error."""
    pass
