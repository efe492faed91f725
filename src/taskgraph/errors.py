from __future__ import annotations


class DependencyError(ValueError):
    code = "dependency_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DependencyError):
    code = "not_found"


class SelfDependencyError(DependencyError):
    code = "self_dependency"


class CircularDependencyError(DependencyError):
    code = "circular_dependency"


class UnsupportedError(DependencyError):
    """The task store cannot persist the requested shape of change."""

    code = "unsupported"


class MalformedRangeError(DependencyError):
    code = "malformed_range"


class MalformedReferenceError(DependencyError):
    code = "malformed_reference"


class SnapshotError(DependencyError):
    code = "invalid_snapshot"
