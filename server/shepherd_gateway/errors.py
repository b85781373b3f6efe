"""Errors raised by the reconciler and its adapters."""

from __future__ import annotations


class ShepherdError(Exception):
    """Base class for all gateway errors."""


class ProjectValidationError(ShepherdError, ValueError):
    """Malformed ID, resources or domains; raised before any I/O."""


class ProjectNotFoundError(ShepherdError, LookupError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class ProjectAlreadyExistsError(ShepherdError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project already exists: {project_id}")
        self.project_id = project_id


class QuotaExceededError(ShepherdError):
    def __init__(self, deficit_mb: int, ceiling_mb: int) -> None:
        super().__init__(
            f"Memory quota of {ceiling_mb}Mb would be exceeded by {deficit_mb}Mb; "
            "lower the runtime or build memory, or free up memory by removing other projects"
        )
        self.deficit_mb = deficit_mb
        self.ceiling_mb = ceiling_mb


class ImmutableFieldError(ShepherdError):
    def __init__(self, field: str, old: object, new: object) -> None:
        super().__init__(f"{field} is not allowed to be changed: new {new} old {old}")
        self.field = field


class CorruptedProjectError(ShepherdError, ValueError):
    """A descriptor file on disk no longer parses; the operator must fix or remove it."""

    def __init__(self, project_id: str, path: object, reason: object) -> None:
        super().__init__(f"Corrupted project file {path}: {reason}; fix or remove it")
        self.project_id = project_id


class PartialFailureError(ShepherdError):
    """A later step failed after earlier steps already took effect.

    ``completed`` lists the steps that succeeded, ``failed_step`` the one that
    raised, and ``remaining`` the stores that still hold the project when a
    delete fails. Re-running the same operation is the retry: delete is
    idempotent, and update re-runs a build or apply left pending by the
    failed attempt.
    """

    def __init__(
        self,
        project_id: str,
        operation: str,
        completed: list[str],
        failed_step: str,
        cause: BaseException,
        remaining: list[str] | None = None,
    ) -> None:
        done = ", ".join(completed) or "nothing"
        message = f"{operation} of {project_id} failed at step '{failed_step}' ({cause}); completed: {done}"
        if remaining:
            message += f"; still present in: {', '.join(remaining)}"
        super().__init__(message)
        self.project_id = project_id
        self.operation = operation
        self.completed = list(completed)
        self.failed_step = failed_step
        self.remaining = list(remaining or [])


class CiError(ShepherdError):
    """Jenkins rejected a request or could not be reached."""


class ClusterError(ShepherdError):
    """kubectl or the apply script failed."""
