"""Error taxonomy for restore workflows.

Every error that can end a workflow carries enough context to build the
FAILED diagnostic persisted on the record: the phase it happened in, the
remote operation, the task id and the instance involved.
"""

from __future__ import annotations

from typing import Any, Optional


class RestoreError(Exception):
    """Base exception for bosh-restore-operator."""

    def __init__(
        self,
        message: str,
        *,
        phase: Optional[str] = None,
        operation: Optional[str] = None,
        task_id: Optional[str] = None,
        instance: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.operation = operation
        self.task_id = task_id
        self.instance = instance

    @property
    def kind(self) -> str:
        return type(self).__name__


class InstanceNotFound(RestoreError):
    """No deployment matches the service instance guid."""

    def __init__(self, instance_guid: str) -> None:
        super().__init__(f"No deployment found for service instance '{instance_guid}'")
        self.instance_guid = instance_guid


class AmbiguousDeploymentMatch(RestoreError):
    """More than one deployment name ends with the service instance guid."""

    def __init__(self, instance_guid: str, candidates: list[str]) -> None:
        super().__init__(
            f"Service instance '{instance_guid}' matches several deployments: "
            f"{', '.join(candidates)}"
        )
        self.instance_guid = instance_guid
        self.candidates = candidates


class InvalidRestoreRequest(RestoreError):
    """The restore request cannot be turned into a workflow record."""


class WorkflowExists(RestoreError):
    """A workflow record with the same restore id is already stored."""


class WorkflowNotFound(RestoreError):
    """No workflow record is stored under the restore id."""


class PlanNotFound(RestoreError):
    """The plan id is not part of the configured catalog."""


class UnknownJobType(RestoreError):
    """The job registry has no job for the requested type."""


class RemoteOperationFailed(RestoreError):
    """The orchestrator reported a failed stop/start/create/attach/errand."""


class PollTimeout(RestoreError):
    """A task did not reach a terminal state before its deadline."""


class VersionConflict(RestoreError):
    """A patch supplied a stale version token."""

    def __init__(self, restore_id: str, expected: int, actual: Optional[int]) -> None:
        super().__init__(
            f"Version conflict on restore '{restore_id}': "
            f"expected {expected}, stored {actual}"
        )
        self.restore_id = restore_id
        self.expected = expected
        self.actual = actual


class MalformedWorkflowRecord(RestoreError):
    """A workflow record failed schema validation."""


class InvariantViolation(RestoreError):
    """A state-machine rule was broken (unknown phase, illegal transition)."""


__all__ = [
    "RestoreError",
    "InstanceNotFound",
    "AmbiguousDeploymentMatch",
    "InvalidRestoreRequest",
    "WorkflowExists",
    "WorkflowNotFound",
    "PlanNotFound",
    "UnknownJobType",
    "RemoteOperationFailed",
    "PollTimeout",
    "VersionConflict",
    "MalformedWorkflowRecord",
    "InvariantViolation",
]
