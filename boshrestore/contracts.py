"""Core contracts for restore workflows.

The workflow record is the single source of truth for a restore. Its
``options`` payload is typed per phase and validated every time a record is
read from or written to the store, so a malformed record is rejected before
any handler acts on it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .constants import OPERATION_RESTORE
from .errors import InvariantViolation, MalformedWorkflowRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    """Workflow phases in the order they are executed."""

    BOSH_STOP = "IN_PROGRESS_BOSH_STOP"
    CREATE_DISK = "IN_PROGRESS_CREATE_DISK"
    ATTACH_DISK = "IN_PROGRESS_ATTACH_DISK"
    RUN_ERRANDS = "IN_PROGRESS_RUN_ERRANDS"
    BOSH_START = "IN_PROGRESS_BOSH_START"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.SUCCEEDED, Phase.FAILED)

    @property
    def short_name(self) -> str:
        """Phase name without the ``IN_PROGRESS_`` prefix, e.g. ``ATTACH_DISK``."""
        return self.value.replace("IN_PROGRESS_", "", 1)

    @property
    def state_key(self) -> str:
        """Key of the phase entry in ``statesResults``, e.g. ``attach_disk``."""
        return self.short_name.lower()

    def next_phase(self) -> "Phase":
        if self.is_terminal:
            raise InvariantViolation(f"Phase {self.value} is terminal")
        return PHASE_SEQUENCE[PHASE_SEQUENCE.index(self) + 1]

    @classmethod
    def can_transition(cls, current: "Phase", new: "Phase") -> bool:
        """Only the next phase in sequence, or FAILED, may follow ``current``."""
        if current.is_terminal:
            return False
        if new is cls.FAILED:
            return True
        return current.next_phase() is new


IN_PROGRESS_PHASES: tuple[Phase, ...] = (
    Phase.BOSH_STOP,
    Phase.CREATE_DISK,
    Phase.ATTACH_DISK,
    Phase.RUN_ERRANDS,
    Phase.BOSH_START,
)
PHASE_SEQUENCE: tuple[Phase, ...] = IN_PROGRESS_PHASES + (Phase.SUCCEEDED,)


class RestoreModel(BaseModel):
    """Base for persisted models; serialised with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    def to_document(self) -> dict[str, Any]:
        """JSON-compatible dict using the persisted key names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ----------------------------------------------------------------------
# Tasks


class TaskState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskHandle(RestoreModel):
    """Opaque identifier of an in-flight remote operation."""

    task_id: str
    kind: Literal["director", "disk"] = "director"


class TaskResult(RestoreModel):
    task_id: str
    state: TaskState
    message: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.SUCCEEDED


# ----------------------------------------------------------------------
# Restore metadata


class NewDiskInfo(RestoreModel):
    volume_id: str
    availability_zone: Optional[str] = None
    task_id: Optional[str] = None


class InstanceDiskInfo(RestoreModel):
    """One VM instance taking part in the restore.

    ``new_disk_info`` is written by CREATE_DISK, ``attach_task_id`` and
    ``attach_task_result`` by ATTACH_DISK.
    """

    job_name: str
    instance_id: str
    availability_zone: Optional[str] = None
    disk_cid: Optional[str] = None
    new_disk_info: Optional[NewDiskInfo] = None
    attach_task_id: Optional[str] = None
    attach_task_result: Optional[TaskResult] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.job_name, self.instance_id)

    def identity(self) -> dict[str, Any]:
        return {
            "jobName": self.job_name,
            "instanceId": self.instance_id,
            "availabilityZone": self.availability_zone,
        }


class RestoreMetadata(RestoreModel):
    snapshot_id: str = Field(min_length=1)
    deployment_name: str = Field(min_length=1)
    pre_warming_errand_name: Optional[str] = Field(
        default=None, alias="pre-warming-errand-name"
    )
    pitr_errand_name: Optional[str] = Field(default=None, alias="pitr-errand-name")
    deployment_instances_info: List[InstanceDiskInfo]

    @model_validator(mode="after")
    def _check_instances(self) -> "RestoreMetadata":
        if not self.deployment_instances_info:
            raise ValueError("deploymentInstancesInfo must not be empty")
        keys = [instance.key for instance in self.deployment_instances_info]
        if len(set(keys)) != len(keys):
            raise ValueError("deploymentInstancesInfo contains duplicate instances")
        return self


# ----------------------------------------------------------------------
# Per-phase results


class BoshStopResult(RestoreModel):
    phase: Literal["bosh_stop"] = "bosh_stop"
    task_id: str
    task_result: TaskResult
    completed_at: datetime = Field(default_factory=utcnow)


class CreateDiskResult(RestoreModel):
    phase: Literal["create_disk"] = "create_disk"
    disks: List[NewDiskInfo]
    completed_at: datetime = Field(default_factory=utcnow)


class AttachDiskResult(RestoreModel):
    phase: Literal["attach_disk"] = "attach_disk"
    task_ids: List[str]
    completed_at: datetime = Field(default_factory=utcnow)


class RunErrandsResult(RestoreModel):
    phase: Literal["run_errands"] = "run_errands"
    errand_name: Optional[str] = None
    task_id: Optional[str] = None
    task_result: Optional[TaskResult] = None
    skipped: bool = False
    completed_at: datetime = Field(default_factory=utcnow)


class BoshStartResult(RestoreModel):
    phase: Literal["bosh_start"] = "bosh_start"
    task_id: str
    task_result: TaskResult
    completed_at: datetime = Field(default_factory=utcnow)


class StatesResults(RestoreModel):
    """Results of the phases already left, keyed by ``Phase.state_key``."""

    model_config = ConfigDict(alias_generator=None, populate_by_name=True, extra="forbid")

    bosh_stop: Optional[BoshStopResult] = None
    create_disk: Optional[CreateDiskResult] = None
    attach_disk: Optional[AttachDiskResult] = None
    run_errands: Optional[RunErrandsResult] = None
    bosh_start: Optional[BoshStartResult] = None

    def get(self, phase: Phase) -> Optional[RestoreModel]:
        return getattr(self, phase.state_key, None)

    def completed_phases(self) -> list[Phase]:
        return [phase for phase in IN_PROGRESS_PHASES if self.get(phase) is not None]


class RestoreOptions(RestoreModel):
    restore_metadata: RestoreMetadata
    states_results: StatesResults = Field(default_factory=StatesResults)


# ----------------------------------------------------------------------
# Response


class FailureDiagnostic(BaseModel):
    """Why a workflow ended in FAILED."""

    model_config = ConfigDict(extra="forbid")

    phase: str
    kind: str
    message: str
    operation: Optional[str] = None
    task_id: Optional[str] = None
    instance: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_error(cls, phase: Phase, error: BaseException) -> "FailureDiagnostic":
        return cls(
            phase=getattr(error, "phase", None) or phase.short_name,
            kind=getattr(error, "kind", None) or type(error).__name__,
            message=str(error) or type(error).__name__,
            operation=getattr(error, "operation", None),
            task_id=getattr(error, "task_id", None),
            instance=getattr(error, "instance", None),
        )


class RestoreResponse(BaseModel):
    """Audit snapshot of the restore as reported to the requester."""

    model_config = ConfigDict(extra="forbid")

    service_id: str
    plan_id: str
    instance_guid: str
    username: Optional[str] = None
    operation: str = OPERATION_RESTORE
    backup_guid: Optional[str] = None
    time_stamp: Optional[str] = None
    state: Literal["processing", "succeeded", "failed"] = "processing"
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    tenant_id: Optional[str] = None
    error: Optional[FailureDiagnostic] = None


# ----------------------------------------------------------------------
# Workflow record


class WorkflowRecord(RestoreModel):
    """Persisted state of one restore operation."""

    restore_id: str
    phase: Phase
    options: RestoreOptions
    response: RestoreResponse
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_phase_consistency(self) -> "WorkflowRecord":
        completed = self.options.states_results.completed_phases()
        if self.phase is Phase.FAILED:
            if completed != list(IN_PROGRESS_PHASES[: len(completed)]):
                raise ValueError("statesResults of a failed record must be a phase prefix")
            if self.response.error is None:
                raise ValueError("failed record carries no error diagnostic")
        elif self.phase is Phase.SUCCEEDED:
            if completed != list(IN_PROGRESS_PHASES):
                raise ValueError("succeeded record is missing phase results")
        else:
            expected = list(IN_PROGRESS_PHASES[: IN_PROGRESS_PHASES.index(self.phase)])
            if completed != expected:
                raise ValueError(
                    f"phase {self.phase.value} expects results for "
                    f"{[p.state_key for p in expected]}, found "
                    f"{[p.state_key for p in completed]}"
                )

        instances = self.options.restore_metadata.deployment_instances_info
        if Phase.CREATE_DISK in completed and any(
            i.new_disk_info is None for i in instances
        ):
            raise ValueError("every instance needs newDiskInfo once CREATE_DISK is done")
        if Phase.ATTACH_DISK in completed and any(
            i.attach_task_result is None for i in instances
        ):
            raise ValueError(
                "every instance needs attachTaskResult once ATTACH_DISK is done"
            )
        return self

    @classmethod
    def parse(cls, data: Any) -> "WorkflowRecord":
        """Validate a stored document, raising ``MalformedWorkflowRecord``."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            restore_id = data.get("restoreId") if isinstance(data, dict) else None
            raise MalformedWorkflowRecord(
                f"Workflow record {restore_id!r} failed validation: {e}"
            ) from e

    @property
    def metadata(self) -> RestoreMetadata:
        return self.options.restore_metadata

    @property
    def plan_id(self) -> str:
        return self.response.plan_id


class ChangeNotification(RestoreModel):
    """Emitted by the store after every successful create or patch."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    restore_id: str
    phase: Phase
    version: int
    timestamp: datetime = Field(default_factory=utcnow)
    record: Dict[str, Any]

    @classmethod
    def for_record(cls, record: WorkflowRecord) -> "ChangeNotification":
        return cls(
            restore_id=record.restore_id,
            phase=record.phase,
            version=record.version,
            record=record.to_document(),
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, data: str) -> "ChangeNotification":
        return cls.model_validate_json(data)


# ----------------------------------------------------------------------
# Requests


class BackupReference(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Optional[str] = None
    secret: Optional[str] = None
    snapshot_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("snapshotId", "snapshot_id")
    )


class RestoreArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")

    backup_guid: Optional[str] = None
    time_stamp: Optional[str] = None
    space_guid: Optional[str] = None
    backup: BackupReference = Field(default_factory=BackupReference)


class RestoreRequest(BaseModel):
    """Restore request as received from the service broker."""

    model_config = ConfigDict(extra="ignore")

    restore_guid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    service_id: str
    plan_id: str
    instance_guid: str
    username: Optional[str] = None
    arguments: RestoreArguments = Field(default_factory=RestoreArguments)
    context: Optional[Dict[str, Any]] = None

    def tenant_id(self) -> Optional[str]:
        if self.context:
            platform = self.context.get("platform")
            if platform == "cloudfoundry":
                return self.context.get("space_guid")
            if platform == "kubernetes":
                return self.context.get("namespace")
        return self.arguments.space_guid
