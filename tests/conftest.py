"""Shared fixtures for restore workflow tests."""

from typing import Any, Dict

import pytest

from boshrestore.backend import InMemoryBoshBackend
from boshrestore.config import PlanConfig, PollingConfig
from boshrestore.contracts import RestoreRequest
from boshrestore.service import BoshRestoreService
from boshrestore.store import InMemoryWorkflowStore

INSTANCE_GUID = "b4719e7c-cf4a-4c47-bd32-7e13fd8dcb41"
DEPLOYMENT_NAME = f"service-fabrik-0021-{INSTANCE_GUID}"
PLAN_ID = "plan-small"
SERVICE_ID = "postgresql-service"


def _instances():
    return [
        {"job": "postgresql", "id": "pg-0", "az": "z1", "disk_cid": "disk-a"},
        {"job": "postgresql", "id": "pg-1", "az": "z2", "disk_cid": "disk-b"},
        {"job": "smoke-tests", "id": "st-0", "az": "z1", "disk_cid": None},
    ]


@pytest.fixture
def deployments() -> Dict[str, list]:
    return {
        DEPLOYMENT_NAME: _instances(),
        "service-fabrik-0021-aaaaaaaa-0000-0000-0000-000000000000": [
            {"job": "postgresql", "id": "other-0", "az": "z1", "disk_cid": "disk-x"}
        ],
    }


@pytest.fixture
def backend(deployments) -> InMemoryBoshBackend:
    return InMemoryBoshBackend(deployments=deployments)


@pytest.fixture
def plan() -> PlanConfig:
    return PlanConfig(
        id=PLAN_ID,
        name="small",
        jobs=["postgresql"],
        pre_warming_errand="pre-warm",
        pitr_errand="pitr-recover",
    )


@pytest.fixture
def polling() -> PollingConfig:
    return PollingConfig(
        interval=0.01,
        max_interval=0.02,
        timeouts={
            "stop_deployment": 1.0,
            "create_disk": 1.0,
            "attach_disk": 1.0,
            "run_errand": 1.0,
            "start_deployment": 1.0,
        },
    )


@pytest.fixture
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def service(plan, store, backend, polling) -> BoshRestoreService:
    return BoshRestoreService(plan, store, backend, polling=polling)


@pytest.fixture
def make_request():
    def _make(**overrides: Any) -> RestoreRequest:
        data: Dict[str, Any] = {
            "restore_guid": "restore-1",
            "service_id": SERVICE_ID,
            "plan_id": PLAN_ID,
            "instance_guid": INSTANCE_GUID,
            "username": "admin",
            "arguments": {
                "backup_guid": "backup-1",
                "backup": {"type": "online", "snapshotId": "snap-123"},
            },
            "context": {"platform": "cloudfoundry", "space_guid": "space-1"},
        }
        data.update(overrides)
        return RestoreRequest.model_validate(data)

    return _make


@pytest.fixture
def run_to_completion():
    """Feed the stored record to the service until it is terminal."""

    async def _run(service: BoshRestoreService, restore_id: str, max_steps: int = 10):
        for _ in range(max_steps):
            record = await service.store.get(restore_id)
            if record.phase.is_terminal:
                return record
            await service.process_phase_change(record)
        raise AssertionError(f"Restore {restore_id} did not finish in {max_steps} steps")

    return _run


@pytest.fixture
def deployment_name() -> str:
    return DEPLOYMENT_NAME


@pytest.fixture
def instance_guid() -> str:
    return INSTANCE_GUID
