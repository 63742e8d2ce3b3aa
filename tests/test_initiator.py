"""Restore initiation tests."""

import pytest

from boshrestore.contracts import Phase
from boshrestore.errors import (
    InstanceNotFound,
    InvalidRestoreRequest,
    WorkflowExists,
)


@pytest.mark.asyncio
async def test_start_restore_creates_record_in_first_phase(
    service, store, backend, make_request, deployment_name, instance_guid
):
    record = await service.start_restore(make_request())

    assert record.phase is Phase.BOSH_STOP
    assert record.version == 1
    metadata = record.metadata
    assert metadata.deployment_name == deployment_name
    assert metadata.snapshot_id == "snap-123"
    assert metadata.pre_warming_errand_name == "pre-warm"
    assert metadata.pitr_errand_name == "pitr-recover"
    assert [(i.job_name, i.instance_id, i.availability_zone) for i in metadata.deployment_instances_info] == [
        ("postgresql", "pg-0", "z1"),
        ("postgresql", "pg-1", "z2"),
    ]
    assert record.options.states_results.completed_phases() == []

    response = record.response
    assert response.instance_guid == instance_guid
    assert response.backup_guid == "backup-1"
    assert response.tenant_id == "space-1"
    assert response.state == "processing"
    assert response.operation == "restore"

    assert (await store.get("restore-1")).version == 1
    # initiation only reads from the orchestrator
    assert [name for name, _ in backend.calls] == ["get_deployment_names", "get_persistent_disks"]


@pytest.mark.asyncio
async def test_missing_snapshot_is_rejected(service, store, make_request):
    request = make_request(arguments={"backup_guid": "b-1", "backup": {"type": "online"}})
    with pytest.raises(InvalidRestoreRequest):
        await service.start_restore(request)
    assert await store.list_records() == []


@pytest.mark.asyncio
async def test_unknown_instance_creates_no_record(service, store, make_request):
    with pytest.raises(InstanceNotFound):
        await service.start_restore(make_request(instance_guid="not-deployed"))
    assert await store.list_records() == []


@pytest.mark.asyncio
async def test_deployment_without_disks_is_rejected(service, backend, store, make_request, deployment_name):
    for instance in backend.deployments[deployment_name]:
        instance["disk_cid"] = None
    with pytest.raises(InvalidRestoreRequest):
        await service.start_restore(make_request())
    assert await store.list_records() == []


@pytest.mark.asyncio
async def test_duplicate_restore_id_is_rejected(service, make_request):
    await service.start_restore(make_request())
    with pytest.raises(WorkflowExists):
        await service.start_restore(make_request())


@pytest.mark.asyncio
async def test_service_rejects_other_plans(service, make_request):
    with pytest.raises(InvalidRestoreRequest):
        await service.start_restore(make_request(plan_id="plan-large"))
