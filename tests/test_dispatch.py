"""Phase dispatcher tests."""

import pytest

from boshrestore.contracts import Phase
from boshrestore.errors import InvariantViolation


@pytest.mark.asyncio
async def test_replayed_notification_does_not_repeat_work(service, backend, make_request):
    created = await service.start_restore(make_request())

    first = await service.process_phase_change(created)
    again = await service.process_phase_change(created)

    assert first.phase is Phase.CREATE_DISK
    assert again is None
    assert len(backend.calls_for("stop_deployment")) == 1
    assert (await service.store.get("restore-1")).version == 2


@pytest.mark.asyncio
async def test_raw_documents_are_accepted(service, make_request):
    created = await service.start_restore(make_request())
    updated = await service.process_phase_change(created.to_document())
    assert updated.phase is Phase.CREATE_DISK


@pytest.mark.asyncio
async def test_terminal_records_are_ignored(service, backend, make_request, run_to_completion):
    await service.start_restore(make_request())
    finished = await run_to_completion(service, "restore-1")
    calls = len(backend.calls)

    assert await service.process_phase_change(finished) is None
    assert len(backend.calls) == calls


@pytest.mark.asyncio
async def test_malformed_record_is_quarantined(service, store, backend, make_request):
    created = await service.start_restore(make_request())
    document = created.to_document()
    document["options"]["restoreMetadata"]["deploymentInstancesInfo"] = []
    store._documents["restore-1"] = document

    assert await service.process_phase_change(document) is None

    raw = await store._load("restore-1")
    assert raw["phase"] == "FAILED"
    assert raw["response"]["error"]["kind"] == "MalformedWorkflowRecord"
    assert raw["response"]["error"]["phase"] == "BOSH_STOP"
    assert backend.calls_for("stop_deployment") == []


@pytest.mark.asyncio
async def test_unknown_phase_is_an_invariant_violation(service, make_request):
    created = await service.start_restore(make_request())
    document = created.to_document()
    document["phase"] = "IN_PROGRESS_UPDATE_STEMCELL"
    with pytest.raises(InvariantViolation):
        await service.process_phase_change(document)


@pytest.mark.asyncio
async def test_deleted_record_is_ignored(service, store, make_request):
    created = await service.start_restore(make_request())
    del store._documents["restore-1"]
    assert await service.process_phase_change(created) is None
