"""End-to-end tests: controller consuming store change notifications."""

import asyncio

import pytest

from boshrestore.config import PollingConfig, RestoreOperatorConfig
from boshrestore.constants import CHANGES_TOPIC
from boshrestore.contracts import ChangeNotification, Phase
from boshrestore.controller import RestoreController
from boshrestore.registry import ServiceRegistry
from boshrestore.store import InMemoryWorkflowStore
from boshrestore.transports import InMemoryTransport


@pytest.fixture
def transport():
    return InMemoryTransport(poll_interval=0.01)


@pytest.fixture
def wired(transport, backend, plan, polling):
    store = InMemoryWorkflowStore(transport)
    config = RestoreOperatorConfig(plans=[plan], polling=polling)
    services = ServiceRegistry(config, store, backend)
    return store, services


@pytest.mark.asyncio
async def test_controller_drives_restore_to_success(transport, wired, backend, make_request):
    store, services = wired
    phases = []

    async def watch():
        async for notification in store.subscribe("restore-1"):
            phases.append(notification.phase)

    watcher = asyncio.create_task(watch())
    await asyncio.sleep(0)
    await services.get_service("plan-small").start_restore(make_request())

    controller = RestoreController(transport, services)
    await controller.start(lifespan=1.0)
    await asyncio.wait_for(watcher, timeout=1)

    assert phases == [
        Phase.BOSH_STOP,
        Phase.CREATE_DISK,
        Phase.ATTACH_DISK,
        Phase.RUN_ERRANDS,
        Phase.BOSH_START,
        Phase.SUCCEEDED,
    ]
    record = await store.get("restore-1")
    assert record.phase is Phase.SUCCEEDED
    assert len(backend.calls_for("attach_disk")) == 2
    assert len(backend.calls_for("start_deployment")) == 1
    assert transport.pending(CHANGES_TOPIC) == 0
    assert len(backend.calls_for("stop_deployment")) == 1


@pytest.mark.asyncio
async def test_duplicate_notifications_do_not_repeat_work(transport, wired, backend, make_request):
    store, services = wired
    created = await services.get_service("plan-small").start_restore(make_request())
    # redelivery of the creation notification
    await transport.publish(CHANGES_TOPIC, ChangeNotification.for_record(created))

    controller = RestoreController(transport, services)
    await controller.start(lifespan=1.0)

    assert (await store.get("restore-1")).phase is Phase.SUCCEEDED
    assert len(backend.calls_for("stop_deployment")) == 1
    assert len(backend.calls_for("create_disk")) == 2


@pytest.mark.asyncio
async def test_failures_in_one_restore_do_not_stop_the_controller(
    transport, wired, backend, make_request
):
    store, services = wired
    created = await services.get_service("plan-small").start_restore(make_request())

    orphan = created.to_document()
    orphan["restoreId"] = "orphan"
    orphan["response"]["plan_id"] = "plan-unknown"
    await transport.publish(
        CHANGES_TOPIC,
        ChangeNotification(restore_id="orphan", phase=Phase.BOSH_STOP, version=1, record=orphan),
    )

    controller = RestoreController(transport, services)
    await controller.start(lifespan=1.0)

    assert (await store.get("restore-1")).phase is Phase.SUCCEEDED
    assert await store.get("orphan") is None
    assert len(backend.calls_for("stop_deployment")) == 1


@pytest.mark.asyncio
async def test_failed_restore_ends_in_failed(transport, wired, backend, make_request):
    store, services = wired
    backend.fail_on("run_errand", "pre-warming failed")
    await services.get_service("plan-small").start_restore(make_request())

    controller = RestoreController(transport, services)
    await controller.start(lifespan=1.0)

    record = await store.get("restore-1")
    assert record.phase is Phase.FAILED
    assert record.response.error.phase == "RUN_ERRANDS"
    assert backend.calls_for("start_deployment") == []


@pytest.mark.asyncio
async def test_hanging_restore_does_not_block_another(
    transport, backend, plan, make_request, deployment_name
):
    store = InMemoryWorkflowStore(transport)
    polling = PollingConfig(
        interval=0.01, max_interval=0.02, timeouts={"stop_deployment": 0.5}
    )
    config = RestoreOperatorConfig(plans=[plan], polling=polling)
    services = ServiceRegistry(config, store, backend)
    backend.hang_on("stop_deployment", deployment_name=deployment_name)

    service = services.get_service("plan-small")
    await service.start_restore(make_request(restore_guid="slow"))
    await service.start_restore(
        make_request(
            restore_guid="fast", instance_guid="aaaaaaaa-0000-0000-0000-000000000000"
        )
    )

    controller = RestoreController(transport, services)
    await controller.start(lifespan=1.5)

    fast = await store.get("fast")
    slow = await store.get("slow")
    assert fast.phase is Phase.SUCCEEDED
    assert slow.phase is Phase.FAILED
    assert slow.response.error.kind == "PollTimeout"
    assert slow.response.error.phase == "BOSH_STOP"
    # the fast restore finished while the slow one was still polling
    assert fast.updated_at < slow.updated_at
