"""End-to-end restore against the in-memory orchestrator."""

import asyncio

from boshrestore import (
    InMemoryBoshBackend,
    RestoreController,
    RestoreRequest,
    ServiceRegistry,
)
from boshrestore.config import PlanConfig, PollingConfig, RestoreOperatorConfig
from boshrestore.store import InMemoryWorkflowStore
from boshrestore.transports import InMemoryTransport

INSTANCE_GUID = "b4719e7c-cf4a-4c47-bd32-7e13fd8dcb41"


async def main():
    transport = InMemoryTransport(poll_interval=0.05)
    store = InMemoryWorkflowStore(transport)
    backend = InMemoryBoshBackend(
        deployments={
            f"service-fabrik-0021-{INSTANCE_GUID}": [
                {"job": "postgresql", "id": "pg-0", "az": "z1", "disk_cid": "disk-a"},
                {"job": "postgresql", "id": "pg-1", "az": "z2", "disk_cid": "disk-b"},
            ]
        },
        task_latency=2,
    )
    config = RestoreOperatorConfig(
        plans=[PlanConfig(id="small", jobs=["postgresql"], pre_warming_errand="pre-warm")],
        polling=PollingConfig(interval=0.05, max_interval=0.2),
    )
    services = ServiceRegistry(config, store, backend)

    request = RestoreRequest(
        service_id="postgresql",
        plan_id="small",
        instance_guid=INSTANCE_GUID,
        arguments={"backup": {"snapshotId": "snap-123"}},
    )
    record = await services.get_service("small").start_restore(request)
    print(f"Restore {record.restore_id} created in {record.phase.value}")

    async def watch():
        async for change in store.subscribe(record.restore_id):
            print(f"  -> {change.phase.value} (version {change.version})")

    watcher = asyncio.create_task(watch())
    await RestoreController(transport, services).start(lifespan=3)
    await watcher

    final = await store.get(record.restore_id)
    for instance in final.metadata.deployment_instances_info:
        print(f"{instance.job_name}/{instance.instance_id}: {instance.new_disk_info.volume_id}")


if __name__ == "__main__":
    asyncio.run(main())
