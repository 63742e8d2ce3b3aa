"""Orchestrator backend tests: polling, the in-memory fake and the director client."""

import pytest

from boshrestore.backend import InMemoryBoshBackend, get_backend
from boshrestore.backend.director import BoshDirectorBackend
from boshrestore.config import DirectorConfig, PollingConfig, RestoreOperatorConfig
from boshrestore.contracts import TaskHandle, TaskState
from boshrestore.errors import PollTimeout, RemoteOperationFailed

FAST = PollingConfig(interval=0.01, max_interval=0.02)


@pytest.mark.asyncio
async def test_poll_task_waits_for_terminal_state():
    backend = InMemoryBoshBackend(
        deployments={"dep": []}, task_latency=3, polling=FAST
    )
    handle = await backend.stop_deployment("dep")
    result = await backend.poll_task(handle, timeout=1.0, operation="stop_deployment")
    assert result.state is TaskState.SUCCEEDED
    assert backend.deployment_states["dep"] == "stopped"


@pytest.mark.asyncio
async def test_poll_task_times_out():
    backend = InMemoryBoshBackend(polling=FAST)
    backend.hang_on("start_deployment")
    handle = await backend.start_deployment("dep")
    with pytest.raises(PollTimeout) as excinfo:
        await backend.poll_task(handle, timeout=0.05, operation="start_deployment")
    assert excinfo.value.task_id == handle.task_id
    assert excinfo.value.operation == "start_deployment"


@pytest.mark.asyncio
async def test_failure_injection_matches_parameters():
    backend = InMemoryBoshBackend(polling=FAST)
    backend.fail_on("create_disk", "quota exceeded", availability_zone="z2")
    backend.raise_on("attach_disk", "disk busy", instance_id="pg-1")

    ok = await backend.create_disk_from_snapshot("snap", "z1")
    bad = await backend.create_disk_from_snapshot("snap", "z2")
    assert (await backend.poll_task(ok)).succeeded
    failed = await backend.poll_task(bad)
    assert failed.state is TaskState.FAILED
    assert failed.message == "quota exceeded"
    assert len(backend.disks) == 1

    with pytest.raises(RemoteOperationFailed):
        await backend.attach_disk("dep", "vol-1", "postgresql", "pg-1")
    assert [c["availability_zone"] for c in backend.calls_for("create_disk")] == ["z1", "z2"]


@pytest.mark.asyncio
async def test_persistent_disks_filter_jobs_and_diskless_instances():
    backend = InMemoryBoshBackend(
        deployments={
            "dep": [
                {"job": "pg", "id": "0", "az": "z1", "disk_cid": "d0"},
                {"job": "broker", "id": "1", "az": "z1", "disk_cid": "d1"},
                {"job": "pg", "id": "2", "az": "z2"},
            ]
        }
    )
    disks = await backend.get_persistent_disks("dep", ["pg"])
    assert [(d.job_name, d.instance_id, d.disk_cid) for d in disks] == [("pg", "0", "d0")]
    assert len(await backend.get_persistent_disks("dep")) == 2
    with pytest.raises(RemoteOperationFailed):
        await backend.get_persistent_disks("unknown")


def test_get_backend_selects_implementation():
    config = RestoreOperatorConfig(backend="director", director=DirectorConfig(url="https://d"))
    assert isinstance(get_backend(config=config), BoshDirectorBackend)
    assert isinstance(get_backend("inmemory", config=config), InMemoryBoshBackend)
    with pytest.raises(ValueError):
        get_backend("vsphere", config=config)


# ----------------------------------------------------------------------
# Director client


class FakeResponse:
    def __init__(self, status_code=200, body=None, headers=None, text=""):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.requests = []
        self.auth = None
        self.verify = None

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        for (m, suffix), response in self.responses.items():
            if m == method and url.endswith(suffix):
                return response
        return FakeResponse(404, text="not found")


class FakeCloudProvider:
    def __init__(self, statuses):
        self.statuses = statuses
        self.created = []

    async def create_disk_from_snapshot(self, snapshot_id, availability_zone):
        self.created.append((snapshot_id, availability_zone))
        return f"vol-{len(self.created)}"

    async def get_disk(self, volume_id):
        return {"status": self.statuses.pop(0), "availabilityZone": "z1"}


def _director(responses, cloud_provider=None):
    session = FakeSession(responses)
    backend = BoshDirectorBackend(
        DirectorConfig(url="https://director:25555/", username="admin", password="pw"),
        cloud_provider=cloud_provider,
        polling=FAST,
        session=session,
    )
    return backend, session


@pytest.mark.asyncio
async def test_director_state_change_uses_task_location():
    backend, session = _director(
        {("PUT", "/deployments/dep-1/jobs/*"): FakeResponse(302, headers={"Location": "/tasks/42"})}
    )
    handle = await backend.stop_deployment("dep-1")
    assert handle.task_id == "42"
    method, url, kwargs = session.requests[0]
    assert url == "https://director:25555/deployments/dep-1/jobs/*"
    assert kwargs["params"] == {"state": "stopped"}
    assert session.auth == ("admin", "pw")


@pytest.mark.asyncio
async def test_director_errand_and_task_states():
    backend, session = _director(
        {
            ("POST", "/errands/pre-warm/runs"): FakeResponse(200, body={"id": 7}),
            ("GET", "/tasks/7"): FakeResponse(200, body={"state": "error", "result": "errand exited 1"}),
        }
    )
    handle = await backend.run_errand("dep-1", "pre-warm", [{"group": "pg", "id": "0"}])
    assert handle.task_id == "7"
    assert session.requests[0][2]["json"]["instances"] == [{"group": "pg", "id": "0"}]

    result = await backend.get_task(handle)
    assert result.state is TaskState.FAILED
    assert result.message == "errand exited 1"


@pytest.mark.asyncio
async def test_director_http_errors_raise():
    backend, _ = _director({})
    with pytest.raises(RemoteOperationFailed) as excinfo:
        await backend.start_deployment("dep-1")
    assert "404" in str(excinfo.value)
    assert excinfo.value.operation == "start_deployment"


@pytest.mark.asyncio
async def test_director_deployment_names_include_queued():
    backend, _ = _director(
        {
            ("GET", "/deployments"): FakeResponse(200, body=[{"name": "sf-a"}, {"name": "sf-b"}]),
            ("GET", "/tasks"): FakeResponse(
                200, body=[{"deployment": "sf-c"}, {"deployment": "sf-a"}, {"id": 3}]
            ),
        }
    )
    assert await backend.get_deployment_names() == ["sf-a", "sf-b"]
    assert await backend.get_deployment_names(include_queued=True) == ["sf-a", "sf-b", "sf-c"]


@pytest.mark.asyncio
async def test_director_instances_to_disks():
    backend, _ = _director(
        {
            ("GET", "/deployments/dep-1/instances"): FakeResponse(
                200,
                body=[
                    {"job": "pg", "id": "0", "az": "z1", "disk_cid": "d0"},
                    {"job": "pg", "id": "1", "az": "z2", "disk_cids": ["d1"]},
                    {"job": "pg", "id": "2", "az": "z3", "disk_cids": []},
                ],
            )
        }
    )
    disks = await backend.get_persistent_disks("dep-1")
    assert [(d.instance_id, d.disk_cid) for d in disks] == [("0", "d0"), ("1", "d1")]


@pytest.mark.asyncio
async def test_director_disk_tasks_go_through_cloud_provider():
    provider = FakeCloudProvider(["creating", "available"])
    backend, _ = _director({}, cloud_provider=provider)
    handle = await backend.create_disk_from_snapshot("snap-1", "z1")
    assert handle == TaskHandle(task_id="vol-1", kind="disk")

    result = await backend.poll_task(handle, timeout=1.0, operation="create_disk")
    assert result.succeeded
    assert result.payload["volumeId"] == "vol-1"
    assert provider.created == [("snap-1", "z1")]


@pytest.mark.asyncio
async def test_director_without_cloud_provider_cannot_create_disks():
    backend, _ = _director({})
    with pytest.raises(RemoteOperationFailed):
        await backend.create_disk_from_snapshot("snap-1", "z1")
