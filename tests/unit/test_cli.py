import asyncio

from typer.testing import CliRunner

from boshrestore.cli import app
from boshrestore.contracts import (
    InstanceDiskInfo,
    Phase,
    RestoreMetadata,
    RestoreOptions,
    RestoreResponse,
    WorkflowRecord,
)
from boshrestore.store import SQLiteWorkflowStore


def _setup(tmp_path, monkeypatch) -> SQLiteWorkflowStore:
    db_path = tmp_path / "restores.db"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite://{db_path}
plans:
  - id: plan-small
    jobs: [postgresql]
"""
    )
    monkeypatch.setenv("BOSH_RESTORE_CONFIG", str(config_path))
    monkeypatch.delenv("BOSH_RESTORE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("BOSH_RESTORE_TRANSPORT", raising=False)
    return SQLiteWorkflowStore(db_path)


def _record(restore_id: str) -> WorkflowRecord:
    return WorkflowRecord(
        restore_id=restore_id,
        phase=Phase.BOSH_STOP,
        options=RestoreOptions(
            restore_metadata=RestoreMetadata(
                snapshot_id="snap-1",
                deployment_name="service-fabrik-0021-guid",
                deployment_instances_info=[
                    InstanceDiskInfo(job_name="postgresql", instance_id="pg-0", availability_zone="z1")
                ],
            )
        ),
        response=RestoreResponse(service_id="svc", plan_id="plan-small", instance_guid="guid"),
    )


def test_restore_list_and_show(tmp_path, monkeypatch):
    store = _setup(tmp_path, monkeypatch)
    asyncio.run(store.create(_record("r-1")))
    asyncio.run(
        store.patch(
            "r-1",
            1,
            new_phase=Phase.FAILED,
            response={
                "state": "failed",
                "error": {"phase": "BOSH_STOP", "kind": "PollTimeout", "message": "too slow"},
            },
        )
    )
    asyncio.run(store.create(_record("r-2")))
    store.close()

    runner = CliRunner()
    result = runner.invoke(app, ["restore", "list"])
    assert result.exit_code == 0, result.output
    assert "r-1\tFAILED" in result.output
    assert "r-2\tIN_PROGRESS_BOSH_STOP" in result.output

    result = runner.invoke(app, ["restore", "list", "--phase", "failed"])
    assert result.exit_code == 0, result.output
    assert "r-1" in result.output
    assert "r-2" not in result.output

    result = runner.invoke(app, ["restore", "show", "r-1"])
    assert result.exit_code == 0, result.output
    assert "Restore r-1: FAILED (version 2)" in result.output
    assert "postgresql/pg-0" in result.output
    assert "Failed in BOSH_STOP (PollTimeout): too slow" in result.output


def test_restore_show_missing(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch).close()
    result = CliRunner().invoke(app, ["restore", "show", "nope"])
    assert result.exit_code == 1
    assert "Restore not found" in result.output


def test_restore_start_reports_unknown_instance(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch).close()
    result = CliRunner().invoke(
        app,
        [
            "restore",
            "start",
            "guid-without-deployment",
            "--plan-id",
            "plan-small",
            "--service-id",
            "svc",
            "--snapshot-id",
            "snap-1",
        ],
    )
    assert result.exit_code == 1
    assert "InstanceNotFound" in result.output


def test_poller_run_once_without_stalled_restores(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch).close()
    result = CliRunner().invoke(app, ["poller", "run-once"])
    assert result.exit_code == 0, result.output
    assert "No stalled restores" in result.output
