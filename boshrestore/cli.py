"""Command line interface for the restore operator."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from .backend import get_backend
from .config import RestoreOperatorConfig, load_config
from .constants import JOB_OPERATION_STATUS_POLLER, JOB_RESTORE
from .controller import RestoreController
from .contracts import Phase
from .errors import RestoreError
from .registry import JobRegistry, ServiceRegistry
from .store import WorkflowStore, get_store
from .transports import BaseTransport, get_transport

app = typer.Typer(help="CLI for BOSH restore workflows")

restore_app = typer.Typer(help="Commands for inspecting and starting restores")
controller_app = typer.Typer(help="Commands for running the restore controller")
poller_app = typer.Typer(help="Commands for the operation status poller")

app.add_typer(restore_app, name="restore")
app.add_typer(controller_app, name="controller")
app.add_typer(poller_app, name="poller")


class Runtime:
    """Objects shared by one CLI invocation."""

    def __init__(self, config: RestoreOperatorConfig) -> None:
        self.config = config
        self.transport: BaseTransport = get_transport(config=config)
        self.store: WorkflowStore = get_store(config=config, transport=self.transport)
        self.backend = get_backend(config=config)
        self.services = ServiceRegistry(config, self.store, self.backend)
        self.jobs = JobRegistry()

    def job(self, job_type: str):
        return self.jobs.get_job(job_type)(self.services, self.store, self.config)


def _runtime(config_path: Optional[str]) -> Runtime:
    config = load_config(config_path)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return Runtime(config)


@app.callback()
def main() -> None:
    """BOSH restore operator CLI entry point."""
    pass


@restore_app.command("list")
def restore_list(
    phase: Optional[str] = typer.Option(None, help="Only show restores in this phase"),
    config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
) -> None:
    """
    List restores with their current phase.

    Example:
        boshrestore restore list
        boshrestore restore list --phase FAILED
    """
    runtime = _runtime(config)
    phases = None
    if phase:
        try:
            phases = [Phase(phase.upper())]
        except ValueError:
            typer.secho(f"Unknown phase: {phase}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
    records = asyncio.run(runtime.store.list_records(phases))
    if not records:
        typer.echo("No restores found")
        return
    for record in records:
        typer.echo(
            f"{record.restore_id}\t{record.phase.value}\t"
            f"{record.metadata.deployment_name}\tv{record.version}"
        )


@restore_app.command("show")
def restore_show(
    restore_id: str,
    config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
) -> None:
    """
    Show one restore: phase, deployment, per-instance disks and phase results.

    Example:
        boshrestore restore show 3f1c2a...
    """
    runtime = _runtime(config)
    record = asyncio.run(runtime.store.get(restore_id))
    if record is None:
        typer.echo("Restore not found")
        raise typer.Exit(code=1)

    metadata = record.metadata
    typer.echo(f"Restore {record.restore_id}: {record.phase.value} (version {record.version})")
    typer.echo(f"Deployment: {metadata.deployment_name}")
    typer.echo(f"Snapshot: {metadata.snapshot_id}")
    for instance in metadata.deployment_instances_info:
        disk = instance.new_disk_info.volume_id if instance.new_disk_info else "-"
        typer.echo(
            f"- {instance.job_name}/{instance.instance_id} "
            f"az={instance.availability_zone} new_disk={disk}"
        )
    for completed in record.options.states_results.completed_phases():
        typer.echo(f"  {completed.short_name}: done")
    if record.response.error is not None:
        error = record.response.error
        typer.secho(
            f"Failed in {error.phase} ({error.kind}): {error.message}",
            fg=typer.colors.RED,
        )


@restore_app.command("start")
def restore_start(
    instance_guid: str,
    plan_id: str = typer.Option(..., help="Service plan id"),
    service_id: str = typer.Option(..., help="Service offering id"),
    snapshot_id: str = typer.Option(..., help="Snapshot to restore from"),
    backup_guid: Optional[str] = typer.Option(None),
    time_stamp: Optional[str] = typer.Option(None, help="Point in time to recover to"),
    restore_id: Optional[str] = typer.Option(None, help="Id for the new restore"),
    username: Optional[str] = typer.Option(None),
    config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
) -> None:
    """
    Create a restore workflow record for a service instance.

    The record starts in IN_PROGRESS_BOSH_STOP; a running controller picks it
    up from the change notification.

    Example:
        boshrestore restore start 0b1e... --plan-id small --service-id db \\
            --snapshot-id snap-123
    """
    runtime = _runtime(config)
    request = {
        "service_id": service_id,
        "plan_id": plan_id,
        "instance_guid": instance_guid,
        "username": username,
        "arguments": {
            "backup_guid": backup_guid,
            "time_stamp": time_stamp,
            "backup": {"snapshot_id": snapshot_id},
        },
    }
    if restore_id:
        request["restore_guid"] = restore_id
    try:
        record = asyncio.run(runtime.job(JOB_RESTORE).run(request))
    except RestoreError as e:
        typer.secho(f"{e.kind}: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Restore {record.restore_id} started: {record.phase.value}")
    typer.echo(json.dumps(record.to_document()["options"]["restoreMetadata"], indent=2))


@controller_app.command("run")
def controller_run(
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run indefinitely)"
    ),
    config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
) -> None:
    """
    Run the controller that drives restores through their phases.

    Example:
        boshrestore controller run
        boshrestore controller run --lifespan 300
    """
    runtime = _runtime(config)
    controller = RestoreController(runtime.transport, runtime.services)
    typer.echo("Starting restore controller")
    asyncio.run(controller.start(lifespan=lifespan))


@poller_app.command("run-once")
def poller_run_once(
    stall_after: Optional[float] = typer.Option(
        None, help="Seconds without change before a restore counts as stalled"
    ),
    config: Optional[str] = typer.Option(None, help="Path to config.yaml"),
) -> None:
    """Re-drive every in-progress restore that has stalled."""
    runtime = _runtime(config)
    job_data = {"stall_after": stall_after} if stall_after is not None else None
    redriven = asyncio.run(runtime.job(JOB_OPERATION_STATUS_POLLER).run(job_data))
    if not redriven:
        typer.echo("No stalled restores")
        return
    for restore_id in redriven:
        typer.echo(f"Re-driven: {restore_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
