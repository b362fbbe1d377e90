# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/cli/app.py
from __future__ import annotations

import json
import signal
import threading
from pathlib import Path
from typing import List, Optional

import typer

from opsentry import __version__
from opsentry.config.loader import load_config
from opsentry.errors import ConfigError, OpsentryError, ValidationError
from opsentry.health.evaluator import abort_reason, evaluate, format_violations
from opsentry.logging.log import init_logging
from opsentry.observers.dispatcher import EventBus
from opsentry.observers.events import new_ctx
from opsentry.observers.jsonfile import JsonFileObserver
from opsentry.observers.logger import LoggerObserver
from opsentry.oracle.aks import AksOracle
from opsentry.service import OpsentryService, ServiceOptions, validate_oracle
from opsentry.utils.naming import operation_record_name


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="opsentry: abort managed-cluster operations that make the workload unhealthy")

EXIT_VIOLATIONS = 2
EXIT_CANNOT_EVALUATE = 3


def _bus(logger, run_id: str, cfg, events_file: Optional[Path], event_kinds: Optional[List[str]] = None) -> EventBus:
    observers = [LoggerObserver(logger)]
    if events_file:
        observers.append(JsonFileObserver(events_file, kinds=event_kinds))
    ctx = new_ctx(cluster=cfg.azure.cluster_name, context=cfg.reconciler.namespace, run_id=run_id)
    return EventBus(observers=observers, ctx=ctx)


def _load(config: Optional[Path], logger):
    try:
        return load_config(config)
    except ConfigError as exc:
        logger.error(f"Failed to load configuration: {exc}")
        raise typer.Exit(code=1)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handler(signum, _frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file (env vars override it)"),
    cleanup: bool = typer.Option(False, "--cleanup", help="Clean up orphaned Operation records on startup"),
    no_monitor: bool = typer.Option(False, "--no-monitor", help="Run only the operation reconciler"),
    no_reconciler: bool = typer.Option(False, "--no-reconciler", help="Run only the health monitors"),
    kube_context: Optional[str] = typer.Option(None, "--kube-context", help="Context for the monitoring cluster"),
    events_file: Optional[Path] = typer.Option(None, "--events-file", help="Append lifecycle events as JSON lines"),
    event_kind: Optional[List[str]] = typer.Option(
        None, "--event-kind", help="Only write these event kinds to --events-file (repeatable)",
    ),
    log_file: bool = typer.Option(False, "--log-file", help="Also write a full-trace log file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Run the operation reconciler and health monitors until SIGINT/SIGTERM.
    """
    logger, run_id, _ = init_logging(verbose=verbose, log_to_file=log_file)
    logger.info(f"Starting opsentry operation controller version={__version__}")

    cfg = _load(config, logger)
    logger.info(
        f"Azure configuration loaded subscription={cfg.azure.subscription_id} "
        f"resourceGroup={cfg.azure.resource_group} cluster={cfg.azure.cluster_name}"
    )

    options = ServiceOptions(
        cleanup=cleanup,
        run_reconciler=not no_reconciler,
        run_monitor=not no_monitor,
        kube_context=kube_context,
    )
    try:
        service = OpsentryService.build(cfg, _bus(logger, run_id, cfg, events_file, event_kind), options)
    except OpsentryError as exc:
        logger.error(f"Startup failed: {exc}")
        raise typer.Exit(code=1)

    stop = threading.Event()
    _install_signal_handlers(stop)
    service.run_until(stop)


@app.command()
def cleanup(
    config: Optional[Path] = typer.Option(None, "--config", "-c"),
    kube_context: Optional[str] = typer.Option(None, "--kube-context"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Delete Operation records whose operation is no longer in progress, then exit.
    """
    logger, run_id, _ = init_logging(verbose=verbose, log_to_file=False)
    cfg = _load(config, logger)
    try:
        service = OpsentryService.build(
            cfg, _bus(logger, run_id, cfg, None), ServiceOptions(kube_context=kube_context),
        )
        deleted = service.reconciler.cleanup_orphans()
    except OpsentryError as exc:
        logger.error(f"Cleanup failed: {exc}")
        raise typer.Exit(code=1)
    typer.echo(f"removed {len(deleted)} record(s)")
    for name in deleted:
        typer.echo(f"  - {name}")


@app.command()
def status(
    config: Optional[Path] = typer.Option(None, "--config", "-c"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Print the cluster's current operation status and the record name it maps to.
    """
    logger, _, _ = init_logging(verbose=verbose, log_to_file=False)
    cfg = _load(config, logger)
    oracle = AksOracle(cfg.azure, cfg.oracle)
    try:
        validate_oracle(oracle)
        state = oracle.get_operation_status()
    except OpsentryError as exc:
        logger.error(f"Failed to get cluster operation status: {exc}")
        raise typer.Exit(code=1)

    typer.echo(json.dumps({
        "cluster": cfg.azure.cluster_name,
        "inProgress": state.in_progress,
        "status": state.status,
        "operationType": state.operation_type,
        "operationId": state.operation_id,
        "recordName": operation_record_name(cfg.azure.cluster_name, state.status or state.operation_type),
    }, indent=2))


@app.command("evaluate")
def evaluate_cmd(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="current_metrics.json"),
    thresholds: Path = typer.Argument(..., exists=True, dir_okay=False, help="thresholds.json"),
):
    """
    Evaluate a metrics snapshot against thresholds offline.
    Exit 0 when healthy, 2 on violations, 3 when health cannot be determined.
    """
    try:
        snap = json.loads(snapshot.read_text())
        limits = json.loads(thresholds.read_text())
        violations = evaluate(snap, limits)
    except (json.JSONDecodeError, ValidationError) as exc:
        typer.echo(f"cannot evaluate: {exc}", err=True)
        raise typer.Exit(code=EXIT_CANNOT_EVALUATE)

    if not violations:
        typer.echo("All metrics healthy.")
        return

    for line in format_violations(violations):
        typer.echo(line)
    typer.echo(f"abort reason: {abort_reason(violations)}")
    raise typer.Exit(code=EXIT_VIOLATIONS)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
