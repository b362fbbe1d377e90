# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/service.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from opsentry.config.models import OpsentryConfig
from opsentry.controller.poller import OperationPoller
from opsentry.controller.reconciler import OperationReconciler
from opsentry.errors import ConfigError, TransientError
from opsentry.health.abort import AbortGateway
from opsentry.health.dispatcher import HealthDispatcher
from opsentry.health.monitor import MonitorRegistry, OperationMonitor
from opsentry.health.snapshot import ConfigMapSnapshotStore, SnapshotStore
from opsentry.kube.clients import api_client_from_kubeconfig, check_connection, local_api_client
from opsentry.observers.dispatcher import EventBus
from opsentry.oracle.aks import AksOracle
from opsentry.oracle.models import StatusOracle
from opsentry.records.store import KubernetesRecordStore, RecordStore

log = logging.getLogger("opsentry")


@dataclass
class ServiceOptions:
    cleanup: bool = False
    run_reconciler: bool = True
    run_monitor: bool = True
    kube_context: Optional[str] = None


def validate_oracle(oracle: StatusOracle) -> None:
    """Startup probe: connection test then one status read. Failure is fatal."""
    try:
        oracle.test_connection()
        oracle.get_operation_status()
    except TransientError as exc:
        raise ConfigError(
            f"Azure connection validation failed, check the identity's roles on the cluster: {exc}"
        ) from exc


class OpsentryService:
    """
    Runs the reconciler (records follow the oracle) and the health
    dispatcher (monitors follow the records) side by side.
    """

    def __init__(
        self,
        cfg: OpsentryConfig,
        oracle: StatusOracle,
        records: RecordStore,
        snapshots: SnapshotStore,
        bus: Optional[EventBus] = None,
        options: Optional[ServiceOptions] = None,
    ):
        self.cfg = cfg
        self.oracle = oracle
        self.records = records
        self.snapshots = snapshots
        self.bus = bus or EventBus()
        self.options = options or ServiceOptions()

        self.reconciler = OperationReconciler(
            records, oracle, cfg.azure, cfg.reconciler, self.bus,
        )
        self.poller = OperationPoller(
            self.reconciler, records, retry_delay=cfg.health.watch_retry_delay_s,
        )
        self.gateway = AbortGateway(oracle, self.bus)
        self.registry = MonitorRegistry(self._new_monitor)
        self.dispatcher = HealthDispatcher(
            records,
            snapshots,
            self.registry,
            label_selector=self.reconciler.label_selector,
            retry_delay=cfg.health.watch_retry_delay_s,
        )

    def _new_monitor(self, name: str) -> OperationMonitor:
        return OperationMonitor(name, self.snapshots, self.gateway, self.bus)

    @classmethod
    def build(
        cls,
        cfg: OpsentryConfig,
        bus: Optional[EventBus] = None,
        options: Optional[ServiceOptions] = None,
    ) -> "OpsentryService":
        """Create the AKS oracle and Kubernetes stores, validating each on the way."""
        options = options or ServiceOptions()
        az = cfg.azure

        log.info("[startup] creating Azure client for %s/%s", az.resource_group, az.cluster_name)
        oracle = AksOracle(az, cfg.oracle)
        validate_oracle(oracle)
        log.info("[startup] Azure connection validated")

        try:
            kubeconfig = oracle.get_admin_kubeconfig()
        except TransientError as exc:
            raise ConfigError(f"failed to get admin kubeconfig for {az.cluster_name}: {exc}") from exc
        target = api_client_from_kubeconfig(kubeconfig)
        try:
            count = check_connection(target, timeout=cfg.oracle.connect_timeout_s)
        except TransientError as exc:
            raise ConfigError(f"failed to connect to target cluster {az.cluster_name}: {exc}") from exc
        log.info("[startup] target cluster reachable (%d namespaces)", count)

        base = local_api_client(options.kube_context)

        records = KubernetesRecordStore(
            target,
            namespace=cfg.reconciler.namespace,
            request_timeout=cfg.oracle.timeout_s,
            watch_timeout_s=cfg.health.watch_timeout_s,
        )
        snapshots = ConfigMapSnapshotStore(
            metrics_api_client=target,
            thresholds_api_client=base,
            settings=cfg.health,
            request_timeout=cfg.oracle.timeout_s,
        )
        return cls(cfg, oracle, records, snapshots, bus, options)

    def start(self) -> None:
        if self.options.cleanup:
            log.info("[startup] Performing cleanup of orphaned Operation records...")
            try:
                deleted = self.reconciler.cleanup_orphans()
                log.info("[startup] Cleanup completed, %d record(s) removed", len(deleted))
            except Exception as exc:
                log.error("[startup] Cleanup failed, continuing anyway: %s", exc)

        if self.options.run_monitor:
            self.dispatcher.start()
            log.info("[startup] health monitoring started")
        if self.options.run_reconciler:
            self.poller.start()
            log.info("[startup] operation reconciler started for %s", self.cfg.azure.cluster_name)

    def stop(self, join_timeout: float = 5.0) -> None:
        log.info("[shutdown] stopping opsentry...")
        self.poller.stop(join_timeout)
        self.dispatcher.stop(join_timeout)
        log.info("[shutdown] opsentry shutdown complete")

    def run_until(self, stop: threading.Event) -> None:
        self.start()
        try:
            stop.wait()
        finally:
            self.stop()
