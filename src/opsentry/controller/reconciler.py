# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/controller/reconciler.py
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from opsentry.config.models import AzureIdentity, ReconcilerSettings
from opsentry.errors import ConflictError, TransientError
from opsentry.observers.dispatcher import EventBus
from opsentry.observers.events import (
    OperationObserved,
    OperationRecordCreated,
    OperationRecordDeleted,
    OrphanRecordsCleaned,
    ReconcileFailed,
)
from opsentry.oracle.models import OperationStatus, StatusOracle
from opsentry.records.models import (
    ANNOTATION_OPERATION_ID,
    ANNOTATION_STARTED,
    LABEL_CLUSTER,
    LABEL_RESOURCE_GROUP,
    LABEL_STATUS,
    PHASE_RUNNING,
    OperationRecord,
    OperationRecordStatus,
    OperationSpec,
    rfc3339_now,
)
from opsentry.records.store import RecordStore
from opsentry.utils.naming import normalize, operation_record_name
from opsentry.utils.retry import RetryError, retry

log = logging.getLogger("opsentry")

REQUEUE_INTERVAL = 30.0


class ReconcileAction(str, Enum):
    CREATED = "CREATED"
    EXISTS = "EXISTS"
    DELETED = "DELETED"
    NOOP = "NOOP"
    ERROR = "ERROR"


@dataclass
class ReconcileResult:
    name: Optional[str]
    action: ReconcileAction
    requeue_after: float = REQUEUE_INTERVAL
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _KeyedLocks:
    """One lock per record name; different names reconcile in parallel."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


class OperationReconciler:
    """
    Projects the oracle's operation state onto Operation records.

    Per record name there are two states, Absent and Monitored:

      in progress, no record   -> create         (Monitored)
      in progress, record      -> nothing        (Monitored)
      finished,    record      -> delete         (Absent)
      finished,    no record   -> nothing        (Absent)

    The poll loop and event-triggered requests both call ``reconcile``.
    """

    def __init__(
        self,
        store: RecordStore,
        oracle: StatusOracle,
        identity: AzureIdentity,
        settings: Optional[ReconcilerSettings] = None,
        bus: Optional[EventBus] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.oracle = oracle
        self.identity = identity
        self.settings = settings or ReconcilerSettings()
        self.bus = bus or EventBus()
        self._sleep = sleep
        self._locks = _KeyedLocks()

    @property
    def cluster_name(self) -> str:
        return self.identity.cluster_name

    @property
    def requeue_after(self) -> float:
        return self.settings.requeue_interval_s

    @property
    def label_selector(self) -> str:
        return f"{LABEL_CLUSTER}={normalize(self.cluster_name)}"

    # ------------------------------------------------------------------
    # naming / record construction
    # ------------------------------------------------------------------
    def generate_operation_name(self, state: OperationStatus) -> str:
        # keyed by provisioning state; the classified type goes to spec.operationType only
        return operation_record_name(self.cluster_name, state.status or state.operation_type)

    def build_record(self, name: str, state: OperationStatus) -> OperationRecord:
        now = rfc3339_now()
        annotations = {ANNOTATION_STARTED: now}
        if state.operation_id:
            annotations[ANNOTATION_OPERATION_ID] = state.operation_id
        return OperationRecord(
            name=name,
            namespace=self.settings.namespace,
            labels={
                LABEL_CLUSTER: normalize(self.cluster_name),
                LABEL_RESOURCE_GROUP: normalize(self.identity.resource_group),
                LABEL_STATUS: state.status,
            },
            annotations=annotations,
            spec=OperationSpec(
                cluster_name=self.cluster_name,
                resource_group=self.identity.resource_group,
                operation_type=state.operation_type,
                operation_status=state.status,
                in_progress=state.in_progress,
            ),
            status=OperationRecordStatus(phase=PHASE_RUNNING, last_checked=now),
        )

    # ------------------------------------------------------------------
    # store calls with bounded retry
    # ------------------------------------------------------------------
    def _store_call(self, fn: Callable, *args):
        def _on_retry(attempt: int, exc: Exception) -> None:
            log.warning("[records] %s attempt %d/%d failed: %s",
                        getattr(fn, "__name__", "call"), attempt, self.settings.store_retries, exc)

        wrapped = retry(
            retries=self.settings.store_retries,
            delay=self.settings.store_retry_delay_s,
            retry_on=(TransientError,),
            on_retry=_on_retry,
            sleep=self._sleep,
        )(fn)
        return wrapped(*args)

    def _create(self, name: str, state: OperationStatus) -> ReconcileAction:
        record = self.build_record(name, state)
        try:
            self._store_call(self.store.create, record)
        except ConflictError:
            log.info("[reconciler] Operation record '%s' already exists, nothing to create", name)
            return ReconcileAction.EXISTS
        log.info("[reconciler] Created Operation record '%s' for ongoing operation", name)
        self.bus.publish(OperationRecordCreated, name=name, status=state.status)
        return ReconcileAction.CREATED

    def _delete(self, record: OperationRecord, reason: str) -> bool:
        try:
            self._store_call(self.store.delete, record)
        except ConflictError:
            log.debug("[reconciler] Operation record '%s' already gone", record.name)
            return False
        log.info("[reconciler] Deleted Operation record '%s' (%s)", record.name, reason)
        self.bus.publish(OperationRecordDeleted, name=record.name, reason=reason)
        return True

    # ------------------------------------------------------------------
    # reconcile
    # ------------------------------------------------------------------
    def _fail(self, name: Optional[str], exc: Exception, what: str) -> ReconcileResult:
        log.error("[reconciler] %s%s: %s", what, f" for '{name}'" if name else "", exc)
        self.bus.publish(ReconcileFailed, name=name, error=str(exc))
        return ReconcileResult(name=name, action=ReconcileAction.ERROR, requeue_after=self.requeue_after, error=exc)

    def reconcile(self, request_name: Optional[str] = None) -> ReconcileResult:
        """
        Apply the transition table for the oracle's current operation.

        *request_name* is the record an external trigger asked about; if it
        is not the current operation's record it is cleaned up as an orphan.
        Errors are returned in the result, never raised; the caller always
        gets the same requeue interval.
        """
        if request_name:
            log.debug("[reconciler] reconcile requested for '%s'", request_name)
        try:
            state = self.oracle.get_operation_status()
        except TransientError as exc:
            return self._fail(request_name, exc, "Failed to get cluster operation status")

        name = self.generate_operation_name(state)
        log.info("[reconciler] operation status: inProgress=%s status=%s type=%s -> '%s'",
                 state.in_progress, state.status, state.operation_type, name)
        self.bus.publish(
            OperationObserved,
            name=name,
            status=state.status,
            in_progress=state.in_progress,
            operation_type=state.operation_type,
        )

        try:
            with self._locks.hold(name):
                existing = self._store_call(self.store.get, name)
                if state.in_progress:
                    if existing is None:
                        action = self._create(name, state)
                    else:
                        log.info("[reconciler] Operation record '%s' already exists for ongoing operation", name)
                        action = ReconcileAction.EXISTS
                else:
                    action = ReconcileAction.NOOP
                    if existing is not None and self._delete(existing, "completed"):
                        action = ReconcileAction.DELETED
        except RetryError as exc:
            return self._fail(name, exc, "Record store call failed")

        if not state.in_progress or (request_name and request_name != name):
            # whatever else is labelled for this cluster is no longer backed
            # by an in-progress operation
            try:
                self.cleanup_orphans(state)
            except (TransientError, RetryError) as exc:
                log.error("[reconciler] Failed to cleanup orphaned Operation records: %s", exc)

        if not state.in_progress:
            log.info("[reconciler] No operation in progress, requeuing after %.0fs", self.requeue_after)
        return ReconcileResult(name=name, action=action, requeue_after=self.requeue_after)

    # ------------------------------------------------------------------
    # orphan cleanup
    # ------------------------------------------------------------------
    def cleanup_orphans(self, state: Optional[OperationStatus] = None) -> List[str]:
        """
        Delete records for this cluster whose operation is not the one
        currently in progress. Queries the oracle when *state* is not given.
        Returns the names deleted.
        """
        if state is None:
            state = self.oracle.get_operation_status()
        keep = self.generate_operation_name(state) if state.in_progress else None
        reason = "orphan" if state.in_progress else "completed"

        records = self._store_call(self.store.list, self.label_selector)
        deleted: List[str] = []
        for record in records:
            if record.name == keep:
                continue
            with self._locks.hold(record.name):
                try:
                    if self._delete(record, reason):
                        deleted.append(record.name)
                except RetryError as exc:
                    log.error("[reconciler] Failed to delete orphaned Operation record '%s': %s", record.name, exc)

        if deleted:
            log.info("[reconciler] Cleaned up %d orphaned Operation record(s): %s", len(deleted), ", ".join(deleted))
            self.bus.publish(OrphanRecordsCleaned, names=deleted)
        return deleted
