# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/controller/poller.py
from __future__ import annotations

import logging
import threading
from typing import List, Optional

from opsentry.errors import TransientError
from opsentry.utils.watch import run_watch
from opsentry.records.models import RecordEvent
from opsentry.records.store import RecordStore
from opsentry.utils.retry import RetryError
from .reconciler import OperationReconciler, ReconcileResult

log = logging.getLogger("opsentry")


class ReconcileQueue:
    """Pending reconcile requests by name; a name queued twice runs once."""

    def __init__(self):
        self._cond = threading.Condition()
        self._pending: List[str] = []

    def put(self, name: str) -> None:
        with self._cond:
            if name not in self._pending:
                self._pending.append(name)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        with self._cond:
            self._cond.wait_for(lambda: bool(self._pending), timeout)
            return self._pending.pop(0) if self._pending else None

    def __len__(self) -> int:
        with self._cond:
            return len(self._pending)


class OperationPoller:
    """
    Drives the reconciler: a fixed-interval poll plus reconcile requests
    triggered by record events. Both paths call ``reconcile``.
    """

    def __init__(
        self,
        reconciler: OperationReconciler,
        records: Optional[RecordStore] = None,
        *,
        retry_delay: float = 5.0,
    ):
        self.reconciler = reconciler
        self.records = records
        self.retry_delay = retry_delay
        self.queue = ReconcileQueue()
        self.cycles = 0
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def poll_once(self) -> ReconcileResult:
        result = self.reconciler.reconcile()
        self.cycles += 1
        if not result.ok:
            log.error("[reconciler] poll cycle %d failed: %s", self.cycles, result.error)
        elif self.cycles % self.reconciler.settings.cleanup_every_cycles == 0:
            try:
                self.reconciler.cleanup_orphans()
            except (TransientError, RetryError) as exc:
                log.error("[reconciler] periodic orphan cleanup failed: %s", exc)
        return result

    def run(self, stop: threading.Event) -> None:
        log.info("[reconciler] Starting operation polling every %.0fs", self.reconciler.requeue_after)
        while not stop.is_set():
            try:
                requeue = self.poll_once().requeue_after
            except Exception as exc:
                log.exception("[reconciler] poll cycle raised, retrying next interval: %s", exc)
                requeue = self.reconciler.requeue_after
            if stop.wait(requeue):
                break
        log.info("[reconciler] Stopping operation polling")

    def request(self, name: str) -> None:
        self.queue.put(name)

    def handle_record_event(self, event: RecordEvent) -> None:
        log.debug("[reconciler] %s event for Operation record '%s'", event.type, event.record.name)
        self.request(event.record.name)

    def serve_requests(self, stop: threading.Event) -> None:
        while not stop.is_set():
            name = self.queue.get(timeout=1.0)
            if name is None:
                continue
            try:
                result = self.reconciler.reconcile(name)
            except Exception as exc:
                log.exception("[reconciler] triggered reconcile for '%s' raised: %s", name, exc)
                continue
            if not result.ok:
                log.error("[reconciler] triggered reconcile for '%s' failed: %s", name, result.error)

    def _record_stream(self, stop: threading.Event):
        return self.records.watch(stop, label_selector=self.reconciler.label_selector)

    def start(self) -> None:
        self._stop.clear()
        targets = [
            ("poll", self.run, (self._stop,)),
            ("reconcile-requests", self.serve_requests, (self._stop,)),
        ]
        if self.records is not None:
            targets.append((
                "reconcile-watch",
                run_watch,
                ("records", self._record_stream, self.handle_record_event, self._stop, self.retry_delay),
            ))
        for label, target, args in targets:
            t = threading.Thread(target=target, args=args, name=label, daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self, join_timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(join_timeout)
        self._threads.clear()
