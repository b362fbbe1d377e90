# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/health/dispatcher.py
from __future__ import annotations

import logging
import threading
from typing import Iterator, List, Optional

from opsentry.records.models import EVENT_ADDED, EVENT_DELETED, EVENT_MODIFIED, OperationRecord, RecordEvent
from opsentry.records.store import RecordStore
from opsentry.utils.watch import run_watch
from .monitor import MonitorRegistry
from .snapshot import SnapshotStore

log = logging.getLogger("opsentry")


class HealthDispatcher:
    """
    Keeps the monitor set in step with the Operation records: a monitor per
    created record, cancelled on delete, woken on every snapshot update.
    """

    def __init__(
        self,
        records: RecordStore,
        snapshots: SnapshotStore,
        registry: MonitorRegistry,
        *,
        label_selector: str = "",
        retry_delay: float = 5.0,
    ):
        self.records = records
        self.snapshots = snapshots
        self.registry = registry
        self.label_selector = label_selector
        self.retry_delay = retry_delay
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def handle_record_event(self, event: RecordEvent) -> None:
        name = event.record.name
        if event.type in (EVENT_ADDED, EVENT_MODIFIED):
            if self.registry.start(name):
                log.info("[monitor] Operation record observed: %s, starting monitor", name)
        elif event.type == EVENT_DELETED:
            log.info("[monitor] Operation record deleted: %s", name)
            self.registry.stop(name)

    def resync(self, records: List[OperationRecord]) -> None:
        """
        Align the monitor set with the records that exist after a (re)connect.
        Deletes missed while the watch was down end their monitors here.
        """
        present = {r.name for r in records}
        for name in self.registry.names():
            if name not in present:
                log.info("[monitor] Operation record %s no longer exists, stopping monitor", name)
                self.registry.stop(name)
        for name in sorted(present):
            if self.registry.start(name):
                log.info("[monitor] Operation record observed: %s, starting monitor", name)

    def handle_snapshot_update(self, _item: Optional[object] = None) -> None:
        woken = self.registry.notify_all()
        log.debug("[snapshots] metrics updated, signalled %d monitor(s)", woken)

    def _record_stream(self, stop: threading.Event) -> Iterator[RecordEvent]:
        return self.records.watch(stop, label_selector=self.label_selector, resync=self.resync)

    def start(self) -> None:
        self._stop.clear()
        specs = (
            ("records", self._record_stream, self.handle_record_event),
            ("snapshots", self.snapshots.watch_updates, self.handle_snapshot_update),
        )
        for label, stream, handle in specs:
            t = threading.Thread(
                target=run_watch,
                args=(label, stream, handle, self._stop, self.retry_delay),
                name=f"watch-{label}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)

    def stop(self, join_timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        self.registry.stop_all(join_timeout)
        for t in self._threads:
            t.join(join_timeout)
        self._threads.clear()
