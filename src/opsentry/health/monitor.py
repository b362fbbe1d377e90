# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/health/monitor.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from opsentry.errors import TransientError, ValidationError
from opsentry.observers.dispatcher import EventBus
from opsentry.observers.events import (
    HealthCheckSkipped,
    MonitorStarted,
    MonitorStopped,
    ThresholdViolationsDetected,
)
from .abort import AbortGateway
from .evaluator import abort_reason, evaluate, report_violations
from .snapshot import SnapshotStore

log = logging.getLogger("opsentry")


class CoalescingSignal:
    """
    Wake-up signal holding at most one pending notification.

    ``notify`` never blocks and repeated calls collapse into one wake-up.
    ``close`` is the cancellation primitive; it is idempotent and wins over
    a pending notification.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pending = False
        self._closed = False

    def notify(self) -> None:
        with self._cond:
            self._pending = True
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until notified or closed. True means "re-evaluate", False
        means closed (or timed out with nothing pending).
        """
        with self._cond:
            self._cond.wait_for(lambda: self._pending or self._closed, timeout)
            if self._closed:
                return False
            fired = self._pending
            self._pending = False
            return fired


class OperationMonitor:
    """Watches one operation's health until it ends or is aborted."""

    def __init__(
        self,
        name: str,
        snapshots: SnapshotStore,
        gateway: AbortGateway,
        bus: Optional[EventBus] = None,
        *,
        evaluate_fn: Callable = evaluate,
    ):
        self.name = name
        self.snapshots = snapshots
        self.gateway = gateway
        self.bus = bus or EventBus()
        self.signal = CoalescingSignal()
        self.evaluations = 0
        self.aborted = False
        self._evaluate = evaluate_fn
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name=f"monitor-{self.name}", daemon=True)
        self._thread.start()

    def notify(self) -> None:
        self.signal.notify()

    def cancel(self) -> None:
        self.signal.close()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        log.info("[monitor] started monitoring operation %s", self.name)
        self.bus.publish(MonitorStarted, name=self.name)

        # an operation may already be unhealthy when monitoring starts
        if self.check():
            self._stopped("aborted")
            return

        while self.signal.wait():
            if self.check():
                self._stopped("aborted")
                return

        log.info("[monitor] %s: stop signal received, monitoring ended", self.name)
        self._stopped("cancelled")

    def _stopped(self, reason: str) -> None:
        self.bus.publish(MonitorStopped, name=self.name, reason=reason)

    def check(self) -> bool:
        """Evaluate once. True when an abort was issued and monitoring must end."""
        self.evaluations += 1
        try:
            snapshot = self.snapshots.get_snapshot()
            thresholds = self.snapshots.get_thresholds()
            violations = self._evaluate(snapshot, thresholds)
        except ValidationError as exc:
            log.warning("[monitor] %s: metrics validation failed, health unknown: %s", self.name, exc)
            self.bus.publish(HealthCheckSkipped, name=self.name, error=str(exc))
            return False
        except TransientError as exc:
            log.warning("[monitor] %s: failed to read health snapshot: %s", self.name, exc)
            self.bus.publish(HealthCheckSkipped, name=self.name, error=str(exc))
            return False
        except Exception as exc:
            # health unknown; keep the monitor alive for the next update
            log.exception("[monitor] %s: unexpected error during health check: %s", self.name, exc)
            self.bus.publish(HealthCheckSkipped, name=self.name, error=f"{exc.__class__.__name__}: {exc}")
            return False

        if not violations:
            log.debug("[monitor] %s: all metrics healthy", self.name)
            return False

        report_violations(self.name, violations)
        self.bus.publish(
            ThresholdViolationsDetected,
            name=self.name,
            count=len(violations),
            metrics=[v.metric for v in violations],
        )
        self.gateway.abort(self.name, abort_reason(violations))
        self.aborted = True
        return True


MonitorFactory = Callable[[str], OperationMonitor]


class MonitorRegistry:
    """
    Live monitors by operation record name, at most one per name.

    A monitor that ended after aborting stays registered until its record
    is deleted, so a repeated create notification cannot abort twice.
    """

    def __init__(self, factory: MonitorFactory):
        self._factory = factory
        self._lock = threading.Lock()
        self._monitors: Dict[str, OperationMonitor] = {}

    def start(self, name: str) -> bool:
        with self._lock:
            if name in self._monitors:
                log.debug("[monitor] monitoring already running for %s, skipping", name)
                return False
            monitor = self._factory(name)
            self._monitors[name] = monitor
        monitor.start()
        return True

    def stop(self, name: str) -> bool:
        with self._lock:
            monitor = self._monitors.pop(name, None)
        if monitor is None:
            return False
        monitor.cancel()
        log.info("[monitor] stopped monitoring for operation %s", name)
        return True

    def notify_all(self) -> int:
        with self._lock:
            monitors = list(self._monitors.values())
        for m in monitors:
            m.notify()
        return len(monitors)

    def stop_all(self, join_timeout: Optional[float] = None) -> None:
        with self._lock:
            monitors = list(self._monitors.values())
            self._monitors.clear()
        for m in monitors:
            m.cancel()
        for m in monitors:
            m.join(join_timeout)

    def get(self, name: str) -> Optional[OperationMonitor]:
        with self._lock:
            return self._monitors.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._monitors)

    def __len__(self) -> int:
        with self._lock:
            return len(self._monitors)
