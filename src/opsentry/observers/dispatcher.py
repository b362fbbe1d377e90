# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/observers/dispatcher.py
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from .events import BaseEvent, new_ctx, now_ts

log = logging.getLogger("opsentry")


class EventBus:
    """
    Fan-out of lifecycle events to observers.

    The bus owns the run context (run_id/cluster/namespace) so emitters
    only pass the event-specific fields via ``publish``.
    """

    def __init__(self, observers: List = None, ctx: Optional[Dict[str, Any]] = None):
        self._observers = observers or []
        self._ctx = ctx or new_ctx(cluster="", context=None)
        self._lock = threading.Lock()

    @property
    def run_id(self) -> str:
        return self._ctx["run_id"]

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception as exc:
                    # observers must not break the controller
                    log.warning("[events] observer %s failed on %s: %s",
                                ob.__class__.__name__, event.__class__.__name__, exc)

    def publish(self, event_cls, **fields) -> None:
        ctx = dict(self._ctx, ts=now_ts())
        self.emit(event_cls(**ctx, **fields))
