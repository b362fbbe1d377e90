# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/observers/jsonfile.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Iterable, Optional

from .events import BaseEvent
from .interface import Observer


class JsonFileObserver(Observer):
    """
    Appends lifecycle events as JSON lines: ``{"type": <kind>, "ts": ..., ...}``.

    *kinds* limits the file to the named event classes (e.g. only the abort
    trail). Monitors publish from their own threads, so writes are serialised.
    """

    def __init__(self, path: str | Path, kinds: Optional[Iterable[str]] = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.kinds = frozenset(kinds) if kinds else None
        self._lock = threading.Lock()

    def wants(self, event: BaseEvent) -> bool:
        return self.kinds is None or event.__class__.__name__ in self.kinds

    def notify(self, event: BaseEvent) -> None:
        if not self.wants(event):
            return
        line = json.dumps({"type": event.__class__.__name__, **event.dict()}, default=str)
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
