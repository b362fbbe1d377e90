# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/utils/watch.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator

log = logging.getLogger("opsentry")


def run_watch(
    label: str,
    stream: Callable[[threading.Event], Iterator],
    handle: Callable,
    stop: threading.Event,
    retry_delay: float,
) -> None:
    """
    Drive a watch stream until *stop* is set, re-opening it after failures.
    Handler failures are logged and do not end the watch.
    """
    while not stop.is_set():
        try:
            for item in stream(stop):
                if stop.is_set():
                    return
                try:
                    handle(item)
                except Exception as exc:
                    log.error("[%s] handler failed: %s", label, exc)
        except Exception as exc:
            log.warning("[%s] watch interrupted: %s; reconnecting in %.0fs", label, exc, retry_delay)
            stop.wait(retry_delay)
