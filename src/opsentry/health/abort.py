# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/health/abort.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from opsentry.errors import TooLateError
from opsentry.observers.dispatcher import EventBus
from opsentry.observers.events import AbortFailed, AbortRequested, AbortSucceeded, AbortTooLate
from opsentry.oracle.models import StatusOracle

log = logging.getLogger("opsentry")


class AbortOutcome(str, Enum):
    ABORTED = "ABORTED"
    TOO_LATE = "TOO_LATE"
    FAILED = "FAILED"


class AbortGateway:
    """
    Issues the abort and classifies the result. Never retries: once an abort
    was attempted the operation is expected to end and be reconciled away.
    """

    def __init__(self, oracle: StatusOracle, bus: Optional[EventBus] = None):
        self.oracle = oracle
        self.bus = bus or EventBus()

    def abort(self, name: str, reason: str) -> AbortOutcome:
        log.warning("[abort] unhealthy metrics detected for operation %s, aborting (reason=%s)", name, reason)
        self.bus.publish(AbortRequested, name=name, reason=reason)
        try:
            self.oracle.abort(reason)
        except TooLateError as exc:
            log.info("[abort] %s: operation finished before the abort applied: %s", name, exc)
            self.bus.publish(AbortTooLate, name=name, error=str(exc))
            return AbortOutcome.TOO_LATE
        except Exception as exc:
            log.error("[abort] %s: failed to abort operation: %s", name, exc)
            self.bus.publish(AbortFailed, name=name, error=str(exc))
            return AbortOutcome.FAILED

        log.info("[abort] %s: abort completed", name)
        self.bus.publish(AbortSucceeded, name=name)
        return AbortOutcome.ABORTED
