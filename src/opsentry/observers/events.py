# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one controller process
    cluster: str      # managed cluster being supervised
    context: Optional[str]  # record namespace

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(cluster: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": now_ts(),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
        "context": context,
    }


# ---------------------------------------------------------------------
# Reconciler lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class OperationObserved(BaseEvent):
    name: str
    status: str
    in_progress: bool
    operation_type: str

@dataclass(frozen=True)
class OperationRecordCreated(BaseEvent):
    name: str
    status: str

@dataclass(frozen=True)
class OperationRecordDeleted(BaseEvent):
    name: str
    reason: str       # "completed" | "orphan"

@dataclass(frozen=True)
class OrphanRecordsCleaned(BaseEvent):
    names: List[str]

@dataclass(frozen=True)
class ReconcileFailed(BaseEvent):
    name: Optional[str]
    error: str


# ---------------------------------------------------------------------
# Health monitor lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class MonitorStarted(BaseEvent):
    name: str

@dataclass(frozen=True)
class MonitorStopped(BaseEvent):
    name: str
    reason: str       # "cancelled" | "aborted"

@dataclass(frozen=True)
class HealthCheckSkipped(BaseEvent):
    name: str
    error: str

@dataclass(frozen=True)
class ThresholdViolationsDetected(BaseEvent):
    name: str
    count: int
    metrics: List[str]


# ---------------------------------------------------------------------
# Abort lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class AbortRequested(BaseEvent):
    name: str
    reason: str

@dataclass(frozen=True)
class AbortSucceeded(BaseEvent):
    name: str

@dataclass(frozen=True)
class AbortTooLate(BaseEvent):
    name: str
    error: str

@dataclass(frozen=True)
class AbortFailed(BaseEvent):
    name: str
    error: str
