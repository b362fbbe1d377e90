# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/health/evaluator.py
"""
Threshold evaluation over a health snapshot.

Snapshot layout (as written by the metrics collector)::

    {
      "pod_metrics":     {"crashing_percent", "pending_percent", "restart_percent", "total_restarts"},
      "node_metrics":    {"not_ready_percent"},
      "container_stats": {"crash_loop_percent"},
      "serviceHealth":   {"healthy": bool},
      "resource_usage":  {"cpu_usage_percent", "memory_usage_percent"}
    }

Thresholds document::

    {"thresholds": {"crashing_pods_percent": 10.0, ...}}
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from opsentry.errors import ValidationError

log = logging.getLogger("opsentry")

SECTION_POD = "pod_metrics"
SECTION_NODE = "node_metrics"
SECTION_CONTAINER = "container_stats"
SECTION_SERVICE_HEALTH = "serviceHealth"
SECTION_RESOURCE = "resource_usage"

REQUIRED_SECTIONS = (
    (SECTION_POD, "pod metrics"),
    (SECTION_NODE, "node metrics"),
    (SECTION_CONTAINER, "container stats"),
    (SECTION_SERVICE_HEALTH, "service health"),
    (SECTION_RESOURCE, "resource usage"),
)

SERVICE_HEALTH_METRIC = "service_health"
SERVICE_HEALTH_REASON = "service_health_false"


@dataclass(frozen=True)
class MetricCheck:
    section: str
    field: str           # key inside the snapshot section
    threshold_key: str   # key inside the thresholds map
    reason: str


# Report order: service health first, then node, container, pod, resource usage.
CHECKS: Tuple[MetricCheck, ...] = (
    MetricCheck(SECTION_NODE, "not_ready_percent", "not_ready_nodes_percent", "not_ready_nodes_threshold_exceeded"),
    MetricCheck(SECTION_CONTAINER, "crash_loop_percent", "crash_loop_percent", "crash_loop_threshold_exceeded"),
    MetricCheck(SECTION_POD, "crashing_percent", "crashing_pods_percent", "crashing_pods_threshold_exceeded"),
    MetricCheck(SECTION_POD, "restart_percent", "restart_percent", "restart_percent_exceeded"),
    MetricCheck(SECTION_POD, "total_restarts", "restart_count", "restart_count_threshold_exceeded"),
    MetricCheck(SECTION_POD, "pending_percent", "pending_pods_percent", "pending_pods_threshold_exceeded"),
    MetricCheck(SECTION_RESOURCE, "cpu_usage_percent", "cpu_usage_percent", "cpu_usage_threshold_exceeded"),
    MetricCheck(SECTION_RESOURCE, "memory_usage_percent", "memory_usage_percent", "memory_usage_threshold_exceeded"),
)

THRESHOLD_KEYS = frozenset([c.threshold_key for c in CHECKS] + [SERVICE_HEALTH_METRIC])


@dataclass(frozen=True)
class ThresholdViolation:
    metric: str
    current: float
    threshold: float
    reason: str


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _section(snapshot: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
    value = snapshot.get(key)
    return value if isinstance(value, Mapping) else None


def validate_inputs(snapshot: Any, thresholds: Any) -> Tuple[Dict[str, Mapping[str, Any]], Dict[str, float]]:
    """
    Return (sections, threshold map) or raise ValidationError naming the
    first missing or malformed piece.
    """
    if not isinstance(snapshot, Mapping):
        raise ValidationError("snapshot is not a JSON object")
    if not isinstance(thresholds, Mapping):
        raise ValidationError("thresholds document is not a JSON object")

    sections: Dict[str, Mapping[str, Any]] = {}
    for key, label in REQUIRED_SECTIONS:
        section = _section(snapshot, key)
        if section is None:
            raise ValidationError(f"no {label} found")
        sections[key] = section

    raw = thresholds.get("thresholds")
    if not isinstance(raw, Mapping):
        raise ValidationError("no thresholds found")

    limits: Dict[str, float] = {}
    for key, value in raw.items():
        if key not in THRESHOLD_KEYS:
            log.debug("[monitor] ignoring unrecognised threshold %r", key)
            continue
        if key == SERVICE_HEALTH_METRIC:
            # evaluated unconditionally; any configured value is ignored
            continue
        if not _is_number(value):
            raise ValidationError(f"threshold {key!r} is not numeric: {value!r}")
        limits[key] = float(value)
    return sections, limits


def evaluate(snapshot: Mapping[str, Any], thresholds: Mapping[str, Any]) -> List[ThresholdViolation]:
    """
    Compare a snapshot to the configured thresholds.

    A metric at or above its threshold is a violation. Thresholds with no
    matching snapshot field are skipped. ``serviceHealth.healthy == False``
    is always a violation. Pure: same inputs, same ordered output.
    """
    sections, limits = validate_inputs(snapshot, thresholds)
    violations: List[ThresholdViolation] = []

    healthy = sections[SECTION_SERVICE_HEALTH].get("healthy")
    if healthy is False:
        violations.append(ThresholdViolation(
            metric=SERVICE_HEALTH_METRIC,
            current=0.0,
            threshold=1.0,
            reason=SERVICE_HEALTH_REASON,
        ))

    for check in CHECKS:
        if check.threshold_key not in limits:
            continue
        current = sections[check.section].get(check.field)
        if not _is_number(current):
            continue
        threshold = limits[check.threshold_key]
        if current >= threshold:
            violations.append(ThresholdViolation(
                metric=check.threshold_key,
                current=float(current),
                threshold=threshold,
                reason=check.reason,
            ))

    return violations


def abort_reason(violations: List[ThresholdViolation]) -> str:
    """Single reason string for the abort request, encoding the count."""
    return f"multiple_threshold_violations_{len(violations)}"


def format_violations(violations: List[ThresholdViolation]) -> List[str]:
    lines = [f"=== THRESHOLD VIOLATIONS DETECTED ({len(violations)}) ==="]
    for i, v in enumerate(violations, start=1):
        lines.append(
            f"{i}. {v.metric}: current={v.current:.2f}, threshold={v.threshold:.2f} (reason: {v.reason})"
        )
    return lines


def report_violations(name: str, violations: List[ThresholdViolation]) -> None:
    for line in format_violations(violations):
        log.warning("[monitor] %s: %s", name, line)
