# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/oracle/classify.py
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .models import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    TYPE_ADDON_UPDATE,
    TYPE_NODE_POOL_SCALE,
    TYPE_UPDATE,
    TYPE_UPGRADE,
    UNKNOWN_STATUS,
    ClusterView,
    OperationStatus,
)

log = logging.getLogger("opsentry")


def is_active_state(state: Optional[str]) -> bool:
    return bool(state) and state.lower() in ACTIVE_STATES


def is_known_state(state: Optional[str]) -> bool:
    if not state:
        return False
    s = state.lower()
    return s in ACTIVE_STATES or s in TERMINAL_STATES


def _version_changing(view: ClusterView) -> bool:
    if (
        view.kubernetes_version
        and view.current_kubernetes_version
        and view.kubernetes_version != view.current_kubernetes_version
    ):
        return True
    for pool in view.agent_pools:
        if (
            pool.orchestrator_version
            and pool.current_orchestrator_version
            and pool.orchestrator_version != pool.current_orchestrator_version
        ):
            return True
    return False


def _pool_active(view: ClusterView) -> bool:
    return any(is_active_state(p.provisioning_state) for p in view.agent_pools)


def _addons_changed(view: ClusterView, baseline: Optional[Dict[str, bool]]) -> bool:
    if baseline is None:
        return False
    return dict(view.addons) != dict(baseline)


def classify_operation_type(view: ClusterView, addon_baseline: Optional[Dict[str, bool]] = None) -> str:
    """
    Best-effort operation type, checked in order:
      version change -> upgrade
      any pool in an active state -> node-pool-scale
      add-on set differs from the last terminal baseline -> addon-update
      otherwise -> update
    """
    if _version_changing(view):
        return TYPE_UPGRADE
    if _pool_active(view):
        return TYPE_NODE_POOL_SCALE
    if _addons_changed(view, addon_baseline):
        return TYPE_ADDON_UPDATE
    return TYPE_UPDATE


class OperationClassifier:
    """
    Turns successive ClusterViews into OperationStatus values.

    Keeps two pieces of state between polls: the add-on baseline seen at the
    last terminal poll, and a generation counter bumped on every
    not-in-progress -> in-progress transition (used for operation ids).
    """

    def __init__(self, cluster_name: str):
        self.cluster_name = cluster_name
        self._lock = threading.Lock()
        self._addon_baseline: Optional[Dict[str, bool]] = None
        self._generation = 0
        self._was_in_progress = False

    @property
    def generation(self) -> int:
        return self._generation

    def classify(self, view: ClusterView) -> OperationStatus:
        state = view.provisioning_state
        if not state:
            with self._lock:
                self._was_in_progress = False
            return OperationStatus(
                in_progress=False,
                operation_type="",
                status=UNKNOWN_STATUS,
                operation_id="",
            )

        if not is_known_state(state):
            # fail-open: unknown states are treated as terminal
            log.warning("[oracle] unrecognised provisioning state %r for %s, treating as not in progress",
                        state, self.cluster_name)

        in_progress = is_active_state(state)

        with self._lock:
            if not in_progress:
                self._addon_baseline = dict(view.addons)
                self._was_in_progress = False
                return OperationStatus(
                    in_progress=False,
                    operation_type="",
                    status=state,
                    operation_id="",
                )

            if not self._was_in_progress:
                self._generation += 1
                self._was_in_progress = True

            op_type = classify_operation_type(view, self._addon_baseline)
            return OperationStatus(
                in_progress=True,
                operation_type=op_type,
                status=state,
                operation_id=f"{self.cluster_name}-{state}-{self._generation}",
            )
