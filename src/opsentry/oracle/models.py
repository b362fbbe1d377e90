# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/oracle/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, Tuple


UNKNOWN_STATUS = "Unknown"

ACTIVE_STATES = frozenset(
    s.lower()
    for s in ("Upgrading", "Updating", "Scaling", "Creating", "Deleting", "Running", "InProgress")
)
TERMINAL_STATES = frozenset(s.lower() for s in ("Succeeded", "Failed", "Canceled"))

# Operation types, best effort
TYPE_UPGRADE = "upgrade"
TYPE_NODE_POOL_SCALE = "node-pool-scale"
TYPE_ADDON_UPDATE = "addon-update"
TYPE_UPDATE = "update"


@dataclass(frozen=True)
class OperationStatus:
    """Normalized view of what the control plane is doing right now.

    Rebuilt on every oracle query, never persisted.
    """
    in_progress: bool
    operation_type: str
    status: str
    operation_id: str = ""


@dataclass(frozen=True)
class AgentPoolView:
    name: str
    provisioning_state: Optional[str] = None
    orchestrator_version: Optional[str] = None
    current_orchestrator_version: Optional[str] = None
    count: Optional[int] = None


@dataclass(frozen=True)
class ClusterView:
    """The subset of the managed-cluster resource the classifier reads."""
    provisioning_state: Optional[str] = None
    kubernetes_version: Optional[str] = None
    current_kubernetes_version: Optional[str] = None
    agent_pools: Tuple[AgentPoolView, ...] = ()
    # add-on name -> enabled
    addons: Dict[str, bool] = field(default_factory=dict)


class StatusOracle(Protocol):
    """Capability set of the external control plane."""

    def get_operation_status(self) -> OperationStatus: ...

    def abort(self, reason: str) -> None: ...

    def test_connection(self) -> None: ...

    def get_admin_kubeconfig(self) -> str: ...
