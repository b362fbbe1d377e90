# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/oracle/aks.py
from __future__ import annotations

import logging
from typing import Any, Optional

from azure.core.exceptions import AzureError, HttpResponseError
from azure.identity import DefaultAzureCredential
from azure.mgmt.containerservice import ContainerServiceClient

from opsentry.config.models import AzureIdentity, OracleSettings
from opsentry.errors import TooLateError, TransientError
from .classify import OperationClassifier
from .models import AgentPoolView, ClusterView, OperationStatus

log = logging.getLogger("opsentry")


def _is_conflict(exc: Exception) -> bool:
    if getattr(exc, "status_code", None) == 409:
        return True
    text = str(exc)
    return "409" in text or "Conflict" in text


def cluster_view(cluster: Any) -> ClusterView:
    """Project an SDK ManagedCluster onto the fields the classifier reads."""
    pools = tuple(
        AgentPoolView(
            name=p.name,
            provisioning_state=getattr(p, "provisioning_state", None),
            orchestrator_version=getattr(p, "orchestrator_version", None),
            current_orchestrator_version=getattr(p, "current_orchestrator_version", None),
            count=getattr(p, "count", None),
        )
        for p in (getattr(cluster, "agent_pool_profiles", None) or [])
    )
    addons = {
        name: bool(getattr(profile, "enabled", False))
        for name, profile in (getattr(cluster, "addon_profiles", None) or {}).items()
    }
    return ClusterView(
        provisioning_state=getattr(cluster, "provisioning_state", None),
        kubernetes_version=getattr(cluster, "kubernetes_version", None),
        current_kubernetes_version=getattr(cluster, "current_kubernetes_version", None),
        agent_pools=pools,
        addons=addons,
    )


class AksOracle:
    """
    Status oracle backed by the AKS management API.

    Every call carries explicit connection/read timeouts; the abort waits on
    the long-running-operation poller for at most ``abort_timeout_s``.
    """

    def __init__(
        self,
        identity: AzureIdentity,
        settings: Optional[OracleSettings] = None,
        *,
        client: Any = None,
        credential: Any = None,
    ):
        self.identity = identity
        self.settings = settings or OracleSettings()
        if client is None:
            credential = credential or DefaultAzureCredential()
            client = ContainerServiceClient(credential, identity.subscription_id)
        self._client = client
        self._classifier = OperationClassifier(identity.cluster_name)

    def _call_kwargs(self) -> dict:
        return {
            "connection_timeout": self.settings.connect_timeout_s,
            "read_timeout": self.settings.timeout_s,
        }

    def _get_cluster(self) -> Any:
        try:
            return self._client.managed_clusters.get(
                self.identity.resource_group,
                self.identity.cluster_name,
                **self._call_kwargs(),
            )
        except AzureError as exc:
            raise TransientError(
                f"failed to get cluster {self.identity.resource_group}/{self.identity.cluster_name}: {exc}"
            ) from exc

    def get_operation_status(self) -> OperationStatus:
        cluster = self._get_cluster()
        status = self._classifier.classify(cluster_view(cluster))
        log.debug(
            "[oracle] %s: inProgress=%s status=%s type=%s",
            self.identity.cluster_name, status.in_progress, status.status, status.operation_type,
        )
        return status

    def abort(self, reason: str) -> None:
        """
        Abort the latest operation and block until the abort is terminal.

        Raises TooLateError on 409 (the operation finished first) and
        TransientError on any other failure or when the abort does not
        finish within ``abort_timeout_s``.
        """
        rg, name = self.identity.resource_group, self.identity.cluster_name
        log.info("[oracle] requesting abort of latest operation on %s/%s (reason=%s)", rg, name, reason)
        try:
            poller = self._client.managed_clusters.begin_abort_latest_operation(
                rg, name, **self._call_kwargs()
            )
            poller.result(timeout=self.settings.abort_timeout_s)
        except HttpResponseError as exc:
            if _is_conflict(exc):
                raise TooLateError(
                    f"operation on {name} completed before abort could take effect: {exc}"
                ) from exc
            raise TransientError(f"abort of {name} failed: {exc}") from exc
        except AzureError as exc:
            raise TransientError(f"abort of {name} failed: {exc}") from exc

        if not poller.done():
            raise TransientError(
                f"abort of {name} did not finish within {self.settings.abort_timeout_s:.0f}s"
            )

    def test_connection(self) -> None:
        self._get_cluster()

    def get_admin_kubeconfig(self) -> str:
        rg, name = self.identity.resource_group, self.identity.cluster_name
        try:
            resp = self._client.managed_clusters.list_cluster_admin_credentials(
                rg, name, **self._call_kwargs()
            )
        except AzureError as exc:
            raise TransientError(f"failed to get admin credentials for {name}: {exc}") from exc

        kubeconfigs = getattr(resp, "kubeconfigs", None) or []
        if not kubeconfigs:
            raise TransientError(f"no kubeconfigs returned for cluster {name}")
        value = kubeconfigs[0].value
        return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)
