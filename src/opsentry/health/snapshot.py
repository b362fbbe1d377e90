# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/health/snapshot.py
from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterator, Protocol

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from opsentry.config.models import HealthSettings
from opsentry.errors import TransientError, ValidationError
from opsentry.kube.clients import unreachable

log = logging.getLogger("opsentry")


class SnapshotStore(Protocol):
    def get_snapshot(self) -> Dict[str, Any]: ...

    def get_thresholds(self) -> Dict[str, Any]: ...

    def watch_updates(self, stop: threading.Event) -> Iterator[None]: ...


def _parse_json(raw: str, what: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"failed to parse {what}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"{what} is not a JSON object")
    return data


class ConfigMapSnapshotStore:
    """
    Health snapshot and thresholds held in ConfigMaps.

    The snapshot lives on the cluster the metrics collector writes to; the
    thresholds live on the monitoring cluster, so the two may use different
    API clients.
    """

    def __init__(
        self,
        metrics_api_client: Any = None,
        thresholds_api_client: Any = None,
        *,
        settings: HealthSettings | None = None,
        metrics_core_api: Any = None,
        thresholds_core_api: Any = None,
        request_timeout: float = 30.0,
    ):
        self.settings = settings or HealthSettings()
        self.request_timeout = request_timeout
        self._metrics_api = metrics_core_api or client.CoreV1Api(metrics_api_client)
        self._thresholds_api = thresholds_core_api or (
            client.CoreV1Api(thresholds_api_client) if thresholds_api_client is not None else self._metrics_api
        )

    def _read_key(self, api: Any, name: str, key: str) -> str:
        ns = self.settings.namespace
        try:
            with unreachable(f"fetch ConfigMap {ns}/{name}"):
                cm = api.read_namespaced_config_map(name, ns, _request_timeout=self.request_timeout)
        except ApiException as e:
            if e.status == 404:
                raise ValidationError(f"ConfigMap {ns}/{name} not found") from e
            raise TransientError(f"failed to fetch ConfigMap {ns}/{name}: {e.status} {e.reason}") from e

        raw = (cm.data or {}).get(key) or ""
        if not raw:
            raise ValidationError(f"{key} not found in ConfigMap {name}")
        return raw

    def get_snapshot(self) -> Dict[str, Any]:
        s = self.settings
        return _parse_json(self._read_key(self._metrics_api, s.metrics_configmap, s.metrics_key), s.metrics_key)

    def get_thresholds(self) -> Dict[str, Any]:
        s = self.settings
        return _parse_json(
            self._read_key(self._thresholds_api, s.thresholds_configmap, s.thresholds_key),
            s.thresholds_key,
        )

    def watch_updates(self, stop: threading.Event) -> Iterator[None]:
        """Yield once per modification of the metrics ConfigMap until *stop* is set."""
        s = self.settings
        selector = f"metadata.name={s.metrics_configmap}"
        while not stop.is_set():
            w = watch.Watch()
            try:
                with unreachable(f"watch ConfigMap {s.metrics_configmap}"):
                    for ev in w.stream(
                        self._metrics_api.list_namespaced_config_map,
                        s.namespace,
                        field_selector=selector,
                        timeout_seconds=s.watch_timeout_s,
                    ):
                        if stop.is_set():
                            break
                        if ev.get("type") == "MODIFIED":
                            yield None
            except ApiException as e:
                raise TransientError(f"watch ConfigMap {s.metrics_configmap} failed: {e.status} {e.reason}") from e
            finally:
                w.stop()
