# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/records/store.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from opsentry.errors import ConflictError, TransientError
from opsentry.kube.clients import unreachable
from .models import GROUP, PLURAL, VERSION, OperationRecord, RecordEvent

log = logging.getLogger("opsentry")

Resync = Callable[[List[OperationRecord]], None]


class RecordStore(Protocol):
    def get(self, name: str) -> Optional[OperationRecord]: ...

    def create(self, record: OperationRecord) -> OperationRecord: ...

    def delete(self, record: OperationRecord) -> None: ...

    def list(self, label_selector: str = "") -> List[OperationRecord]: ...

    def watch(
        self,
        stop: threading.Event,
        label_selector: str = "",
        resync: Optional[Resync] = None,
    ) -> Iterator[RecordEvent]: ...



class KubernetesRecordStore:
    """
    Operation records stored as namespaced custom objects.

    409 on create and 404 on delete become ConflictError; every other API
    or connection failure becomes TransientError.
    """

    def __init__(
        self,
        api_client: Any = None,
        *,
        namespace: str = "default",
        custom_api: Any = None,
        request_timeout: float = 30.0,
        watch_timeout_s: int = 300,
    ):
        self.namespace = namespace
        self.request_timeout = request_timeout
        self.watch_timeout_s = watch_timeout_s
        self._api = custom_api or client.CustomObjectsApi(api_client)

    def get(self, name: str) -> Optional[OperationRecord]:
        try:
            with unreachable(f"get Operation {name}"):
                obj = self._api.get_namespaced_custom_object(
                    GROUP, VERSION, self.namespace, PLURAL, name,
                    _request_timeout=self.request_timeout,
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise TransientError(f"get Operation {name} failed: {e.status} {e.reason}") from e
        return OperationRecord.from_manifest(obj)

    def create(self, record: OperationRecord) -> OperationRecord:
        body = record.to_manifest()
        body["metadata"]["namespace"] = self.namespace
        try:
            with unreachable(f"create Operation {record.name}"):
                obj = self._api.create_namespaced_custom_object(
                    GROUP, VERSION, self.namespace, PLURAL, body,
                    _request_timeout=self.request_timeout,
                )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(f"Operation {record.name} already exists") from e
            raise TransientError(f"create Operation {record.name} failed: {e.status} {e.reason}") from e
        return OperationRecord.from_manifest(obj)

    def delete(self, record: OperationRecord) -> None:
        try:
            with unreachable(f"delete Operation {record.name}"):
                self._api.delete_namespaced_custom_object(
                    GROUP, VERSION, self.namespace, PLURAL, record.name,
                    _request_timeout=self.request_timeout,
                )
        except ApiException as e:
            if e.status == 404:
                raise ConflictError(f"Operation {record.name} already deleted") from e
            raise TransientError(f"delete Operation {record.name} failed: {e.status} {e.reason}") from e

    def _list(self, label_selector: str) -> Dict[str, Any]:
        try:
            with unreachable("list Operations"):
                return self._api.list_namespaced_custom_object(
                    GROUP, VERSION, self.namespace, PLURAL,
                    label_selector=label_selector,
                    _request_timeout=self.request_timeout,
                )
        except ApiException as e:
            raise TransientError(f"list Operations failed: {e.status} {e.reason}") from e

    def list(self, label_selector: str = "") -> List[OperationRecord]:
        resp = self._list(label_selector)
        return [OperationRecord.from_manifest(item) for item in resp.get("items", [])]

    def watch(
        self,
        stop: threading.Event,
        label_selector: str = "",
        resync: Optional[Resync] = None,
    ) -> Iterator[RecordEvent]:
        """
        Yield record events until *stop* is set.

        Each (re)connect starts with a list: *resync* receives the records
        that exist right now and the watch resumes from the list's
        resourceVersion, so deletes that happened while disconnected are
        reflected by their absence. Server-side timeouts resume from the
        last seen resourceVersion; 410 Gone forces a fresh list.
        """
        resource_version: Optional[str] = None
        while not stop.is_set():
            if resource_version is None:
                resp = self._list(label_selector)
                resource_version = (resp.get("metadata") or {}).get("resourceVersion")
                if resync is not None:
                    resync([OperationRecord.from_manifest(item) for item in resp.get("items", [])])

            w = watch.Watch()
            kwargs: Dict[str, Any] = {
                "label_selector": label_selector,
                "timeout_seconds": self.watch_timeout_s,
            }
            if resource_version:
                kwargs["resource_version"] = resource_version
            try:
                with unreachable("watch Operations"):
                    for ev in w.stream(
                        self._api.list_namespaced_custom_object,
                        GROUP, VERSION, self.namespace, PLURAL,
                        **kwargs,
                    ):
                        if stop.is_set():
                            break
                        obj = ev.get("object")
                        if not isinstance(obj, dict) or ev.get("type") not in ("ADDED", "MODIFIED", "DELETED"):
                            continue
                        yield RecordEvent(type=ev["type"], record=OperationRecord.from_manifest(obj))
                resource_version = getattr(w, "resource_version", None) or resource_version
            except ApiException as e:
                if e.status == 410:
                    log.info("[records] watch resourceVersion expired, relisting Operation records")
                    resource_version = None
                    continue
                raise TransientError(f"watch Operations failed: {e.status} {e.reason}") from e
            finally:
                w.stop()
