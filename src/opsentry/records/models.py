# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/records/models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

GROUP = "opsentry.io"
VERSION = "v1"
KIND = "Operation"
PLURAL = "operations"
API_VERSION = f"{GROUP}/{VERSION}"

LABEL_CLUSTER = "opsentry.io/cluster-name"
LABEL_RESOURCE_GROUP = "opsentry.io/resource-group"
LABEL_STATUS = "opsentry.io/operation-status"
ANNOTATION_STARTED = "opsentry.io/operation-started"
ANNOTATION_OPERATION_ID = "opsentry.io/operation-id"

PHASE_RUNNING = "Running"


def rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class OperationSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cluster_name: str = Field(alias="clusterName")
    resource_group: str = Field(alias="resourceGroup")
    operation_type: str = Field(default="", alias="operationType")
    operation_status: str = Field(alias="operationStatus")
    in_progress: bool = Field(alias="inProgress")


class OperationRecordStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phase: str = PHASE_RUNNING
    last_checked: Optional[str] = Field(default=None, alias="lastChecked")


class OperationRecord(BaseModel):
    """Typed projection of the Operation custom resource."""

    name: str
    namespace: str = "default"
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    spec: OperationSpec
    status: OperationRecordStatus = Field(default_factory=OperationRecordStatus)
    resource_version: Optional[str] = None

    def to_manifest(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
        }
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": metadata,
            "spec": self.spec.model_dump(by_alias=True),
            "status": self.status.model_dump(by_alias=True, exclude_none=True),
        }

    @classmethod
    def from_manifest(cls, obj: Dict[str, Any]) -> "OperationRecord":
        meta = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            name=meta["name"],
            namespace=meta.get("namespace") or "default",
            labels=meta.get("labels") or {},
            annotations=meta.get("annotations") or {},
            # records created by hand may carry a partial spec
            spec=OperationSpec.model_validate({
                "clusterName": spec.get("clusterName", ""),
                "resourceGroup": spec.get("resourceGroup", ""),
                "operationType": spec.get("operationType", ""),
                "operationStatus": spec.get("operationStatus", ""),
                "inProgress": bool(spec.get("inProgress", False)),
            }),
            status=OperationRecordStatus.model_validate(obj.get("status") or {}),
            resource_version=meta.get("resourceVersion"),
        )


EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"


@dataclass(frozen=True)
class RecordEvent:
    type: str         # ADDED | MODIFIED | DELETED
    record: OperationRecord
