# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/config/models.py

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class AzureIdentity(BaseModel):
    """Identity of the managed cluster being supervised."""

    subscription_id: str
    resource_group: str
    cluster_name: str

    model_config = {
        "extra": "forbid"
    }

    @field_validator("subscription_id", "resource_group", "cluster_name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class ReconcilerSettings(BaseModel):
    namespace: str = "default"
    requeue_interval_s: float = Field(default=30.0, gt=0)
    store_retries: int = Field(default=3, ge=1)
    store_retry_delay_s: float = Field(default=2.0, ge=0)
    # run orphan cleanup every N poll cycles
    cleanup_every_cycles: int = Field(default=10, ge=1)


class HealthSettings(BaseModel):
    namespace: str = "default"
    metrics_configmap: str = "metrics-store"
    metrics_key: str = "current_metrics.json"
    thresholds_configmap: str = "metric-thresholds"
    thresholds_key: str = "thresholds.json"
    watch_timeout_s: int = Field(default=300, gt=0)
    watch_retry_delay_s: float = Field(default=5.0, ge=0)


class OracleSettings(BaseModel):
    timeout_s: float = Field(default=30.0, gt=0)
    connect_timeout_s: float = Field(default=10.0, gt=0)
    abort_timeout_s: float = Field(default=600.0, gt=0)


class OpsentryConfig(BaseModel):
    azure: AzureIdentity
    reconciler: ReconcilerSettings = Field(default_factory=ReconcilerSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)

    model_config = {
        "extra": "forbid"
    }
