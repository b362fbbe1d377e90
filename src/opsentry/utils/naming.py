# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/utils/naming.py
from __future__ import annotations

# RFC 1123 label limit enforced by the Kubernetes API server
MAX_NAME_LENGTH = 63
NAME_PREFIX = "op"


def normalize(value: str) -> str:
    """Lower-case and replace '.', '_' and spaces with '-'."""
    out = value.strip().lower()
    for ch in (".", "_", " "):
        out = out.replace(ch, "-")
    return out


def operation_record_name(cluster_name: str, discriminator: str) -> str:
    """
    Deterministic record name: ``op-<cluster>-<status>``.

    Truncated to the naming limit; a trailing '-' left by truncation is
    dropped so the result stays a valid name.
    """
    name = f"{NAME_PREFIX}-{normalize(cluster_name)}-{normalize(discriminator)}"
    return name[:MAX_NAME_LENGTH].rstrip("-")
