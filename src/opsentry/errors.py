# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/errors.py


class OpsentryError(RuntimeError):
    """Base class for opsentry failures."""


class ConfigError(OpsentryError):
    """Required identity or settings are missing or invalid. Fatal at startup."""


class TransientError(OpsentryError):
    """Oracle, network or record-store failure. Retried on the next cycle."""


class ValidationError(OpsentryError):
    """Snapshot or threshold data is malformed or incomplete.

    Means "cannot determine health", never "healthy".
    """


class TooLateError(OpsentryError):
    """The operation finished before the abort could apply (HTTP 409)."""


class ConflictError(OpsentryError):
    """Duplicate create, or delete of an already absent record."""
