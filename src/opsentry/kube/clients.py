# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/kube/clients.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from opsentry.errors import ConfigError, TransientError

log = logging.getLogger("opsentry")


@contextmanager
def unreachable(what: str) -> Iterator[None]:
    """Connection-level failures (timeouts, resets, refused) become TransientError."""
    try:
        yield
    except (HTTPError, OSError) as exc:
        raise TransientError(f"{what} failed: {exc.__class__.__name__}: {exc}") from exc


def local_api_client(kube_context: Optional[str] = None) -> client.ApiClient:
    """
    Client for the cluster opsentry runs on: in-cluster service account
    first, local kubeconfig otherwise.
    """
    if kube_context is None:
        try:
            cfg = client.Configuration()
            config.load_incluster_config(client_configuration=cfg)
            log.debug("[kube] using in-cluster configuration")
            return client.ApiClient(cfg)
        except ConfigException:
            log.debug("[kube] not running in-cluster, falling back to kubeconfig")
    try:
        return config.new_client_from_config(context=kube_context)
    except ConfigException as exc:
        raise ConfigError(f"no usable Kubernetes configuration: {exc}") from exc


def api_client_from_kubeconfig(kubeconfig: str) -> client.ApiClient:
    """Client built from kubeconfig text (the target cluster's admin credentials)."""
    try:
        data = yaml.safe_load(kubeconfig)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse kubeconfig: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("failed to parse kubeconfig: not a mapping")
    try:
        return config.new_client_from_config_dict(data)
    except ConfigException as exc:
        raise ConfigError(f"invalid kubeconfig: {exc}") from exc


def check_connection(api_client: Any, timeout: float = 10.0) -> int:
    """List namespaces as a connectivity probe. Returns the namespace count."""
    try:
        with unreachable("list namespaces"):
            resp = client.CoreV1Api(api_client).list_namespace(_request_timeout=timeout)
    except ApiException as e:
        raise TransientError(f"failed to list namespaces: {e.status} {e.reason}") from e
    return len(resp.items)
