"""Kubernetes API client construction."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from kubernetes import client as k8s_client
from kubernetes.config import new_client_from_config, new_client_from_config_dict

# A kubeconfig file on disk, or a kubeconfig document already in memory.
KubeconfigSource = Path | dict[str, Any]


def load_k8s_api_client(kubeconfig: KubeconfigSource, context: str) -> k8s_client.ApiClient:
    """Create an isolated Kubernetes API client for one context of one kubeconfig.

    Uses new_client_from_config(_dict) so the global SDK configuration is never touched.
    """
    if isinstance(kubeconfig, dict):
        return new_client_from_config_dict(config_dict=kubeconfig, context=context)
    return new_client_from_config(config_file=str(kubeconfig), context=context)
