"""Kubernetes Core API wrapper for namespace discovery."""

from __future__ import annotations

import structlog
from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from kubepick.clients import KubeconfigSource, load_k8s_api_client

log = structlog.get_logger()

REQUEST_TIMEOUT_SECONDS = 5


class K8sCoreClient:
    """Wrapper around the Kubernetes Core V1 API, bound to one context of one kubeconfig."""

    def __init__(self, kubeconfig: KubeconfigSource, context: str) -> None:
        self._kubeconfig = kubeconfig
        self._context = context
        self._api: k8s_client.CoreV1Api | None = None

    def _get_api(self) -> k8s_client.CoreV1Api:
        if self._api is None:
            api_client = load_k8s_api_client(self._kubeconfig, self._context)
            self._api = k8s_client.CoreV1Api(api_client)
        return self._api

    def list_namespaces(self) -> list[str]:
        """Names of all namespaces visible to the context's user, sorted."""
        api = self._get_api()
        try:
            namespace_list = api.list_namespace(_request_timeout=REQUEST_TIMEOUT_SECONDS)
        except Exception:
            log.error("failed_to_list_namespaces", context=self._context)
            raise
        return sorted(ns.metadata.name for ns in namespace_list.items if ns.metadata and ns.metadata.name)


def discover_namespaces(kubeconfig: KubeconfigSource, context: str) -> list[str] | None:
    """List namespaces for a context, or None when the cluster cannot be asked.

    Unreachable clusters, missing permissions and unusable credentials all mean
    "discovery unavailable"; the caller then accepts namespace names verbatim.
    """
    try:
        return K8sCoreClient(kubeconfig, context).list_namespaces()
    except (ApiException, ConfigException, HTTPError, OSError) as e:
        log.warning("namespace_discovery_unavailable", context=context, error=str(e))
        return None
