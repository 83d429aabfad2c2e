"""Friendly labels and cluster-type detection for provider-specific context names."""

from __future__ import annotations

import re

# arn:<partition>:eks:<region>:<account>:cluster/<name>
_EKS_ARN_RE = re.compile(r"^arn:(?P<partition>aws[\w-]*):eks:(?P<region>[\w-]+):\d*:cluster/(?P<name>.+)$")
# gke_<project>_<zone>_<cluster>
_GKE_RE = re.compile(r"^gke_(?P<project>[^_]+)_(?P<zone>[^_]+)_(?P<name>.+)$")
# <project>/<api-host>:<port>[/<user>]
_HOST_QUALIFIED_RE = re.compile(r"^(?P<project>[^/]+)/(?P<host>[^/:]+):(?P<port>\d+)(?:/(?P<user>.+))?$")


def friendly_label(context_name: str) -> str:
    """Collapse a long provider-specific context name into a short, readable label.

    ``arn:aws:eks:us-east-1:123456789012:cluster/prod`` becomes ``aws:us-east-1/prod``,
    ``gke_my-project_us-central1_dev`` becomes ``gcp:us-central1/dev`` and
    ``team/api.ocp.example.com:6443/kube:admin`` becomes ``team@ocp.example.com``
    (the trailing user segment is optional).
    Anything else is returned unchanged. Applying the transform to its own output
    returns that output.
    """
    match = _EKS_ARN_RE.match(context_name)
    if match:
        return f"aws:{match['region']}/{match['name']}"

    match = _GKE_RE.match(context_name)
    if match:
        return f"gcp:{match['zone']}/{match['name']}"

    match = _HOST_QUALIFIED_RE.match(context_name)
    if match:
        host = match["host"]
        for prefix in ("api.", "api-"):
            if host.startswith(prefix):
                host = host[len(prefix) :]
                break
        return f"{match['project']}@{host}"

    return context_name


def detect_cluster_type(context_name: str, server_url: str | None = None) -> str:
    """Guess the platform (eks, gke, ocp, aks, k8s) from the context name, then the server URL."""
    if context_name.startswith("arn:aws") and ":eks:" in context_name:
        return "eks"
    if context_name.startswith("gke_"):
        return "gke"
    if _HOST_QUALIFIED_RE.match(context_name) and "/api" in context_name:
        return "ocp"
    if context_name.startswith("aks-") or "azure" in context_name:
        return "aks"

    if server_url:
        if ".eks.amazonaws.com" in server_url:
            return "eks"
        if ".container.googleapis.com" in server_url or "gke.io" in server_url:
            return "gke"
        if ".azmk8s.io" in server_url or "azure" in server_url:
            return "aks"
        if ":6443" in server_url or "openshift" in server_url:
            return "ocp"
    return "k8s"
