"""kubepick: per-shell Kubernetes context and namespace sessions."""

__version__ = "0.1.0"
