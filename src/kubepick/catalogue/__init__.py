"""Kubeconfig discovery, parsing and merging."""

from __future__ import annotations

from kubepick.catalogue.loader import LoadMode, SourceRequest, load_sources
from kubepick.catalogue.merge import Catalogue, ResolvedContext, build_catalogue


def load_catalogue(request: SourceRequest, mode: LoadMode = LoadMode.AGGREGATE) -> Catalogue:
    """Discover, read and merge kubeconfig sources into a fresh catalogue."""
    return build_catalogue(load_sources(request, mode))


__all__ = ["Catalogue", "LoadMode", "ResolvedContext", "SourceRequest", "build_catalogue", "load_catalogue"]
