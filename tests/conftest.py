"""Shared test fixtures: kubeconfig builders, isolated home/data directories, settings."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import structlog
import yaml

from kubepick.catalogue import Catalogue, LoadMode, SourceRequest, load_catalogue
from kubepick.config import EngineConfig, Settings

_ENV_VARS = (
    "KUBECONFIG",
    "KUBEPICK_CONTEXT",
    "KUBEPICK_NAMESPACE",
    "KUBEPICK_DEPTH",
    "KUBEPICK_CONFIG",
    "KUBEPICK_DATA_DIR",
    "KUBEPICK_LOCK_TIMEOUT",
    "KUBEPICK_HISTORY_LIMIT",
    "KUBEPICK_MAX_DEPTH",
    "KUBEPICK_GC_DAYS",
    "KUBEPICK_LOG_LEVEL",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "OC_NAMESPACE",
)


def make_kubeconfig(
    *names: str,
    server: str = "https://api.example.com:6443",
    namespace: str | None = None,
    current: str | None = None,
) -> dict[str, Any]:
    """Build a kubeconfig document with one cluster/user/context triple per name."""
    contexts = []
    for name in names:
        body: dict[str, Any] = {"cluster": f"{name}-cluster", "user": f"{name}-user"}
        if namespace:
            body["namespace"] = namespace
        contexts.append({"name": name, "context": body})
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {"name": f"{name}-cluster", "cluster": {"server": server, "certificate-authority-data": "Q0FEQVRB"}}
            for name in names
        ],
        "users": [{"name": f"{name}-user", "user": {"token": f"token-{name}"}} for name in names],
        "contexts": contexts,
        "current-context": current,
    }


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at an empty directory and clear every variable the engine reads."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture(autouse=True)
def reset_structlog():
    """The CLI binds structlog to the stream of one invocation; undo that after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def write_yaml(tmp_path: Path) -> Callable[[str, Any], Path]:
    """Factory writing a YAML document under tmp_path and returning its path."""

    def _write(relative: str, document: Any) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(document, sort_keys=False))
        return path

    return _write


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        lock_timeout=1.0,
        history_limit=50,
        max_depth=10,
        gc_days=30,
    )


@pytest.fixture
def sample_kubeconfig(write_yaml: Callable[[str, Any], Path]) -> Path:
    """A single file with the context names the matching rules are specified against."""
    return write_yaml(
        "kube/config",
        make_kubeconfig(
            "production-east",
            "production-west",
            "gke_myproject_us-east1_dev-cluster",
            "staging",
            current="staging",
        ),
    )


@pytest.fixture
def catalogue(sample_kubeconfig: Path) -> Catalogue:
    return load_catalogue(SourceRequest(override=sample_kubeconfig), LoadMode.SINGLE)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()
