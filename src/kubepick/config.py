"""Engine configuration document, runtime settings, and environment variable overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kubepick.errors import ConfigParseError

DEFAULT_INCLUDE_PATTERNS = (
    "~/.kube/config",
    "~/.kube/*.yml",
    "~/.kube/*.yaml",
    "~/.kube/configs/*.yml",
    "~/.kube/configs/*.yaml",
)
DEFAULT_EXCLUDE_PATTERNS = ("~/.kube/kubepick.yaml",)


def expand_home(path: str | Path) -> Path:
    """Expand a leading ``~`` to the user's home directory."""
    return Path(os.path.expanduser(str(path)))


def _data_dir_default() -> Path:
    explicit = os.environ.get("KUBEPICK_DATA_DIR")
    if explicit:
        return expand_home(explicit)
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else expand_home("~/.local/share")
    return base / "kubepick"


@dataclass(frozen=True)
class Settings:
    """Runtime settings with environment variable overrides."""

    data_dir: Path = field(default_factory=_data_dir_default)
    lock_timeout: float = field(default_factory=lambda: float(os.environ.get("KUBEPICK_LOCK_TIMEOUT", "5")))
    history_limit: int = field(default_factory=lambda: int(os.environ.get("KUBEPICK_HISTORY_LIMIT", "50")))
    max_depth: int = field(default_factory=lambda: int(os.environ.get("KUBEPICK_MAX_DEPTH", "10")))
    gc_days: int = field(default_factory=lambda: int(os.environ.get("KUBEPICK_GC_DAYS", "30")))

    @property
    def artifact_dir(self) -> Path:
        return self.data_dir / "configs"

    @property
    def history_dir(self) -> Path:
        return self.data_dir / "history"

    @property
    def last_namespace_file(self) -> Path:
        return self.data_dir / "last_namespace.yaml"


@dataclass(frozen=True)
class ConfigsSection:
    """Kubeconfig discovery patterns."""

    include: tuple[str, ...] = DEFAULT_INCLUDE_PATTERNS
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS


@dataclass(frozen=True)
class HooksSection:
    """Commands run by the shell integration when entering or leaving a context."""

    start_ctx: str | None = None
    stop_ctx: str | None = None


@dataclass(frozen=True)
class EngineConfig:
    """Parsed engine configuration document."""

    configs: ConfigsSection = field(default_factory=ConfigsSection)
    hooks: HooksSection = field(default_factory=HooksSection)
    aliases: dict[str, str] = field(default_factory=dict)
    insecure_contexts: tuple[str, ...] = ()
    path: Path | None = None


def config_path() -> Path:
    """Return the engine configuration document location.

    Checks ``KUBEPICK_CONFIG`` first, then ``$XDG_CONFIG_HOME/kubepick/config.yaml``
    (or ``~/.config/kubepick/config.yaml``), then the legacy ``~/.kube/kubepick.yaml``.
    When none exists the XDG location is returned.
    """
    explicit = os.environ.get("KUBEPICK_CONFIG")
    if explicit:
        return expand_home(explicit)

    xdg = os.environ.get("XDG_CONFIG_HOME")
    xdg_path = (Path(xdg) if xdg else expand_home("~/.config")) / "kubepick" / "config.yaml"
    if xdg_path.exists():
        return xdg_path

    legacy = expand_home("~/.kube/kubepick.yaml")
    if legacy.exists():
        return legacy
    return xdg_path


def _string_list(path: Path, key: str, value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigParseError(path, f"'{key}' must be a list of strings")
    return tuple(value)


def parse_engine_config(raw: Any, path: Path) -> EngineConfig:
    """Build an EngineConfig from a parsed YAML document.

    Args:
        raw: The result of ``yaml.safe_load`` on the document.
        path: Where the document came from, for error messages.

    Returns:
        The parsed configuration. Missing sections take their defaults.

    Raises:
        ConfigParseError: If a recognized key has the wrong shape.
    """
    if raw is None:
        return EngineConfig(path=path)
    if not isinstance(raw, dict):
        raise ConfigParseError(path, "top level must be a mapping")

    configs_raw = raw.get("configs") or {}
    if not isinstance(configs_raw, dict):
        raise ConfigParseError(path, "'configs' must be a mapping")
    configs = ConfigsSection(
        include=_string_list(path, "configs.include", configs_raw["include"])
        if "include" in configs_raw
        else DEFAULT_INCLUDE_PATTERNS,
        exclude=_string_list(path, "configs.exclude", configs_raw["exclude"])
        if "exclude" in configs_raw
        else DEFAULT_EXCLUDE_PATTERNS,
    )

    hooks_raw = raw.get("hooks") or {}
    if not isinstance(hooks_raw, dict):
        raise ConfigParseError(path, "'hooks' must be a mapping")
    hooks = HooksSection(
        start_ctx=str(hooks_raw["start_ctx"]) if hooks_raw.get("start_ctx") else None,
        stop_ctx=str(hooks_raw["stop_ctx"]) if hooks_raw.get("stop_ctx") else None,
    )

    aliases_raw = raw.get("aliases") or {}
    if not isinstance(aliases_raw, dict):
        raise ConfigParseError(path, "'aliases' must be a mapping of name to context")
    aliases = {str(k): str(v) for k, v in aliases_raw.items()}

    return EngineConfig(
        configs=configs,
        hooks=hooks,
        aliases=aliases,
        insecure_contexts=_string_list(path, "insecure_contexts", raw.get("insecure_contexts")),
        path=path,
    )


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load the engine configuration document, or defaults when it does not exist.

    Raises:
        ConfigParseError: If the document exists but is not valid YAML or has a bad shape.
    """
    path = path or config_path()
    if not path.exists():
        return EngineConfig()
    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigParseError(path, str(e)) from e
    return parse_engine_config(raw, path)


def get_settings() -> Settings:
    """Return runtime settings with environment variable overrides applied."""
    return Settings()
