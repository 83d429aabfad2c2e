"""Tests for context and namespace switching."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
import yaml

from conftest import make_kubeconfig
from kubepick.catalogue import Catalogue, LoadMode, SourceRequest, load_catalogue
from kubepick.config import EngineConfig, HooksSection, Settings
from kubepick.errors import (
    AmbiguousMatch,
    ArtifactIOError,
    ContextNotFound,
    DepthLimitExceeded,
    InvalidInput,
    NamespaceNotFound,
    NoPreviousValue,
)
from kubepick.session import (
    Engine,
    discovery_document,
    exec_in_context,
    generate_only,
    match_contexts,
    switch_context,
    switch_namespace,
)
from kubepick.store import SessionStore


@pytest.fixture
def engine(catalogue: Catalogue, engine_config: EngineConfig, settings: Settings) -> Engine:
    return Engine(catalogue, engine_config, settings)


def _artifacts(settings: Settings) -> list[Path]:
    if not settings.artifact_dir.exists():
        return []
    return sorted(settings.artifact_dir.glob("*.yaml"))


class TestSwitchContext:
    def test_basic_switch(self, engine: Engine, settings: Settings) -> None:
        result = switch_context(engine, "staging")

        assert result.context == "staging"
        assert result.label == "staging"
        assert result.namespace is None
        assert result.depth == 1
        assert result.hooks == {}
        document = yaml.safe_load(Path(result.kubeconfig).read_text())
        assert document["current-context"] == "staging"
        assert engine.store.contexts.latest() == "staging"

    def test_substring_token(self, engine: Engine) -> None:
        assert switch_context(engine, "dev-cluster").context == "gke_myproject_us-east1_dev-cluster"

    def test_provider_label(self, engine: Engine) -> None:
        result = switch_context(engine, "gke_myproject_us-east1_dev-cluster")
        assert result.label == "gcp:us-east1/dev-cluster"

    def test_ambiguous_without_chooser(self, engine: Engine, settings: Settings) -> None:
        with pytest.raises(AmbiguousMatch) as exc_info:
            switch_context(engine, "prod")
        assert exc_info.value.candidates == ["production-east", "production-west"]
        assert _artifacts(settings) == []
        assert engine.store.contexts.latest() is None

    def test_chooser_resolves_ambiguity(self, engine: Engine) -> None:
        seen: list[list[str]] = []

        def choose(token: str, candidates: list[str]) -> str:
            seen.append(candidates)
            return candidates[-1]

        result = switch_context(engine, "prod", chooser=choose)
        assert result.context == "production-west"
        assert seen == [["production-east", "production-west"]]

    def test_unknown_context(self, engine: Engine) -> None:
        with pytest.raises(ContextNotFound) as exc_info:
            switch_context(engine, "stagng")
        assert exc_info.value.suggestions[0] == "staging"

    def test_alias(self, catalogue: Catalogue, settings: Settings) -> None:
        config = EngineConfig(aliases={"s": "staging"})
        assert switch_context(Engine(catalogue, config, settings), "s").context == "staging"

    def test_explicit_namespace(self, engine: Engine) -> None:
        result = switch_context(engine, "staging", namespace="team-a")
        document = yaml.safe_load(Path(result.kubeconfig).read_text())
        assert result.namespace == "team-a"
        assert document["contexts"][0]["context"]["namespace"] == "team-a"
        assert engine.store.last_namespace.get("staging") == "team-a"

    def test_invalid_explicit_namespace(self, engine: Engine, settings: Settings) -> None:
        with pytest.raises(InvalidInput, match="Invalid namespace"):
            switch_context(engine, "staging", namespace="Team_A")
        assert _artifacts(settings) == []

    def test_last_namespace_is_reused(self, engine: Engine) -> None:
        switch_context(engine, "staging", namespace="team-a")
        switch_context(engine, "production-east")
        result = switch_context(engine, "staging")
        assert result.namespace == "team-a"

    def test_hooks_are_reported(self, catalogue: Catalogue, settings: Settings) -> None:
        config = EngineConfig(hooks=HooksSection(start_ctx="echo hello"))
        result = switch_context(Engine(catalogue, config, settings), "staging")
        assert result.hooks == {"start_ctx": "echo hello"}


class TestPreviousContext:
    def test_dash_returns_to_previous(self, engine: Engine) -> None:
        switch_context(engine, "staging")
        switch_context(engine, "production-east")
        assert switch_context(engine, "-").context == "staging"
        assert switch_context(engine, "-").context == "production-east"

    def test_dash_without_history(self, engine: Engine) -> None:
        with pytest.raises(NoPreviousValue):
            switch_context(engine, "-")

    def test_dash_with_only_one_context(self, engine: Engine) -> None:
        switch_context(engine, "staging")
        switch_context(engine, "staging")
        with pytest.raises(NoPreviousValue):
            switch_context(engine, "-")

    def test_dash_to_removed_context(self, engine: Engine) -> None:
        engine.store.contexts.record("retired")
        switch_context(engine, "staging")
        with pytest.raises(ContextNotFound):
            switch_context(engine, "-")


class TestDepth:
    def test_plain_switch_resets_depth(self, engine: Engine) -> None:
        assert switch_context(engine, "staging", ambient_depth=7).depth == 1

    def test_recursive_switch_nests(self, engine: Engine) -> None:
        assert switch_context(engine, "staging", recursive=True, ambient_depth=2).depth == 3

    def test_limit_is_checked_before_writing(self, engine: Engine, settings: Settings) -> None:
        with pytest.raises(DepthLimitExceeded):
            switch_context(engine, "staging", recursive=True, ambient_depth=settings.max_depth)
        assert _artifacts(settings) == []
        assert not engine.store.contexts.path.exists()


class TestRollback:
    def _fail_recording(self, engine: Engine, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(context: str, namespace: str | None = None) -> None:
            raise ArtifactIOError(engine.store.contexts.path, "disk full")

        monkeypatch.setattr(engine.store, "record_switch", fail)

    def test_fresh_artifact_is_removed(
        self, engine: Engine, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        self._fail_recording(engine, monkeypatch)
        with pytest.raises(ArtifactIOError):
            switch_context(engine, "staging")
        assert _artifacts(settings) == []

    def test_reused_artifact_is_kept(
        self, engine: Engine, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        first = switch_context(engine, "staging")
        self._fail_recording(engine, monkeypatch)
        with pytest.raises(ArtifactIOError):
            switch_context(engine, "staging")
        assert _artifacts(settings) == [Path(first.kubeconfig)]

    def test_artifact_touched_by_another_session_is_kept(
        self, engine: Engine, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = engine.generator.artifact_path("staging")

        def reused_then_fail(context: str, namespace: str | None = None) -> None:
            # another process reused the fresh artifact before this one failed
            stamp = path.stat().st_mtime_ns + 5_000_000_000
            os.utime(path, ns=(stamp, stamp))
            raise ArtifactIOError(engine.store.contexts.path, "disk full")

        monkeypatch.setattr(engine.store, "record_switch", reused_then_fail)
        with pytest.raises(ArtifactIOError):
            switch_context(engine, "staging")
        assert _artifacts(settings) == [path]


class TestSwitchNamespace:
    def test_within_current_context(self, engine: Engine) -> None:
        result = switch_namespace(engine, "team-b", None)
        assert result.context == "staging"
        assert result.namespace == "team-b"
        assert engine.store.namespaces.latest() == "team-b"

    def test_discovered_namespaces(self, engine: Engine) -> None:
        namespaces = ["default", "kube-system", "team-a"]
        assert switch_namespace(engine, "system", "staging", namespaces).namespace == "kube-system"

    def test_not_found_among_discovered(self, engine: Engine) -> None:
        with pytest.raises(NamespaceNotFound):
            switch_namespace(engine, "payments", "staging", ["default", "team-a"])

    def test_ambiguous_namespace(self, engine: Engine) -> None:
        with pytest.raises(AmbiguousMatch):
            switch_namespace(engine, "team", "staging", ["team-a", "team-b"])

    def test_invalid_verbatim_namespace(self, engine: Engine) -> None:
        with pytest.raises(InvalidInput):
            switch_namespace(engine, "Not_Valid", "staging")

    def test_unknown_context(self, engine: Engine) -> None:
        with pytest.raises(ContextNotFound):
            switch_namespace(engine, "team-a", "missing")

    def test_no_active_context(self, write_yaml, settings: Settings, engine_config: EngineConfig) -> None:
        path = write_yaml("kube/nocurrent", make_kubeconfig("alpha"))
        catalogue = load_catalogue(SourceRequest(override=path), LoadMode.SINGLE)
        with pytest.raises(InvalidInput, match="No active context"):
            switch_namespace(Engine(catalogue, engine_config, settings), "team-a", None)

    def test_dash_returns_to_previous_namespace(self, engine: Engine) -> None:
        switch_namespace(engine, "team-a", "staging")
        switch_namespace(engine, "team-b", "staging")
        assert switch_namespace(engine, "-", "staging").namespace == "team-a"

    def test_dash_without_history(self, engine: Engine) -> None:
        with pytest.raises(NoPreviousValue):
            switch_namespace(engine, "-", "staging")


class TestGenerateOnly:
    def test_writes_artifact_without_history(self, engine: Engine, settings: Settings) -> None:
        path = generate_only(engine, "staging", "team-a")
        assert path.exists()
        assert SessionStore(settings).contexts.latest() is None

    def test_exact_name_required(self, engine: Engine) -> None:
        with pytest.raises(ContextNotFound) as exc_info:
            generate_only(engine, "stag")
        assert "staging" in exc_info.value.suggestions
        assert len(exc_info.value.suggestions) <= 3


class TestDiscoveryDocument:
    def test_built_in_memory(self, engine: Engine, settings: Settings) -> None:
        document = discovery_document(engine, "staging")
        assert document["current-context"] == "staging"
        assert [c["name"] for c in document["contexts"]] == ["staging"]
        assert _artifacts(settings) == []

    def test_unknown_context(self, engine: Engine) -> None:
        with pytest.raises(ContextNotFound) as exc_info:
            discovery_document(engine, "stagng")
        assert exc_info.value.suggestions[0] == "staging"


class TestMatchContexts:
    def test_substring_keeps_every_candidate(self, engine: Engine) -> None:
        assert match_contexts(engine, "prod") == ["production-east", "production-west"]

    def test_glob(self, engine: Engine) -> None:
        assert match_contexts(engine, "*-west") == ["production-west"]

    def test_exact_wins(self, engine: Engine) -> None:
        assert match_contexts(engine, "staging") == ["staging"]

    def test_no_match(self, engine: Engine) -> None:
        with pytest.raises(ContextNotFound):
            match_contexts(engine, "qa-zone")


class TestExecInContext:
    def test_child_sees_session_env(self, engine: Engine, settings: Settings, tmp_path: Path) -> None:
        out = tmp_path / "env.txt"
        script = (
            "import os, sys\n"
            "keys = ('KUBEPICK_CONTEXT', 'KUBEPICK_NAMESPACE', 'OC_NAMESPACE')\n"
            "open(sys.argv[1], 'w').write(' '.join(os.environ.get(k, '-') for k in keys))\n"
        )
        code = exec_in_context(engine, "staging", [sys.executable, "-c", script, str(out)], "team-a")

        assert code == 0
        assert out.read_text() == "staging team-a team-a"
        assert len(_artifacts(settings)) == 1
        assert engine.store.contexts.latest() is None

    def test_exit_code_is_returned(self, engine: Engine) -> None:
        assert exec_in_context(engine, "staging", [sys.executable, "-c", "raise SystemExit(4)"]) == 4

    def test_empty_command(self, engine: Engine) -> None:
        with pytest.raises(InvalidInput, match="No command"):
            exec_in_context(engine, "staging", [])

    def test_invalid_namespace(self, engine: Engine, settings: Settings) -> None:
        with pytest.raises(InvalidInput):
            exec_in_context(engine, "staging", [sys.executable, "-c", "pass"], "Bad_NS")
        assert _artifacts(settings) == []
