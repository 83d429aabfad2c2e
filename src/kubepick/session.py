"""Context and namespace switching: resolve, generate, record."""

from __future__ import annotations

import contextlib
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from kubepick.catalogue import Catalogue
from kubepick.catalogue.labels import friendly_label
from kubepick.config import EngineConfig, Settings
from kubepick.depth import compute_depth
from kubepick.errors import ContextNotFound, InvalidInput, KubepickError, NoPreviousValue
from kubepick.isolation import GenerationResult, IsolationGenerator
from kubepick.models import SessionResult
from kubepick.resolver import Chooser, MatchStage, match_context, resolve_context, resolve_namespace, suggest
from kubepick.shell import apply_env
from kubepick.store import SessionStore
from kubepick.validation import validate_context_token, validate_namespace

log = structlog.get_logger()

PREVIOUS_TOKEN = "-"


@dataclass
class Engine:
    """Everything one invocation needs, built once by the caller."""

    catalogue: Catalogue
    config: EngineConfig
    settings: Settings
    store: SessionStore = field(init=False)
    generator: IsolationGenerator = field(init=False)

    def __post_init__(self) -> None:
        self.store = SessionStore(self.settings)
        self.generator = IsolationGenerator(
            self.catalogue, self.settings.artifact_dir, insecure_contexts=self.config.insecure_contexts
        )

    def hooks(self) -> dict[str, str]:
        hooks = {"start_ctx": self.config.hooks.start_ctx, "stop_ctx": self.config.hooks.stop_ctx}
        return {name: command for name, command in hooks.items() if command}


def _discard(generated: GenerationResult) -> None:
    """Remove an artifact this call created, unless another session has used it since.

    A concurrent reuse refreshes the mtime, so a changed mtime means the file is kept
    for garbage collection. A reuse landing between the stat and the unlink still
    loses its file.
    """
    if not generated.created or generated.mtime_ns is None:
        return
    try:
        current = generated.path.stat().st_mtime_ns
    except FileNotFoundError:
        return
    except OSError as e:
        log.warning("artifact_discard_skipped", path=str(generated.path), error=str(e))
        return
    if current != generated.mtime_ns:
        log.info("artifact_kept", path=str(generated.path), reason="used by another session")
        return
    with contextlib.suppress(FileNotFoundError):
        generated.path.unlink()
    log.debug("artifact_discarded", path=str(generated.path))


def _apply(engine: Engine, context: str, namespace: str | None, depth: int) -> SessionResult:
    """Generate the artifact and record the switch; undo a fresh artifact if recording fails."""
    generated = engine.generator.generate(context, namespace)
    try:
        engine.store.record_switch(context, namespace)
    except KubepickError:
        _discard(generated)
        raise

    log.info("session_switched", context=context, namespace=namespace, depth=depth, reused=not generated.created)
    return SessionResult(
        kubeconfig=str(generated.path),
        context=context,
        label=friendly_label(context),
        namespace=namespace,
        depth=depth,
        hooks=engine.hooks(),
    )


def switch_context(
    engine: Engine,
    token: str,
    namespace: str | None = None,
    recursive: bool = False,
    ambient_depth: int = 0,
    chooser: Chooser | None = None,
) -> SessionResult:
    """Switch to the context named by ``token``.

    ``-`` selects the previous context from history. The namespace is the explicit
    one, else the namespace last used with that context, else none. Depth is checked
    before anything is written.

    Raises:
        DepthLimitExceeded: A recursive spawn would exceed the cap.
        NoPreviousValue: ``-`` with no earlier distinct context.
        ContextNotFound, AmbiguousMatch: The token did not resolve to one context.
        LockTimeout, StoreCorrupted, ArtifactIOError: Recording failed; nothing was kept.
    """
    depth = compute_depth(ambient_depth, recursive, engine.settings.max_depth)
    names = engine.catalogue.context_names()

    if token == PREVIOUS_TOKEN:
        previous = engine.store.contexts.previous()
        if previous is None:
            raise NoPreviousValue("context")
        context = resolve_context(previous, names)
    else:
        context = resolve_context(token, names, engine.config.aliases, chooser)

    if namespace is not None:
        validate_namespace(namespace)
    else:
        namespace = engine.store.last_namespace.get(context)

    return _apply(engine, context, namespace, depth)


def switch_namespace(
    engine: Engine,
    token: str,
    context: str | None,
    namespaces: Sequence[str] | None = None,
    recursive: bool = False,
    ambient_depth: int = 0,
    chooser: Chooser | None = None,
) -> SessionResult:
    """Switch namespace within ``context`` (the active one, else the catalogue's current).

    ``namespaces`` are the names discovered for the context, or None when discovery is
    unavailable, in which case the token is taken verbatim after validation.

    Raises:
        InvalidInput: No active context to switch within.
        NoPreviousValue: ``-`` with no earlier distinct namespace.
        NamespaceNotFound, AmbiguousMatch: The token did not resolve to one namespace.
    """
    depth = compute_depth(ambient_depth, recursive, engine.settings.max_depth)
    context = context or engine.catalogue.current_context
    if not context:
        raise InvalidInput("No active context.", hint="Run 'kubepick ctx' first.")
    engine.catalogue.get_context(context)

    if token == PREVIOUS_TOKEN:
        namespace = engine.store.namespaces.previous()
        if namespace is None:
            raise NoPreviousValue("namespace")
    else:
        namespace = resolve_namespace(token, context, namespaces, chooser)

    return _apply(engine, context, namespace, depth)


def generate_only(engine: Engine, context: str, namespace: str | None = None) -> Path:
    """Produce the artifact for an exact context name without touching history."""
    if context not in engine.catalogue.contexts:
        raise ContextNotFound(context, suggest(context, engine.catalogue.context_names()))
    if namespace is not None:
        validate_namespace(namespace)
    return engine.generator.generate(context, namespace).path


def discovery_document(engine: Engine, context: str) -> dict[str, Any]:
    """The isolated kubeconfig for ``context``, built in memory for namespace discovery.

    Nothing is written, so a namespace token that later fails to resolve leaves no
    artifact behind.
    """
    if context not in engine.catalogue.contexts:
        raise ContextNotFound(context, suggest(context, engine.catalogue.context_names()))
    return engine.generator.build(engine.catalogue.resolve(context))


def match_contexts(engine: Engine, pattern: str) -> list[str]:
    """Every context a pattern selects, in catalogue order.

    Uses the same stages as ``switch_context`` but several candidates are all kept
    rather than reported as ambiguous.

    Raises:
        ContextNotFound: No stage matched; carries edit-distance suggestions.
    """
    validate_context_token(pattern)
    names = engine.catalogue.context_names()
    result = match_context(pattern, names, engine.config.aliases)
    if result.stage is MatchStage.NONE:
        raise ContextNotFound(result.target, suggest(result.target, names))
    selected = set(result.candidates)
    return [name for name in names if name in selected]


def exec_in_context(engine: Engine, context: str, command: Sequence[str], namespace: str | None = None) -> int:
    """Run ``command`` against the isolated artifact for one context; return its exit code.

    The child sees the same variables a switch would export, but nothing is recorded
    in history.

    Raises:
        InvalidInput: Empty command, bad namespace, or a command that cannot be started.
        ContextNotFound, IncompleteContext, ArtifactIOError: From artifact generation.
    """
    if not command:
        raise InvalidInput("No command given.", hint="Put the command after '--'.")
    if namespace is not None:
        validate_namespace(namespace)

    generated = engine.generator.generate(context, namespace)
    env = apply_env(
        os.environ,
        {
            "KUBECONFIG": str(generated.path),
            "KUBEPICK_CONTEXT": context,
            "KUBEPICK_NAMESPACE": namespace,
            "OC_NAMESPACE": namespace,
        },
    )
    log.info("exec_started", context=context, namespace=namespace, command=command[0])
    try:
        completed = subprocess.run(list(command), env=env, check=False)
    except OSError as e:
        raise InvalidInput(f"cannot run {command[0]!r}: {e}", hint="Check the command name and PATH.") from e
    log.debug("exec_finished", context=context, returncode=completed.returncode)
    return completed.returncode
