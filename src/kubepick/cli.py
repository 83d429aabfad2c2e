"""kubepick command line: shell-evaluable session switching plus diagnostics."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

import click
import structlog

from kubepick import __version__
from kubepick.catalogue import Catalogue, LoadMode, SourceRequest, load_catalogue
from kubepick.catalogue.labels import detect_cluster_type, friendly_label
from kubepick.catalogue.loader import discover_paths
from kubepick.cleanup import CleanupOptions, parse_selection, run_cleanup
from kubepick.clients.k8s_core import discover_namespaces
from kubepick.config import EngineConfig, Settings, get_settings, load_engine_config
from kubepick.depth import parse_ambient_depth
from kubepick.errors import ConfigNotFound, InvalidInput, KubepickError
from kubepick.lint import lint_paths
from kubepick.models import CleanupDecision, ContextInfo, ContextSource, HistoryKind, SessionResult
from kubepick.resolver import resolve_context
from kubepick.session import (
    Engine,
    discovery_document,
    exec_in_context,
    generate_only,
    match_contexts,
    switch_context,
    switch_namespace,
)
from kubepick.shell import apply_env, render, render_unset
from kubepick.store import SessionStore
from kubepick.store.history import dump_state
from kubepick.utils import format_age, parse_iso_timestamp
from kubepick.validation import validate_info_field, validate_positive

log = structlog.get_logger()

SHELL_CHOICES = ("bash", "zsh", "sh", "fish", "powershell")


def configure_logging(level: str) -> None:
    """Send structured logs to stderr; stdout is reserved for evaluable output."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level.upper(), logging.WARNING)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _default_shell() -> str:
    name = Path(os.environ.get("SHELL", "")).name
    return name if name in SHELL_CHOICES else "bash"


def _interactive() -> bool:
    return sys.stdin.isatty() and sys.stderr.isatty()


def _prompt_choice(token: str, candidates: list[str]) -> str:
    """Numbered picker on stderr."""
    title = f"Multiple matches for {token!r}:" if token else "Select:"
    click.echo(title, err=True)
    for index, candidate in enumerate(candidates, start=1):
        click.echo(f"  {index}) {candidate}", err=True)
    picked = click.prompt("Number", type=click.IntRange(1, len(candidates)), err=True)
    return candidates[picked - 1]


def _select_for_deletion(candidates: list[CleanupDecision]) -> list[CleanupDecision]:
    for index, decision in enumerate(candidates, start=1):
        click.echo(f"  {index}) {decision.path} ({decision.reason})", err=True)
    answer = click.prompt("Delete which (e.g. 1,3-5, all, none)", default="none", err=True)
    return [candidates[i] for i in parse_selection(answer, len(candidates))]


@dataclass
class CliState:
    """Global options plus lazily loaded configuration."""

    override: Path | None = None
    directories: tuple[Path, ...] = ()
    settings: Settings = field(default_factory=get_settings)
    _config: EngineConfig | None = None

    @property
    def config(self) -> EngineConfig:
        if self._config is None:
            self._config = load_engine_config()
        return self._config

    def request(self) -> SourceRequest:
        return SourceRequest(
            override=self.override,
            kubeconfig_env=os.environ.get("KUBECONFIG"),
            directories=self.directories,
            include=self.config.configs.include,
            exclude=self.config.configs.exclude,
            ignore_dirs=(self.settings.artifact_dir,),
        )

    def catalogue(self, mode: LoadMode = LoadMode.AGGREGATE) -> Catalogue:
        return load_catalogue(self.request(), mode)

    def engine(self, mode: LoadMode = LoadMode.AGGREGATE) -> Engine:
        return Engine(catalogue=self.catalogue(mode), config=self.config, settings=self.settings)


class KubepickGroup(click.Group):
    """Reports engine errors as ``error:``/``hint:`` lines on stderr and exits 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except KubepickError as e:
            log.debug("command_failed", error_type=type(e).__name__)
            click.echo(f"error: {e}", err=True)
            if e.hint:
                click.echo(f"hint: {e.hint}", err=True)
            ctx.exit(1)


def _emit(ctx: click.Context, result: SessionResult, output: str, dialect: str, recursive: bool) -> None:
    if recursive:
        ctx.exit(_spawn_shell(result))
    click.echo(render(result, "json" if output == "json" else dialect))


def _spawn_shell(result: SessionResult) -> int:
    """Run an interactive subshell with the session environment; return its exit code."""
    env = apply_env(os.environ, result.env())
    shell = os.environ.get("SHELL") or "/bin/sh"
    click.echo(f"kubepick: entering {result.label} (depth {result.depth}), exit to return", err=True)
    return subprocess.run([shell], env=env, check=False).returncode


@click.group(cls=KubepickGroup)
@click.option("--kubeconfig", type=click.Path(path_type=Path), help="Use only this kubeconfig file")
@click.option(
    "--kubeconfig-dir",
    "kubeconfig_dirs",
    multiple=True,
    type=click.Path(path_type=Path),
    help="Also load config, *.yaml and *.yml from this directory (repeatable)",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on stderr")
@click.version_option(__version__, prog_name="kubepick")
@click.pass_context
def main(ctx: click.Context, kubeconfig: Path | None, kubeconfig_dirs: tuple[Path, ...], verbose: bool) -> None:
    """Per-shell Kubernetes context and namespace sessions.

    Switch commands print statements for the shell to evaluate:

        eval "$(kubepick ctx prod)"
        eval "$(kubepick ns kube-system)"
    """
    configure_logging("debug" if verbose else os.environ.get("KUBEPICK_LOG_LEVEL", "warning"))
    ctx.obj = CliState(override=kubeconfig, directories=kubeconfig_dirs)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@click.option("--path", "show_path", is_flag=True, help="Show the defining file")
@click.option("--duplicates", is_flag=True, help="List names defined in more than one file")
@click.pass_obj
def contexts(state: CliState, as_json: bool, show_path: bool, duplicates: bool) -> None:
    """List every context across the loaded kubeconfig files."""
    catalogue = state.catalogue()
    if duplicates:
        for name, sources in catalogue.duplicates().items():
            click.echo(f"{name}\t{', '.join(str(s) for s in sources)}")
        return

    if as_json:
        rows = [
            {
                "name": entry.name,
                "label": friendly_label(entry.name),
                "namespace": entry.namespace,
                "source": str(entry.source),
            }
            for entry in catalogue.contexts.values()
        ]
        click.echo(json.dumps(rows, indent=2))
        return

    for entry in catalogue.contexts.values():
        click.echo(f"{entry.name}\t{entry.source}" if show_path else entry.name)


@main.command()
@click.argument("token", required=False)
@click.option("-n", "--namespace", help="Namespace to embed in the session")
@click.option("-r", "--recursive", is_flag=True, help="Spawn a nested shell instead of printing exports")
@click.option("-o", "--output", type=click.Choice(["env", "json"]), default="env", show_default=True)
@click.option("--shell", "dialect", type=click.Choice(SHELL_CHOICES), default=_default_shell, show_default="$SHELL")
@click.pass_context
def ctx(
    ctx: click.Context,
    token: str | None,
    namespace: str | None,
    recursive: bool,
    output: str,
    dialect: str,
) -> None:
    """Switch context. TOKEN may be a name, alias, glob, substring, or '-' for the previous one."""
    state: CliState = ctx.obj
    engine = state.engine()
    chooser = _prompt_choice if _interactive() else None
    if token is None:
        names = list(engine.catalogue.context_names())
        if chooser is None or not names:
            raise InvalidInput("A context name is required when not attached to a terminal.")
        token = chooser("", names)

    result = switch_context(
        engine,
        token,
        namespace=namespace,
        recursive=recursive,
        ambient_depth=parse_ambient_depth(os.environ.get("KUBEPICK_DEPTH")),
        chooser=chooser,
    )
    _emit(ctx, result, output, dialect, recursive)


@main.command()
@click.argument("token", required=False)
@click.option("-r", "--recursive", is_flag=True, help="Spawn a nested shell instead of printing exports")
@click.option("-o", "--output", type=click.Choice(["env", "json"]), default="env", show_default=True)
@click.option("--shell", "dialect", type=click.Choice(SHELL_CHOICES), default=_default_shell, show_default="$SHELL")
@click.option("--no-discover", is_flag=True, help="Do not ask the cluster for its namespaces")
@click.pass_context
def ns(
    ctx: click.Context,
    token: str | None,
    recursive: bool,
    output: str,
    dialect: str,
    no_discover: bool,
) -> None:
    """Switch namespace within the active context. '-' selects the previous namespace."""
    state: CliState = ctx.obj
    engine = state.engine()
    context = os.environ.get("KUBEPICK_CONTEXT") or engine.catalogue.current_context
    chooser = _prompt_choice if _interactive() else None

    namespaces = None
    if context and token != "-" and not no_discover:
        namespaces = discover_namespaces(discovery_document(engine, context), context)

    if token is None:
        if chooser is None or not namespaces:
            raise InvalidInput("A namespace name is required when not attached to a terminal.")
        token = chooser("", namespaces)

    result = switch_namespace(
        engine,
        token,
        context,
        namespaces=namespaces,
        recursive=recursive,
        ambient_depth=parse_ambient_depth(os.environ.get("KUBEPICK_DEPTH")),
        chooser=chooser,
    )
    _emit(ctx, result, output, dialect, recursive)


@main.command()
@click.option("--context", "context_name", required=True, help="Exact context name")
@click.option("--namespace", help="Namespace to embed")
@click.pass_obj
def gen(state: CliState, context_name: str, namespace: str | None) -> None:
    """Write the isolated kubeconfig for a context and print its path."""
    engine = state.engine(LoadMode.SINGLE)
    click.echo(str(generate_only(engine, context_name, namespace)))


@main.command()
@click.argument("kind", type=click.Choice(["context", "namespace"]), required=False)
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--clear", is_flag=True, help="Clear this history (all state when KIND is omitted)")
@click.pass_obj
def history(state: CliState, kind: str | None, limit: int, clear: bool) -> None:
    """Show recent switches, newest first."""
    store = SessionStore(state.settings)
    history_kind = cast(HistoryKind | None, kind)
    if clear:
        store.clear(history_kind)
        click.echo(f"cleared {kind or 'all'} history", err=True)
        return

    validate_positive("limit", limit)
    now = datetime.now(tz=UTC)
    for event in store.log_for(history_kind or "context").list(limit):
        stamp = parse_iso_timestamp(event.timestamp)
        age = format_age((now - stamp).total_seconds()) if stamp else "?"
        click.echo(f"{age}\t{event.value}")


@main.command()
@click.argument("what", default="all")
@click.pass_obj
def info(state: CliState, what: str) -> None:
    """Show the active session: ctx, ns, depth, config, or all."""
    validate_info_field(what)
    values = {
        "ctx": os.environ.get("KUBEPICK_CONTEXT"),
        "ns": os.environ.get("KUBEPICK_NAMESPACE"),
        "depth": str(parse_ambient_depth(os.environ.get("KUBEPICK_DEPTH"))),
        "config": os.environ.get("KUBECONFIG"),
    }
    if what != "all":
        click.echo(values[what] or "")
        return
    values.update(dump_state(SessionStore(state.settings)))
    click.echo(json.dumps(values, indent=2))


@main.command()
@click.argument("context_token", required=False)
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@click.pass_obj
def which(state: CliState, context_token: str | None, as_json: bool) -> None:
    """Show which file defines a context and what it points at."""
    catalogue = state.catalogue()
    token = context_token or os.environ.get("KUBEPICK_CONTEXT") or catalogue.current_context
    if not token:
        raise InvalidInput("No context given and none active.")
    chooser = _prompt_choice if _interactive() else None
    name = resolve_context(token, catalogue.context_names(), state.config.aliases, chooser)

    entry = catalogue.get_context(name)
    cluster = catalogue.clusters.get(entry.cluster) if entry.cluster else None
    details = ContextInfo(
        name=name,
        label=friendly_label(name),
        cluster_type=detect_cluster_type(name, cluster.server if cluster else None),
        cluster=entry.cluster,
        user=entry.user,
        namespace=entry.namespace,
        server=cluster.server if cluster else None,
        sources=[
            ContextSource(path=str(definition.source), active=index == 0)
            for index, definition in enumerate(catalogue.definitions(name))
        ],
    )
    if as_json:
        click.echo(details.model_dump_json(indent=2))
        return

    click.echo(f"context:  {details.name}")
    click.echo(f"label:    {details.label}")
    click.echo(f"type:     {details.cluster_type}")
    click.echo(f"cluster:  {details.cluster or '-'}")
    click.echo(f"server:   {details.server or '-'}")
    click.echo(f"user:     {details.user or '-'}")
    click.echo(f"namespace: {details.namespace or '-'}")
    for source in details.sources:
        marker = "*" if source.active else " "
        click.echo(f"{marker} {source.path}")


@main.command()
@click.option("--days", type=int, default=None, help="Age threshold (default: KUBEPICK_GC_DAYS)")
@click.option("--orphaned", is_flag=True, help="Also remove artifacts whose context no longer exists")
@click.option("--all", "remove_all", is_flag=True, help="Remove every artifact")
@click.option("--dry-run", is_flag=True, help="Report what would be removed")
@click.option("--from-file", type=click.Path(path_type=Path), help="Only artifacts generated from this file")
@click.option("--interactive", is_flag=True, help="Pick which candidates to remove")
@click.pass_obj
def cleanup(
    state: CliState,
    days: int | None,
    orphaned: bool,
    remove_all: bool,
    dry_run: bool,
    from_file: Path | None,
    interactive: bool,
) -> None:
    """Remove generated kubeconfig artifacts."""
    days = state.settings.gc_days if days is None else days
    validate_positive("days", days)
    known = set(state.catalogue().context_names()) if orphaned else set()
    if interactive and not _interactive():
        raise InvalidInput("--interactive needs a terminal.")

    report = run_cleanup(
        state.settings.artifact_dir,
        known,
        CleanupOptions(days=days, orphaned=orphaned, all=remove_all, dry_run=dry_run, from_file=from_file),
        selector=_select_for_deletion if interactive else None,
    )
    verb = "would remove" if dry_run else "removed"
    for decision in report.removed:
        click.echo(f"{verb}\t{decision.path}\t{decision.reason}")
    click.echo(f"{verb} {len(report.removed)}, kept {report.kept}", err=True)
    for error in report.errors:
        click.echo(f"error: {error}", err=True)
    if report.errors:
        sys.exit(1)


@main.command()
@click.option("--shell", "dialect", type=click.Choice(SHELL_CHOICES), default=_default_shell, show_default="$SHELL")
def clean(dialect: str) -> None:
    """Print statements that leave the current session."""
    click.echo(render_unset(dialect))


@main.command("exec", context_settings={"ignore_unknown_options": True})
@click.argument("pattern")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("-n", "--namespace", help="Namespace to embed in each context's kubeconfig")
@click.option("-e", "--fail-early", is_flag=True, help="Stop at the first context whose command fails")
@click.option("--no-headers", is_flag=True, help="Do not print a header per context")
@click.pass_obj
def exec_command(
    state: CliState,
    pattern: str,
    command: tuple[str, ...],
    namespace: str | None,
    fail_early: bool,
    no_headers: bool,
) -> None:
    """Run COMMAND in every context PATTERN matches, without switching the shell.

        kubepick exec -n kube-system 'prod-*' -- kubectl get pods
    """
    engine = state.engine()
    contexts = match_contexts(engine, pattern)
    status = 0
    for context in contexts:
        if len(contexts) > 1 and not no_headers:
            click.echo(f"CONTEXT => {context} (namespace: {namespace or '-'})", err=True)
        code = exec_in_context(engine, context, command, namespace)
        if code != 0:
            if fail_early:
                sys.exit(code)
            status = status or code
    if status:
        sys.exit(status)


@main.command()
@click.option("--file", "path", type=click.Path(path_type=Path), help="Check only this file")
@click.option("--strict", is_flag=True, help="Fail on warnings too")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@click.pass_obj
def lint(state: CliState, path: Path | None, strict: bool, as_json: bool) -> None:
    """Check kubeconfig files for broken references, unused entries, and parse errors."""
    paths = [path] if path is not None else discover_paths(state.request())
    if not paths:
        raise ConfigNotFound()

    report = lint_paths(paths)
    if as_json:
        click.echo(report.model_dump_json(indent=2))
    else:
        for issue in report.issues:
            click.echo(f"{issue.severity}\t{issue.path}\t{issue.message}")
    click.echo(f"checked {report.files} files: {report.errors} errors, {report.warnings} warnings", err=True)
    if report.failed(strict):
        sys.exit(1)
