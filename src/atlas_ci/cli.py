# src/atlas_ci/cli.py
"""
Linha de comando do Atlas CI.

    atlas-ci plan DOCUMENT   → stages, jobs e variáveis resolvidas
    atlas-ci run  DOCUMENT   → executa o pipeline com runners locais

Códigos de saída:
    0  pipeline succeeded / succeeded_with_allowed_failures
    1  pipeline failed / canceled
    2  documento, variáveis ou configuração inválidos (o pipeline não inicia)
"""

from __future__ import annotations

import json
import signal
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import click

from atlas_ci import __version__
from atlas_ci.core.cache import CacheManager, DirectoryCacheStore
from atlas_ci.core.config import ConfigError, EngineSettings, compute_config_hash, deep_merge, load_config
from atlas_ci.core.document import DocumentError, PipelineDocument, load_document
from atlas_ci.core.engine import Engine, JobExecutor, UnresolvedVariableError, resolve_pipeline
from atlas_ci.core.pipeline import JobStatus, PipelineIdentity, RunContext
from atlas_ci.core.report import summarize
from atlas_ci.core.runtime import GitSourceControl, RunnerPool, SourceControlError, StaticSourceControl
from atlas_ci.core.traceability import create_manifest, save_manifest


EXIT_INVALID_INPUT = 2

# Linhas finais da saída exibidas para jobs que não terminaram com sucesso.
OUTPUT_TAIL_LINES = 20


class InvalidInput(click.ClickException):
    exit_code = EXIT_INVALID_INPUT


def _load(document: str) -> PipelineDocument:
    try:
        return load_document(document)
    except DocumentError as e:
        raise InvalidInput(f"invalid pipeline document: {e}") from e


def _identity(document: str, project: Optional[str], ref: Optional[str], pipeline_id: str) -> PipelineIdentity:
    doc_dir = Path(document).resolve().parent
    git = GitSourceControl(str(doc_dir))
    depth = 0
    try:
        if ref is None:
            ref = git.current_ref()
        depth = git.commit_depth()
        if project is None:
            project = git.project_name
    except SourceControlError as e:
        if ref is None:
            click.echo(f"warning: {e}; using ref 'local'", err=True)
        scm = StaticSourceControl(ref=ref or "local")
        ref, depth = scm.current_ref(), scm.commit_depth()
    return PipelineIdentity(
        project=project or doc_dir.name,
        ref=ref,
        pipeline_id=pipeline_id,
        commit_depth=depth,
    )


def _settings(config_path: Optional[str], local_path: Optional[str], overrides: Dict[str, Any]):
    if local_path and not config_path:
        raise click.UsageError("--local requires --config")
    try:
        config = load_config(defaults_path=config_path, local_path=local_path) if config_path else {}
        config = deep_merge(config, overrides)
        return config, EngineSettings.from_config(config)
    except ConfigError as e:
        raise InvalidInput(f"invalid configuration: {e}") from e


@click.group()
@click.version_option(__version__, prog_name="atlas-ci")
def main() -> None:
    """Atlas CI: orquestração de jobs de pipelines declarativos."""


@main.command()
@click.argument("document", type=click.Path(dir_okay=False))
@click.option("--project", default=None, help="Nome do projeto (padrão: diretório do repositório).")
@click.option("--ref", default=None, help="Ref do run (padrão: branch git atual).")
@click.option("--json", "as_json", is_flag=True, help="Saída em JSON.")
def plan(document: str, project: Optional[str], ref: Optional[str], as_json: bool) -> None:
    """Mostra stages, jobs e variáveis resolvidas sem executar nada."""
    doc = _load(document)
    identity = _identity(document, project, ref, pipeline_id="plan")
    try:
        resolved = resolve_pipeline(doc, identity)
    except UnresolvedVariableError as e:
        raise InvalidInput(str(e)) from e

    if as_json:
        data = {
            "project": identity.project,
            "ref": identity.ref,
            "stages": [
                {
                    "name": s.name,
                    "jobs": [
                        {
                            "name": j.name,
                            "image": j.image,
                            "tags": list(j.tags),
                            "interruptible": j.interruptible,
                            "allow_failure": j.allow_failure,
                            "retry": {"max": j.retry.max, "when": sorted(j.retry.when)},
                            "variables": dict(j.variables),
                        }
                        for j in s.jobs
                    ],
                }
                for s in resolved.stages
            ],
        }
        click.echo(json.dumps(data, indent=2, sort_keys=True))
        return

    click.echo(f"pipeline {identity.project}@{identity.ref}")
    for s in resolved.stages:
        click.echo(f"stage {s.ordinal}: {s.name}")
        for j in s.jobs:
            flags = []
            if j.allow_failure:
                flags.append("allow_failure")
            if j.interruptible:
                flags.append("interruptible")
            if j.retry.max:
                flags.append(f"retry={j.retry.max}")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            click.echo(f"  - {j.name} ({j.image or 'no image'}){suffix}")
            for name in sorted(j.variables):
                click.echo(f"      {name}={j.variables[name]}")


@main.command()
@click.argument("document", type=click.Path(dir_okay=False))
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="Arquivo de configuração do engine.")
@click.option("--local", "local_path", type=click.Path(dir_okay=False), default=None, help="Overrides locais da configuração.")
@click.option("--project", default=None, help="Nome do projeto (padrão: diretório do repositório).")
@click.option("--ref", default=None, help="Ref do run (padrão: branch git atual).")
@click.option("--max-parallel", type=click.IntRange(min=1), default=None, help="Jobs simultâneos por stage.")
@click.option("--continue-on-failure", is_flag=True, default=False, help="Não interromper após stage failed.")
@click.option("--manifest", "manifest_path", type=click.Path(dir_okay=False), default=None, help="Grava o Manifest JSON do run.")
@click.option("--json", "as_json", is_flag=True, help="Resumo em JSON.")
@click.pass_context
def run(
    click_ctx: click.Context,
    document: str,
    config_path: Optional[str],
    local_path: Optional[str],
    project: Optional[str],
    ref: Optional[str],
    max_parallel: Optional[int],
    continue_on_failure: bool,
    manifest_path: Optional[str],
    as_json: bool,
) -> None:
    """Executa o pipeline e sai com o código do status agregado."""
    overrides: Dict[str, Any] = {"engine": {}}
    if max_parallel is not None:
        overrides["engine"]["max_parallelism"] = max_parallel
    if continue_on_failure:
        overrides["engine"]["continue_on_failure"] = True
    config, settings = _settings(config_path, local_path, overrides)

    doc = _load(document)
    run_id = uuid.uuid4().hex
    identity = _identity(document, project, ref, pipeline_id=run_id[:8])
    try:
        resolved = resolve_pipeline(doc, identity)
    except UnresolvedVariableError as e:
        raise InvalidInput(str(e)) from e

    started = datetime.now(timezone.utc)
    ctx = RunContext(
        run_id=run_id,
        created_at=started,
        identity=identity,
        config=config,
        meta={"document": str(Path(document).resolve())},
    )
    manifest = None
    if manifest_path:
        manifest = create_manifest(
            run_id=run_id,
            started_at=started,
            atlas_ci_version=__version__,
            config_hash=compute_config_hash(config),
            document_hash=doc.source_hash,
            project=identity.project,
            ref=identity.ref,
            pipeline_id=identity.pipeline_id,
        )

    cache = CacheManager(
        DirectoryCacheStore(settings.cache_root),
        fallback_root=str(Path(settings.cache_root) / ".fallback"),
        poll_interval=settings.poll_interval_seconds,
    )
    executor = JobExecutor(provider=RunnerPool.from_settings(settings), cache=cache, settings=settings)
    engine = Engine(plan=resolved, ctx=ctx, executor=executor, settings=settings, manifest=manifest)

    result = _run_with_signals(engine)
    summary = summarize(result)

    if manifest is not None:
        save_manifest(manifest, Path(manifest_path))

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
    else:
        for s_name, s_status in summary.stages:
            click.echo(f"stage {s_name}: {s_status.value}")
            for j in summary.jobs:
                if j.stage != s_name:
                    continue
                extra = f" cause={j.failure_cause}" if j.failure_cause else ""
                retries = f" retries={j.retry_count}" if j.retry_count else ""
                click.echo(f"  {j.job}: {j.status.value} ({j.duration_seconds:.2f}s){retries}{extra}")
                if j.status is not JobStatus.SUCCESS and j.output:
                    for line in j.output.splitlines()[-OUTPUT_TAIL_LINES:]:
                        click.echo(f"      | {line}")
        click.echo(f"pipeline {summary.status.value}")

    click_ctx.exit(summary.exit_code)


def _run_with_signals(engine: Engine):
    if threading.current_thread() is not threading.main_thread():
        return engine.run()

    def handler(signum, frame):
        engine.cancel(f"received signal {signum}")

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        return engine.run()
    finally:
        for sig, h in previous.items():
            signal.signal(sig, h)


if __name__ == "__main__":  # pragma: no cover
    main()
