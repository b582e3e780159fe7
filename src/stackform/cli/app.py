# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/cli/app.py
from __future__ import annotations

import json
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from stackform.blueprint.stack import build_desired_state, rendered_artifacts
from stackform.config.loader import load_config
from stackform.config.models import StackConfig
from stackform.deploy.executor import ApplyOptions, CancelToken, apply as apply_plan
from stackform.deploy.planner import Plan, plan as compute_plan
from stackform.deploy.report import render_report, summarize
from stackform.errors import ProbeError, ValidationError
from stackform.execution.runner import CommandRunner
from stackform.logging.log import default_log_dir, init_logging
from stackform.model.state import DesiredState
from stackform.observers.console import ConsoleObserver
from stackform.observers.dispatcher import EventBus
from stackform.observers.events import new_ctx
from stackform.observers.jsonfile import JsonFileObserver
from stackform.observers.logger import LoggerObserver
from stackform.resources.base import atomic_write
from stackform.resources.registry import Handlers, build_handlers
from stackform.state.reader import StateReader

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="stackform: converge a single-host web stack", no_args_is_help=True)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2
EXIT_CANCELLED = 130

_MARKS = {"create": "+", "update": "~"}

ConfigOpt = typer.Option(..., "--config", "-c", exists=True, dir_okay=False, help="Stack YAML file")
DebugOpt = typer.Option(False, "--debug", help="Log DEBUG to the console")
EventsOpt = typer.Option(False, "--events", help="Print lifecycle events to stderr")
LogDirOpt = typer.Option(None, "--log-dir", help="Directory for run logs and event files")


@dataclass
class Run:
    cfg: StackConfig
    desired: DesiredState
    handlers: Handlers
    bus: EventBus
    ctx: dict
    plan: Plan


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _prepare(config: Path, debug: bool, events: bool, log_dir: Optional[Path]) -> Run:
    """
    Load config, read current state and plan. Probe and validation errors
    abort here with exit 2; nothing has been changed yet.
    """
    base_dir = log_dir or default_log_dir()
    logger, run_id, log_path = init_logging(base_dir=base_dir, verbose=debug)

    observers: List = [
        LoggerObserver(logger),
        JsonFileObserver(base_dir / f"{run_id}.jsonl"),
    ]
    if events:
        observers.append(ConsoleObserver())
    bus = EventBus(observers=observers)

    try:
        cfg = load_config(config)
        ctx = new_ctx(env=cfg.project, context=str(cfg.workdir), run_id=run_id)
        desired = build_desired_state(cfg)
        handlers = build_handlers(CommandRunner(logger=logger))
        current = StateReader(handlers).read(desired, bus=bus, run_ctx=ctx)
        plan = compute_plan(desired, current, bus=bus, run_ctx=ctx)
    except ValidationError as e:
        typer.secho(f"invalid desired state: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_ABORTED)
    except ProbeError as e:
        typer.secho(f"cannot read current state: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_ABORTED)

    logger.debug("plan has %d operation(s), log_file=%s", len(plan.operations), log_path)
    return Run(cfg=cfg, desired=desired, handlers=handlers, bus=bus, ctx=ctx, plan=plan)


def plan_to_dict(plan: Plan) -> dict:
    return {
        "operations": [
            {
                "key": op.key,
                "action": op.action,
                "reason": op.reason,
                "depends_on": sorted(op.depends_on),
            }
            for op in plan.operations
        ],
        "converged": [r.key for r in plan.converged],
    }


def format_plan(plan: Plan) -> str:
    if plan.is_empty:
        return f"No changes. {len(plan.converged)} resource(s) converged."
    lines = []
    for op in plan.operations:
        line = f"  {_MARKS.get(op.action, '?')} {op.action:<7} {op.key} ({op.reason})"
        if op.depends_on:
            line += f" after {', '.join(sorted(op.depends_on))}"
        lines.append(line)
    lines.append("")
    creates = sum(1 for op in plan.operations if op.action == "create")
    lines.append(
        f"Plan: {creates} to create, {len(plan.operations) - creates} to update, "
        f"{len(plan.converged)} unchanged."
    )
    return "\n".join(lines)


@contextmanager
def _cancel_on_signals(token: CancelToken) -> Iterator[None]:
    """SIGINT/SIGTERM stop new operations from starting; running ones finish."""

    def handler(signum, frame):
        typer.secho(
            f"\nreceived {signal.Signals(signum).name}, finishing running operations...",
            fg=typer.colors.YELLOW,
            err=True,
        )
        token.cancel()

    previous = {s: signal.signal(s, handler) for s in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for s, h in previous.items():
            signal.signal(s, h)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def plan(
    config: Path = ConfigOpt,
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
    debug: bool = DebugOpt,
    events: bool = EventsOpt,
    log_dir: Optional[Path] = LogDirOpt,
) -> None:
    """Show what apply would change (dry run)."""
    run = _prepare(config, debug, events, log_dir)
    if as_json:
        typer.echo(json.dumps(plan_to_dict(run.plan), indent=2))
    else:
        typer.echo(format_plan(run.plan))
    raise typer.Exit(EXIT_OK)


@app.command()
def apply(
    config: Path = ConfigOpt,
    workers: int = typer.Option(4, "--workers", min=1, help="Operations run in parallel"),
    retries: int = typer.Option(3, "--retries", min=1, help="Attempts for installs, builds and service starts"),
    backoff: float = typer.Option(2.0, "--backoff", min=0.0, help="Seconds before the first retry"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    debug: bool = DebugOpt,
    events: bool = EventsOpt,
    log_dir: Optional[Path] = LogDirOpt,
) -> None:
    """Converge the host to the desired state."""
    run = _prepare(config, debug, events, log_dir)

    if not as_json:
        typer.echo(format_plan(run.plan))

    token = CancelToken()
    with _cancel_on_signals(token):
        results = apply_plan(
            run.plan,
            run.handlers,
            options=ApplyOptions(workers=workers, retries=retries, backoff_seconds=backoff),
            bus=run.bus,
            run_ctx=run.ctx,
            cancel=token,
        )

    report = summarize(results)
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        typer.echo("")
        typer.echo(render_report(report))

    if report.was_cancelled:
        raise typer.Exit(EXIT_CANCELLED)
    if report.failed:
        raise typer.Exit(EXIT_FAILED)
    raise typer.Exit(EXIT_OK)


@app.command()
def render(
    config: Path = ConfigOpt,
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", file_okay=False, help="Write artifacts here instead of printing"
    ),
) -> None:
    """Render the generated files without touching the host."""
    try:
        cfg = load_config(config)
        artifacts = rendered_artifacts(cfg)
    except ValidationError as e:
        typer.secho(f"invalid desired state: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_ABORTED)

    for rel, data in sorted(artifacts.items()):
        if output is None:
            typer.secho(f"==> {rel} <==", bold=True)
            typer.echo(data.decode("utf-8", "replace"))
        else:
            atomic_write(output / rel, data)
            typer.echo(f"wrote {output / rel}")


if __name__ == "__main__":
    app()
