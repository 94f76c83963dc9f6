"""Typer CLI for running maintenance services and querying duration estimates."""

from __future__ import annotations

import sqlite3
from typing import Annotated, Any, Optional

import typer
from rich.console import Console

from wrench.config import WrenchConfig
from wrench.core.toolkit import Toolkit
from wrench.errors import WrenchError
from wrench.models import EventKind, RunStatus

app = typer.Typer(
    name="wrench",
    help="Run PC maintenance services, stream their progress, and estimate how long they take.",
    no_args_is_help=True,
)
console = Console(stderr=True)

_STATUS_STYLE = {
    "success": "green",
    "warning": "yellow",
    "failure": "red",
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
}
_SEVERITY_STYLE = {"success": "green", "info": "cyan", "warning": "yellow", "critical": "red"}


def _config() -> WrenchConfig:
    return WrenchConfig.load()


def _open_toolkit(config: WrenchConfig) -> Toolkit:
    toolkit = Toolkit(config)
    toolkit.open()
    return toolkit


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _fmt_seconds(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def _parse_overrides(raw: list[str]) -> dict[str, dict[str, Any]]:
    """``svc.key=value`` strings -> {svc: {key: value}}. Values stay strings; validation coerces."""
    overrides: dict[str, dict[str, Any]] = {}
    for item in raw:
        target, sep, value = item.partition("=")
        service_id, dot, key = target.partition(".")
        if not sep or not dot or not service_id or not key:
            _fail(f"Invalid --option '{item}', expected service.option=value")
        overrides.setdefault(service_id, {})[key] = value
    return overrides


@app.command()
def services() -> None:
    """List available services and their options."""
    config = _config()

    with _open_toolkit(config) as tk:
        definitions = tk.registry.definitions()
        missing = tk.registry.missing_requirements([d.id for d in definitions], tk.locator)

    from rich.table import Table

    table = Table(title="Services")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Options")
    table.add_column("Requires")

    for d in definitions:
        opts = ", ".join(f"{o.id}={o.default}" for o in d.options) or "—"
        reqs = ", ".join(
            f"[red]{p}[/red]" if p in missing.get(d.id, []) else p for p in d.required_programs
        ) or "—"
        table.add_row(d.id, d.name, d.category, opts, reqs)
    console.print(table)


@app.command()
def presets() -> None:
    """List built-in and custom presets."""
    config = _config()

    with _open_toolkit(config) as tk:
        items = tk.catalog.presets()

    from rich.table import Table

    table = Table(title="Presets")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Services")

    for p in items:
        services = ", ".join(
            e.service_id if e.enabled else f"[dim]{e.service_id} (optional)[/dim]"
            for e in p.entries
        )
        table.add_row(p.id, p.name, "built-in" if p.builtin else "custom", services)
    console.print(table)


@app.command()
def run(
    preset: Annotated[Optional[str], typer.Option("--preset", "-p", help="Preset id or name")] = None,
    service: Annotated[
        Optional[list[str]], typer.Option("--service", "-s", help="Service id (repeatable)")
    ] = None,
    option: Annotated[
        Optional[list[str]], typer.Option("--option", "-o", help="service.option=value (repeatable)")
    ] = None,
    enable: Annotated[
        Optional[list[str]],
        typer.Option("--enable", "-e", help="Turn on an optional preset service (repeatable)"),
    ] = None,
    technician: Annotated[
        Optional[str], typer.Option("--technician", help="Technician name for the report")
    ] = None,
    customer: Annotated[
        Optional[str], typer.Option("--customer", help="Customer name for the report")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show tool output")] = False,
) -> None:
    """Run a preset or a list of services, streaming progress. Ctrl+C cancels."""
    if bool(preset) == bool(service):
        _fail("Give either --preset or at least one --service")
    overrides = _parse_overrides(option or [])
    config = _config()

    with _open_toolkit(config) as tk:
        try:
            if preset:
                chosen = tk.catalog.preset(preset)
                plan = tk.catalog.resolve(chosen.id, overrides, enable or ())
                preset_id: str | None = chosen.id
            else:
                plan = tk.catalog.resolve(service or [], overrides, enable or ())
                preset_id = None
        except WrenchError as exc:
            _fail(str(exc))

        missing = tk.registry.missing_requirements([i.service_id for i in plan], tk.locator)
        for service_id, programs in missing.items():
            console.print(
                f"[yellow]{service_id} will fail: missing {', '.join(programs)}[/yellow]"
            )

        _, total = tk.estimate_plan(plan)
        console.print(
            f"[bold]Running {len(plan)} service(s)[/bold], estimated {_fmt_seconds(total)}"
        )

        with tk.bus.subscribe() as sub:
            try:
                state = tk.coordinator.start(
                    plan, preset_id=preset_id, technician=technician, customer=customer
                )
            except WrenchError as exc:
                _fail(str(exc))
            final = _follow(tk, sub, state.run_id, verbose)

    style = _STATUS_STYLE.get(final.status.value, "")
    console.print(
        f"\n[{style}]Run {final.status.value}[/{style}] — {len(final.results)} result(s)"
        f" in {_fmt_seconds(final.total_duration_seconds or 0.0)}"
    )
    if config.reports.auto_save:
        console.print(f"  Report: {final.run_id}")
    if final.status != RunStatus.COMPLETED:
        raise typer.Exit(1)


def _follow(tk: Toolkit, sub, run_id: str | None, verbose: bool):
    """Print events for one run until it reaches a terminal state."""
    while True:
        try:
            event = sub.get(timeout=0.25)
            if event is None:
                state = tk.coordinator.current_state()
                if state.run_id == run_id and state.status.is_terminal:
                    return tk.coordinator.wait()
                continue
            if event.run_id != run_id:
                continue
            _print_event(event, verbose)
            if event.kind == EventKind.RUN_STATUS and RunStatus(event.payload["status"]).is_terminal:
                return tk.coordinator.wait()
        except KeyboardInterrupt:
            console.print("\n[yellow]Cancelling...[/yellow]")
            tk.coordinator.cancel()


def _print_event(event, verbose: bool) -> None:
    payload = event.payload
    if event.kind == EventKind.SERVICE_STARTED:
        console.print(
            f"\n[bold]→ {event.service_id}[/bold] ({payload.get('index')}/{payload.get('total')})"
        )
    elif event.kind == EventKind.SERVICE_PROGRESS:
        if "finding" in payload:
            f = payload["finding"]
            style = _SEVERITY_STYLE.get(f["severity"], "")
            console.print(f"  [{style}]{f['severity'].upper()}[/{style}] {f['message']}")
        elif "line" in payload and verbose:
            console.print(f"  [dim]{payload['line']}[/dim]")
    elif event.kind == EventKind.SERVICE_COMPLETED:
        result = payload["result"]
        style = _STATUS_STYLE.get(result["status"], "")
        console.print(
            f"  [{style}]{result['status']}[/{style}] in {_fmt_seconds(result['duration_seconds'])}"
        )
        for f in result["findings"]:
            if not verbose and f["severity"] == "info":
                continue
            fstyle = _SEVERITY_STYLE.get(f["severity"], "")
            console.print(f"    [{fstyle}]•[/{fstyle}] {f['message']}")


@app.command()
def estimate(
    target: Annotated[str, typer.Argument(help="Service id, preset id or preset name")],
    option: Annotated[
        Optional[list[str]],
        typer.Option("--option", "-o", help="service.option=value for a service target"),
    ] = None,
) -> None:
    """Predict how long a service or preset will take on this machine."""
    overrides = _parse_overrides(option or [])
    if set(overrides) - {target}:
        _fail(f"Options can only be given for the service being estimated ({target})")
    config = _config()

    with _open_toolkit(config) as tk:
        try:
            est = tk.estimate_target(target, options=overrides.get(target))
        except WrenchError as exc:
            _fail(str(exc))

    console.print(f"[bold]{est.target_id}[/bold]: {_fmt_seconds(est.seconds)}")
    console.print(
        f"  Source: {est.source.value}  Samples: {est.sample_count}  Confidence: {est.confidence}"
    )


@app.command()
def stats(
    target: Annotated[Optional[str], typer.Argument(help="Service or preset id (omit for all)")] = None,
) -> None:
    """Show recorded duration statistics."""
    config = _config()

    with _open_toolkit(config) as tk:
        if target:
            one = tk.estimator.stats(target)
            rows = [one] if one else []
        else:
            rows = tk.estimator.all_stats()

    if not rows:
        console.print("[dim]No duration samples recorded.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Duration Statistics")
    table.add_column("Target", style="bold")
    table.add_column("Samples", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("Median", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("σ", justify="right")
    table.add_column("Confidence")

    for s in rows:
        table.add_row(
            s.target_id,
            str(s.sample_count),
            _fmt_seconds(s.mean_seconds),
            _fmt_seconds(s.median_seconds),
            _fmt_seconds(s.min_seconds),
            _fmt_seconds(s.max_seconds),
            f"{s.stddev_seconds:.1f}s",
            s.confidence,
        )
    console.print(table)


@app.command()
def reports(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max reports")] = 20,
) -> None:
    """List saved run reports, newest first."""
    config = _config()

    with _open_toolkit(config) as tk:
        items = tk.reports.list(limit=limit)

    if not items:
        console.print("[dim]No reports saved.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Reports")
    table.add_column("ID", style="bold")
    table.add_column("Created")
    table.add_column("Preset")
    table.add_column("Status")
    table.add_column("Services", justify="right")

    for r in items:
        style = _STATUS_STYLE.get(r.run.status.value, "")
        table.add_row(
            r.report_id[:12],
            r.created_at.strftime("%Y-%m-%d %H:%M"),
            r.run.preset_id or "—",
            f"[{style}]{r.run.status.value}[/{style}]",
            str(len(r.run.results)),
        )
    console.print(table)


@app.command()
def report(
    report_id: Annotated[str, typer.Argument(help="Report id (or 8+ char prefix)")],
) -> None:
    """Show one report's results and findings."""
    config = _config()

    with _open_toolkit(config) as tk:
        try:
            rep = tk.reports.get(report_id)
        except WrenchError as exc:
            _fail(str(exc))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            _fail(f"Could not read report: {exc}")

    run_state = rep.run
    console.print(f"[bold]Report {rep.report_id}[/bold]")
    console.print(f"  Created: {rep.created_at.isoformat()}  Host: {rep.machine.get('hostname', '?')}")
    console.print(f"  Status: {run_state.status.value}  Preset: {run_state.preset_id or '—'}")
    if rep.technician or rep.customer:
        console.print(
            f"  Technician: {rep.technician or '—'}  Customer: {rep.customer or '—'}"
        )
    for result in run_state.results:
        style = _STATUS_STYLE.get(result.status.value, "")
        console.print(
            f"\n  [bold]{result.service_id}[/bold] [{style}]{result.status.value}[/{style}]"
            f" ({_fmt_seconds(result.duration_seconds)})"
        )
        for f in result.findings:
            fstyle = _SEVERITY_STYLE.get(f.severity.value, "")
            console.print(f"    [{fstyle}]{f.severity.value.upper()}[/{fstyle}] {f.message}")


@app.command("report-delete")
def report_delete(report_id: str) -> None:
    """Delete a saved report."""
    config = _config()

    with _open_toolkit(config) as tk:
        try:
            tk.reports.delete(report_id)
        except WrenchError as exc:
            _fail(str(exc))

    console.print(f"[green]Deleted report:[/green] {report_id}")


@app.command("reports-prune")
def reports_prune(
    days: Annotated[
        Optional[int], typer.Option("--days", "-d", help="Retention in days (default from config)")
    ] = None,
    all_reports: Annotated[bool, typer.Option("--all", help="Delete every report")] = False,
) -> None:
    """Delete old reports."""
    config = _config()

    with _open_toolkit(config) as tk:
        if all_reports:
            removed = tk.reports.clear()
        else:
            retention = days if days is not None else config.reports.retention_days
            if retention <= 0:
                console.print("[dim]Retention is unlimited; nothing to prune.[/dim]")
                return
            removed = tk.reports.prune(retention)

    console.print(f"[green]Removed {removed} report(s)[/green]")


@app.command()
def programs() -> None:
    """Show whether each required external program can be found."""
    config = _config()

    with _open_toolkit(config) as tk:
        statuses = tk.locator.all_statuses()

    from rich.table import Table

    table = Table(title="Required Programs")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Path")

    for s in statuses:
        found = "[green]found[/green]" if s.found else "[red]missing[/red]"
        if s.is_override:
            found += " (override)"
        table.add_row(s.definition.id, s.definition.name, found, str(s.path) if s.path else "—")
    console.print(table)


@app.command("preset-save")
def preset_save(
    name: Annotated[str, typer.Argument(help="Preset display name")],
    service_ids: Annotated[list[str], typer.Argument(help="Service ids, in run order")],
    option: Annotated[
        Optional[list[str]], typer.Option("--option", "-o", help="service.option=value (repeatable)")
    ] = None,
    optional: Annotated[
        Optional[list[str]],
        typer.Option("--optional", help="Service that only runs when enabled (repeatable)"),
    ] = None,
    description: Annotated[str, typer.Option("--description", help="Free text")] = "",
) -> None:
    """Save a custom preset."""
    from wrench.core.presets import make_preset_id
    from wrench.models import PresetEntry, ServicePreset

    overrides = _parse_overrides(option or [])
    config = _config()

    with _open_toolkit(config) as tk:
        try:
            unknown = [sid for sid in overrides if sid not in service_ids]
            if unknown:
                _fail(f"Options given for services not in the preset: {', '.join(unknown)}")
            extra = [sid for sid in optional or [] if sid not in service_ids]
            if extra:
                _fail(f"Optional services must be in the preset: {', '.join(extra)}")
            preset = ServicePreset(
                id=make_preset_id(name),
                name=name,
                description=description,
                entries=tuple(
                    PresetEntry(sid, overrides.get(sid, {}), sid not in (optional or []))
                    for sid in service_ids
                ),
            )
            saved = tk.catalog.save_custom(preset)
        except WrenchError as exc:
            _fail(str(exc))
        except sqlite3.Error as exc:
            _fail(f"Could not save preset: {exc}")

    console.print(f"[green]Saved preset:[/green] {saved.name} ({saved.id})")


@app.command("preset-delete")
def preset_delete(preset_id: str) -> None:
    """Delete a custom preset."""
    config = _config()

    with _open_toolkit(config) as tk:
        try:
            tk.catalog.delete_custom(preset_id)
        except WrenchError as exc:
            _fail(str(exc))

    console.print(f"[green]Deleted preset:[/green] {preset_id}")


@app.command()
def retrain() -> None:
    """Refit every duration model from the recorded samples."""
    config = _config()

    with _open_toolkit(config) as tk:
        fitted = tk.estimator.retrain()

    console.print(f"[green]Retrained {fitted} model(s)[/green]")


@app.command("clear-samples")
def clear_samples(
    target: Annotated[Optional[str], typer.Option("--target", "-t", help="Only this target")] = None,
) -> None:
    """Forget recorded durations (and fitted models)."""
    config = _config()

    with _open_toolkit(config) as tk:
        removed = tk.estimator.clear(target)

    console.print(f"[green]Removed {removed} sample(s)[/green]")


def main() -> None:
    """Entry point for the wrench CLI."""
    from wrench.logging_setup import setup_logging

    setup_logging()
    app()


if __name__ == "__main__":
    main()
