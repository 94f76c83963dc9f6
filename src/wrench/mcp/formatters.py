"""Markdown formatters for LLM-friendly output."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from wrench.core.programs import ProgramStatus
from wrench.models import (
    DurationEstimate,
    EventKind,
    RunEvent,
    ServiceDefinition,
    ServicePreset,
    ServiceReport,
    ServiceResult,
    ServiceRunState,
    TimeStats,
)


def _secs(seconds: float | None) -> str:
    if seconds is None:
        return "—"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def format_services(
    definitions: Sequence[ServiceDefinition],
    missing: Mapping[str, Sequence[str]] | None = None,
) -> str:
    """Format service definitions with their options as a table."""
    if not definitions:
        return "No services registered."
    missing = missing or {}

    lines = [
        "## Services",
        "",
        "| ID | Name | Category | Options | Requires |",
        "|----|------|----------|---------|----------|",
    ]
    for d in definitions:
        opts = ", ".join(f"`{o.id}`={o.default!r}" for o in d.options) or "—"
        reqs = ", ".join(
            f"{p} (missing)" if p in missing.get(d.id, ()) else p for p in d.required_programs
        ) or "—"
        lines.append(f"| `{d.id}` | {d.name} | {d.category} | {opts} | {reqs} |")

    return "\n".join(lines)


def format_presets(presets: Sequence[ServicePreset]) -> str:
    """Format presets as a table."""
    if not presets:
        return "No presets found."

    lines = [
        "## Presets",
        "",
        "| ID | Name | Type | Services |",
        "|----|------|------|----------|",
    ]
    for p in presets:
        kind = "built-in" if p.builtin else "custom"
        services = ", ".join(
            e.service_id if e.enabled else f"{e.service_id} (optional)" for e in p.entries
        )
        lines.append(f"| `{p.id}` | {p.name} | {kind} | {services} |")

    return "\n".join(lines)


def format_programs(statuses: Sequence[ProgramStatus]) -> str:
    """Format required program lookup results."""
    if not statuses:
        return "No required programs defined."

    lines = [
        "## Required Programs",
        "",
        "| ID | Status | Path |",
        "|----|--------|------|",
    ]
    for s in statuses:
        status = "found" if s.found else "**missing**"
        path = f"`{s.path}`" if s.path else "—"
        lines.append(f"| `{s.definition.id}` | {status} | {path} |")

    return "\n".join(lines)


def format_catalog(
    definitions: Sequence[ServiceDefinition],
    presets: Sequence[ServicePreset],
    statuses: Sequence[ProgramStatus],
    missing: Mapping[str, Sequence[str]] | None = None,
) -> str:
    return "\n\n".join([
        format_services(definitions, missing),
        format_presets(presets),
        format_programs(statuses),
    ])


def format_result(result: ServiceResult) -> str:
    """Format one service result with its findings."""
    lines = [
        f"### {result.service_id}: {result.status.value.upper()} ({_secs(result.duration_seconds)})",
    ]
    if not result.findings:
        lines.append("*No findings*")
    for f in result.findings:
        lines.append(f"- **[{f.severity.value.upper()}]** {f.message}")
    return "\n".join(lines)


def format_state(state: ServiceRunState) -> str:
    """Format the coordinator's run state."""
    if state.run_id is None:
        return "No run has been started. Status: **idle**."

    lines = [
        f"## Run `{state.run_id[:12]}`",
        f"**Status:** {state.status.value}  ",
        f"**Preset:** {state.preset_id or '—'}  ",
        f"**Started:** {state.started_at.isoformat() if state.started_at else '—'}  ",
    ]
    if state.technician:
        lines.append(f"**Technician:** {state.technician}  ")
    if state.customer:
        lines.append(f"**Customer:** {state.customer}  ")
    if state.finished_at:
        lines.append(f"**Duration:** {_secs(state.total_duration_seconds)}  ")
    if state.current:
        lines.append(f"**Current:** `{state.current}`  ")
    if state.queue:
        lines.append(f"**Queued:** {', '.join(i.service_id for i in state.queue)}  ")

    if state.results:
        lines.append("")
        lines.extend(format_result(r) for r in state.results)

    return "\n".join(lines)


def format_event(event: RunEvent) -> str:
    ts = event.emitted_at.strftime("%H:%M:%S")
    payload = event.payload
    service = f" *{event.service_id}*" if event.service_id else ""

    if event.kind == EventKind.RUN_STATUS:
        detail = f"run {payload.get('status')}"
    elif event.kind == EventKind.SERVICE_STARTED:
        detail = f"started ({payload.get('index')}/{payload.get('total')})"
    elif event.kind == EventKind.SERVICE_COMPLETED:
        result = payload.get("result", {})
        detail = f"{result.get('status')} in {_secs(result.get('duration_seconds'))}"
    elif "finding" in payload:
        f = payload["finding"]
        detail = f"[{f['severity'].upper()}] {f['message']}"
    elif "percent" in payload:
        detail = f"{payload['percent']:.0f}%"
    else:
        detail = str(payload.get("line", ""))

    return f"- `{ts}` **{event.kind.value}**{service} — {detail}"


def format_events(events: Sequence[RunEvent], dropped: int = 0) -> str:
    """Format drained bus events as a bulleted list."""
    lines = ["## Events", ""]
    if not events:
        lines.append("No new events.")
    lines.extend(format_event(e) for e in events)
    if dropped:
        lines.append(f"\n*{dropped} event(s) dropped because the queue was full.*")
    return "\n".join(lines)


def format_estimate(est: DurationEstimate) -> str:
    return (
        f"**{est.target_id}:** {_secs(est.seconds)} "
        f"(source: {est.source.value}, samples: {est.sample_count}, confidence: {est.confidence})"
    )


def format_estimates(estimates: Sequence[DurationEstimate], total: float) -> str:
    """Format per-service estimates for a plan plus the total."""
    if not estimates:
        return "No services to estimate."

    lines = [
        "## Estimated Duration",
        "",
        "| Service | Estimate | Source | Samples | Confidence |",
        "|---------|----------|--------|---------|------------|",
    ]
    for e in estimates:
        lines.append(
            f"| `{e.target_id}` | {_secs(e.seconds)} | {e.source.value} "
            f"| {e.sample_count} | {e.confidence} |"
        )
    lines.extend(["", f"**Total:** {_secs(total)}"])
    return "\n".join(lines)


def format_stats(stats: Sequence[TimeStats]) -> str:
    """Format duration statistics as a table."""
    if not stats:
        return "No duration samples recorded."

    lines = [
        "## Duration Statistics",
        "",
        "| Target | Samples | Mean | Median | Min | Max | Confidence |",
        "|--------|---------|------|--------|-----|-----|------------|",
    ]
    for s in stats:
        lines.append(
            f"| `{s.target_id}` | {s.sample_count} | {_secs(s.mean_seconds)} "
            f"| {_secs(s.median_seconds)} | {_secs(s.min_seconds)} "
            f"| {_secs(s.max_seconds)} | {s.confidence} |"
        )
    return "\n".join(lines)


def format_reports(reports: Sequence[ServiceReport]) -> str:
    """Format saved reports, newest first."""
    if not reports:
        return "No reports found."

    lines = [
        "## Reports",
        "",
        "| ID | Created | Preset | Status | Services |",
        "|----|---------|--------|--------|----------|",
    ]
    for r in reports:
        lines.append(
            f"| `{r.report_id[:12]}` | {r.created_at.strftime('%Y-%m-%d %H:%M')} "
            f"| {r.run.preset_id or '—'} | {r.run.status.value} | {len(r.run.results)} |"
        )
    return "\n".join(lines)


def format_report(report: ServiceReport, include_output: bool = False) -> str:
    """Format a single report with every result."""
    run = report.run
    lines = [
        f"## Report `{report.report_id}`",
        f"**Created:** {report.created_at.isoformat()}  ",
        f"**Host:** {report.machine.get('hostname', '—')}  ",
        f"**Technician:** {report.technician or '—'}  ",
        f"**Customer:** {report.customer or '—'}  ",
        f"**Status:** {run.status.value}  ",
        f"**Preset:** {run.preset_id or '—'}  ",
        f"**Duration:** {_secs(run.total_duration_seconds)}",
        "",
    ]
    for r in run.results:
        lines.append(format_result(r))
        if include_output and r.output:
            lines.extend(["", "```", r.output, "```"])
        lines.append("")

    return "\n".join(lines).rstrip()
