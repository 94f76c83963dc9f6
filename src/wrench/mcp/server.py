"""FastMCP server factory with tools for running services and estimating durations."""

from __future__ import annotations

import sqlite3
from typing import Any

from wrench.config import WrenchConfig
from wrench.core.toolkit import Toolkit
from wrench.errors import WrenchError
from wrench.mcp.formatters import (
    format_catalog,
    format_estimate,
    format_estimates,
    format_events,
    format_report,
    format_reports,
    format_state,
    format_stats,
)


def create_server(config: WrenchConfig | None = None, toolkit: Toolkit | None = None):
    """Create and return a configured FastMCP server instance.

    The server owns one long-lived Toolkit, so a run started by one tool call
    keeps going (and stays observable) across later calls.

    Args:
        config: Optional pre-loaded config. If None, loads from cwd.
        toolkit: Optional pre-built toolkit (tests). Opened on first use.
    """
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("wrench", instructions="Run PC maintenance services and estimate their duration")
    _config = config or WrenchConfig.load()
    _state: dict[str, Any] = {"toolkit": toolkit, "subscription": None}

    def _tk() -> Toolkit:
        if _state["toolkit"] is None:
            _state["toolkit"] = Toolkit(_config)
        tk = _state["toolkit"]
        if _state["subscription"] is None:
            tk.open()
            # Events published before the first tool call are not retained
            _state["subscription"] = tk.bus.subscribe()
        return tk

    @mcp.tool()
    def wrench_catalog() -> str:
        """List services (with options), presets, and required program availability."""
        try:
            tk = _tk()
            definitions = tk.registry.definitions()
            missing = tk.registry.missing_requirements([d.id for d in definitions], tk.locator)
            return format_catalog(
                definitions, tk.catalog.presets(), tk.locator.all_statuses(), missing
            )
        except (sqlite3.Error, OSError) as exc:
            return f"Error reading catalog: {exc}"

    @mcp.tool()
    def wrench_start(
        preset: str | None = None,
        services: list[str] | None = None,
        options: dict[str, dict[str, Any]] | None = None,
        enable: list[str] | None = None,
        technician: str | None = None,
        customer: str | None = None,
    ) -> str:
        """Start a run of a preset or an explicit list of services.

        Returns immediately; poll wrench_state or wrench_events for progress.

        Args:
            preset: Preset id or name (e.g. "diagnostics", "general", "complete")
            services: Service ids in run order (used when no preset is given)
            options: Per-service option overrides, e.g. {"ping_test": {"count": 10}}
            enable: Optional preset services to include, e.g. ["heavyload"]
            technician: Technician name recorded on the report
            customer: Customer name recorded on the report
        """
        if bool(preset) == bool(services):
            return "Give either a preset or a list of services."

        try:
            tk = _tk()
            if preset:
                chosen = tk.catalog.preset(preset)
                plan = tk.catalog.resolve(chosen.id, options, enable or ())
                preset_id = chosen.id
            else:
                plan = tk.catalog.resolve(services or [], options, enable or ())
                preset_id = None
            estimates, total = tk.estimate_plan(plan)
            state = tk.coordinator.start(
                plan, preset_id=preset_id, technician=technician, customer=customer
            )
        except WrenchError as exc:
            return f"Cannot start run: {exc}"
        except (sqlite3.Error, OSError) as exc:
            return f"Error starting run: {exc}"

        return format_state(state) + "\n\n" + format_estimates(estimates, total)

    @mcp.tool()
    def wrench_state() -> str:
        """Show the current run: status, current service, queue and results so far."""
        try:
            return format_state(_tk().coordinator.current_state())
        except (sqlite3.Error, OSError) as exc:
            return f"Error reading state: {exc}"

    @mcp.tool()
    def wrench_cancel() -> str:
        """Cancel the active run. The running tool is terminated and the queue cleared."""
        try:
            tk = _tk()
            if not tk.coordinator.cancel():
                return "No run is active."
            state = tk.coordinator.wait(timeout=10)
            return format_state(state)
        except (sqlite3.Error, OSError) as exc:
            return f"Error cancelling run: {exc}"

    @mcp.tool()
    def wrench_events(limit: int | None = None) -> str:
        """Drain progress events published since the last call.

        Args:
            limit: Max events to return (default 100)
        """
        try:
            _tk()
            sub = _state["subscription"]
            events = sub.drain(limit if limit is not None else 100)
            dropped, sub.dropped = sub.dropped, 0
            return format_events(events, dropped)
        except (sqlite3.Error, OSError) as exc:
            return f"Error reading events: {exc}"

    @mcp.tool()
    def wrench_estimate(
        target: str | None = None,
        services: list[str] | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Predict how long a service, preset, or list of services will take here.

        Estimates are specific to option values: a 60 minute stress test is
        predicted from earlier 60 minute runs, not from 1 minute ones.

        Args:
            target: Service id, preset id or preset name
            services: Service ids to estimate as a plan (used when no target is given)
            options: Option values for a service target, e.g. {"duration_minutes": 60}
        """
        try:
            tk = _tk()
            if target:
                return format_estimate(tk.estimate_target(target, options=options))
            if not services:
                return "Give a target or a list of services."
            estimates, total = tk.estimate_plan(tk.catalog.resolve(services))
            return format_estimates(estimates, total)
        except WrenchError as exc:
            return f"Cannot estimate: {exc}"
        except (sqlite3.Error, OSError) as exc:
            return f"Error estimating: {exc}"

    @mcp.tool()
    def wrench_stats(target: str | None = None) -> str:
        """Show recorded duration statistics (outliers removed).

        Args:
            target: Service or preset id (omit for all)
        """
        try:
            tk = _tk()
            if target:
                one = tk.estimator.stats(target)
                return format_stats([one] if one else [])
            return format_stats(tk.estimator.all_stats())
        except (sqlite3.Error, OSError) as exc:
            return f"Error reading statistics: {exc}"

    @mcp.tool()
    def wrench_reports(limit: int | None = None) -> str:
        """List saved run reports, newest first.

        Args:
            limit: Max reports to return (default 20)
        """
        try:
            return format_reports(_tk().reports.list(limit=limit if limit is not None else 20))
        except OSError as exc:
            return f"Error listing reports: {exc}"

    @mcp.tool()
    def wrench_report(report_id: str, include_output: bool = False) -> str:
        """Show one saved report.

        Args:
            report_id: Report id (or 8+ char prefix)
            include_output: Include raw tool output (default false)
        """
        try:
            return format_report(_tk().reports.get(report_id), include_output=include_output)
        except WrenchError as exc:
            return f"Report not found: {exc}"
        except (OSError, ValueError, KeyError, TypeError) as exc:
            return f"Error reading report: {exc}"

    return mcp


def main() -> None:
    """Entry point for wrench-mcp (stdio transport)."""
    from wrench.logging_setup import setup_logging

    setup_logging()
    server = create_server()
    server.run()


if __name__ == "__main__":
    main()
