"""Tests for MCP server tool functions."""

import asyncio
from pathlib import Path

import pytest

from conftest import FakeAdapter
from wrench.config import WrenchConfig
from wrench.core.registry import ServiceRegistry
from wrench.core.toolkit import Toolkit
from wrench.mcp.server import create_server
from wrench.models import PcFingerprint, ResultStatus


def _toolkit(tmp_path: Path, *adapters) -> Toolkit:
    registry = ServiceRegistry(adapters or [FakeAdapter("alpha", delay=0.01), FakeAdapter("beta")])
    return Toolkit(WrenchConfig(project_path=tmp_path), registry, fingerprint_fn=PcFingerprint)


class TestMcpToolsDirect:
    """The toolkit calls and formatters behind each tool, without the server."""

    def test_catalog_flow(self, tmp_path):
        from wrench.mcp.formatters import format_catalog

        with _toolkit(tmp_path) as tk:
            definitions = tk.registry.definitions()
            missing = tk.registry.missing_requirements([d.id for d in definitions], tk.locator)
            out = format_catalog(definitions, tk.catalog.presets(), tk.locator.all_statuses(), missing)

        assert "`alpha`" in out
        assert "diagnostics" in out
        assert "smartctl" in out

    def test_start_and_follow_flow(self, tmp_path):
        from wrench.mcp.formatters import format_estimates, format_events, format_state

        with _toolkit(tmp_path) as tk:
            sub = tk.bus.subscribe()
            plan = tk.catalog.resolve(["alpha", "beta"])
            estimates, total = tk.estimate_plan(plan)
            started = format_state(tk.coordinator.start(plan)) + format_estimates(estimates, total)
            final = tk.coordinator.wait(timeout=10)
            events = format_events(sub.drain(100), sub.dropped)

        assert "running" in started
        assert "**Total:** 20.0s" in started
        assert "service.started" in events
        assert "run completed" in events
        assert "**Status:** completed" in format_state(final)

    def test_estimate_flow(self, tmp_path):
        from wrench.mcp.formatters import format_estimate

        with _toolkit(tmp_path) as tk:
            tk.estimator.record_sample("alpha", PcFingerprint(), 42.0)
            out = format_estimate(tk.estimate_target("alpha"))

        assert "**alpha:** 42.0s" in out
        assert "source: mean" in out

    def test_stats_flow(self, tmp_path):
        from wrench.mcp.formatters import format_stats

        with _toolkit(tmp_path) as tk:
            for seconds in (118.0, 120.0, 125.0, 900.0):
                tk.estimator.record_sample("sfc", PcFingerprint(), seconds)
            out = format_stats(tk.estimator.all_stats())

        assert "| `sfc` | 4 | 2m 01s |" in out

    def test_report_flow(self, tmp_path):
        from wrench.mcp.formatters import format_report, format_reports

        with _toolkit(tmp_path) as tk:
            tk.coordinator.start(tk.catalog.resolve(["alpha"]))
            state = tk.coordinator.wait(timeout=10)
            listing = format_reports(tk.reports.list())
            detail = format_report(tk.reports.get(state.run_id[:8]))

        assert state.run_id[:12] in listing
        assert "alpha done" in detail


class TestCreateServer:
    @pytest.fixture
    def server(self, tmp_path):
        failing = FakeAdapter("gamma", status=ResultStatus.FAILURE)
        tk = _toolkit(tmp_path, FakeAdapter("alpha", delay=0.01), failing)
        yield create_server(WrenchConfig(project_path=tmp_path), toolkit=tk)
        tk.close()

    @staticmethod
    def _call(server, name, **arguments) -> str:
        result = asyncio.run(server.call_tool(name, arguments))
        # FastMCP returns either a content list or a (content, structured) pair
        content = result[0] if isinstance(result, tuple) else result
        return "\n".join(c.text for c in content)

    def test_registers_tools(self, server):
        tools = asyncio.run(server.list_tools())
        names = {t.name for t in tools}
        assert {"wrench_catalog", "wrench_start", "wrench_state", "wrench_cancel",
                "wrench_events", "wrench_estimate", "wrench_stats",
                "wrench_reports", "wrench_report"} <= names

    def test_state_before_any_run(self, server):
        assert "idle" in self._call(server, "wrench_state")

    def test_cancel_without_run(self, server):
        assert self._call(server, "wrench_cancel") == "No run is active."

    def test_start_requires_one_source(self, server):
        out = self._call(server, "wrench_start", preset="diagnostics", services=["alpha"])
        assert out == "Give either a preset or a list of services."

    def test_start_unknown_service(self, server):
        out = self._call(server, "wrench_start", services=["nope"])
        assert out.startswith("Cannot start run:")

    def test_unknown_report(self, server):
        out = self._call(server, "wrench_report", report_id="deadbeefcafe")
        assert out.startswith("Report not found:")

    def test_estimate_needs_input(self, server):
        assert self._call(server, "wrench_estimate") == "Give a target or a list of services."

    def test_start_records_names(self, server):
        out = self._call(
            server, "wrench_start", services=["alpha"], technician="Sam", customer="Acme Ltd"
        )
        assert "**Technician:** Sam" in out
        assert "**Customer:** Acme Ltd" in out

    def test_start_enable_outside_plan(self, server):
        out = self._call(server, "wrench_start", services=["alpha"], enable=["gamma"])
        assert out.startswith("Cannot start run:")

    def test_estimate_options_for_preset(self, server):
        out = self._call(server, "wrench_estimate", target="diagnostics", options={"count": 2})
        assert out.startswith("Cannot estimate:")
