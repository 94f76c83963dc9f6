"""Tests for markdown formatters."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from wrench.core.programs import REQUIRED_PROGRAMS, ProgramStatus
from wrench.mcp.formatters import (
    _secs,
    format_catalog,
    format_estimate,
    format_estimates,
    format_event,
    format_events,
    format_presets,
    format_programs,
    format_report,
    format_reports,
    format_result,
    format_services,
    format_state,
    format_stats,
)
from wrench.models import (
    DurationEstimate,
    EstimateSource,
    EventKind,
    FindingSeverity,
    OptionKind,
    OptionSpec,
    PlanItem,
    PresetEntry,
    ResultStatus,
    RunEvent,
    RunStatus,
    ServiceDefinition,
    ServiceFinding,
    ServicePreset,
    ServiceReport,
    ServiceResult,
    ServiceRunState,
    TimeStats,
)

T0 = datetime(2026, 4, 2, 9, 30, tzinfo=timezone.utc)

SMARTCTL = ServiceDefinition(
    id="smartctl",
    name="Drive Health",
    description="",
    category="diagnostics",
    options=(OptionSpec("device", "Device", OptionKind.TEXT, "all"),),
    required_programs=("smartctl",),
)


def _result(status=ResultStatus.WARNING, output="raw"):
    return ServiceResult(
        service_id="disk_space",
        status=status,
        findings=(ServiceFinding(FindingSeverity.WARNING, "C: is 91% full"),),
        duration_seconds=1.5,
        output=output,
        started_at=T0,
        finished_at=T0 + timedelta(seconds=1.5),
    )


def _state(**overrides):
    base = dict(
        run_id="0123456789abcdef0123",
        status=RunStatus.COMPLETED,
        results=(_result(),),
        preset_id="diagnostics",
        started_at=T0,
        finished_at=T0 + timedelta(seconds=75),
    )
    base.update(overrides)
    return ServiceRunState(**base)


class TestSeconds:
    def test_ranges(self):
        assert _secs(None) == "—"
        assert _secs(4.0) == "4.0s"
        assert _secs(75) == "1m 15s"
        assert _secs(7260) == "2h 01m"


class TestCatalog:
    def test_services(self):
        out = format_services([SMARTCTL], {"smartctl": ["smartctl"]})
        assert "`smartctl`" in out
        assert "`device`='all'" in out
        assert "smartctl (missing)" in out

    def test_services_empty(self):
        assert format_services([]) == "No services registered."

    def test_presets(self):
        presets = [
            ServicePreset("diagnostics", "Diagnostics", (PresetEntry("disk_space"),), builtin=True),
            ServicePreset("mine", "Mine", (PresetEntry("sfc"), PresetEntry("winsat"))),
        ]
        out = format_presets(presets)
        assert "built-in" in out
        assert "| custom | sfc, winsat |" in out

    def test_optional_entries_marked(self):
        preset = ServicePreset(
            "complete", "Complete", (PresetEntry("sfc"), PresetEntry("heavyload", enabled=False))
        )
        assert "sfc, heavyload (optional)" in format_presets([preset])

    def test_programs(self):
        statuses = [
            ProgramStatus(REQUIRED_PROGRAMS["smartctl"], Path("/usr/sbin/smartctl")),
            ProgramStatus(REQUIRED_PROGRAMS["kvrt"], None),
        ]
        out = format_programs(statuses)
        assert "`smartctl` | found" in out
        assert "`kvrt` | **missing**" in out

    def test_catalog_joins_sections(self):
        out = format_catalog([SMARTCTL], [], [])
        assert "## Services" in out
        assert "No presets found." in out
        assert "No required programs defined." in out


class TestState:
    def test_idle(self):
        assert "idle" in format_state(ServiceRunState())

    def test_finished(self):
        out = format_state(_state())
        assert "## Run `0123456789ab`" in out
        assert "**Status:** completed" in out
        assert "**Duration:** 1m 15s" in out
        assert "### disk_space: WARNING (1.5s)" in out

    def test_names_shown_when_set(self):
        assert "Technician" not in format_state(_state())
        out = format_state(_state(technician="Sam", customer="Acme Ltd"))
        assert "**Technician:** Sam" in out
        assert "**Customer:** Acme Ltd" in out

    def test_running_shows_current_and_queue(self):
        out = format_state(
            _state(
                status=RunStatus.RUNNING,
                results=(),
                current="sfc",
                queue=(PlanItem("winsat"), PlanItem("heavyload")),
                finished_at=None,
            )
        )
        assert "**Current:** `sfc`" in out
        assert "**Queued:** winsat, heavyload" in out
        assert "Duration" not in out

    def test_result_without_findings(self):
        result = ServiceResult(service_id="sfc", status=ResultStatus.SUCCESS)
        assert "*No findings*" in format_result(result)


class TestEvents:
    def _event(self, kind, payload, service_id="ping_test"):
        return RunEvent(kind=kind, run_id="r", service_id=service_id, payload=payload, emitted_at=T0)

    def test_kinds(self):
        assert "run completed" in format_event(
            self._event(EventKind.RUN_STATUS, {"status": "completed"}, None)
        )
        assert "started (2/5)" in format_event(
            self._event(EventKind.SERVICE_STARTED, {"index": 2, "total": 5})
        )
        assert "success in 3.0s" in format_event(
            self._event(
                EventKind.SERVICE_COMPLETED,
                {"result": {"status": "success", "duration_seconds": 3.0}},
            )
        )
        assert "[CRITICAL] packet loss" in format_event(
            self._event(
                EventKind.SERVICE_PROGRESS,
                {"finding": {"severity": "critical", "message": "packet loss"}},
            )
        )
        assert "40%" in format_event(self._event(EventKind.SERVICE_PROGRESS, {"percent": 40.0}))
        assert "Reply from 8.8.8.8" in format_event(
            self._event(EventKind.SERVICE_PROGRESS, {"line": "Reply from 8.8.8.8"})
        )

    def test_events_list(self):
        out = format_events([self._event(EventKind.SERVICE_PROGRESS, {"line": "x"})], dropped=3)
        assert "09:30:00" in out
        assert "3 event(s) dropped" in out

    def test_no_events(self):
        assert "No new events." in format_events([])


class TestEstimates:
    def test_single(self):
        est = DurationEstimate("sfc", 600.0, 6, EstimateSource.MODEL, "high")
        out = format_estimate(est)
        assert "**sfc:** 10m 00s" in out
        assert "source: model" in out
        assert "confidence: high" in out

    def test_plan(self):
        estimates = [
            DurationEstimate("disk_space", 2.0, 0, EstimateSource.DEFAULT, "low"),
            DurationEstimate("ping_test", 8.0, 3, EstimateSource.MEAN, "medium"),
        ]
        out = format_estimates(estimates, 10.0)
        assert "`ping_test` | 8.0s | mean | 3 | medium" in out
        assert "**Total:** 10.0s" in out

    def test_plan_empty(self):
        assert format_estimates([], 0.0) == "No services to estimate."

    def test_stats(self):
        stats = TimeStats("sfc", 4, 121.0, 118.0, 125.0, 120.0, 2.9, "medium")
        out = format_stats([stats])
        assert "| `sfc` | 4 | 2m 01s |" in out
        assert format_stats([]) == "No duration samples recorded."


class TestReports:
    def test_list(self):
        report = ServiceReport("0123456789abcdef0123", _state(), created_at=T0)
        out = format_reports([report])
        assert "`0123456789ab`" in out
        assert "2026-04-02 09:30" in out
        assert format_reports([]) == "No reports found."

    def test_single_without_output(self):
        report = ServiceReport("r1", _state(), machine={"hostname": "bench-pc"}, created_at=T0)
        out = format_report(report)
        assert "**Host:** bench-pc" in out
        assert "C: is 91% full" in out
        assert "```" not in out

    def test_single_names(self):
        unnamed = format_report(ServiceReport("r1", _state(), created_at=T0))
        assert "**Technician:** —" in unnamed
        named = ServiceReport("r1", _state(technician="Sam", customer="Acme Ltd"), created_at=T0)
        out = format_report(named)
        assert "**Technician:** Sam" in out
        assert "**Customer:** Acme Ltd" in out

    def test_single_with_output(self):
        report = ServiceReport("r1", _state(), created_at=T0)
        out = format_report(report, include_output=True)
        assert "```\nraw\n```" in out
