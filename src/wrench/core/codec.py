"""JSON-friendly dict conversion for results, run states, reports and events."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from wrench.models.enums import EventKind, FindingSeverity, ResultStatus, RunStatus
from wrench.models.service import (
    PlanItem,
    RunEvent,
    ServiceFinding,
    ServiceReport,
    ServiceResult,
    ServiceRunState,
)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _parse_dt(s: str | None) -> datetime | None:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def finding_to_dict(f: ServiceFinding) -> dict[str, Any]:
    return {
        "severity": f.severity.value,
        "message": f.message,
        "detail": dict(f.detail) if f.detail is not None else None,
    }


def finding_from_dict(d: dict[str, Any]) -> ServiceFinding:
    return ServiceFinding(
        severity=FindingSeverity(d["severity"]),
        message=d["message"],
        detail=d.get("detail"),
    )


def result_to_dict(r: ServiceResult, include_output: bool = True) -> dict[str, Any]:
    return {
        "service_id": r.service_id,
        "status": r.status.value,
        "findings": [finding_to_dict(f) for f in r.findings],
        "duration_seconds": r.duration_seconds,
        "output": r.output if include_output else None,
        "started_at": _iso(r.started_at),
        "finished_at": _iso(r.finished_at),
    }


def result_from_dict(d: dict[str, Any]) -> ServiceResult:
    return ServiceResult(
        service_id=d["service_id"],
        status=ResultStatus(d["status"]),
        findings=tuple(finding_from_dict(f) for f in d.get("findings", [])),
        duration_seconds=float(d.get("duration_seconds", 0.0)),
        output=d.get("output"),
        started_at=datetime.fromisoformat(d["started_at"]),
        finished_at=datetime.fromisoformat(d["finished_at"]),
    )


def state_to_dict(s: ServiceRunState, include_output: bool = True) -> dict[str, Any]:
    return {
        "run_id": s.run_id,
        "status": s.status.value,
        "preset_id": s.preset_id,
        "current": s.current,
        "queue": [{"service_id": i.service_id, "options": dict(i.options)} for i in s.queue],
        "results": [result_to_dict(r, include_output) for r in s.results],
        "started_at": _iso(s.started_at),
        "finished_at": _iso(s.finished_at),
        "technician": s.technician,
        "customer": s.customer,
    }


def state_from_dict(d: dict[str, Any]) -> ServiceRunState:
    return ServiceRunState(
        run_id=d.get("run_id"),
        status=RunStatus(d["status"]),
        queue=tuple(PlanItem(i["service_id"], i.get("options", {})) for i in d.get("queue", [])),
        current=d.get("current"),
        results=tuple(result_from_dict(r) for r in d.get("results", [])),
        preset_id=d.get("preset_id"),
        started_at=_parse_dt(d.get("started_at")),
        finished_at=_parse_dt(d.get("finished_at")),
        technician=d.get("technician"),
        customer=d.get("customer"),
    )


def report_to_dict(r: ServiceReport, include_output: bool = True) -> dict[str, Any]:
    return {
        "report_id": r.report_id,
        "created_at": _iso(r.created_at),
        "machine": dict(r.machine),
        "run": state_to_dict(r.run, include_output),
    }


def report_from_dict(d: dict[str, Any]) -> ServiceReport:
    return ServiceReport(
        report_id=d["report_id"],
        run=state_from_dict(d["run"]),
        machine=d.get("machine", {}),
        created_at=datetime.fromisoformat(d["created_at"]),
    )


def event_to_dict(e: RunEvent) -> dict[str, Any]:
    return {
        "kind": e.kind.value,
        "run_id": e.run_id,
        "service_id": e.service_id,
        "payload": dict(e.payload),
        "emitted_at": _iso(e.emitted_at),
    }


def event_from_dict(d: dict[str, Any]) -> RunEvent:
    return RunEvent(
        kind=EventKind(d["kind"]),
        run_id=d.get("run_id"),
        service_id=d.get("service_id"),
        payload=d.get("payload", {}),
        emitted_at=datetime.fromisoformat(d["emitted_at"]),
    )
