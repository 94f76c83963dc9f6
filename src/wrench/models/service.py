"""Frozen dataclass models for service definitions, runs and results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from wrench.models.enums import EventKind, FindingSeverity, OptionKind, ResultStatus, RunStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class OptionSpec:
    """One typed, named option a service accepts."""

    id: str
    label: str
    kind: OptionKind
    default: Any
    min: int | None = None  # integer only
    max: int | None = None  # integer only
    choices: tuple[str, ...] = ()  # select only
    description: str = ""


@dataclass(frozen=True, slots=True)
class ServiceDefinition:
    """Static description of a service, defined at startup."""

    id: str
    name: str
    description: str
    category: str = "diagnostics"
    options: tuple[OptionSpec, ...] = ()
    required_programs: tuple[str, ...] = ()
    default_duration_seconds: float = 60.0

    def option(self, option_id: str) -> OptionSpec | None:
        for spec in self.options:
            if spec.id == option_id:
                return spec
        return None

    def defaults(self) -> dict[str, Any]:
        return {spec.id: spec.default for spec in self.options}


@dataclass(frozen=True, slots=True)
class RequiredProgramDef:
    """An external program one or more services need."""

    id: str
    name: str
    description: str
    exe_names: tuple[str, ...]
    url: str | None = None


@dataclass(frozen=True, slots=True)
class PresetEntry:
    """A service inside a preset, with the preset's option values.

    Disabled entries are optional extras: they are skipped unless the caller
    enables them when resolving the preset.
    """

    service_id: str
    options: Mapping[str, Any] = field(default_factory=dict)
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class ServicePreset:
    """Named, ordered bundle of services."""

    id: str
    name: str
    entries: tuple[PresetEntry, ...]
    description: str = ""
    builtin: bool = False

    @property
    def service_ids(self) -> tuple[str, ...]:
        return tuple(e.service_id for e in self.entries)

    @property
    def optional_ids(self) -> tuple[str, ...]:
        return tuple(e.service_id for e in self.entries if not e.enabled)


@dataclass(frozen=True, slots=True)
class PlanItem:
    """One resolved queue entry: a service id with every option populated."""

    service_id: str
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ServiceFinding:
    """A single observation reported by a service run."""

    severity: FindingSeverity
    message: str
    detail: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class ServiceResult:
    """Outcome of one adapter invocation. Produced exactly once per run of a service."""

    service_id: str
    status: ResultStatus
    findings: tuple[ServiceFinding, ...] = ()
    duration_seconds: float = 0.0
    output: str | None = None
    started_at: datetime = field(default_factory=_now)
    finished_at: datetime = field(default_factory=_now)

    @property
    def failed(self) -> bool:
        return self.status == ResultStatus.FAILURE


@dataclass(frozen=True, slots=True)
class ServiceRunState:
    """Snapshot of the coordinator's single run. Replaced, never mutated."""

    run_id: str | None = None
    status: RunStatus = RunStatus.IDLE
    queue: tuple[PlanItem, ...] = ()
    current: str | None = None
    results: tuple[ServiceResult, ...] = ()
    preset_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    technician: str | None = None
    customer: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == RunStatus.RUNNING

    @property
    def total_duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


@dataclass(frozen=True, slots=True)
class ServiceReport:
    """A finished run plus the machine context it ran on."""

    report_id: str
    run: ServiceRunState
    machine: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)

    @property
    def technician(self) -> str | None:
        return self.run.technician

    @property
    def customer(self) -> str | None:
        return self.run.customer


@dataclass(frozen=True, slots=True)
class RunEvent:
    """A progress or status notification published by the coordinator."""

    kind: EventKind
    run_id: str | None
    service_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=_now)
