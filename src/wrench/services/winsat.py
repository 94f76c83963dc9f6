"""Disk throughput benchmark with the Windows System Assessment Tool."""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from wrench.core.adapters import (
    AdapterOutcome,
    ProcessAdapter,
    ProcessOutput,
    ProgressSink,
    status_from_findings,
)
from wrench.errors import AdapterFailure
from wrench.models.enums import FindingSeverity, OptionKind
from wrench.models.service import OptionSpec, ServiceDefinition, ServiceFinding

_SPEED = re.compile(r"([\d.]+)\s+MB/s")


def parse_speed(line: str) -> float | None:
    """MB/s figure from lines like ``Disk  Sequential 64.0 Read   520.98 MB/s``."""
    m = _SPEED.search(line)
    return float(m.group(1)) if m else None


def classify(line: str) -> str | None:
    lower = line.lower()
    for pattern in ("sequential", "random"):
        if pattern in lower:
            for op in ("read", "write"):
                if op in lower:
                    return f"{pattern}_{op}"
    return None


def _speed_severity(mb_s: float) -> FindingSeverity:
    if mb_s >= 300:
        return FindingSeverity.SUCCESS
    if mb_s >= 150:
        return FindingSeverity.INFO
    if mb_s >= 50:
        return FindingSeverity.WARNING
    return FindingSeverity.CRITICAL


class WinsatAdapter(ProcessAdapter):
    definition = ServiceDefinition(
        id="winsat",
        name="Disk Benchmark (WinSAT)",
        description="Measure sequential and random disk throughput",
        category="benchmark",
        options=(
            OptionSpec(
                id="drive",
                label="Drive letter",
                kind=OptionKind.TEXT,
                default="C",
                description="Single drive letter to benchmark",
            ),
        ),
        default_duration_seconds=120.0,
    )

    def build_args(self, options: Mapping[str, Any], programs: Mapping[str, Path]) -> list[str]:
        drive = str(options["drive"]).strip().rstrip(":").upper()
        if len(drive) != 1 or not drive.isalpha():
            raise AdapterFailure(f"Invalid drive letter '{options['drive']}'")
        return ["winsat", "disk", "-drive", drive]

    def parse(
        self, options: Mapping[str, Any], output: ProcessOutput, progress: ProgressSink
    ) -> AdapterOutcome:
        speeds: dict[str, float] = {}
        for line in output.lines:
            speed = parse_speed(line)
            kind = classify(line) if speed is not None else None
            if kind is not None and kind not in speeds:
                speeds[kind] = speed

        if not speeds:
            lower = output.text.lower()
            if "access" in lower or "administrator" in lower:
                raise AdapterFailure("WinSAT requires administrator privileges")
            raise AdapterFailure(f"WinSAT reported no throughput (exit code {output.returncode})")

        findings = tuple(
            ServiceFinding(
                _speed_severity(mb_s),
                f"{kind.replace('_', ' ').capitalize()}: {mb_s:.1f} MB/s",
                {"metric": kind, "mb_per_second": mb_s},
            )
            for kind, mb_s in speeds.items()
        )
        return AdapterOutcome(status_from_findings(findings), findings)
