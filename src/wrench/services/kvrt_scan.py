"""Malware scan with the Kaspersky Virus Removal Tool."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from wrench.core.adapters import AdapterOutcome, ProcessAdapter, ProcessOutput, ProgressSink
from wrench.errors import AdapterFailure
from wrench.models.enums import FindingSeverity, ResultStatus
from wrench.models.service import ServiceDefinition, ServiceFinding

_COUNTERS = {
    "processed": re.compile(r"^\s*Processed:\s*(\d+)", re.IGNORECASE),
    "processing_errors": re.compile(r"^\s*Processing errors:\s*(\d+)", re.IGNORECASE),
    "detected": re.compile(r"^\s*Detected:\s*(\d+)", re.IGNORECASE),
    "password_protected": re.compile(r"^\s*Password protected:\s*(\d+)", re.IGNORECASE),
    "corrupted": re.compile(r"^\s*Corrupted:\s*(\d+)", re.IGNORECASE),
}
_DETECTION = re.compile(
    r"Threat\s*<(?P<threat>.+?)>\s*is detected on object\s*<(?P<object>.+?)>", re.IGNORECASE
)
_ACTION = re.compile(
    r"Action\s*<(?P<action>.+?)>\s*is selected for threat\s*<(?P<threat>.+?)>"
    r"\s*on object\s*<(?P<object>.+?)>",
    re.IGNORECASE,
)
_REMEDIATED = ("delete", "disinfect", "quarantine", "neutraliz", "remove")


@dataclass(slots=True)
class KvrtSummary:
    counters: dict[str, int] = field(default_factory=dict)
    # (threat, object) -> action, in detection order
    detections: dict[tuple[str, str], str | None] = field(default_factory=dict)


def parse_kvrt_output(text: str) -> KvrtSummary:
    summary = KvrtSummary()
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        for name, pattern in _COUNTERS.items():
            m = pattern.match(line)
            if m:
                summary.counters[name] = int(m.group(1))
        m = _DETECTION.search(line)
        if m:
            summary.detections.setdefault((m.group("threat"), m.group("object")), None)
        m = _ACTION.search(line)
        if m:
            summary.detections[(m.group("threat"), m.group("object"))] = m.group("action")
    return summary


class KvrtScanAdapter(ProcessAdapter):
    definition = ServiceDefinition(
        id="kvrt_scan",
        name="Malware Scan (KVRT)",
        description="Scan for and remove malware with Kaspersky Virus Removal Tool",
        category="security",
        required_programs=("kvrt",),
        default_duration_seconds=900.0,
    )

    def build_args(self, options: Mapping[str, Any], programs: Mapping[str, Path]) -> list[str]:
        return [
            str(programs["kvrt"]),
            "-accepteula",
            "-silent",
            "-details",
            "-noads",
            "-fixednames",
        ]

    def working_dir(self, programs: Mapping[str, Path]) -> Path | None:
        return programs["kvrt"].parent

    def parse(
        self, options: Mapping[str, Any], output: ProcessOutput, progress: ProgressSink
    ) -> AdapterOutcome:
        summary = parse_kvrt_output(output.text)
        if "processed" not in summary.counters and not summary.detections:
            raise AdapterFailure(f"KVRT produced no scan summary (exit code {output.returncode})")

        findings: list[ServiceFinding] = []
        for (threat, obj), action in summary.detections.items():
            remediated = action is not None and any(k in action.lower() for k in _REMEDIATED)
            findings.append(
                ServiceFinding(
                    FindingSeverity.WARNING if remediated else FindingSeverity.CRITICAL,
                    f"{threat} detected on {obj}",
                    {"threat": threat, "object": obj, "action": action},
                )
            )

        processed = summary.counters.get("processed", 0)
        detected = summary.counters.get("detected", len(summary.detections))
        if detected == 0:
            findings.insert(
                0,
                ServiceFinding(
                    FindingSeverity.SUCCESS,
                    f"No threats found ({processed} objects scanned)",
                    dict(summary.counters),
                ),
            )
            return AdapterOutcome(ResultStatus.SUCCESS, tuple(findings))

        findings.insert(
            0,
            ServiceFinding(
                FindingSeverity.WARNING,
                f"{detected} threat(s) detected in {processed} objects",
                dict(summary.counters),
            ),
        )
        return AdapterOutcome(ResultStatus.WARNING, tuple(findings))
