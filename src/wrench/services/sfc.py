"""Windows System File Checker (sfc /scannow)."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from wrench.core.adapters import AdapterOutcome, ProcessAdapter, ProcessOutput, ProgressSink
from wrench.models.enums import FindingSeverity, ResultStatus
from wrench.models.service import ServiceDefinition, ServiceFinding

_VERIFICATION = re.compile(r"Verification\s+(\d{1,3})%\s+complete", re.IGNORECASE)


@dataclass(slots=True)
class SfcSummary:
    integrity_violations: bool | None = None
    repairs_attempted: bool = False
    repairs_successful: bool | None = None
    verification_complete: bool = False
    pending_reboot: bool = False
    access_denied: bool = False
    component_store_corrupt: bool = False


def parse_sfc_output(text: str) -> SfcSummary:
    """Keyword scan of SFC's console output."""
    s = SfcSummary()
    for line in text.splitlines():
        lower = line.lower()
        if "verification 100% complete" in lower:
            s.verification_complete = True
        if ("access" in lower and "denied" in lower) or "must be an administrator" in lower:
            s.access_denied = True

        if "did not find any integrity violations" in lower:
            s.integrity_violations = False
        elif "found corrupt files and successfully repaired them" in lower:
            s.integrity_violations = True
            s.repairs_attempted = True
            s.repairs_successful = True
        elif "found corrupt files but was unable to fix some of them" in lower:
            s.integrity_violations = True
            s.repairs_attempted = True
            s.repairs_successful = False
        elif "found corrupt files" in lower:
            s.integrity_violations = True
            s.repairs_attempted = True
        elif "could not perform the requested operation" in lower:
            s.repairs_successful = False

        if "there is a system repair pending" in lower or "pending.xml" in lower:
            s.pending_reboot = True
        if "component store" in lower and ("corrupt" in lower or "inconsistent" in lower):
            s.component_store_corrupt = True
    return s


class SfcAdapter(ProcessAdapter):
    definition = ServiceDefinition(
        id="sfc",
        name="System File Check",
        description="Scan and repair Windows system files using SFC",
        category="maintenance",
        default_duration_seconds=600.0,
    )

    # sfc writes UTF-16 to a pipe
    output_encoding = "utf-16-le"

    def build_args(self, options: Mapping[str, Any], programs: Mapping[str, Path]) -> list[str]:
        return ["sfc", "/scannow"]

    def on_line(self, line: str, progress: ProgressSink) -> None:
        m = _VERIFICATION.search(line)
        if m:
            progress.percent(float(m.group(1)))

    def parse(
        self, options: Mapping[str, Any], output: ProcessOutput, progress: ProgressSink
    ) -> AdapterOutcome:
        s = parse_sfc_output(output.text)
        detail = {
            "integrity_violations": s.integrity_violations,
            "repairs_attempted": s.repairs_attempted,
            "repairs_successful": s.repairs_successful,
            "verification_complete": s.verification_complete,
            "pending_reboot": s.pending_reboot,
            "component_store_corrupt": s.component_store_corrupt,
            "exit_code": output.returncode,
        }

        if s.access_denied:
            severity, message = FindingSeverity.CRITICAL, "SFC requires administrator privileges"
        elif s.pending_reboot:
            severity, message = FindingSeverity.WARNING, "A system repair is pending; reboot and rerun SFC"
        elif s.component_store_corrupt:
            severity, message = (
                FindingSeverity.WARNING,
                "Component store corruption detected; run DISM /RestoreHealth first",
            )
        elif s.integrity_violations is False:
            severity, message = FindingSeverity.SUCCESS, "No integrity violations found"
        elif s.repairs_successful is True:
            severity, message = FindingSeverity.SUCCESS, "Corrupt system files were found and repaired"
        elif s.repairs_successful is False:
            severity, message = FindingSeverity.WARNING, "Some corrupt files could not be repaired"
        elif s.integrity_violations is True:
            severity, message = FindingSeverity.WARNING, "System file issues were detected"
        elif output.returncode == 0:
            severity, message = FindingSeverity.SUCCESS, "SFC scan completed"
        else:
            severity, message = (
                FindingSeverity.CRITICAL,
                f"SFC scan failed with exit code {output.returncode}",
            )

        succeeded = output.returncode == 0 or s.repairs_successful is True
        if not succeeded or s.access_denied:
            status = ResultStatus.FAILURE
        elif severity == FindingSeverity.WARNING:
            status = ResultStatus.WARNING
        else:
            status = ResultStatus.SUCCESS
        return AdapterOutcome(status, (ServiceFinding(severity, message, detail),))
