"""Windows CHKDSK file system check."""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from wrench.core.adapters import AdapterOutcome, ProcessAdapter, ProcessOutput, ProgressSink
from wrench.errors import AdapterFailure
from wrench.models.enums import FindingSeverity, OptionKind, ResultStatus
from wrench.models.service import OptionSpec, ServiceDefinition, ServiceFinding

_FS_TYPE = re.compile(r"The type of the file system is (\w+)", re.IGNORECASE)
_PERCENT = re.compile(r"(\d{1,3})\s*percent complete", re.IGNORECASE)
_DRIVE = re.compile(r"^[A-Za-z]:$")

_MODE_FLAGS = {
    "read_only": [],
    "fix_errors": ["/f"],
    "comprehensive": ["/f", "/r"],
}


class ChkdskAdapter(ProcessAdapter):
    definition = ServiceDefinition(
        id="chkdsk",
        name="Check Disk",
        description="Check a volume's file system for errors with CHKDSK",
        category="maintenance",
        options=(
            OptionSpec(
                id="drive",
                label="Drive",
                kind=OptionKind.TEXT,
                default="C:",
                description="Drive letter followed by a colon",
            ),
            OptionSpec(
                id="mode",
                label="Mode",
                kind=OptionKind.SELECT,
                default="read_only",
                choices=tuple(_MODE_FLAGS),
            ),
            OptionSpec(
                id="schedule_if_busy",
                label="Schedule at next boot if the volume is in use",
                kind=OptionKind.BOOLEAN,
                default=False,
            ),
        ),
        default_duration_seconds=300.0,
    )

    def build_args(self, options: Mapping[str, Any], programs: Mapping[str, Path]) -> list[str]:
        drive = str(options["drive"]).strip().upper()
        if not _DRIVE.match(drive):
            raise AdapterFailure(f"Invalid drive '{options['drive']}', expected a letter like C:")
        return ["chkdsk", drive, *_MODE_FLAGS[options["mode"]]]

    def stdin_data(self, options: Mapping[str, Any]) -> str | None:
        # Answers the "schedule at next restart? (Y/N)" prompt
        if options["schedule_if_busy"] and options["mode"] != "read_only":
            return "Y\n"
        return None

    def on_line(self, line: str, progress: ProgressSink) -> None:
        m = _PERCENT.search(line)
        if m:
            progress.percent(float(m.group(1)))

    def parse(
        self, options: Mapping[str, Any], output: ProcessOutput, progress: ProgressSink
    ) -> AdapterOutcome:
        lower = output.text.lower()
        no_problems = "found no problems" in lower or "no further action is required" in lower
        made_corrections = "made corrections to the file system" in lower
        errors_found = (
            "windows found errors" in lower
            or "errors found" in lower
            or "chkdsk cannot continue" in lower
        )
        volume_in_use = (
            "volume is in use" in lower or "cannot lock" in lower or "cannot run because" in lower
        )
        access_denied = "access denied" in lower or "insufficient privileges" in lower

        m = _FS_TYPE.search(output.text)
        detail = {
            "drive": options["drive"],
            "mode": options["mode"],
            "file_system": m.group(1) if m else None,
            "exit_code": output.returncode,
        }

        if access_denied:
            finding = ServiceFinding(
                FindingSeverity.CRITICAL, "CHKDSK requires administrator privileges", detail
            )
            return AdapterOutcome(ResultStatus.FAILURE, (finding,))
        if volume_in_use:
            scheduled = options["schedule_if_busy"] and options["mode"] != "read_only"
            message = (
                "Volume is in use; check scheduled for next restart"
                if scheduled
                else "Volume is in use; CHKDSK could not lock it"
            )
            return AdapterOutcome(
                ResultStatus.WARNING, (ServiceFinding(FindingSeverity.WARNING, message, detail),)
            )
        if made_corrections:
            return AdapterOutcome(
                ResultStatus.SUCCESS,
                (ServiceFinding(FindingSeverity.SUCCESS, "File system errors were corrected", detail),),
            )
        if no_problems:
            return AdapterOutcome(
                ResultStatus.SUCCESS,
                (ServiceFinding(FindingSeverity.SUCCESS, "No file system problems found", detail),),
            )
        if errors_found:
            return AdapterOutcome(
                ResultStatus.WARNING,
                (
                    ServiceFinding(
                        FindingSeverity.CRITICAL,
                        "File system errors found; rerun in fix_errors mode",
                        detail,
                    ),
                ),
            )
        if output.returncode == 0:
            return AdapterOutcome(
                ResultStatus.SUCCESS,
                (ServiceFinding(FindingSeverity.INFO, "CHKDSK completed", detail),),
            )
        raise AdapterFailure(f"CHKDSK exited with code {output.returncode}")
