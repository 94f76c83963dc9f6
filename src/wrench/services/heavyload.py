"""CPU, memory and disk stress test with JAM Software HeavyLoad."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from wrench.core.adapters import (
    AdapterOutcome,
    ExecutionContext,
    ProcessAdapter,
    ProcessOutput,
    ProgressSink,
)
from wrench.errors import AdapterFailure
from wrench.models.enums import FindingSeverity, OptionKind, ResultStatus
from wrench.models.service import OptionSpec, ServiceDefinition, ServiceFinding

# Startup and shutdown allowance on top of the requested load duration
STARTUP_GRACE_SECONDS = 300.0


class HeavyLoadAdapter(ProcessAdapter):
    definition = ServiceDefinition(
        id="heavyload",
        name="Stress Test (HeavyLoad)",
        description="Put the CPU, memory and disk under sustained load",
        category="stress",
        options=(
            OptionSpec(
                id="duration_minutes",
                label="Duration (minutes)",
                kind=OptionKind.INTEGER,
                default=5,
                min=1,
                max=60,
            ),
            OptionSpec(id="stress_cpu", label="Stress CPU", kind=OptionKind.BOOLEAN, default=True),
            OptionSpec(
                id="stress_memory", label="Stress memory", kind=OptionKind.BOOLEAN, default=False
            ),
            OptionSpec(id="stress_disk", label="Stress disk", kind=OptionKind.BOOLEAN, default=False),
        ),
        required_programs=("heavyload",),
        default_duration_seconds=300.0,
    )

    def timeout_for(self, options: Mapping[str, Any], context: ExecutionContext) -> float:
        requested = options["duration_minutes"] * 60 + STARTUP_GRACE_SECONDS
        return max(context.timeout_seconds, requested)

    def build_args(self, options: Mapping[str, Any], programs: Mapping[str, Path]) -> list[str]:
        targets = [
            flag
            for key, flag in (
                ("stress_cpu", "/CPU"),
                ("stress_memory", "/MEMORY"),
                ("stress_disk", "/FILE"),
            )
            if options[key]
        ]
        if not targets:
            raise AdapterFailure("Select at least one of CPU, memory or disk to stress")
        return [
            str(programs["heavyload"]),
            *targets,
            "/DURATION",
            str(options["duration_minutes"]),
            "/AUTOEXIT",
            "/NOGUI",
            "/START",
        ]

    def parse(
        self, options: Mapping[str, Any], output: ProcessOutput, progress: ProgressSink
    ) -> AdapterOutcome:
        tested = [
            name
            for key, name in (("stress_cpu", "CPU"), ("stress_memory", "memory"), ("stress_disk", "disk"))
            if options[key]
        ]
        detail = {
            "duration_minutes": options["duration_minutes"],
            "components": tested,
            "exit_code": output.returncode,
        }
        if output.returncode != 0:
            finding = ServiceFinding(
                FindingSeverity.CRITICAL,
                f"HeavyLoad exited with code {output.returncode}; the system may be unstable under load",
                detail,
            )
            return AdapterOutcome(ResultStatus.FAILURE, (finding,))
        finding = ServiceFinding(
            FindingSeverity.SUCCESS,
            f"Stable under {', '.join(tested)} load for {options['duration_minutes']} minute(s)",
            detail,
        )
        return AdapterOutcome(ResultStatus.SUCCESS, (finding,))
