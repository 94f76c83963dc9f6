"""Disk usage per mounted volume, read in-process via psutil."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import psutil

from wrench.core.adapters import (
    AdapterOutcome,
    ExecutionContext,
    ProgressSink,
    ServiceAdapter,
    status_from_findings,
)
from wrench.models.enums import FindingSeverity, OptionKind
from wrench.models.service import OptionSpec, ServiceDefinition, ServiceFinding

logger = logging.getLogger("wrench.services.disk_space")

_GB = 1024 ** 3


def _severity_for(usage_percent: float, warn: int, critical: int) -> FindingSeverity:
    if usage_percent >= critical:
        return FindingSeverity.CRITICAL
    if usage_percent >= warn:
        return FindingSeverity.WARNING
    return FindingSeverity.SUCCESS


class DiskSpaceAdapter(ServiceAdapter):
    definition = ServiceDefinition(
        id="disk_space",
        name="Disk Space",
        description="Report used and free space on every mounted drive",
        category="diagnostics",
        options=(
            OptionSpec(
                id="warn_percent",
                label="Warning threshold (%)",
                kind=OptionKind.INTEGER,
                default=85,
                min=1,
                max=100,
                description="Usage at or above this is reported as a warning",
            ),
            OptionSpec(
                id="critical_percent",
                label="Critical threshold (%)",
                kind=OptionKind.INTEGER,
                default=95,
                min=1,
                max=100,
                description="Usage at or above this is reported as critical",
            ),
        ),
        default_duration_seconds=2.0,
    )

    def execute(
        self,
        options: Mapping[str, Any],
        progress: ProgressSink,
        context: ExecutionContext,
    ) -> AdapterOutcome:
        warn = int(options.get("warn_percent", 85))
        critical = int(options.get("critical_percent", 95))

        findings: list[ServiceFinding] = []
        for part in psutil.disk_partitions(all=False):
            if context.cancelled:
                break
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (PermissionError, OSError) as exc:
                # Empty card readers and disconnected network drives land here
                logger.debug("Skipping %s: %s", part.mountpoint, exc)
                continue
            if usage.total == 0:
                continue

            line = (
                f"Drive {part.mountpoint}: {usage.used / _GB:.1f} GB used of "
                f"{usage.total / _GB:.1f} GB ({usage.percent:.0f}%)"
            )
            progress.line(line)
            finding = ServiceFinding(
                severity=_severity_for(usage.percent, warn, critical),
                message=f"Drive {part.mountpoint} is {usage.percent:.0f}% full",
                detail={
                    "mount_point": part.mountpoint,
                    "file_system": part.fstype,
                    "total_gb": round(usage.total / _GB, 2),
                    "free_gb": round(usage.free / _GB, 2),
                    "usage_percent": usage.percent,
                },
            )
            progress.finding(finding)
            findings.append(finding)

        if not findings:
            findings.append(ServiceFinding(FindingSeverity.INFO, "No drives could be read"))
        return AdapterOutcome(status_from_findings(findings), tuple(findings))
