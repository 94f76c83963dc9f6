"""Drive health from S.M.A.R.T. data via smartmontools' JSON output."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from wrench.core.adapters import (
    AdapterOutcome,
    CommandAdapter,
    ExecutionContext,
    ProgressSink,
    status_from_findings,
)
from wrench.errors import AdapterFailure
from wrench.models.enums import FindingSeverity, ResultStatus
from wrench.models.service import ServiceDefinition, ServiceFinding

logger = logging.getLogger("wrench.services.smartctl")

WEAR_WARNING_PERCENT = 80


def parse_scan(text: str) -> list[str]:
    """Device names from ``smartctl --scan -j``."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AdapterFailure(f"Unreadable smartctl scan output: {exc}") from exc
    return [d["name"] for d in data.get("devices") or [] if d.get("name")]


def parse_device(text: str) -> dict[str, Any]:
    """Health summary from ``smartctl -a <dev> -j``."""
    data = json.loads(text)
    nvme = data.get("nvme_smart_health_information_log") or {}
    smart_status = data.get("smart_status") or {}
    return {
        "device": (data.get("device") or {}).get("name"),
        "model": data.get("model_name") or "Unknown drive",
        "serial": data.get("serial_number"),
        "firmware": data.get("firmware_version"),
        "passed": smart_status.get("passed"),
        "wear_percent": nvme.get("percentage_used"),
        "power_on_hours": (data.get("power_on_time") or {}).get("hours"),
        "temperature_c": (data.get("temperature") or {}).get("current"),
    }


def _severity_for(health: dict[str, Any]) -> FindingSeverity:
    if health["passed"] is False:
        return FindingSeverity.CRITICAL
    wear = health["wear_percent"]
    if wear is not None and wear > WEAR_WARNING_PERCENT:
        return FindingSeverity.WARNING
    if health["passed"] is True:
        return FindingSeverity.SUCCESS
    return FindingSeverity.INFO


class SmartctlAdapter(CommandAdapter):
    definition = ServiceDefinition(
        id="smartctl",
        name="Drive Health (SMART)",
        description="Read S.M.A.R.T. health, wear and temperature for every drive",
        category="diagnostics",
        required_programs=("smartctl",),
        default_duration_seconds=15.0,
    )

    def execute(
        self,
        options: Mapping[str, Any],
        progress: ProgressSink,
        context: ExecutionContext,
    ) -> AdapterOutcome:
        exe = str(context.require("smartctl"))
        scan = self.run_process([exe, "--scan", "-j"], progress, context)
        devices = parse_scan(scan.text)
        if not devices:
            finding = ServiceFinding(FindingSeverity.INFO, "No drives detected by smartctl")
            return AdapterOutcome(ResultStatus.SUCCESS, (finding,))

        findings: list[ServiceFinding] = []
        for index, device in enumerate(devices, start=1):
            # smartctl's exit code is a bit mask of health flags, so read the JSON regardless
            out = self.run_process([exe, "-a", device, "-j"], progress, context)
            progress.percent(index * 100.0 / len(devices))
            try:
                health = parse_device(out.text)
            except json.JSONDecodeError:
                logger.warning("Unreadable smartctl output for %s", device)
                findings.append(
                    ServiceFinding(FindingSeverity.INFO, f"{device}: no SMART data available")
                )
                continue

            health["device"] = health["device"] or device
            state = {True: "passed", False: "FAILED", None: "unknown"}[health["passed"]]
            finding = ServiceFinding(
                _severity_for(health),
                f"{health['model']} ({health['device']}): SMART {state}",
                health,
            )
            progress.finding(finding)
            findings.append(finding)

        return AdapterOutcome(status_from_findings(findings), tuple(findings))
