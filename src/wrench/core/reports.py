"""Finished-run reports as one JSON document per run."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from wrench.core.codec import report_from_dict, report_to_dict
from wrench.errors import NotFound
from wrench.models.service import ServiceReport, ServiceRunState

logger = logging.getLogger("wrench.reports")

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def build_report(
    state: ServiceRunState,
    machine: dict[str, Any] | None = None,
    include_logs: bool = True,
) -> ServiceReport:
    """Report for a finished run. Raw tool output is dropped unless ``include_logs``."""
    if state.run_id is None:
        raise ValueError("Cannot report on a run without an id")
    if not include_logs:
        state = replace(state, results=tuple(replace(r, output=None) for r in state.results))
    return ServiceReport(report_id=state.run_id, run=state, machine=machine or {})


class ReportStore:
    """Directory of ``<report_id>.json`` files."""

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, report_id: str) -> Path:
        if not _SAFE_ID.match(report_id):
            raise NotFound(f"Invalid report id: {report_id}")
        return self._dir / f"{report_id}.json"

    def save(self, report: ServiceReport) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(report.report_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(report_to_dict(report), indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.info("Saved report %s", report.report_id)
        return path

    def get(self, report_id: str) -> ServiceReport:
        """Load a report by full id, or by a unique prefix of at least 8 characters."""
        path = self._path(report_id)
        if not path.is_file() and len(report_id) >= 8:
            matches = sorted(self._dir.glob(f"{report_id}*.json")) if self._dir.is_dir() else []
            if len(matches) == 1:
                path = matches[0]
        if not path.is_file():
            raise NotFound(f"Unknown report: {report_id}")
        return report_from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list(self, limit: int | None = None) -> list[ServiceReport]:
        """Reports, newest first. Unreadable files are skipped with a warning."""
        if not self._dir.is_dir():
            return []
        reports: list[ServiceReport] = []
        for path in self._dir.glob("*.json"):
            try:
                reports.append(report_from_dict(json.loads(path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable report %s: %s", path.name, exc)
        reports.sort(key=lambda r: r.created_at, reverse=True)
        return reports[:limit] if limit is not None else reports

    def delete(self, report_id: str) -> None:
        path = self._path(report_id)
        if not path.is_file():
            raise NotFound(f"Unknown report: {report_id}")
        path.unlink()
        logger.info("Deleted report %s", report_id)

    def clear(self) -> int:
        if not self._dir.is_dir():
            return 0
        removed = 0
        for path in self._dir.glob("*.json"):
            path.unlink()
            removed += 1
        logger.info("Cleared %d report(s)", removed)
        return removed

    def prune(self, retention_days: int, now: datetime | None = None) -> int:
        """Delete reports older than ``retention_days``. 0 keeps everything."""
        if retention_days <= 0:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        removed = 0
        for report in self.list():
            if report.created_at < cutoff:
                self._path(report.report_id).unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Pruned %d report(s) older than %d days", removed, retention_days)
        return removed
