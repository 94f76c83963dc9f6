"""Sequential run execution with a single lock-guarded run state."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import psutil

from wrench.config import ReportConfig, RunnerConfig
from wrench.core.adapters import ExecutionContext, ProgressSink
from wrench.core.codec import result_to_dict
from wrench.core.estimator import DurationEstimator
from wrench.core.events import EventBus
from wrench.core.fingerprint import capture_fingerprint, machine_context
from wrench.core.options import validate_options
from wrench.core.programs import ProgramLocator
from wrench.core.registry import ServiceRegistry
from wrench.core.reports import ReportStore, build_report
from wrench.errors import AlreadyRunning, InvalidPreset, WrenchError
from wrench.models import (
    EventKind,
    FindingSeverity,
    PcFingerprint,
    PlanItem,
    ResultStatus,
    RunEvent,
    RunStatus,
    ServiceFinding,
    ServiceResult,
    ServiceRunState,
    ServiceTimeSample,
    hash_options,
)

logger = logging.getLogger("wrench.coordinator")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunCoordinator:
    """Owns the one run state and executes plans on a background worker.

    States go Idle -> Running -> Completed | Failed | Cancelled. The state
    object is immutable and swapped under ``_lock``; readers always get a
    consistent snapshot. Services in a plan run strictly one after another.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        bus: EventBus | None = None,
        *,
        locator: ProgramLocator | None = None,
        runner_config: RunnerConfig | None = None,
        report_store: ReportStore | None = None,
        report_config: ReportConfig | None = None,
        estimator: DurationEstimator | None = None,
        fingerprint_fn: Callable[[], PcFingerprint] = capture_fingerprint,
        machine_fn: Callable[[PcFingerprint | None], dict[str, Any]] = machine_context,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._locator = locator
        self._runner = runner_config or RunnerConfig()
        self._reports = report_store
        self._report_config = report_config or ReportConfig()
        self._estimator = estimator
        self._fingerprint_fn = fingerprint_fn
        self._machine_fn = machine_fn

        self._lock = threading.Lock()
        self._state = ServiceRunState()
        self._cancel_event = threading.Event()
        self._worker: threading.Thread | None = None

    # --- Public API ---

    def current_state(self) -> ServiceRunState:
        with self._lock:
            return self._state

    def start(
        self,
        plan: Iterable[PlanItem],
        preset_id: str | None = None,
        technician: str | None = None,
        customer: str | None = None,
    ) -> ServiceRunState:
        """Validate a plan and begin running it. Returns the new Running state immediately.

        ``technician`` and ``customer`` are free text carried into the report.
        """
        items = tuple(plan)
        if not items:
            raise InvalidPreset("Nothing to run: the plan is empty")
        items = tuple(
            PlanItem(
                i.service_id,
                validate_options(self._registry.definition_for(i.service_id), i.options),
            )
            for i in items
        )

        with self._lock:
            if self._state.is_running:
                raise AlreadyRunning(f"Run {self._state.run_id} is already in progress")
            run_id = uuid.uuid4().hex
            cancel_event = threading.Event()
            self._cancel_event = cancel_event
            self._state = ServiceRunState(
                run_id=run_id,
                status=RunStatus.RUNNING,
                queue=items,
                preset_id=preset_id,
                started_at=_now(),
                technician=(technician or "").strip() or None,
                customer=(customer or "").strip() or None,
            )
            state = self._state
            self._publish(EventKind.RUN_STATUS, run_id, payload={"status": state.status.value})
            self._worker = threading.Thread(
                target=self._run,
                args=(run_id, cancel_event),
                name=f"wrench-run-{run_id[:8]}",
                daemon=True,
            )
            self._worker.start()

        logger.info(
            "Started run %s: %s", run_id, ", ".join(i.service_id for i in items)
        )
        return state

    def cancel(self) -> bool:
        """Stop the active run after terminating its current tool. False if nothing is running."""
        with self._lock:
            if not self._state.is_running:
                logger.info("Cancel requested but no run is active")
                return False
            self._cancel_event.set()
            self._state = replace(self._state, queue=())
            run_id = self._state.run_id
        logger.info("Cancelling run %s", run_id)
        return True

    def wait(self, timeout: float | None = None) -> ServiceRunState:
        """Block until the worker finishes (or timeout) and return the state."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return self.current_state()

    def reset(self) -> ServiceRunState:
        """Return a finished coordinator to Idle."""
        with self._lock:
            if self._state.is_running:
                raise AlreadyRunning("Cannot reset while a run is in progress")
            self._state = ServiceRunState()
            return self._state

    # --- Worker ---

    def _run(self, run_id: str, cancel_event: threading.Event) -> None:
        fingerprint = self._capture_fingerprint()
        total = self._queued_count()
        index = 0
        # Option-set key of each entry in results, in the same order
        option_keys: list[str | None] = []

        while True:
            with self._lock:
                if cancel_event.is_set() or not self._state.queue:
                    break
                item = self._state.queue[0]
                self._state = replace(
                    self._state, queue=self._state.queue[1:], current=item.service_id
                )
            index += 1
            self._publish(
                EventKind.SERVICE_STARTED,
                run_id,
                item.service_id,
                {"index": index, "total": total, "options": dict(item.options)},
            )

            result = self._invoke(run_id, item, cancel_event)

            with self._lock:
                if cancel_event.is_set():
                    # The interrupted service does not count as a result
                    self._state = replace(self._state, current=None)
                    logger.info("Discarded result of %s after cancel", item.service_id)
                    break
                self._state = replace(
                    self._state, results=self._state.results + (result,), current=None
                )
                option_keys.append(hash_options(item.options))
            self._publish(
                EventKind.SERVICE_COMPLETED,
                run_id,
                item.service_id,
                {"result": result_to_dict(result, include_output=False)},
            )

        with self._lock:
            if cancel_event.is_set():
                status = RunStatus.CANCELLED
            elif any(r.failed for r in self._state.results):
                status = RunStatus.FAILED
            else:
                status = RunStatus.COMPLETED
            self._state = replace(
                self._state, status=status, queue=(), current=None, finished_at=_now()
            )
            final = self._state

        logger.info(
            "Run %s %s with %d result(s)", run_id, final.status.value, len(final.results)
        )
        self._save_report(final, fingerprint)
        self._record_samples(final, fingerprint, option_keys)
        self._publish(
            EventKind.RUN_STATUS,
            run_id,
            payload={"status": final.status.value, "results": len(final.results)},
        )

    def _queued_count(self) -> int:
        with self._lock:
            return len(self._state.queue)

    def _invoke(
        self, run_id: str, item: PlanItem, cancel_event: threading.Event
    ) -> ServiceResult:
        adapter = self._registry.adapter_for(item.service_id)
        progress = ProgressSink(self._bus, run_id, item.service_id)
        context = ExecutionContext(
            cancel_event=cancel_event,
            locator=self._locator,
            timeout_seconds=self._runner.timeout_seconds,
            max_output_bytes=self._runner.max_output_bytes,
        )
        started_at = _now()
        t0 = time.monotonic()
        try:
            return adapter.run(item.options, progress, context)
        except Exception as exc:
            logger.exception("Service %s raised", item.service_id)
            return ServiceResult(
                service_id=item.service_id,
                status=ResultStatus.FAILURE,
                findings=(
                    ServiceFinding(
                        FindingSeverity.CRITICAL,
                        f"{type(exc).__name__}: {exc}",
                        {"reason": "adapter_error"},
                    ),
                ),
                duration_seconds=round(time.monotonic() - t0, 3),
                started_at=started_at,
                finished_at=_now(),
            )

    def _capture_fingerprint(self) -> PcFingerprint | None:
        try:
            return self._fingerprint_fn()
        except (psutil.Error, OSError) as exc:
            logger.warning("Could not fingerprint this machine: %s", exc)
            return None

    def _save_report(self, final: ServiceRunState, fingerprint: PcFingerprint | None) -> None:
        if self._reports is None or not self._report_config.auto_save:
            return
        try:
            report = build_report(
                final,
                self._machine_fn(fingerprint),
                include_logs=self._report_config.include_logs,
            )
            self._reports.save(report)
            self._reports.prune(self._report_config.retention_days)
        except (OSError, ValueError, WrenchError) as exc:
            logger.error("Failed to save report for run %s: %s", final.run_id, exc)

    def _record_samples(
        self,
        final: ServiceRunState,
        fingerprint: PcFingerprint | None,
        option_keys: list[str | None],
    ) -> None:
        if self._estimator is None or fingerprint is None:
            return
        samples = [
            ServiceTimeSample(r.service_id, fingerprint, r.duration_seconds, r.finished_at, key)
            for r, key in zip(final.results, option_keys)
            if not r.failed
        ]
        total = final.total_duration_seconds
        # Only runs that finished every service count towards the preset
        if final.preset_id and final.status == RunStatus.COMPLETED and total:
            samples.append(
                ServiceTimeSample(final.preset_id, fingerprint, total, final.finished_at or _now())
            )
        try:
            self._estimator.record_batch(samples)
        except (sqlite3.Error, WrenchError, ValueError) as exc:
            logger.error("Failed to record durations for run %s: %s", final.run_id, exc)

    def _publish(
        self,
        kind: EventKind,
        run_id: str | None,
        service_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if self._bus is None:
            return
        self._bus.publish(
            RunEvent(kind=kind, run_id=run_id, service_id=service_id, payload=payload or {})
        )
