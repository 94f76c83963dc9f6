"""Service adapter contract and the subprocess-backed base adapter."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar

import psutil

from wrench.core.codec import finding_to_dict
from wrench.core.events import EventBus
from wrench.core.programs import ProgramLocator
from wrench.errors import AdapterFailure, RequirementMissing
from wrench.models.enums import EventKind, FindingSeverity, ResultStatus
from wrench.models.service import RunEvent, ServiceDefinition, ServiceFinding, ServiceResult

logger = logging.getLogger("wrench.adapters")

# Suppress console windows for child tools on Windows; 0 elsewhere.
_CREATIONFLAGS = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class ProgressSink:
    """Forwards adapter progress to the event bus. Never blocks, never raises."""

    def __init__(
        self,
        bus: EventBus | None,
        run_id: str | None,
        service_id: str,
        keep_lines: int = 5000,
    ) -> None:
        self._bus = bus
        self._run_id = run_id
        self._service_id = service_id
        self._lines: deque[str] = deque(maxlen=keep_lines)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def line(self, text: str) -> None:
        self._lines.append(text)
        self._emit({"line": text})

    def percent(self, value: float) -> None:
        self._emit({"percent": max(0.0, min(100.0, float(value)))})

    def finding(self, finding: ServiceFinding) -> None:
        self._emit({"finding": finding_to_dict(finding)})

    def _emit(self, payload: dict[str, Any]) -> None:
        if self._bus is None:
            return
        try:
            self._bus.publish(
                RunEvent(
                    kind=EventKind.SERVICE_PROGRESS,
                    run_id=self._run_id,
                    service_id=self._service_id,
                    payload=payload,
                )
            )
        except Exception:
            logger.exception("Progress event for %s was lost", self._service_id)


@dataclass
class ExecutionContext:
    """Per-invocation settings and the cancellation signal handed to adapters."""

    cancel_event: threading.Event = field(default_factory=threading.Event)
    locator: ProgramLocator | None = None
    timeout_seconds: float = 3600.0
    max_output_bytes: int = 256 * 1024

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def require(self, program_id: str) -> Path:
        """Resolve a required program, raising RequirementMissing if absent."""
        path = self.locator.locate(program_id) if self.locator is not None else None
        if path is None:
            raise RequirementMissing(program_id)
        return path


@dataclass(frozen=True, slots=True)
class AdapterOutcome:
    """What an adapter's execute step produced, before timing is attached."""

    status: ResultStatus
    findings: tuple[ServiceFinding, ...] = ()
    output: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessOutput:
    """Exit code and captured, size-bounded combined output of one child process."""

    returncode: int
    text: str
    truncated: bool = False

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()


def status_from_findings(findings: Iterable[ServiceFinding]) -> ResultStatus:
    """Warning if anything needs attention, success otherwise."""
    for f in findings:
        if f.severity in (FindingSeverity.WARNING, FindingSeverity.CRITICAL):
            return ResultStatus.WARNING
    return ResultStatus.SUCCESS


def kill_process_tree(pid: int, timeout: float = 5.0) -> None:
    """Kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    procs.append(parent)
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning("Access denied killing process %d", proc.pid)
    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        logger.warning("Process %d survived kill", proc.pid)


class _OutputBuffer:
    """Keeps the most recent lines within a byte budget."""

    def __init__(self, max_bytes: int) -> None:
        self._max_bytes = max_bytes
        self._lines: deque[str] = deque()
        self._size = 0
        self.truncated = False

    def append(self, line: str) -> None:
        self._lines.append(line)
        self._size += len(line.encode("utf-8", errors="replace")) + 1
        while self._size > self._max_bytes and len(self._lines) > 1:
            dropped = self._lines.popleft()
            self._size -= len(dropped.encode("utf-8", errors="replace")) + 1
            self.truncated = True

    def text(self) -> str:
        return "\n".join(self._lines)


def _bound_text(text: str, max_bytes: int) -> str:
    data = text.encode("utf-8", errors="replace")
    if len(data) <= max_bytes:
        return text
    return data[-max_bytes:].decode("utf-8", errors="ignore")


class ServiceAdapter(ABC):
    """One diagnostic or maintenance operation.

    Subclasses set ``definition`` and implement ``execute``. ``run`` wraps it
    so that a missing tool, a launch error or an unusable output always comes
    back as a ``failure`` result instead of an exception.
    """

    definition: ClassVar[ServiceDefinition]

    @property
    def service_id(self) -> str:
        return self.definition.id

    def declared_requirements(self) -> tuple[str, ...]:
        return self.definition.required_programs

    @abstractmethod
    def execute(
        self,
        options: Mapping[str, Any],
        progress: ProgressSink,
        context: ExecutionContext,
    ) -> AdapterOutcome:
        """Do the work. May raise RequirementMissing, AdapterFailure or OSError."""

    def run(
        self,
        options: Mapping[str, Any],
        progress: ProgressSink,
        context: ExecutionContext,
    ) -> ServiceResult:
        started_at = datetime.now(timezone.utc)
        t0 = time.monotonic()
        try:
            outcome = self.execute(options, progress, context)
        except RequirementMissing as exc:
            outcome = self._failure(
                progress, str(exc), {"reason": "requirement_missing", "program_id": exc.program_id}
            )
        except AdapterFailure as exc:
            outcome = self._failure(progress, str(exc), {"reason": "adapter_failure"})
        except OSError as exc:
            outcome = self._failure(
                progress,
                f"Could not launch {self.definition.name}: {exc}",
                {"reason": "launch_failed"},
            )

        output = outcome.output
        if output is None:
            output = "\n".join(progress.lines)
        return ServiceResult(
            service_id=self.service_id,
            status=outcome.status,
            findings=outcome.findings,
            duration_seconds=round(time.monotonic() - t0, 3),
            output=_bound_text(output, context.max_output_bytes) if output else None,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    def _failure(
        self, progress: ProgressSink, message: str, detail: dict[str, Any]
    ) -> AdapterOutcome:
        logger.warning("%s failed: %s", self.service_id, message)
        progress.line(f"ERROR: {message}")
        finding = ServiceFinding(FindingSeverity.CRITICAL, message, detail)
        return AdapterOutcome(ResultStatus.FAILURE, (finding,))


class CommandAdapter(ServiceAdapter):
    """Adapter whose work is done by one or more external processes.

    Output is read as text in ``output_encoding`` with stderr folded into
    stdout, streamed line by line to the progress sink, and kept within the
    context's byte budget. Cancellation and the hung-tool timeout kill the
    whole process tree.
    """

    output_encoding: ClassVar[str] = "utf-8"
    poll_interval: ClassVar[float] = 0.1

    def timeout_for(self, options: Mapping[str, Any], context: ExecutionContext) -> float:
        """Seconds a tool may run before it is treated as hung."""
        return context.timeout_seconds

    def on_line(self, line: str, progress: ProgressSink) -> None:
        """Hook for adapters that can derive a percentage from a line."""

    def run_process(
        self,
        args: list[str],
        progress: ProgressSink,
        context: ExecutionContext,
        cwd: Path | None = None,
        stdin_data: str | None = None,
        timeout: float | None = None,
    ) -> ProcessOutput:
        if context.cancelled:
            raise AdapterFailure("Cancelled before start")
        limit = timeout if timeout is not None else context.timeout_seconds

        logger.debug("Running %s", " ".join(args))
        proc = subprocess.Popen(
            args,
            stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding=self.output_encoding,
            errors="replace",
            cwd=str(cwd) if cwd else None,
            creationflags=_CREATIONFLAGS,
        )
        buffer = _OutputBuffer(context.max_output_bytes)

        def pump() -> None:
            assert proc.stdout is not None
            for raw in proc.stdout:
                line = raw.rstrip("\r\n").lstrip("\ufeff")
                if not line.strip():
                    continue
                buffer.append(line)
                self.on_line(line, progress)
                progress.line(line)

        reader = threading.Thread(target=pump, name=f"{self.service_id}-output", daemon=True)
        reader.start()

        if stdin_data is not None and proc.stdin is not None:
            try:
                proc.stdin.write(stdin_data)
                proc.stdin.close()
            except OSError as exc:
                logger.debug("Could not write stdin for %s: %s", self.service_id, exc)

        deadline = time.monotonic() + limit
        try:
            while proc.poll() is None:
                if context.cancel_event.wait(self.poll_interval):
                    kill_process_tree(proc.pid)
                    raise AdapterFailure("Cancelled")
                if time.monotonic() >= deadline:
                    kill_process_tree(proc.pid)
                    raise AdapterFailure(f"{self.definition.name} timed out after {limit:.0f}s")
        finally:
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("%s (pid %d) did not exit", self.service_id, proc.pid)
            reader.join(timeout=5)

        if buffer.truncated:
            logger.debug("Output of %s truncated to %d bytes", self.service_id, context.max_output_bytes)
        return ProcessOutput(proc.returncode, buffer.text(), buffer.truncated)


class ProcessAdapter(CommandAdapter):
    """Adapter that runs a single external executable and parses its output."""

    def execute(
        self,
        options: Mapping[str, Any],
        progress: ProgressSink,
        context: ExecutionContext,
    ) -> AdapterOutcome:
        programs = {pid: context.require(pid) for pid in self.declared_requirements()}
        args = self.build_args(options, programs)
        output = self.run_process(
            args,
            progress,
            context,
            cwd=self.working_dir(programs),
            stdin_data=self.stdin_data(options),
            timeout=self.timeout_for(options, context),
        )
        return self.parse(options, output, progress)

    @abstractmethod
    def build_args(self, options: Mapping[str, Any], programs: Mapping[str, Path]) -> list[str]:
        """Full argument vector, executable first."""

    @abstractmethod
    def parse(
        self, options: Mapping[str, Any], output: ProcessOutput, progress: ProgressSink
    ) -> AdapterOutcome:
        """Turn captured output into findings. Raise AdapterFailure if unusable."""

    def working_dir(self, programs: Mapping[str, Path]) -> Path | None:
        return None

    def stdin_data(self, options: Mapping[str, Any]) -> str | None:
        return None
