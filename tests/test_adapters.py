"""Tests for the adapter contract and the subprocess runner."""

import sys
import threading
import time
from unittest.mock import MagicMock, patch

import psutil
import pytest

from wrench.core.adapters import (
    AdapterOutcome,
    ExecutionContext,
    ProcessAdapter,
    ProcessOutput,
    ProgressSink,
    ServiceAdapter,
    _OutputBuffer,
    kill_process_tree,
    status_from_findings,
)
from wrench.core.events import EventBus
from wrench.errors import AdapterFailure, RequirementMissing
from wrench.models import (
    EventKind,
    FindingSeverity,
    ResultStatus,
    ServiceDefinition,
    ServiceFinding,
)


class PythonScriptAdapter(ProcessAdapter):
    """Runs a Python one-liner so the real process plumbing is exercised."""

    definition = ServiceDefinition(id="script", name="Script", description="")

    def __init__(self, code: str) -> None:
        self.code = code

    def build_args(self, options, programs):
        return [sys.executable, "-c", self.code]

    def on_line(self, line, progress):
        if line.endswith("%"):
            progress.percent(float(line[:-1]))

    def stdin_data(self, options):
        return options.get("stdin")

    def parse(self, options, output, progress):
        if output.returncode != 0:
            raise AdapterFailure(f"exit {output.returncode}")
        findings = tuple(ServiceFinding(FindingSeverity.INFO, line) for line in output.lines)
        return AdapterOutcome(ResultStatus.SUCCESS, findings)


class ImpatientScriptAdapter(PythonScriptAdapter):
    def timeout_for(self, options, context):
        return 0.5


class RaisingAdapter(ServiceAdapter):
    definition = ServiceDefinition(id="raiser", name="Raiser", description="")

    def __init__(self, exc):
        self.exc = exc

    def execute(self, options, progress, context):
        raise self.exc


@pytest.fixture
def sink():
    return ProgressSink(None, "run", "script")


class TestProgressSink:
    def test_publishes_progress_events(self):
        bus = EventBus()
        sub = bus.subscribe()
        sink = ProgressSink(bus, "run1", "svc")
        sink.line("hello")
        sink.percent(150)
        sink.finding(ServiceFinding(FindingSeverity.WARNING, "careful"))
        events = sub.drain()
        assert all(e.kind == EventKind.SERVICE_PROGRESS for e in events)
        assert all(e.run_id == "run1" and e.service_id == "svc" for e in events)
        assert events[0].payload == {"line": "hello"}
        assert events[1].payload == {"percent": 100.0}
        assert events[2].payload["finding"]["severity"] == "warning"
        assert sink.lines == ["hello"]

    def test_keeps_bounded_lines(self):
        sink = ProgressSink(None, "run", "svc", keep_lines=2)
        for n in range(5):
            sink.line(str(n))
        assert sink.lines == ["3", "4"]

    def test_publish_errors_swallowed(self):
        bus = MagicMock()
        bus.publish.side_effect = RuntimeError("boom")
        ProgressSink(bus, "run", "svc").line("still fine")


class TestHelpers:
    def test_status_from_findings(self):
        ok = ServiceFinding(FindingSeverity.SUCCESS, "ok")
        info = ServiceFinding(FindingSeverity.INFO, "fyi")
        bad = ServiceFinding(FindingSeverity.CRITICAL, "bad")
        assert status_from_findings([ok, info]) == ResultStatus.SUCCESS
        assert status_from_findings([ok, bad]) == ResultStatus.WARNING
        assert status_from_findings([]) == ResultStatus.SUCCESS

    def test_output_buffer_keeps_tail(self):
        buf = _OutputBuffer(max_bytes=10)
        for line in ("aaaa", "bbbb", "cccc"):
            buf.append(line)
        assert buf.text() == "bbbb\ncccc"
        assert buf.truncated

    def test_process_output_lines(self):
        assert ProcessOutput(0, "a\nb").lines == ["a", "b"]

    def test_require_missing(self):
        locator = MagicMock()
        locator.locate.return_value = None
        with pytest.raises(RequirementMissing) as exc:
            ExecutionContext(locator=locator).require("kvrt")
        assert exc.value.program_id == "kvrt"

    def test_require_without_locator(self):
        with pytest.raises(RequirementMissing):
            ExecutionContext().require("smartctl")


class TestKillProcessTree:
    @patch("wrench.core.adapters.psutil")
    def test_kills_children_then_parent(self, mock_psutil):
        child, parent = MagicMock(pid=2), MagicMock(pid=1)
        parent.children.return_value = [child]
        mock_psutil.Process.return_value = parent
        mock_psutil.NoSuchProcess = psutil.NoSuchProcess
        mock_psutil.AccessDenied = psutil.AccessDenied
        mock_psutil.wait_procs.return_value = ([child, parent], [])

        kill_process_tree(1)

        child.kill.assert_called_once()
        parent.kill.assert_called_once()
        mock_psutil.wait_procs.assert_called_once()

    @patch("wrench.core.adapters.psutil")
    def test_already_gone(self, mock_psutil):
        mock_psutil.NoSuchProcess = psutil.NoSuchProcess
        mock_psutil.Process.side_effect = psutil.NoSuchProcess(1)
        kill_process_tree(1)
        mock_psutil.wait_procs.assert_not_called()


class TestServiceAdapterRun:
    def test_requirement_missing_becomes_failure(self, sink):
        result = RaisingAdapter(RequirementMissing("kvrt")).run({}, sink, ExecutionContext())
        assert result.status == ResultStatus.FAILURE
        assert result.findings[0].detail == {"reason": "requirement_missing", "program_id": "kvrt"}
        assert "kvrt" in result.output

    def test_adapter_failure_becomes_failure(self, sink):
        result = RaisingAdapter(AdapterFailure("bad output")).run({}, sink, ExecutionContext())
        assert result.status == ResultStatus.FAILURE
        assert result.findings[0].message == "bad output"
        assert result.findings[0].severity == FindingSeverity.CRITICAL

    def test_launch_error_becomes_failure(self, sink):
        result = RaisingAdapter(FileNotFoundError("sfc")).run({}, sink, ExecutionContext())
        assert result.status == ResultStatus.FAILURE
        assert result.findings[0].detail["reason"] == "launch_failed"

    def test_unexpected_errors_propagate(self, sink):
        with pytest.raises(ZeroDivisionError):
            RaisingAdapter(ZeroDivisionError()).run({}, sink, ExecutionContext())


class TestProcessAdapter:
    def test_streams_lines_and_percent(self):
        bus = EventBus()
        sub = bus.subscribe()
        sink = ProgressSink(bus, "run", "script")
        adapter = PythonScriptAdapter("print('one'); print(''); print('50%'); print('two')")
        result = adapter.run({}, sink, ExecutionContext())

        assert result.status == ResultStatus.SUCCESS
        assert [f.message for f in result.findings] == ["one", "50%", "two"]
        payloads = [e.payload for e in sub.drain()]
        assert {"percent": 50.0} in payloads
        assert {"line": "two"} in payloads
        assert result.duration_seconds >= 0
        assert result.finished_at >= result.started_at

    def test_nonzero_exit_parsed(self, sink):
        result = PythonScriptAdapter("import sys; sys.exit(3)").run({}, sink, ExecutionContext())
        assert result.status == ResultStatus.FAILURE
        assert result.findings[0].message == "exit 3"

    def test_stdin_forwarded(self, sink):
        adapter = PythonScriptAdapter("print(input().upper())")
        result = adapter.run({"stdin": "y\n"}, sink, ExecutionContext())
        assert [f.message for f in result.findings] == ["Y"]

    def test_stderr_folded_into_output(self, sink):
        adapter = PythonScriptAdapter("import sys; sys.stderr.write('oops\\n')")
        result = adapter.run({}, sink, ExecutionContext())
        assert [f.message for f in result.findings] == ["oops"]

    def test_output_bounded(self, sink):
        adapter = PythonScriptAdapter("for i in range(2000): print('line', i)")
        context = ExecutionContext(max_output_bytes=1024)
        output = adapter.run_process(adapter.build_args({}, {}), sink, context)
        assert output.truncated
        assert len(output.text.encode()) <= 1024
        assert output.lines[-1] == "line 1999"

    def test_cancel_kills_process(self, sink):
        adapter = PythonScriptAdapter("import time; print('start', flush=True); time.sleep(30)")
        context = ExecutionContext()
        threading.Timer(0.3, context.cancel_event.set).start()
        t0 = time.monotonic()
        result = adapter.run({}, sink, context)
        assert time.monotonic() - t0 < 15
        assert result.status == ResultStatus.FAILURE
        assert result.findings[0].message == "Cancelled"

    def test_cancelled_before_start(self, sink):
        context = ExecutionContext()
        context.cancel_event.set()
        result = PythonScriptAdapter("print('x')").run({}, sink, context)
        assert result.status == ResultStatus.FAILURE

    def test_timeout_kills_process(self, sink):
        adapter = PythonScriptAdapter("import time; time.sleep(30)")
        result = adapter.run({}, sink, ExecutionContext(timeout_seconds=0.5))
        assert result.status == ResultStatus.FAILURE
        assert "timed out" in result.findings[0].message

    def test_adapter_timeout_overrides_context(self, sink):
        adapter = ImpatientScriptAdapter("import time; time.sleep(30)")
        t0 = time.monotonic()
        result = adapter.run({}, sink, ExecutionContext(timeout_seconds=3600.0))
        assert time.monotonic() - t0 < 15
        assert "timed out" in result.findings[0].message

    def test_parse_is_required(self):
        class NoParse(ProcessAdapter):
            definition = ServiceDefinition(id="np", name="NP", description="")

            def build_args(self, options, programs):
                return ["x"]

        with pytest.raises(TypeError):
            NoParse()

    def test_build_args_is_required(self):
        class NoArgs(ProcessAdapter):
            definition = ServiceDefinition(id="na", name="NA", description="")

            def parse(self, options, output, progress):
                return AdapterOutcome(ResultStatus.SUCCESS)

        with pytest.raises(TypeError):
            NoArgs()

    def test_missing_executable(self, sink):
        adapter = PythonScriptAdapter("")
        with patch.object(adapter, "build_args", return_value=["definitely-not-a-real-tool-xyz"]):
            result = adapter.run({}, sink, ExecutionContext())
        assert result.status == ResultStatus.FAILURE
        assert result.findings[0].detail["reason"] == "launch_failed"
