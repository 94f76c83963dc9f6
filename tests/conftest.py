"""Shared fixtures: in-memory fake services and a temp store."""

from __future__ import annotations

import threading
import time

import pytest

from wrench.core.adapters import AdapterOutcome, ServiceAdapter
from wrench.core.registry import ServiceRegistry
from wrench.core.store import WrenchStore
from wrench.errors import AdapterFailure
from wrench.models import (
    FindingSeverity,
    OptionKind,
    OptionSpec,
    PcFingerprint,
    ResultStatus,
    ServiceDefinition,
    ServiceFinding,
)


class FakeAdapter(ServiceAdapter):
    """Adapter that does no real work; behaviour is set per instance."""

    def __init__(
        self,
        service_id: str,
        *,
        status: ResultStatus = ResultStatus.SUCCESS,
        options: tuple[OptionSpec, ...] = (),
        requires: tuple[str, ...] = (),
        block: bool = False,
        raises: Exception | None = None,
        default_duration: float = 10.0,
        delay: float = 0.0,
    ) -> None:
        self.definition = ServiceDefinition(
            id=service_id,
            name=service_id.title(),
            description=f"Fake {service_id}",
            options=options,
            required_programs=requires,
            default_duration_seconds=default_duration,
        )
        self.status = status
        self.block = block
        self.raises = raises
        self.delay = delay
        self.started = threading.Event()
        self.calls: list[dict] = []

    def execute(self, options, progress, context):
        self.calls.append(dict(options))
        self.started.set()
        progress.line(f"{self.service_id} running")
        if self.raises is not None:
            raise self.raises
        if self.block:
            context.cancel_event.wait(5)
            raise AdapterFailure("Cancelled")
        if self.delay:
            time.sleep(self.delay)
        severity = (
            FindingSeverity.CRITICAL if self.status == ResultStatus.FAILURE else FindingSeverity.SUCCESS
        )
        return AdapterOutcome(self.status, (ServiceFinding(severity, f"{self.service_id} done"),))


COUNT_OPTION = OptionSpec("count", "Count", OptionKind.INTEGER, 3, min=1, max=10)
MODE_OPTION = OptionSpec("mode", "Mode", OptionKind.SELECT, "fast", choices=("fast", "slow"))
VERBOSE_OPTION = OptionSpec("verbose", "Verbose", OptionKind.BOOLEAN, False)


@pytest.fixture
def fake_adapters():
    return {
        "alpha": FakeAdapter("alpha", options=(COUNT_OPTION, MODE_OPTION)),
        "beta": FakeAdapter("beta", options=(VERBOSE_OPTION,)),
        "gamma": FakeAdapter("gamma"),
    }


@pytest.fixture
def fake_registry(fake_adapters):
    return ServiceRegistry(fake_adapters.values())


@pytest.fixture
def store(tmp_path):
    with WrenchStore(tmp_path / "test.db") as s:
        yield s


@pytest.fixture
def fingerprint():
    return PcFingerprint()
