"""Composition root shared by the CLI and the MCP server."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from wrench.config import WrenchConfig
from wrench.core.coordinator import RunCoordinator
from wrench.core.estimator import DurationEstimator
from wrench.core.events import EventBus
from wrench.core.fingerprint import capture_fingerprint
from wrench.core.presets import PresetCatalog
from wrench.core.programs import ProgramLocator
from wrench.core.registry import ServiceRegistry, default_registry
from wrench.core.reports import ReportStore
from wrench.core.store import WrenchStore
from wrench.errors import InvalidOption
from wrench.models import DurationEstimate, PcFingerprint, PlanItem, hash_options

logger = logging.getLogger("wrench.toolkit")


class Toolkit:
    """Wires config, store, registry, presets, events, runs, reports and estimates."""

    def __init__(
        self,
        config: WrenchConfig,
        registry: ServiceRegistry | None = None,
        fingerprint_fn: Callable[[], PcFingerprint] = capture_fingerprint,
    ) -> None:
        self.config = config
        self.fingerprint_fn = fingerprint_fn
        self.store = WrenchStore(config.db_path)
        self.registry = registry or default_registry()
        self.locator = ProgramLocator.from_config(config)
        self.bus = EventBus(config.runner.event_queue_size)
        self.reports = ReportStore(config.reports_dir)
        self.catalog = PresetCatalog(self.registry, self.store)
        self.estimator = DurationEstimator(self.store, config.estimator)
        self.coordinator = RunCoordinator(
            self.registry,
            self.bus,
            locator=self.locator,
            runner_config=config.runner,
            report_store=self.reports,
            report_config=config.reports,
            estimator=self.estimator,
            fingerprint_fn=fingerprint_fn,
        )

    def __enter__(self) -> Toolkit:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        self.store.open()

    def close(self) -> None:
        state = self.coordinator.current_state()
        if state.is_running:
            logger.warning("Closing while run %s is active; cancelling it", state.run_id)
            self.coordinator.cancel()
            self.coordinator.wait(timeout=10)
        self.store.close()

    def estimate_target(
        self,
        target_id: str,
        fingerprint: PcFingerprint | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> DurationEstimate:
        """Estimate a service (with ``options`` over its defaults) or a preset.

        Unknown ids raise NotFound; invalid options raise InvalidOption.
        """
        fp = fingerprint or self.fingerprint_fn()
        if target_id in self.registry:
            (item,) = self.catalog.resolve([(target_id, options or {})])
            default = self.registry.definition_for(target_id).default_duration_seconds
            return self.estimator.estimate(target_id, fp, default, hash_options(item.options))

        preset = self.catalog.preset(target_id)
        if options:
            raise InvalidOption(f"Options apply to services only, not preset '{preset.id}'")
        _, total = self.estimate_plan(self.catalog.resolve(preset.id), fp)
        return self.estimator.estimate(preset.id, fp, total)

    def estimate_plan(
        self, plan: Sequence[PlanItem], fingerprint: PcFingerprint | None = None
    ) -> tuple[list[DurationEstimate], float]:
        """Per-service estimates for a plan, each for its own option set, and their sum."""
        fp = fingerprint or self.fingerprint_fn()
        estimates = [
            self.estimator.estimate(
                item.service_id,
                fp,
                self.registry.definition_for(item.service_id).default_duration_seconds,
                hash_options(item.options),
            )
            for item in plan
        ]
        return estimates, sum(e.seconds for e in estimates)
