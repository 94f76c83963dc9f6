"""Layered configuration: .wrench/config.toml -> WRENCH_* env vars -> defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

try:
    import tomllib  # 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """SQLite store settings."""

    db_name: str = "wrench.db"


@dataclass(frozen=True, slots=True)
class ReportConfig:
    """Report persistence settings."""

    auto_save: bool = True
    include_logs: bool = True
    retention_days: int = 0  # 0 keeps reports forever
    dir_name: str = "reports"


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    """Service execution settings."""

    timeout_seconds: float = 3600.0
    max_output_bytes: int = 256 * 1024
    event_queue_size: int = 1000


@dataclass(frozen=True, slots=True)
class EstimatorConfig:
    """Duration model constants.

    ``weight_clamp`` bounds every fitted feature weight to
    ``[-weight_clamp, weight_clamp]`` seconds per standard deviation. It is a
    safety valve for sparse or collinear sample sets, not part of the fit.

    ``min_mixed_samples`` is how many samples taken with other option values
    a target needs before their mean is used for an unseen option set.
    """

    ridge_lambda: float = 1.0
    decay_base: float = 0.95
    min_filter_samples: int = 4
    min_fit_samples: int = 5
    weight_clamp: float = 3600.0
    default_duration_seconds: float = 60.0
    min_duration_seconds: float = 1.0
    max_samples_per_target: int = 100
    min_mixed_samples: int = 3


@dataclass(frozen=True, slots=True)
class ProgramsConfig:
    """Where external tool executables are looked up."""

    programs_dir: str = "programs"
    overrides: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class WrenchConfig:
    """Top-level configuration container."""

    project_path: Path = field(default_factory=Path.cwd)
    store: StoreConfig = field(default_factory=StoreConfig)
    reports: ReportConfig = field(default_factory=ReportConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    programs: ProgramsConfig = field(default_factory=ProgramsConfig)

    @property
    def wrench_dir(self) -> Path:
        return self.project_path / ".wrench"

    @property
    def db_path(self) -> Path:
        return self.wrench_dir / self.store.db_name

    @property
    def reports_dir(self) -> Path:
        return self.wrench_dir / self.reports.dir_name

    @property
    def programs_dir(self) -> Path:
        path = Path(self.programs.programs_dir)
        return path if path.is_absolute() else self.wrench_dir / path

    @classmethod
    def load(cls, project_path: Path | None = None) -> WrenchConfig:
        """Load config with layering: TOML file -> env vars -> defaults."""
        project = Path(project_path) if project_path else Path.cwd()
        toml_path = project / ".wrench" / "config.toml"

        toml_data: dict = {}
        if toml_path.is_file():
            with open(toml_path, "rb") as f:
                toml_data = tomllib.load(f)

        store_data = toml_data.get("store", {})
        report_data = toml_data.get("reports", {})
        runner_data = toml_data.get("runner", {})
        estimator_data = toml_data.get("estimator", {})
        programs_data = toml_data.get("programs", {})

        # Use literal defaults (slots=True prevents class-level attribute access)
        _store_defaults = StoreConfig()
        _report_defaults = ReportConfig()
        _runner_defaults = RunnerConfig()
        _est_defaults = EstimatorConfig()
        _prog_defaults = ProgramsConfig()

        store = StoreConfig(
            db_name=_layered("WRENCH_DB_NAME", store_data, "db_name", _store_defaults.db_name, str),
        )

        reports = ReportConfig(
            auto_save=_layered(
                "WRENCH_AUTO_SAVE", report_data, "auto_save", _report_defaults.auto_save, _as_bool
            ),
            include_logs=_layered(
                "WRENCH_INCLUDE_LOGS", report_data, "include_logs",
                _report_defaults.include_logs, _as_bool,
            ),
            retention_days=_layered(
                "WRENCH_RETENTION_DAYS", report_data, "retention_days",
                _report_defaults.retention_days, int,
            ),
            dir_name=report_data.get("dir_name", _report_defaults.dir_name),
        )

        runner = RunnerConfig(
            timeout_seconds=_layered(
                "WRENCH_TIMEOUT_SECONDS", runner_data, "timeout_seconds",
                _runner_defaults.timeout_seconds, float,
            ),
            max_output_bytes=_layered(
                "WRENCH_MAX_OUTPUT_BYTES", runner_data, "max_output_bytes",
                _runner_defaults.max_output_bytes, int,
            ),
            event_queue_size=int(
                runner_data.get("event_queue_size", _runner_defaults.event_queue_size)
            ),
        )

        estimator = EstimatorConfig(
            ridge_lambda=_layered(
                "WRENCH_RIDGE_LAMBDA", estimator_data, "ridge_lambda",
                _est_defaults.ridge_lambda, float,
            ),
            decay_base=float(estimator_data.get("decay_base", _est_defaults.decay_base)),
            min_filter_samples=int(
                estimator_data.get("min_filter_samples", _est_defaults.min_filter_samples)
            ),
            min_fit_samples=int(
                estimator_data.get("min_fit_samples", _est_defaults.min_fit_samples)
            ),
            weight_clamp=_layered(
                "WRENCH_WEIGHT_CLAMP", estimator_data, "weight_clamp",
                _est_defaults.weight_clamp, float,
            ),
            default_duration_seconds=float(
                estimator_data.get(
                    "default_duration_seconds", _est_defaults.default_duration_seconds
                )
            ),
            min_duration_seconds=float(
                estimator_data.get("min_duration_seconds", _est_defaults.min_duration_seconds)
            ),
            max_samples_per_target=int(
                estimator_data.get(
                    "max_samples_per_target", _est_defaults.max_samples_per_target
                )
            ),
            min_mixed_samples=int(
                estimator_data.get("min_mixed_samples", _est_defaults.min_mixed_samples)
            ),
        )

        programs = ProgramsConfig(
            programs_dir=_layered(
                "WRENCH_PROGRAMS_DIR", programs_data, "programs_dir",
                _prog_defaults.programs_dir, str,
            ),
            overrides={
                str(k): str(v) for k, v in programs_data.get("overrides", {}).items()
            },
        )

        return cls(
            project_path=project,
            store=store,
            reports=reports,
            runner=runner,
            estimator=estimator,
            programs=programs,
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _layered(
    env_name: str,
    section: dict,
    key: str,
    default: Any,
    cast: Callable[[Any], Any],
) -> Any:
    """Env var beats the TOML value, which beats the dataclass default."""
    raw = os.environ.get(env_name, section.get(key, default))
    return cast(raw)
