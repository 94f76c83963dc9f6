"""Frozen dataclass models for duration samples and fitted models."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from wrench.models.enums import EstimateSource


def _now() -> datetime:
    return datetime.now(timezone.utc)


def hash_options(options: Mapping[str, Any] | None) -> str | None:
    """Short stable digest of a full option map. None when there are no options."""
    if not options:
        return None
    canonical = json.dumps(dict(options), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]


def model_key(target_id: str, options_key: str | None) -> str:
    """``target:options`` for option-specific models, the bare target otherwise."""
    return f"{target_id}:{options_key}" if options_key else target_id


FEATURE_NAMES: tuple[str, ...] = (
    "cpu_score",
    "logical_cores",
    "total_ram_gb",
    "available_ram_gb",
    "disk_is_ssd",
    "has_discrete_gpu",
    "on_ac_power",
    "cpu_load_percent",
)


@dataclass(frozen=True, slots=True)
class PcFingerprint:
    """Hardware and load description of the machine a sample was taken on."""

    physical_cores: int = 4
    logical_cores: int = 8
    frequency_ghz: float = 2.0
    total_ram_gb: float = 16.0
    available_ram_gb: float = 8.0
    disk_is_ssd: bool = True
    has_discrete_gpu: bool = False
    on_ac_power: bool = True
    cpu_load_percent: float = 0.0

    @property
    def cpu_score(self) -> float:
        return round(self.physical_cores * self.frequency_ghz, 3)

    def to_features(self) -> tuple[float, ...]:
        """Feature vector in FEATURE_NAMES order."""
        return (
            self.cpu_score,
            float(self.logical_cores),
            self.total_ram_gb,
            self.available_ram_gb,
            1.0 if self.disk_is_ssd else 0.0,
            1.0 if self.has_discrete_gpu else 0.0,
            1.0 if self.on_ac_power else 0.0,
            self.cpu_load_percent,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "physical_cores": self.physical_cores,
            "logical_cores": self.logical_cores,
            "frequency_ghz": self.frequency_ghz,
            "total_ram_gb": self.total_ram_gb,
            "available_ram_gb": self.available_ram_gb,
            "disk_is_ssd": self.disk_is_ssd,
            "has_discrete_gpu": self.has_discrete_gpu,
            "on_ac_power": self.on_ac_power,
            "cpu_load_percent": self.cpu_load_percent,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PcFingerprint:
        defaults = cls()
        return cls(
            physical_cores=int(d.get("physical_cores", defaults.physical_cores)),
            logical_cores=int(d.get("logical_cores", defaults.logical_cores)),
            frequency_ghz=float(d.get("frequency_ghz", defaults.frequency_ghz)),
            total_ram_gb=float(d.get("total_ram_gb", defaults.total_ram_gb)),
            available_ram_gb=float(d.get("available_ram_gb", defaults.available_ram_gb)),
            disk_is_ssd=bool(d.get("disk_is_ssd", defaults.disk_is_ssd)),
            has_discrete_gpu=bool(d.get("has_discrete_gpu", defaults.has_discrete_gpu)),
            on_ac_power=bool(d.get("on_ac_power", defaults.on_ac_power)),
            cpu_load_percent=float(d.get("cpu_load_percent", defaults.cpu_load_percent)),
        )


@dataclass(frozen=True, slots=True)
class ServiceTimeSample:
    """One measured duration for a service or preset on a given machine."""

    target_id: str
    fingerprint: PcFingerprint
    duration_seconds: float
    recorded_at: datetime = field(default_factory=_now)
    options_key: str | None = None  # None for presets and option-less services


@dataclass(frozen=True, slots=True)
class FeatureNormalization:
    """Per-feature z-score parameters captured at fit time."""

    means: tuple[float, ...]
    stds: tuple[float, ...]


@dataclass(frozen=True, slots=True)
class ServiceModelWeights:
    """Fitted ridge model for one target. Replaced wholesale on refit."""

    target_id: str
    bias: float
    weights: tuple[float, ...]
    normalization: FeatureNormalization
    sample_count: int
    r_squared: float = 0.0
    options_key: str | None = None
    fitted_at: datetime = field(default_factory=_now)

    @property
    def key(self) -> str:
        return model_key(self.target_id, self.options_key)


@dataclass(frozen=True, slots=True)
class DurationEstimate:
    """A predicted duration plus how much data backs it."""

    target_id: str
    seconds: float
    sample_count: int
    source: EstimateSource
    confidence: str  # "low", "medium" or "high"


@dataclass(frozen=True, slots=True)
class TimeStats:
    """Aggregated duration statistics for one target (outlier-filtered mean)."""

    target_id: str
    sample_count: int
    mean_seconds: float
    min_seconds: float
    max_seconds: float
    median_seconds: float
    stddev_seconds: float
    confidence: str
