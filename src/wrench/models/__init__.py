"""wrench data models."""

from wrench.models.enums import (
    EstimateSource,
    EventKind,
    FindingSeverity,
    OptionKind,
    ResultStatus,
    RunStatus,
)
from wrench.models.service import (
    OptionSpec,
    PlanItem,
    PresetEntry,
    RequiredProgramDef,
    RunEvent,
    ServiceDefinition,
    ServiceFinding,
    ServicePreset,
    ServiceReport,
    ServiceResult,
    ServiceRunState,
)
from wrench.models.timing import (
    FEATURE_NAMES,
    DurationEstimate,
    FeatureNormalization,
    PcFingerprint,
    ServiceModelWeights,
    ServiceTimeSample,
    TimeStats,
    hash_options,
    model_key,
)

__all__ = [
    "EstimateSource",
    "EventKind",
    "FindingSeverity",
    "OptionKind",
    "ResultStatus",
    "RunStatus",
    "OptionSpec",
    "ServiceDefinition",
    "RequiredProgramDef",
    "PresetEntry",
    "ServicePreset",
    "PlanItem",
    "ServiceFinding",
    "ServiceResult",
    "ServiceRunState",
    "ServiceReport",
    "RunEvent",
    "FEATURE_NAMES",
    "PcFingerprint",
    "ServiceTimeSample",
    "FeatureNormalization",
    "ServiceModelWeights",
    "DurationEstimate",
    "TimeStats",
    "hash_options",
    "model_key",
]
