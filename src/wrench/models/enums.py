"""Enumerations for wrench service and run models."""

from enum import Enum


class OptionKind(str, Enum):
    """Type of a declared service option."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    SELECT = "select"
    TEXT = "text"


class FindingSeverity(str, Enum):
    """Severity of a single finding. Ordered for display only."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    SUCCESS = "success"


class ResultStatus(str, Enum):
    """Outcome of one adapter invocation."""

    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"


class RunStatus(str, Enum):
    """Lifecycle of a run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED)


class EventKind(str, Enum):
    """Topics published on the event bus."""

    RUN_STATUS = "run.status"
    SERVICE_STARTED = "service.started"
    SERVICE_PROGRESS = "service.progress"
    SERVICE_COMPLETED = "service.completed"


class EstimateSource(str, Enum):
    """Where a duration estimate came from."""

    MODEL = "model"
    MEAN = "mean"
    DEFAULT = "default"
