"""Exception taxonomy shared by the registry, resolver, coordinator and estimator."""

from __future__ import annotations


class WrenchError(Exception):
    """Base class for all wrench errors."""


class NotFound(WrenchError, LookupError):
    """Unknown service, preset, report or program id."""


class InvalidPreset(NotFound):
    """Unknown preset id, or a preset/plan that cannot be run."""


class InvalidOption(WrenchError, ValueError):
    """An option value failed schema validation before any process started."""

    def __init__(self, message: str, service_id: str | None = None, option_id: str | None = None):
        super().__init__(message)
        self.service_id = service_id
        self.option_id = option_id


class AlreadyRunning(WrenchError):
    """A run was requested while another run is active."""


class RequirementMissing(WrenchError):
    """A required external program could not be located."""

    def __init__(self, program_id: str, message: str | None = None):
        super().__init__(message or f"Required program not found: {program_id}")
        self.program_id = program_id


class AdapterFailure(WrenchError):
    """The external tool exited abnormally or its output could not be parsed."""


class InvalidSample(WrenchError, ValueError):
    """A non-positive duration was offered to the estimator."""


class RegistryError(WrenchError):
    """The static service table is inconsistent (a programming error)."""
