"""Static service catalog: id -> definition, adapter and required programs."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from wrench.core.adapters import ServiceAdapter
from wrench.core.programs import REQUIRED_PROGRAMS, ProgramLocator
from wrench.errors import NotFound, RegistryError
from wrench.models.service import RequiredProgramDef, ServiceDefinition

logger = logging.getLogger("wrench.registry")


class ServiceRegistry:
    """Built once at startup; read-only afterwards."""

    def __init__(
        self,
        adapters: Iterable[ServiceAdapter],
        programs: Mapping[str, RequiredProgramDef] | None = None,
    ) -> None:
        programs = REQUIRED_PROGRAMS if programs is None else programs
        self._adapters: dict[str, ServiceAdapter] = {}
        for adapter in adapters:
            definition = adapter.definition
            if definition.id in self._adapters:
                raise RegistryError(f"Duplicate service id: {definition.id}")
            for program_id in adapter.declared_requirements():
                if program_id not in programs:
                    raise RegistryError(
                        f"Service '{definition.id}' requires unknown program '{program_id}'"
                    )
            self._adapters[definition.id] = adapter
        logger.debug("Registered %d services", len(self._adapters))

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def definition_for(self, service_id: str) -> ServiceDefinition:
        return self.adapter_for(service_id).definition

    def adapter_for(self, service_id: str) -> ServiceAdapter:
        try:
            return self._adapters[service_id]
        except KeyError:
            raise NotFound(f"Unknown service: {service_id}") from None

    def definitions(self) -> list[ServiceDefinition]:
        return [a.definition for a in self._adapters.values()]

    def missing_requirements(
        self, service_ids: Iterable[str], locator: ProgramLocator
    ) -> dict[str, list[str]]:
        """Required programs that cannot be located, per service. Services with none are omitted."""
        missing: dict[str, list[str]] = {}
        for service_id in service_ids:
            absent = [
                pid
                for pid in self.adapter_for(service_id).declared_requirements()
                if locator.locate(pid) is None
            ]
            if absent:
                missing[service_id] = absent
        return missing


def default_registry() -> ServiceRegistry:
    from wrench.services import BUILTIN_ADAPTERS

    return ServiceRegistry(cls() for cls in BUILTIN_ADAPTERS)
