"""Required external programs and executable lookup."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from wrench.config import WrenchConfig
from wrench.models.service import RequiredProgramDef

logger = logging.getLogger("wrench.programs")

REQUIRED_PROGRAMS: dict[str, RequiredProgramDef] = {
    p.id: p
    for p in (
        RequiredProgramDef(
            id="smartctl",
            name="smartmontools",
            description="S.M.A.R.T. drive health reporting",
            exe_names=("smartctl.exe", "smartctl"),
            url="https://www.smartmontools.org/",
        ),
        RequiredProgramDef(
            id="kvrt",
            name="Kaspersky Virus Removal Tool",
            description="On-demand malware scanner",
            exe_names=("KVRT.exe",),
            url="https://www.kaspersky.com/downloads/free-virus-removal-tool",
        ),
        RequiredProgramDef(
            id="heavyload",
            name="HeavyLoad",
            description="CPU, memory and disk stress tester",
            exe_names=("HeavyLoad.exe",),
            url="https://www.jam-software.com/heavyload",
        ),
    )
}


@dataclass(frozen=True, slots=True)
class ProgramStatus:
    """Lookup result for one required program."""

    definition: RequiredProgramDef
    path: Path | None
    is_override: bool = False

    @property
    def found(self) -> bool:
        return self.path is not None


class ProgramLocator:
    """Resolve program ids to executables: settings override, programs folder, then PATH."""

    def __init__(
        self,
        programs_dir: Path | None = None,
        overrides: dict[str, str] | None = None,
        programs: dict[str, RequiredProgramDef] | None = None,
    ) -> None:
        self._programs_dir = programs_dir
        self._overrides = dict(overrides or {})
        self._programs = programs if programs is not None else REQUIRED_PROGRAMS

    @classmethod
    def from_config(cls, config: WrenchConfig) -> ProgramLocator:
        return cls(programs_dir=config.programs_dir, overrides=config.programs.overrides)

    def known(self, program_id: str) -> bool:
        return program_id in self._programs

    def status(self, program_id: str) -> ProgramStatus | None:
        definition = self._programs.get(program_id)
        if definition is None:
            return None

        custom = self._overrides.get(program_id)
        if custom:
            path = Path(custom)
            if path.is_file():
                return ProgramStatus(definition, path, is_override=True)
            logger.warning("Override for %s does not exist: %s", program_id, custom)

        found = self._search_programs_dir(definition.exe_names)
        if found is None:
            found = self._search_path(definition.exe_names)
        return ProgramStatus(definition, found)

    def locate(self, program_id: str) -> Path | None:
        """Return the executable path for a program id, or None if it cannot be found."""
        status = self.status(program_id)
        return status.path if status else None

    def all_statuses(self) -> list[ProgramStatus]:
        statuses = [self.status(pid) for pid in self._programs]
        return sorted(
            (s for s in statuses if s is not None), key=lambda s: s.definition.name.lower()
        )

    def _search_programs_dir(self, exe_names: tuple[str, ...]) -> Path | None:
        if self._programs_dir is None or not self._programs_dir.is_dir():
            return None
        wanted = {name.lower() for name in exe_names}
        try:
            for candidate in sorted(self._programs_dir.rglob("*")):
                if candidate.is_file() and candidate.name.lower() in wanted:
                    return candidate
        except OSError as exc:
            logger.warning("Cannot scan %s: %s", self._programs_dir, exc)
        return None

    @staticmethod
    def _search_path(exe_names: tuple[str, ...]) -> Path | None:
        for name in exe_names:
            found = shutil.which(name)
            if found:
                return Path(found)
        return None
