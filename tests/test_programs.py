"""Tests for required program lookup."""

from pathlib import Path
from unittest.mock import patch

from wrench.config import ProgramsConfig, WrenchConfig
from wrench.core.programs import REQUIRED_PROGRAMS, ProgramLocator


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


class TestRequiredPrograms:
    def test_known_ids(self):
        assert set(REQUIRED_PROGRAMS) == {"smartctl", "kvrt", "heavyload"}

    def test_exe_names(self):
        assert "KVRT.exe" in REQUIRED_PROGRAMS["kvrt"].exe_names


class TestProgramLocator:
    @patch("wrench.core.programs.shutil.which", return_value=None)
    def test_missing(self, _which, tmp_path):
        locator = ProgramLocator(programs_dir=tmp_path)
        assert locator.locate("kvrt") is None
        assert not locator.status("kvrt").found

    def test_unknown_program(self, tmp_path):
        locator = ProgramLocator(programs_dir=tmp_path)
        assert locator.status("nope") is None
        assert locator.locate("nope") is None
        assert not locator.known("nope")

    @patch("wrench.core.programs.shutil.which", return_value=None)
    def test_programs_dir_recursive_case_insensitive(self, _which, tmp_path):
        exe = _touch(tmp_path / "KVRT" / "kvrt.EXE")
        locator = ProgramLocator(programs_dir=tmp_path)
        assert locator.locate("kvrt") == exe

    @patch("wrench.core.programs.shutil.which", return_value="/usr/sbin/smartctl")
    def test_falls_back_to_path(self, _which, tmp_path):
        locator = ProgramLocator(programs_dir=tmp_path)
        assert locator.locate("smartctl") == Path("/usr/sbin/smartctl")

    @patch("wrench.core.programs.shutil.which", return_value=None)
    def test_override_wins(self, _which, tmp_path):
        _touch(tmp_path / "programs" / "HeavyLoad.exe")
        custom = _touch(tmp_path / "elsewhere" / "hl.exe")
        locator = ProgramLocator(
            programs_dir=tmp_path / "programs", overrides={"heavyload": str(custom)}
        )
        status = locator.status("heavyload")
        assert status.path == custom
        assert status.is_override

    @patch("wrench.core.programs.shutil.which", return_value=None)
    def test_missing_override_falls_through(self, _which, tmp_path):
        exe = _touch(tmp_path / "programs" / "HeavyLoad.exe")
        locator = ProgramLocator(
            programs_dir=tmp_path / "programs", overrides={"heavyload": str(tmp_path / "gone.exe")}
        )
        status = locator.status("heavyload")
        assert status.path == exe
        assert not status.is_override

    @patch("wrench.core.programs.shutil.which", return_value=None)
    def test_all_statuses_sorted(self, _which, tmp_path):
        statuses = ProgramLocator(programs_dir=tmp_path).all_statuses()
        names = [s.definition.name.lower() for s in statuses]
        assert names == sorted(names)
        assert len(statuses) == len(REQUIRED_PROGRAMS)

    @patch("wrench.core.programs.shutil.which", return_value=None)
    def test_from_config(self, _which, tmp_path):
        exe = _touch(tmp_path / ".wrench" / "programs" / "smartctl.exe")
        config = WrenchConfig(project_path=tmp_path, programs=ProgramsConfig())
        assert ProgramLocator.from_config(config).locate("smartctl") == exe
