"""Tests for the service registry."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeAdapter
from wrench.core.registry import ServiceRegistry, default_registry
from wrench.errors import NotFound, RegistryError


class TestServiceRegistry:
    def test_lookup(self, fake_registry):
        assert "alpha" in fake_registry
        assert len(fake_registry) == 3
        assert fake_registry.definition_for("alpha").name == "Alpha"
        assert fake_registry.adapter_for("beta").service_id == "beta"

    def test_unknown_service(self, fake_registry):
        with pytest.raises(NotFound):
            fake_registry.definition_for("nope")
        with pytest.raises(LookupError):
            fake_registry.adapter_for("nope")

    def test_definitions_in_registration_order(self, fake_registry):
        assert [d.id for d in fake_registry.definitions()] == ["alpha", "beta", "gamma"]

    def test_duplicate_id_rejected(self):
        with pytest.raises(RegistryError):
            ServiceRegistry([FakeAdapter("a"), FakeAdapter("a")])

    def test_unknown_program_rejected(self):
        with pytest.raises(RegistryError):
            ServiceRegistry([FakeAdapter("a", requires=("not-a-program",))])

    def test_missing_requirements(self):
        registry = ServiceRegistry(
            [FakeAdapter("a", requires=("kvrt",)), FakeAdapter("b", requires=("smartctl",)), FakeAdapter("c")]
        )
        locator = MagicMock()
        locator.locate.side_effect = lambda pid: None if pid == "kvrt" else "/bin/smartctl"
        assert registry.missing_requirements(["a", "b", "c"], locator) == {"a": ["kvrt"]}


class TestDefaultRegistry:
    def test_builtin_services(self):
        registry = default_registry()
        assert [d.id for d in registry.definitions()] == [
            "disk_space",
            "ping_test",
            "sfc",
            "chkdsk",
            "smartctl",
            "kvrt_scan",
            "winsat",
            "heavyload",
        ]

    def test_declared_requirements(self):
        registry = default_registry()
        assert registry.definition_for("kvrt_scan").required_programs == ("kvrt",)
        assert registry.definition_for("disk_space").required_programs == ()

    def test_defaults_are_valid(self):
        from wrench.core.options import merge_options

        for definition in default_registry().definitions():
            assert set(merge_options(definition)) == {o.id for o in definition.options}
