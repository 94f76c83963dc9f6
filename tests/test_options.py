"""Tests for option validation and merging."""

import pytest

from wrench.core.options import merge_options, validate_options, validate_value
from wrench.errors import InvalidOption
from wrench.models import OptionKind, OptionSpec, ServiceDefinition

COUNT = OptionSpec("count", "Count", OptionKind.INTEGER, 4, min=1, max=100)
FLAG = OptionSpec("flag", "Flag", OptionKind.BOOLEAN, False)
MODE = OptionSpec("mode", "Mode", OptionKind.SELECT, "read_only", choices=("read_only", "fix_errors"))
TARGET = OptionSpec("target", "Target", OptionKind.TEXT, "8.8.8.8")

DEFINITION = ServiceDefinition(
    id="svc", name="Svc", description="", options=(COUNT, FLAG, MODE, TARGET)
)


class TestValidateValue:
    def test_integer_in_range(self):
        assert validate_value("svc", COUNT, 10) == 10

    def test_integer_bounds(self):
        assert validate_value("svc", COUNT, 1) == 1
        assert validate_value("svc", COUNT, 100) == 100
        with pytest.raises(InvalidOption) as exc:
            validate_value("svc", COUNT, 0)
        assert exc.value.service_id == "svc"
        assert exc.value.option_id == "count"
        with pytest.raises(InvalidOption):
            validate_value("svc", COUNT, 101)

    def test_integer_from_string(self):
        assert validate_value("svc", COUNT, " 12 ") == 12

    def test_integer_from_integral_float(self):
        assert validate_value("svc", COUNT, 5.0) == 5

    @pytest.mark.parametrize("bad", ["abc", 2.5, True, None, [1]])
    def test_integer_rejects(self, bad):
        with pytest.raises(InvalidOption):
            validate_value("svc", COUNT, bad)

    @pytest.mark.parametrize("raw,expected", [
        (True, True), ("true", True), ("Yes", True), ("1", True),
        (False, False), ("false", False), ("off", False), ("0", False),
    ])
    def test_boolean_coercion(self, raw, expected):
        assert validate_value("svc", FLAG, raw) is expected

    @pytest.mark.parametrize("bad", ["maybe", 1, None])
    def test_boolean_rejects(self, bad):
        with pytest.raises(InvalidOption):
            validate_value("svc", FLAG, bad)

    def test_select(self):
        assert validate_value("svc", MODE, "fix_errors") == "fix_errors"
        with pytest.raises(InvalidOption):
            validate_value("svc", MODE, "comprehensive")

    def test_text(self):
        assert validate_value("svc", TARGET, "1.1.1.1") == "1.1.1.1"
        with pytest.raises(InvalidOption):
            validate_value("svc", TARGET, 1111)

    def test_invalid_option_is_value_error(self):
        with pytest.raises(ValueError):
            validate_value("svc", COUNT, -1)


class TestMergeOptions:
    def test_defaults_only(self):
        assert merge_options(DEFINITION) == {
            "count": 4, "flag": False, "mode": "read_only", "target": "8.8.8.8",
        }

    def test_layer_precedence(self):
        merged = merge_options(
            DEFINITION,
            preset_options={"count": 10, "mode": "fix_errors"},
            overrides={"count": 20},
        )
        assert merged["count"] == 20
        assert merged["mode"] == "fix_errors"
        assert merged["flag"] is False

    def test_every_option_populated(self):
        merged = merge_options(DEFINITION, overrides={"flag": "yes"})
        assert set(merged) == {"count", "flag", "mode", "target"}
        assert merged["flag"] is True

    def test_unknown_key(self):
        with pytest.raises(InvalidOption) as exc:
            merge_options(DEFINITION, overrides={"colour": "red"})
        assert exc.value.option_id == "colour"

    def test_preset_value_validated(self):
        with pytest.raises(InvalidOption):
            merge_options(DEFINITION, preset_options={"count": 1000})


class TestValidateOptions:
    def test_complete_map_passes(self):
        opts = merge_options(DEFINITION)
        assert validate_options(DEFINITION, opts) == opts

    def test_missing_option(self):
        with pytest.raises(InvalidOption) as exc:
            validate_options(DEFINITION, {"count": 4})
        assert "Missing" in str(exc.value)
