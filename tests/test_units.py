import pytest

from wallet_core.errors import ValidationError
from wallet_core.wallet.units import (
    format_display,
    from_minor_units,
    parse_quantity,
    to_minor_units,
)


class TestToMinorUnits:
    def test_native_amount(self):
        assert to_minor_units("0.01", 18) == 10_000_000_000_000_000

    def test_deep_decimals_are_exact(self):
        assert to_minor_units("1.123456789012345678", 18) == 1_123456789012345678

    def test_whole_and_fraction_forms(self):
        assert to_minor_units("5", 6) == 5_000_000
        assert to_minor_units(".5", 6) == 500_000
        assert to_minor_units("5.", 6) == 5_000_000
        assert to_minor_units("1_000", 0) == 1000

    def test_trailing_zeros_do_not_count_as_precision(self):
        assert to_minor_units("1.500000", 2) == 150

    @pytest.mark.parametrize(
        "bad",
        ["", ".", "-1", "+1", "1e18", "abc", "1.2.3", " 0x10 ", "\u0660.\u0660\u0661", "\uff11", "9" * 5000, "1" + "0" * 78],
    )
    def test_rejects_malformed(self, bad):
        with pytest.raises(ValidationError):
            to_minor_units(bad, 18)

    def test_rejects_excess_precision(self):
        with pytest.raises(ValidationError):
            to_minor_units("0.0000001", 6)

    def test_rejects_non_string(self):
        with pytest.raises(ValidationError):
            to_minor_units(0.1, 18)


class TestFromMinorUnits:
    @pytest.mark.parametrize("decimals", range(4, 19))
    def test_small_amount_survives_both_ways(self, decimals):
        assert from_minor_units(to_minor_units("0.0001", decimals), decimals) == "0.0001"

    @pytest.mark.parametrize("decimals", range(0, 4))
    def test_small_amount_below_token_precision_is_rejected(self, decimals):
        with pytest.raises(ValidationError):
            to_minor_units("0.0001", decimals)

    def test_trims_and_keeps_integers_plain(self):
        assert from_minor_units(10**18, 18) == "1"
        assert from_minor_units(0, 18) == "0"
        assert from_minor_units(1, 18) == "0.000000000000000001"
        assert from_minor_units(1_500_000, 6) == "1.5"


class TestDisplayAndQuantities:
    def test_format_display_rounds_half_up(self):
        assert format_display(123_456_789_000_000_000, 18) == "0.1235"
        assert format_display(0, 18) == "0.0000"
        assert format_display(15, 1, places=4) == "1.5000"

    def test_parse_quantity(self):
        assert parse_quantity("0x") == 0
        assert parse_quantity("") == 0
        assert parse_quantity(None) == 0
        assert parse_quantity("0x1a") == 26
        assert parse_quantity(7) == 7

    def test_parse_quantity_rejects_garbage(self):
        with pytest.raises(ValidationError):
            parse_quantity("0xzz")
