"""Tests for threshold classification."""

from decimal import Decimal

import pytest

from balance_sync.db.models import Balance
from balance_sync.errors import ConfigurationError
from balance_sync.services.thresholds import (
    Limits,
    ThresholdTier,
    classify,
    classify_balance,
    limits_for,
    validate_limits,
)

LIMITS = Limits(red=Decimal("1000"), yellow=Decimal("5000"), green=Decimal("10000"))


class TestClassify:
    @pytest.mark.parametrize(
        "amount, expected",
        [
            ("10000.01", ThresholdTier.green),
            ("10000", ThresholdTier.yellow),
            ("5000.01", ThresholdTier.yellow),
            ("5000", ThresholdTier.yellow),
            ("3000", ThresholdTier.yellow),
            ("1000.01", ThresholdTier.yellow),
            ("1000", ThresholdTier.red),
            ("0", ThresholdTier.red),
            ("-250000", ThresholdTier.red),
        ],
    )
    def test_bands(self, amount, expected):
        assert classify(Decimal(amount), LIMITS) is expected

    def test_no_limits_is_gray(self):
        assert classify(Decimal("3000"), None) is ThresholdTier.gray

    def test_same_inputs_same_tier(self):
        assert classify(Decimal("3000"), LIMITS) is classify(Decimal("3000"), LIMITS)

    def test_tier_values_are_strings(self):
        assert [t.value for t in ThresholdTier] == ["red", "yellow", "green", "gray"]


class TestValidateLimits:
    def test_all_none_clears(self):
        assert validate_limits(None, None, None) is None

    def test_valid_triple(self):
        limits = validate_limits(Decimal("1"), Decimal("2"), Decimal("3"))
        assert limits == Limits(Decimal("1"), Decimal("2"), Decimal("3"))

    def test_partial_limits_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_limits(Decimal("1"), None, Decimal("3"))
        assert exc_info.value.code == "E-1008"

    @pytest.mark.parametrize(
        "red, yellow, green",
        [("5", "1", "10"), ("1", "1", "10"), ("1", "10", "10"), ("10", "5", "1")],
    )
    def test_misordered_limits_rejected(self, red, yellow, green):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_limits(Decimal(red), Decimal(yellow), Decimal(green))
        assert exc_info.value.code == "E-1004"


class TestBalanceRows:
    def test_limits_for_unset_balance(self):
        balance = Balance(amount=Decimal("5"), currency="USD")
        assert limits_for(balance) is None
        assert classify_balance(balance) is ThresholdTier.gray

    def test_classify_balance_uses_its_limits(self):
        balance = Balance(
            amount=Decimal("12000"),
            currency="USD",
            limit_red=Decimal("1000"),
            limit_yellow=Decimal("5000"),
            limit_green=Decimal("10000"),
        )
        assert classify_balance(balance) is ThresholdTier.green
