"""
Tests for the commission calculator.

Covers cent rounding, the sourcing-agent default rate, per-line rounding
before summation and input validation.
"""

from decimal import Decimal

import pytest

from marketplace.core.errors import InvalidInputError
from marketplace.services.commission.calculator import (
    DEFAULT_SOURCING_AGENT_RATE,
    ZERO,
    CommissionBreakdown,
    CommissionLine,
    calculate_commission,
    compute_payout,
    line_commission,
    resolve_agent_rate,
    to_money,
)


class TestToMoney:
    """Tests for cent quantization."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (Decimal("1.005"), Decimal("1.01")),
            (Decimal("1.004"), Decimal("1.00")),
            (19.99, Decimal("19.99")),
            ("7", Decimal("7.00")),
            (3, Decimal("3.00")),
        ],
    )
    def test_rounds_half_up_to_cents(self, value, expected):
        assert to_money(value) == expected

    def test_rejects_non_numeric(self):
        with pytest.raises(InvalidInputError) as exc_info:
            to_money("abc")
        assert exc_info.value.context["value"] == "abc"


class TestResolveAgentRate:
    def test_configured_rate_wins(self):
        assert resolve_agent_rate(Decimal("7.5"), Decimal("10")) == Decimal("7.5")

    def test_explicit_default(self):
        assert resolve_agent_rate(None, Decimal("12")) == Decimal("12")

    def test_default_rate_is_required(self):
        with pytest.raises(TypeError):
            resolve_agent_rate(None)

    def test_module_default_matches_settings(self, settings):
        assert DEFAULT_SOURCING_AGENT_RATE == settings.default_sourcing_agent_rate == Decimal("10")


class TestLineCommission:
    """Tests for single line commission."""

    def test_platform_commission_only(self):
        breakdown = line_commission(
            CommissionLine(Decimal("100.00"), 2, Decimal("5"))
        )

        assert breakdown.commission == Decimal("10.00")
        assert breakdown.sourcing_agent_commission == ZERO

    def test_agent_rate_ignored_without_agent(self):
        breakdown = line_commission(
            CommissionLine(
                Decimal("100.00"),
                1,
                Decimal("5"),
                sourcing_agent_rate=Decimal("20"),
                has_sourcing_agent=False,
            )
        )

        assert breakdown.sourcing_agent_commission == ZERO

    def test_agent_commission_uses_default_rate(self):
        breakdown = line_commission(
            CommissionLine(Decimal("50.00"), 3, Decimal("4"), has_sourcing_agent=True)
        )

        # 150.00 revenue: 4% platform, 10% agent default
        assert breakdown.commission == Decimal("6.00")
        assert breakdown.sourcing_agent_commission == Decimal("15.00")
        assert breakdown.total == Decimal("21.00")

    def test_each_line_rounded_before_summing(self):
        lines = [CommissionLine(Decimal("0.10"), 1, Decimal("5"))] * 3

        # 0.005 per line rounds up to 0.01 each; summing first would give 0.02
        assert calculate_commission(lines).commission == Decimal("0.03")

    @pytest.mark.parametrize(
        "line",
        [
            CommissionLine(Decimal("10"), 0, Decimal("5")),
            CommissionLine(Decimal("10"), -1, Decimal("5")),
            CommissionLine(Decimal("-1"), 1, Decimal("5")),
            CommissionLine(Decimal("10"), 1, Decimal("101")),
            CommissionLine(Decimal("10"), 1, Decimal("-1")),
        ],
    )
    def test_invalid_lines_rejected(self, line):
        with pytest.raises(InvalidInputError):
            line_commission(line)


class TestCalculateCommission:
    def test_empty_lines(self):
        assert calculate_commission([]) == CommissionBreakdown()

    def test_mixed_lines(self):
        breakdown = calculate_commission(
            [
                CommissionLine(Decimal("100.00"), 2, Decimal("5")),
                CommissionLine(
                    Decimal("40.00"),
                    1,
                    Decimal("10"),
                    sourcing_agent_rate=Decimal("15"),
                    has_sourcing_agent=True,
                ),
            ]
        )

        assert breakdown.commission == Decimal("14.00")
        assert breakdown.sourcing_agent_commission == Decimal("6.00")


class TestComputePayout:
    def test_payout_subtracts_both_commissions(self):
        breakdown = CommissionBreakdown(Decimal("10.00"), Decimal("5.00"))

        assert compute_payout(Decimal("210.00"), breakdown) == Decimal("195.00")

    def test_payout_may_be_negative(self):
        breakdown = CommissionBreakdown(Decimal("8.00"), Decimal("4.00"))

        assert compute_payout(Decimal("10.00"), breakdown) == Decimal("-2.00")
