"""
Unit tests per il calcolo dell'allocazione.

Funzioni pure: nessun database.
"""

from decimal import Decimal

import pytest

from app.core.exceptions import BusinessValidationError
from app.schemas.settlement import DiscountType
from app.services.allocation import compute_allocation, resolve_discount, to_money, to_percentage


# ============================================================
# Tests per to_money
# ============================================================


class TestToMoney:
    """Conversione degli importi in Decimal a due cifre."""

    def test_rounds_half_up_to_cents(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")

    def test_accepts_comma_decimal_separator(self):
        assert to_money("1234,5") == Decimal("1234.50")

    def test_float_goes_through_text(self):
        assert to_money(0.1 + 0.2) == Decimal("0.30")

    def test_none_is_zero(self):
        assert to_money(None) == Decimal("0.00")

    def test_negative_rejected(self):
        with pytest.raises(BusinessValidationError):
            to_money("-1")

    def test_not_a_number_rejected(self):
        with pytest.raises(BusinessValidationError):
            to_money("abc")


# ============================================================
# Tests per resolve_discount
# ============================================================


class TestResolveDiscount:
    """Sconto fisso o percentuale, sempre limitato a [0, gross]."""

    def test_fixed_discount(self):
        assert resolve_discount(Decimal("900"), Decimal("100")) == Decimal("100.00")

    def test_fixed_discount_clamped_to_gross(self):
        assert resolve_discount(Decimal("100"), Decimal("150")) == Decimal("100.00")

    def test_percentage_discount(self):
        discount = resolve_discount(Decimal("900"), Decimal("10"), DiscountType.PERCENTAGE)
        assert discount == Decimal("90.00")

    def test_percentage_rounded_half_up(self):
        # 33.335 → 33.34
        discount = resolve_discount(Decimal("333.35"), Decimal("10"), DiscountType.PERCENTAGE)
        assert discount == Decimal("33.34")

    def test_negative_percentage_rejected(self):
        with pytest.raises(BusinessValidationError):
            resolve_discount(Decimal("100"), Decimal("-5"), DiscountType.PERCENTAGE)

    def test_non_numeric_percentage_rejected(self):
        with pytest.raises(BusinessValidationError) as exc_info:
            resolve_discount(Decimal("100"), "abc", DiscountType.PERCENTAGE)

        assert exc_info.value.extra == {"field": "discount_value"}

    def test_percentage_text_with_comma(self):
        assert to_percentage(" 12,5 ") == Decimal("12.5")
        assert resolve_discount(Decimal("200"), "12,5", DiscountType.PERCENTAGE) == Decimal("25.00")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "10%"])
    def test_invalid_percentage_text(self, value):
        with pytest.raises(BusinessValidationError) as exc_info:
            to_percentage(value)

        assert exc_info.value.extra["field"] == "discount_value"


# ============================================================
# Tests per compute_allocation
# ============================================================


class TestComputeAllocation:
    """Netto, allocato, residuo e quadratura."""

    def test_single_payment_covers_gross(self):
        """Lordo 1000, un PIX da 1000: in quadratura."""
        result = compute_allocation(Decimal("1000"), Decimal("0"), [Decimal("1000")])

        assert result.net == Decimal("1000.00")
        assert result.allocated == Decimal("1000.00")
        assert result.remaining == Decimal("0.00")
        assert result.balanced is True

    def test_net_is_gross_minus_discount_exactly(self):
        result = compute_allocation(Decimal("900.00"), Decimal("100.00"))
        assert result.net == Decimal("800.00")
        assert result.gross - result.discount == result.net

    def test_discount_greater_than_gross_gives_zero_net(self):
        result = compute_allocation(Decimal("50"), Decimal("80"))
        assert result.discount == Decimal("50.00")
        assert result.net == Decimal("0.00")
        assert result.balanced is True

    def test_payment_lines_and_installments_are_summed(self):
        """Lordo 900, sconto 100, 300 incassati e due rate da 250."""
        result = compute_allocation(
            Decimal("900"),
            Decimal("100"),
            [Decimal("300")],
            [Decimal("250"), Decimal("250")],
        )
        assert result.allocated == Decimal("800.00")
        assert result.balanced is True

    def test_residual_within_tolerance_is_balanced(self):
        result = compute_allocation(Decimal("100.00"), Decimal("0"), [Decimal("99.97")])
        assert result.remaining == Decimal("0.03")
        assert result.balanced is True

    def test_residual_at_tolerance_is_balanced(self):
        result = compute_allocation(Decimal("100.00"), Decimal("0"), [Decimal("99.95")])
        assert result.balanced is True

    def test_residual_above_tolerance_is_not_balanced(self):
        result = compute_allocation(Decimal("100.00"), Decimal("0"), [Decimal("99.90")])
        assert result.remaining == Decimal("0.10")
        assert result.balanced is False

    def test_over_allocation_is_clamped_but_not_balanced(self):
        result = compute_allocation(Decimal("100.00"), Decimal("0"), [Decimal("120.00")])
        assert result.remaining == Decimal("0.00")
        assert result.difference == Decimal("-20.00")
        assert result.balanced is False

    def test_small_over_allocation_within_tolerance(self):
        result = compute_allocation(Decimal("100.00"), Decimal("0"), [Decimal("100.04")])
        assert result.balanced is True

    def test_custom_tolerance(self):
        result = compute_allocation(
            Decimal("100.00"), Decimal("0"), [Decimal("99.90")], tolerance=Decimal("0.10")
        )
        assert result.balanced is True

    def test_accepts_objects_with_amount_and_value(self):
        class Line:
            amount = Decimal("60")

        class Installment:
            value = Decimal("40")

        result = compute_allocation(Decimal("100"), Decimal("0"), [Line()], [Installment()])
        assert result.allocated == Decimal("100.00")

    def test_negative_line_rejected(self):
        with pytest.raises(BusinessValidationError):
            compute_allocation(Decimal("100"), Decimal("0"), [Decimal("-10")])

    @pytest.mark.parametrize(
        "gross,discount",
        [
            ("0", "0"),
            ("0.01", "0.01"),
            ("1234.56", "234.56"),
            ("999999.99", "0.99"),
        ],
    )
    def test_net_never_negative(self, gross, discount):
        result = compute_allocation(Decimal(gross), Decimal(discount))
        assert result.net >= 0
        assert result.net == Decimal(gross) - Decimal(discount)
