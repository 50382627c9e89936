"""Tests for line and order pricing."""

from decimal import Decimal

import pytest

from quotebook.errors import ValidationError
from quotebook.models import LineItem
from quotebook.pricing import (
    compute_line_total,
    compute_order_total,
    compute_vat,
    format_amount,
    round_money,
    to_decimal,
)


class TestComputeLineTotal:
    def test_discounted_line(self):
        line = {"quantity": 2, "unit_price": 100, "discount_percent": 10}
        assert compute_line_total(line) == Decimal("180.00")

    def test_accepts_camel_case_keys(self):
        line = {"quantity": 2, "unitPrice": 100, "discountPercent": 10}
        assert compute_line_total(line) == Decimal("180.00")

    def test_accepts_line_item(self):
        line = LineItem(description="Tiles", quantity=3, unit="kvm", unit_price="249.95")
        assert compute_line_total(line) == Decimal("749.85")

    def test_missing_fields_use_defaults(self):
        assert compute_line_total({}) == Decimal("0.00")
        assert compute_line_total({"unit_price": 50}) == Decimal("50.00")

    def test_zero_quantity_is_allowed(self):
        assert compute_line_total({"quantity": 0, "unit_price": 10}) == Decimal("0.00")

    def test_full_discount(self):
        line = {"quantity": 5, "unit_price": 80, "discount_percent": 100}
        assert compute_line_total(line) == Decimal("0.00")

    def test_float_inputs_use_their_decimal_repr(self):
        assert compute_line_total({"quantity": 3, "unit_price": 0.1}) == Decimal("0.30")

    def test_rounds_half_to_even(self):
        assert compute_line_total({"unit_price": "0.125"}) == Decimal("0.12")
        assert compute_line_total({"unit_price": "0.135"}) == Decimal("0.14")

    def test_result_has_two_places(self):
        assert compute_line_total({"quantity": 1, "unit_price": 7}).as_tuple().exponent == -2

    @pytest.mark.parametrize(
        "line",
        [
            {"quantity": "0.5", "unit_price": "19.99", "discount_percent": "12.5"},
            {"quantity": 1000, "unit_price": "0.01", "discount_percent": 99},
            {"quantity": "2.75", "unit_price": "1234.56"},
        ],
    )
    def test_matches_formula_and_is_non_negative(self, line):
        quantity = Decimal(str(line["quantity"]))
        price = Decimal(str(line["unit_price"]))
        discount = Decimal(str(line.get("discount_percent", 0)))
        expected = round_money(price * quantity * (1 - discount / 100))

        total = compute_line_total(line)
        assert total == expected
        assert total >= 0

    @pytest.mark.parametrize(
        "line,field",
        [
            ({"quantity": -1, "unit_price": 10}, "quantity"),
            ({"quantity": 1, "unit_price": -10}, "unit_price"),
            ({"quantity": 1, "unit_price": 10, "discount_percent": -5}, "discount_percent"),
            ({"quantity": 1, "unit_price": 10, "discount_percent": 101}, "discount_percent"),
            ({"quantity": "abc"}, "quantity"),
            ({"unit_price": "NaN"}, "unit_price"),
            ({"quantity": True}, "quantity"),
        ],
    )
    def test_invalid_field_is_named(self, line, field):
        with pytest.raises(ValidationError) as exc_info:
            compute_line_total(line)
        assert exc_info.value.field == field


class TestComputeOrderTotal:
    def test_sums_lines(self):
        lines = [
            {"quantity": 2, "unit_price": 100, "discount_percent": 10},
            {"quantity": 1, "unit_price": "19.95"},
        ]
        assert compute_order_total(lines) == Decimal("199.95")

    def test_empty_order(self):
        assert compute_order_total([]) == Decimal("0.00")

    def test_rounds_once_at_the_end(self):
        lines = [{"unit_price": "0.005"}, {"unit_price": "0.005"}]

        rounded_lines = sum(compute_line_total(line) for line in lines)
        total = compute_order_total(lines)

        assert rounded_lines == Decimal("0.00")
        assert total == Decimal("0.01")
        assert abs(total - rounded_lines) <= Decimal("0.01")

    def test_invalid_line_raises(self):
        with pytest.raises(ValidationError):
            compute_order_total([{"unit_price": 10}, {"unit_price": -1}])


class TestVat:
    def test_default_danish_rate(self):
        assert compute_vat(Decimal("100.00"), Decimal("25")) == Decimal("25.00")

    def test_rounds_vat(self):
        assert compute_vat(Decimal("0.10"), Decimal("25")) == Decimal("0.02")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            compute_vat(Decimal("10"), Decimal("-1"))


class TestToDecimal:
    def test_strips_strings(self):
        assert to_decimal(" 12.50 ", "x") == Decimal("12.50")

    def test_rejects_infinity(self):
        with pytest.raises(ValidationError):
            to_decimal(float("inf"), "x")

    def test_rejects_other_types(self):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal([1], "amount")
        assert exc_info.value.field == "amount"


class TestFormatAmount:
    def test_danish_format(self):
        assert format_amount(Decimal("1234.5")) == "1.234,50 kr."

    def test_small_amount(self):
        assert format_amount(Decimal("0")) == "0,00 kr."
        assert format_amount(Decimal("999.999")) == "1.000,00 kr."

    def test_negative_millions(self):
        assert format_amount(Decimal("-1234567.891")) == "-1.234.567,89 kr."

    def test_other_currency_keeps_code(self):
        assert format_amount(Decimal("1234.5"), "eur") == "1.234,50 EUR"
