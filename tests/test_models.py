"""Tests for data models."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from quotebook.errors import ValidationError
from quotebook.models import Contact, LineItem, Order, OrderState, Unit


class TestUnit:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("pieces", Unit.PIECES),
            ("Stk.", Unit.PIECES),
            ("kvm", Unit.SQUARE_METERS),
            ("Square Meters", Unit.SQUARE_METERS),
            ("cubic-meters", Unit.CUBIC_METERS),
            ("ÆSKER", Unit.CRATES),
            (None, Unit.PIECES),
            ("", Unit.PIECES),
        ],
    )
    def test_parse(self, value, expected):
        assert Unit.parse(value) is expected

    def test_unknown_unit_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Unit.parse("furlongs")
        assert exc_info.value.field == "unit"

    def test_every_unit_has_a_label(self):
        assert all(unit.label for unit in Unit)
        assert len(Unit) == 18


class TestLineItem:
    def test_defaults(self):
        line = LineItem(description="Consulting")
        assert line.quantity == Decimal("1")
        assert line.unit is Unit.PIECES
        assert line.unit_price == Decimal("0")
        assert line.discount_percent == Decimal("0")

    def test_normalizes_inputs(self):
        line = LineItem(description="  Gravel ", quantity="2.5", unit="ton", unit_price=400)
        assert line.description == "Gravel"
        assert line.quantity == Decimal("2.5")
        assert line.unit is Unit.TONS
        assert line.line_total == Decimal("1000.00")

    def test_empty_description_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            LineItem(description="   ")
        assert exc_info.value.field == "description"

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError) as exc_info:
            LineItem(description="Nothing", quantity=0)
        assert exc_info.value.field == "quantity"

    def test_discount_range(self):
        with pytest.raises(ValidationError) as exc_info:
            LineItem(description="Too cheap", unit_price=10, discount_percent=120)
        assert exc_info.value.field == "discount_percent"

    def test_with_changes_accepts_camel_case(self):
        line = LineItem(description="Paint", quantity=2, unit_price=100)
        changed = line.with_changes({"discountPercent": 10})

        assert changed.discount_percent == Decimal("10")
        assert changed.line_total == Decimal("180.00")
        assert line.discount_percent == Decimal("0")

    def test_with_changes_validates(self):
        line = LineItem(description="Paint")
        with pytest.raises(ValidationError):
            line.with_changes({"quantity": -2})

    def test_with_changes_rejects_unknown_fields(self):
        line = LineItem(description="Paint")
        with pytest.raises(ValidationError) as exc_info:
            line.with_changes({"colour": "blue"})
        assert exc_info.value.field == "patch"

    def test_dict_round_trip_keeps_decimals_exact(self):
        line = LineItem(description="Boxes", quantity=3, unit="kasser", unit_price="12.30")
        data = line.to_dict()

        assert data["unit_price"] == "12.30"
        assert data["unit"] == "boxes"
        assert LineItem.from_dict(data) == line


class TestOrder:
    def test_create_defaults(self):
        order = Order.create("cust-1")
        today = datetime.now(timezone.utc).date()

        assert order.state is OrderState.DRAFT
        assert order.order_number is None
        assert order.sub_number is None
        assert order.lines == []
        assert order.valid_until == today + timedelta(days=30)
        assert order.vat_rate == Decimal("25")
        assert order.version == 0
        assert order.created_at == order.updated_at

    def test_create_requires_customer(self):
        with pytest.raises(ValidationError) as exc_info:
            Order.create("  ")
        assert exc_info.value.field == "customer_id"

    def test_create_parses_valid_until(self):
        order = Order.create("cust-1", valid_until="2031-06-30")
        assert order.valid_until == date(2031, 6, 30)

    def test_create_rejects_bad_date(self):
        with pytest.raises(ValidationError) as exc_info:
            Order.create("cust-1", valid_until="next week")
        assert exc_info.value.field == "valid_until"

    def test_is_extra_work_follows_parent(self):
        order = Order.create("cust-1")
        assert order.is_extra_work is False

        order.parent_order_id = "parent"
        assert order.is_extra_work is True

    def test_total_recomputed_on_read(self):
        order = Order.create("cust-1")
        order.lines.append(LineItem(description="A", quantity=2, unit_price=100, discount_percent=10))
        assert order.total == Decimal("180.00")

        order.lines.append(LineItem(description="B", unit_price="20"))
        assert order.total == Decimal("200.00")
        assert order.vat_amount == Decimal("50.00")
        assert order.total_incl_vat == Decimal("250.00")

    def test_full_order_number(self):
        top = Order(id="a", customer_id="c", order_number="0002", state=OrderState.NUMBERED)
        sub = Order(
            id="b",
            customer_id="c",
            parent_order_id="a",
            order_number="0002",
            sub_number=1,
            state=OrderState.NUMBERED,
        )
        draft = Order(id="d", customer_id="c")

        assert top.full_order_number == "0002"
        assert sub.full_order_number == "0002-01"
        assert draft.full_order_number is None

    def test_to_dict_has_no_derived_fields(self):
        order = Order.create("cust-1", parent_order_id="p")
        data = order.to_dict()

        assert "is_extra_work" not in data
        assert "total" not in data
        assert data["state"] == "draft"

    def test_from_dict_round_trip(self):
        order = Order.create("cust-1", "contact-1", title="Roof", notes="Before winter")
        order.lines.append(LineItem(description="Tiles", quantity=40, unit="kvm", unit_price="89.5"))

        restored = Order.from_dict(order.to_dict())

        assert restored == order

    def test_from_dict_tolerates_legacy_records(self):
        order = Order.from_dict({"id": 7, "customer_id": 3, "created_at": "2023-05-01T10:00:00Z"})

        assert order.id == "7"
        assert order.customer_id == "3"
        assert order.state is OrderState.DRAFT
        assert order.updated_at == "2023-05-01T10:00:00Z"
        assert order.vat_rate == Decimal("25")

    def test_from_dict_legacy_number_without_state_is_numbered(self):
        order = Order.from_dict({"id": 7, "customer_id": 3, "order_number": "0005"})

        assert order.state is OrderState.NUMBERED
        assert order.full_order_number == "0005"

    def test_from_dict_rejects_non_numeric_sub_number(self):
        with pytest.raises(ValidationError) as exc_info:
            Order.from_dict({"id": 8, "customer_id": 3, "parent_order_id": 7, "sub_number": "a"})
        assert exc_info.value.field == "sub_number"


class TestOrderState:
    def test_terminal_states(self):
        assert OrderState.SUPERSEDED.is_terminal
        assert OrderState.CANCELLED.is_terminal
        assert not OrderState.DRAFT.is_terminal
        assert not OrderState.NUMBERED.is_terminal


class TestContact:
    def test_create(self):
        contact = Contact.create("cust-1", " Mette Hansen ", "mette@example.dk")
        assert contact.name == "Mette Hansen"
        assert contact.id

    def test_create_requires_name(self):
        with pytest.raises(ValidationError) as exc_info:
            Contact.create("cust-1", "")
        assert exc_info.value.field == "name"
