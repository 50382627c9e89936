"""Data models for quotebook."""

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
import uuid

from .errors import ValidationError
from .pricing import (
    HUNDRED,
    compute_line_total,
    compute_order_total,
    compute_vat,
    to_decimal,
)
from .settings import DEFAULT_VALIDITY_DAYS, DEFAULT_VAT_RATE

SUB_NUMBER_WIDTH = 2


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new record ID."""
    return str(uuid.uuid4())


def _parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(field_name, f"expected an ISO date, got {value!r}")


class Unit(str, Enum):
    """Units a line item can be quoted in."""

    PIECES = "pieces"
    TONS = "tons"
    WEEKS = "weeks"
    SETS = "sets"
    SESSIONS = "sessions"
    PACKAGES = "packages"
    METERS = "meters"
    MONTHS = "months"
    LITERS = "liters"
    SQUARE_METERS = "square_meters"
    CUBIC_METERS = "cubic_meters"
    KILOMETERS = "kilometers"
    KILOGRAMS = "kilograms"
    BOXES = "boxes"
    CARTONS = "cartons"
    SHIPMENTS = "shipments"
    DAYS = "days"
    CRATES = "crates"

    @property
    def label(self) -> str:
        """Display label used on portal quotes."""
        return UNIT_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "Unit":
        """
        Resolve a unit from its identifier or its display label.

        Missing values default to pieces.

        Raises:
            ValidationError: If the value names no known unit.
        """
        if value is None or value == "":
            return cls.PIECES
        if isinstance(value, Unit):
            return value
        key = str(value).strip().lower()
        normalized = key.replace(" ", "_").replace("-", "_")
        for unit in cls:
            if normalized == unit.value or key == unit.label.lower():
                return unit
        raise ValidationError("unit", f"unknown unit {value!r}")


UNIT_LABELS: dict[Unit, str] = {
    Unit.PIECES: "Stk.",
    Unit.TONS: "ton",
    Unit.WEEKS: "uger",
    Unit.SETS: "sæt",
    Unit.SESSIONS: "sessioner",
    Unit.PACKAGES: "pakker",
    Unit.METERS: "meter",
    Unit.MONTHS: "mdr.",
    Unit.LITERS: "liter",
    Unit.SQUARE_METERS: "kvm",
    Unit.CUBIC_METERS: "kubikmeter",
    Unit.KILOMETERS: "km",
    Unit.KILOGRAMS: "kg",
    Unit.BOXES: "kasser",
    Unit.CARTONS: "kartoner",
    Unit.SHIPMENTS: "forsendelser",
    Unit.DAYS: "dage",
    Unit.CRATES: "æsker",
}


class OrderState(str, Enum):
    """Lifecycle state of an order: draft -> numbered -> superseded | cancelled."""

    DRAFT = "draft"
    NUMBERED = "numbered"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderState.SUPERSEDED, OrderState.CANCELLED)


@dataclass
class LineItem:
    """One priced entry of an order. Validated on construction."""

    description: str
    quantity: Decimal = Decimal("1")
    unit: Unit = Unit.PIECES
    unit_price: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValidationError("description", "must be a non-empty string")
        self.description = self.description.strip()

        self.quantity = to_decimal(
            Decimal("1") if self.quantity is None else self.quantity, "quantity"
        )
        if self.quantity <= 0:
            raise ValidationError("quantity", "must be > 0")

        self.unit = Unit.parse(self.unit)

        self.unit_price = to_decimal(
            Decimal("0") if self.unit_price is None else self.unit_price, "unit_price"
        )
        if self.unit_price < 0:
            raise ValidationError("unit_price", "must be >= 0")

        self.discount_percent = to_decimal(
            Decimal("0") if self.discount_percent is None else self.discount_percent,
            "discount_percent",
        )
        if self.discount_percent < 0 or self.discount_percent > HUNDRED:
            raise ValidationError("discount_percent", "must be between 0 and 100")

    @property
    def line_total(self) -> Decimal:
        return compute_line_total(self)

    def with_changes(self, patch: dict[str, Any]) -> "LineItem":
        """
        Return a copy with the patched fields, validated like a new line.

        Raises:
            ValidationError: If the patch names an unknown field or holds a bad value.
        """
        known = {f.name for f in fields(self)}
        normalized = {_LINE_KEY_ALIASES.get(k, k): v for k, v in patch.items()}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise ValidationError("patch", f"unknown line field(s): {', '.join(unknown)}")
        return replace(self, **normalized)

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": str(self.quantity),
            "unit": self.unit.value,
            "unit_price": str(self.unit_price),
            "discount_percent": str(self.discount_percent),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        normalized = {_LINE_KEY_ALIASES.get(k, k): v for k, v in data.items()}
        return cls(
            description=normalized.get("description", ""),
            quantity=normalized.get("quantity"),
            unit=normalized.get("unit"),
            unit_price=normalized.get("unit_price"),
            discount_percent=normalized.get("discount_percent"),
        )


# camelCase spellings used by the portal frontend
_LINE_KEY_ALIASES = {
    "unitPrice": "unit_price",
    "discountPercent": "discount_percent",
}


@dataclass
class Order:
    """
    A quote, which becomes an order once numbered.

    A sub-order ("extra work") has ``parent_order_id`` set, shares its
    parent's ``order_number`` and is told apart by ``sub_number``.
    """

    id: str
    customer_id: str
    contact_person_id: str | None = None
    parent_order_id: str | None = None
    order_number: str | None = None  # zero-padded, e.g. "0042"
    sub_number: int | None = None  # 1-based within the parent
    state: OrderState = OrderState.DRAFT
    lines: list[LineItem] = field(default_factory=list)
    valid_until: date = field(
        default_factory=lambda: date.today() + timedelta(days=DEFAULT_VALIDITY_DAYS)
    )
    vat_rate: Decimal = DEFAULT_VAT_RATE
    title: str | None = None
    notes: str | None = None
    version: int = 0
    superseded_by: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)
    confirmed_at: str | None = None

    @property
    def is_extra_work(self) -> bool:
        """True iff this order hangs under a parent order."""
        return self.parent_order_id is not None

    @property
    def is_numbered(self) -> bool:
        return self.state is not OrderState.DRAFT

    @property
    def total(self) -> Decimal:
        """Net total, recomputed from the lines on every read."""
        return compute_order_total(self.lines)

    @property
    def vat_amount(self) -> Decimal:
        return compute_vat(self.total, self.vat_rate)

    @property
    def total_incl_vat(self) -> Decimal:
        return self.total + self.vat_amount

    @property
    def full_order_number(self) -> str | None:
        """Display number: "0002" for an order, "0002-01" for its first extra work."""
        if self.order_number is None:
            return None
        if self.parent_order_id is not None and self.sub_number is not None:
            return f"{self.order_number}-{self.sub_number:0{SUB_NUMBER_WIDTH}d}"
        return self.order_number

    def to_dict(self) -> dict[str, Any]:
        """Serialize the stored fields. Derived values are left out."""
        result: dict[str, Any] = {
            "id": self.id,
            "customer_id": self.customer_id,
            "contact_person_id": self.contact_person_id,
            "parent_order_id": self.parent_order_id,
            "order_number": self.order_number,
            "sub_number": self.sub_number,
            "state": self.state.value,
            "lines": [line.to_dict() for line in self.lines],
            "valid_until": self.valid_until.isoformat(),
            "vat_rate": str(self.vat_rate),
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.title is not None:
            result["title"] = self.title
        if self.notes is not None:
            result["notes"] = self.notes
        if self.superseded_by is not None:
            result["superseded_by"] = self.superseded_by
        if self.confirmed_at is not None:
            result["confirmed_at"] = self.confirmed_at
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        created_at = data.get("created_at", "")
        valid_until = data.get("valid_until")
        sub_number = data.get("sub_number")
        order_number = data.get("order_number")
        # Legacy rows carry a number but no state column
        default_state = OrderState.DRAFT if order_number is None else OrderState.NUMBERED
        return cls(
            id=str(data["id"]),
            customer_id=str(data["customer_id"]),
            contact_person_id=_optional_id(data.get("contact_person_id")),
            parent_order_id=_optional_id(data.get("parent_order_id")),
            order_number=order_number,
            sub_number=_parse_sub_number(sub_number),
            state=OrderState(data.get("state") or default_state.value),
            lines=[LineItem.from_dict(line) for line in data.get("lines", [])],
            valid_until=(
                _parse_date(valid_until, "valid_until")
                if valid_until
                else date.today() + timedelta(days=DEFAULT_VALIDITY_DAYS)
            ),
            vat_rate=to_decimal(data.get("vat_rate", DEFAULT_VAT_RATE), "vat_rate"),
            title=data.get("title"),
            notes=data.get("notes"),
            version=int(data.get("version", 0)),
            superseded_by=data.get("superseded_by"),
            created_at=created_at,
            updated_at=data.get("updated_at", created_at),
            confirmed_at=data.get("confirmed_at"),
        )

    @classmethod
    def create(
        cls,
        customer_id: str,
        contact_person_id: str | None = None,
        parent_order_id: str | None = None,
        title: str | None = None,
        notes: str | None = None,
        valid_until: date | str | None = None,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
    ) -> "Order":
        """
        Create a new draft order with generated ID and timestamps.

        Raises:
            ValidationError: If customer_id is empty or a date/rate is malformed.
        """
        if customer_id is None or not str(customer_id).strip():
            raise ValidationError("customer_id", "is required")

        now = _utc_now()
        today = datetime.now(timezone.utc).date()
        return cls(
            id=_generate_id(),
            customer_id=str(customer_id).strip(),
            contact_person_id=_optional_id(contact_person_id),
            parent_order_id=_optional_id(parent_order_id),
            valid_until=(
                _parse_date(valid_until, "valid_until")
                if valid_until
                else today + timedelta(days=validity_days)
            ),
            vat_rate=to_decimal(vat_rate, "vat_rate"),
            title=title,
            notes=notes,
            created_at=now,
            updated_at=now,
        )


def _optional_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _parse_sub_number(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("sub_number", f"expected an integer, got {value!r}")


@dataclass
class Contact:
    """A contact person at a customer."""

    id: str
    customer_id: str
    name: str
    email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "customer_id": self.customer_id,
            "name": self.name,
        }
        if self.email is not None:
            result["email"] = self.email
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contact":
        return cls(
            id=str(data["id"]),
            customer_id=str(data["customer_id"]),
            name=data.get("name", ""),
            email=data.get("email"),
        )

    @classmethod
    def create(cls, customer_id: str, name: str, email: str | None = None) -> "Contact":
        """Create a new contact with a generated ID."""
        if not str(customer_id).strip():
            raise ValidationError("customer_id", "is required")
        if not name or not name.strip():
            raise ValidationError("name", "is required")
        return cls(id=_generate_id(), customer_id=str(customer_id).strip(), name=name.strip(), email=email)


# Models for hierarchy reporting


@dataclass
class OrderSummary:
    """Revenue roll-up of a top-level order and its extra work."""

    order_id: str
    full_order_number: str | None
    revenue_main: Decimal
    revenue_extra: Decimal
    extra_work_count: int
    extra_work_numbers: list[str] = field(default_factory=list)

    @property
    def revenue(self) -> Decimal:
        return self.revenue_main + self.revenue_extra

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "full_order_number": self.full_order_number,
            "revenue_main": str(self.revenue_main),
            "revenue_extra": str(self.revenue_extra),
            "revenue": str(self.revenue),
            "extra_work_count": self.extra_work_count,
            "extra_work_numbers": self.extra_work_numbers,
        }
