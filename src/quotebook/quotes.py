"""
Quote aggregate: the entry point the API and CLI use to work with orders.

Composes pricing, numbering and hierarchy rules over a storage collaborator.
"""

import copy
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any

from .errors import (
    AlreadyNumberedError,
    InvalidStateError,
    NumberConflictError,
    ValidationError,
)
from .hierarchy import HierarchyManager, find_hierarchy_problems
from .models import Contact, LineItem, Order, OrderState, OrderSummary, _utc_now
from .settings import Settings
from .sequencer import OrderSequencer
from .storage import CustomerDirectory, OrderStorage

log = logging.getLogger(__name__)


def _coerce_line(line: LineItem | Mapping[str, Any]) -> LineItem:
    if isinstance(line, LineItem):
        return line
    if isinstance(line, Mapping):
        return LineItem.from_dict(dict(line))
    raise ValidationError("line", f"expected a line item, got {type(line).__name__}")


def _has_number(order: Order) -> bool:
    return order.is_numbered or order.order_number is not None or order.sub_number is not None


class QuoteAggregate:
    """Creates, edits, numbers and retires orders."""

    def __init__(
        self,
        storage: OrderStorage,
        contacts: CustomerDirectory,
        settings: Settings | None = None,
        sequencer: OrderSequencer | None = None,
        hierarchy: HierarchyManager | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            storage: Order persistence.
            contacts: Resolves contact persons for validation.
            settings: Defaults for VAT, validity and conflict retries.
            sequencer: Shared numbering; one per storage in a process.
            hierarchy: Hierarchy rules.
            sleep: Backoff sleep (replaced in tests).
        """
        self.storage = storage
        self.contacts = contacts
        self.settings = settings or Settings()
        self.sequencer = sequencer or OrderSequencer(storage, width=self.settings.number_width)
        self.hierarchy = hierarchy or HierarchyManager(storage)
        self._sleep = sleep

    # Reading

    def get(self, order_id: str) -> Order:
        return self.storage.get_order(order_id)

    def list_orders(self, customer_id: str | None = None) -> list[Order]:
        if customer_id is None:
            return self.storage.list_orders()
        return self.storage.list_orders_by_customer(customer_id)

    # Drafts and lines

    def _validate_contact(self, customer_id: str, contact_person_id: str | None) -> None:
        if contact_person_id is None:
            return
        contact = self.contacts.get_contact(contact_person_id)
        if contact is None:
            raise ValidationError("contact_person_id", f"unknown contact {contact_person_id}")
        if contact.customer_id != customer_id:
            raise ValidationError(
                "contact_person_id",
                f"contact {contact_person_id} belongs to customer {contact.customer_id}",
            )

    def create_draft(
        self,
        customer_id: str,
        contact_person_id: str | None = None,
        *,
        title: str | None = None,
        notes: str | None = None,
        valid_until: date | str | None = None,
        parent_order_id: str | None = None,
        lines: list[LineItem | Mapping[str, Any]] | None = None,
    ) -> Order:
        """
        Create and persist a draft order.

        Raises:
            ValidationError: If a field or the contact person is invalid.
            HierarchyError: If ``parent_order_id`` is not a valid parent.
        """
        order = Order.create(
            customer_id,
            contact_person_id,
            title=title,
            notes=notes,
            valid_until=valid_until,
            vat_rate=self.settings.vat_rate,
            validity_days=self.settings.validity_days,
        )
        self._validate_contact(order.customer_id, order.contact_person_id)
        if parent_order_id:
            self.hierarchy.attach_as_sub_order(order, parent_order_id)
        order.lines = [_coerce_line(line) for line in lines or []]

        self.storage.insert_order(order)
        log.info("Created draft %s for customer %s", order.id, order.customer_id)
        return order

    def create_extra_work(
        self,
        parent_id: str,
        *,
        title: str | None = None,
        notes: str | None = None,
        contact_person_id: str | None = None,
        lines: list[LineItem | Mapping[str, Any]] | None = None,
    ) -> Order:
        """Create a draft sub-order for the parent's customer."""
        parent = self.hierarchy.load_parent(parent_id)
        return self.create_draft(
            parent.customer_id,
            contact_person_id or parent.contact_person_id,
            title=title,
            notes=notes,
            parent_order_id=parent.id,
            lines=lines,
        )

    def _ensure_editable(self, order: Order, action: str) -> None:
        if order.state.is_terminal:
            raise InvalidStateError(order.id, order.state.value, action)

    def _check_index(self, order: Order, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError("index", f"expected an integer, got {index!r}")
        if not 0 <= index < len(order.lines):
            raise ValidationError("index", f"{index} is out of range (order has {len(order.lines)} lines)")

    def add_line(self, order: Order, line: LineItem | Mapping[str, Any]) -> LineItem:
        """Append a line in memory; call save() to persist."""
        self._ensure_editable(order, "edit lines of")
        item = _coerce_line(line)
        order.lines.append(item)
        return item

    def remove_line(self, order: Order, index: int) -> LineItem:
        self._ensure_editable(order, "edit lines of")
        self._check_index(order, index)
        return order.lines.pop(index)

    def update_line(self, order: Order, index: int, patch: Mapping[str, Any]) -> LineItem:
        self._ensure_editable(order, "edit lines of")
        self._check_index(order, index)
        item = order.lines[index].with_changes(dict(patch))
        order.lines[index] = item
        return item

    def save(self, order: Order) -> Order:
        """
        Persist in-memory changes.

        Raises:
            StaleOrderError: If the order changed in storage since it was read.
        """
        return self.storage.update_order(order)

    # Numbering

    def confirm(self, order: Order) -> Order:
        """
        Number a draft and persist it.

        Top-level orders get the next order number. Sub-orders keep their
        parent's order number and get the next sub-number under it. Number
        conflicts reported by storage are retried with exponential backoff;
        on any failure the order is left unnumbered.

        Raises:
            AlreadyNumberedError: If the order is numbered or already holds a
                number, whatever its state.
            HierarchyError: If a sub-order's parent is no longer valid.
            NumberConflictError: If conflicts persist after the retries.
            StaleOrderError: If the order changed in storage since it was read.
        """
        if _has_number(order):
            raise AlreadyNumberedError(order.id, order.full_order_number)
        stored = self.storage.get_order(order.id)
        if _has_number(stored):
            raise AlreadyNumberedError(order.id, stored.full_order_number)

        retries = self.settings.conflict_retries
        for attempt in range(retries + 1):
            try:
                self._confirm_once(order)
                break
            except NumberConflictError as e:
                if attempt == retries:
                    log.error("Giving up numbering order %s after %d attempt(s): %s", order.id, attempt + 1, e)
                    raise
                delay = self.settings.retry_base_delay * 2**attempt
                log.warning("Number conflict on order %s (%s), retrying in %.2fs", order.id, e, delay)
                self._sleep(delay)

        log.info("Confirmed order %s as %s", order.id, order.full_order_number)
        return order

    def _confirm_once(self, order: Order) -> None:
        parent_id = order.parent_order_id
        if parent_id is None:
            with self.sequencer.numbering_space():
                number = self.sequencer.next_order_number()
                self._commit_number(order, number, None)
            return

        with self.sequencer.numbering_space(parent_id):
            parent = self.hierarchy.load_parent(parent_id)
            self.hierarchy.validate_parent(parent, order)
            sub_number = self.sequencer.next_sub_number(parent_id)
            self._commit_number(order, parent.order_number, sub_number)

    def _commit_number(self, order: Order, number: str | None, sub_number: int | None) -> None:
        before = (order.order_number, order.sub_number, order.state, order.confirmed_at)
        order.order_number = number
        order.sub_number = sub_number
        order.state = OrderState.NUMBERED
        order.confirmed_at = _utc_now()
        try:
            self.storage.update_order(order)
        except Exception:
            order.order_number, order.sub_number, order.state, order.confirmed_at = before
            if sub_number is None:
                self.sequencer.release_order_number(number)
            else:
                self.sequencer.release_sub_number(order.parent_order_id, sub_number)
            raise

    # Retiring orders

    def supersede(self, order: Order) -> Order:
        """
        Replace a numbered order with a new draft.

        The original is marked superseded and keeps its number. The
        replacement carries the lines, customer, contact and parent.

        Returns:
            The replacement draft.

        Raises:
            InvalidStateError: If the order is not numbered.
        """
        if order.state is not OrderState.NUMBERED:
            raise InvalidStateError(order.id, order.state.value, "supersede")

        replacement = Order.create(
            order.customer_id,
            order.contact_person_id,
            parent_order_id=order.parent_order_id,
            title=order.title,
            notes=order.notes,
            vat_rate=order.vat_rate,
            validity_days=self.settings.validity_days,
        )
        replacement.lines = copy.deepcopy(order.lines)
        self.storage.insert_order(replacement)

        order.state = OrderState.SUPERSEDED
        order.superseded_by = replacement.id
        try:
            self.storage.update_order(order)
        except Exception:
            order.state = OrderState.NUMBERED
            order.superseded_by = None
            self.storage.delete_order(replacement.id)
            raise

        log.info("Order %s superseded by draft %s", order.full_order_number, replacement.id)
        return replacement

    def cancel(self, order: Order) -> Order:
        """
        Raises:
            InvalidStateError: If the order is not numbered.
        """
        if order.state is not OrderState.NUMBERED:
            raise InvalidStateError(order.id, order.state.value, "cancel")
        order.state = OrderState.CANCELLED
        try:
            self.storage.update_order(order)
        except Exception:
            order.state = OrderState.NUMBERED
            raise
        log.info("Cancelled order %s", order.full_order_number)
        return order

    def delete(self, order_id: str) -> Order:
        """
        Delete a draft without sub-orders.

        Raises:
            HierarchyError: If the order has sub-orders.
            AlreadyNumberedError: If the order is numbered.
        """
        deleted = self.storage.delete_order(order_id, guard=self.hierarchy.ensure_deletable)
        log.info("Deleted draft %s", order_id)
        return deleted

    # Reporting and maintenance

    def summary(self, order_id: str) -> OrderSummary:
        """Revenue roll-up for an order; sub-orders report their parent's."""
        order = self.storage.get_order(order_id)
        if order.parent_order_id is not None:
            order = self.storage.get_order(order.parent_order_id)
        return self.hierarchy.summarize(order, self.storage.list_sub_orders(order.id))

    def backfill(self, skip_drafts: bool = False) -> list[Order]:
        """
        Number stored records that lack a number, in creation order.

        All changed records are written together. If the write fails nothing
        is stored and the numbers drawn for it are handed back.

        Raises:
            StaleOrderError: If a record changed while the backfill ran.
            NumberConflictError: If another writer took one of the numbers.
        """
        with self.sequencer.numbering_space():
            marks = self.sequencer.high_water_marks()
            changed = self.sequencer.backfill_missing_numbers(self.storage.list_orders(), skip_drafts)
            if not changed:
                return changed
            try:
                self.storage.update_orders(changed)
            except Exception:
                self.sequencer.restore_high_water_marks(marks)
                log.error("Backfill of %d order(s) was not stored", len(changed))
                raise
        return changed

    def check_hierarchy(self) -> list[str]:
        return find_hierarchy_problems(self.storage.list_orders())

    def add_contact(self, customer_id: str, name: str, email: str | None = None) -> Contact:
        """Register a contact person. Needs a directory that supports writes."""
        contact = Contact.create(customer_id, name, email)
        return self.contacts.add_contact(contact)

    @staticmethod
    def to_record(order: Order) -> dict[str, Any]:
        """Plain record for callers, with derived values and amounts as strings."""
        record = order.to_dict()
        record["lines"] = [
            {**line.to_dict(), "unit_label": line.unit.label, "line_total": str(line.line_total)}
            for line in order.lines
        ]
        record.update(
            is_extra_work=order.is_extra_work,
            full_order_number=order.full_order_number,
            total=str(order.total),
            vat_amount=str(order.vat_amount),
            total_incl_vat=str(order.total_incl_vat),
        )
        return record
