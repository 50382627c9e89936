"""
Order numbering.

There is one numbering space for top-level order numbers and one per parent
for sub-numbers. Each space is serialized by its own lock and remembers the
highest value it has handed out, so two callers never receive the same
number even before either has persisted it. Storage still enforces
uniqueness; a collision there surfaces as NumberConflictError.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from .models import Order, OrderState
from .settings import DEFAULT_NUMBER_WIDTH
from .storage import OrderStorage

log = logging.getLogger(__name__)


def parse_order_number(value: str | None) -> int | None:
    """Numeric value of a stored order number, or None if it isn't one."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class OrderSequencer:
    """Hands out order numbers and per-parent sub-numbers."""

    def __init__(self, storage: OrderStorage, width: int = DEFAULT_NUMBER_WIDTH):
        """
        Args:
            storage: Where existing numbers are read from.
            width: Zero-padding width of top-level order numbers.
        """
        self._storage = storage
        self.width = width

        self._guard = threading.Lock()
        self._order_lock = threading.RLock()
        self._parent_locks: dict[str, threading.RLock] = {}

        # Highest value issued per space
        self._last_order_number = 0
        self._last_sub_numbers: dict[str, int] = {}

    def _lock_for(self, parent_order_id: str | None) -> threading.RLock:
        if parent_order_id is None:
            return self._order_lock
        with self._guard:
            lock = self._parent_locks.get(parent_order_id)
            if lock is None:
                lock = threading.RLock()
                self._parent_locks[parent_order_id] = lock
            return lock

    @contextmanager
    def numbering_space(self, parent_order_id: str | None = None) -> Iterator[None]:
        """
        Hold the lock of a numbering space.

        Drawing a number and persisting it inside one ``with`` block makes
        the pair a single serialized step. The lock is re-entrant.

        Args:
            parent_order_id: Parent whose sub-number space to lock, or None
                for the top-level order numbers.
        """
        with self._lock_for(parent_order_id):
            yield

    def format_number(self, value: int) -> str:
        return f"{value:0{self.width}d}"

    def _highest_stored_number(self) -> int:
        numbers = [parse_order_number(o.order_number) for o in self._storage.list_top_level_orders()]
        return max((n for n in numbers if n is not None), default=0)

    def _highest_stored_sub_number(self, parent_order_id: str) -> int:
        return max(
            (o.sub_number for o in self._storage.list_sub_orders(parent_order_id) if o.sub_number),
            default=0,
        )

    def next_order_number(self) -> str:
        """
        Issue the next top-level order number.

        Strictly greater than every stored top-level number and every number
        issued before by this sequencer.
        """
        with self.numbering_space():
            value = max(self._last_order_number, self._highest_stored_number()) + 1
            self._last_order_number = value
            return self.format_number(value)

    def next_sub_number(self, parent_order_id: str) -> int:
        """Issue the next sub-number under a parent, starting at 1."""
        with self.numbering_space(parent_order_id):
            value = (
                max(
                    self._last_sub_numbers.get(parent_order_id, 0),
                    self._highest_stored_sub_number(parent_order_id),
                )
                + 1
            )
            self._last_sub_numbers[parent_order_id] = value
            return value

    def release_order_number(self, number: str) -> None:
        """
        Give back an order number that was issued but never persisted.

        Only the most recently issued number can be returned; anything else
        is left as a gap.
        """
        with self.numbering_space():
            if parse_order_number(number) == self._last_order_number:
                self._last_order_number -= 1

    def release_sub_number(self, parent_order_id: str, sub_number: int) -> None:
        """Give back the most recently issued sub-number of a parent."""
        with self.numbering_space(parent_order_id):
            if self._last_sub_numbers.get(parent_order_id) == sub_number:
                self._last_sub_numbers[parent_order_id] = sub_number - 1

    def high_water_marks(self) -> tuple[int, dict[str, int]]:
        """Highest issued order number and sub-numbers, for restore_high_water_marks."""
        with self._guard:
            return self._last_order_number, dict(self._last_sub_numbers)

    def restore_high_water_marks(self, marks: tuple[int, dict[str, int]]) -> None:
        """Hand back every number issued since ``marks`` was taken."""
        last_order_number, last_sub_numbers = marks
        with self.numbering_space():
            self._last_order_number = last_order_number
        with self._guard:
            parent_ids = list(self._last_sub_numbers)
        for parent_id in parent_ids:
            with self.numbering_space(parent_id):
                if parent_id in last_sub_numbers:
                    self._last_sub_numbers[parent_id] = last_sub_numbers[parent_id]
                else:
                    self._last_sub_numbers.pop(parent_id, None)

    def backfill_missing_numbers(self, orders: list[Order], skip_drafts: bool = False) -> list[Order]:
        """
        Assign numbers to records that lack one.

        Top-level orders are numbered sequentially after the highest number
        present, in creation order (``created_at``; records without a
        timestamp come first, ties keep the order given). Sub-orders take
        their parent's order number and the next free sub-number under it.
        Existing numbers are never changed, so a second run changes nothing.

        Args:
            orders: The full order set.
            skip_drafts: Leave drafts unnumbered instead of promoting them.

        Returns:
            The orders that were changed, modified in place.
        """
        orders = sorted(orders, key=lambda o: o.created_at or "")
        by_id = {o.id: o for o in orders}
        changed: list[Order] = []

        existing = [
            parse_order_number(o.order_number) for o in orders if o.parent_order_id is None
        ]

        with self.numbering_space():
            highest = max([self._last_order_number] + [n for n in existing if n is not None])

            for order in orders:
                if order.parent_order_id is not None or order.order_number is not None:
                    continue
                if skip_drafts and order.state is OrderState.DRAFT:
                    continue
                highest += 1
                order.order_number = self.format_number(highest)
                _promote(order)
                changed.append(order)

            self._last_order_number = highest

        sub_highest: dict[str, int] = {}
        for order in orders:
            if order.parent_order_id is not None and order.sub_number:
                parent_id = order.parent_order_id
                sub_highest[parent_id] = max(sub_highest.get(parent_id, 0), order.sub_number)

        for order in orders:
            parent_id = order.parent_order_id
            if parent_id is None:
                continue
            if order.sub_number is not None and order.order_number is not None:
                continue
            if skip_drafts and order.state is OrderState.DRAFT:
                continue
            parent = by_id.get(parent_id)
            if parent is None or parent.order_number is None:
                log.warning("Skipping sub-order %s: parent %s has no number", order.id, parent_id)
                continue

            with self.numbering_space(parent_id):
                if order.sub_number is None:
                    value = max(sub_highest.get(parent_id, 0), self._last_sub_numbers.get(parent_id, 0)) + 1
                    sub_highest[parent_id] = value
                    self._last_sub_numbers[parent_id] = value
                    order.sub_number = value
                if order.order_number is None:
                    order.order_number = parent.order_number
            _promote(order)
            changed.append(order)

        if changed:
            log.info("Backfilled numbers on %d order(s)", len(changed))
        return changed


def _promote(order: Order) -> None:
    if order.state is OrderState.DRAFT:
        order.state = OrderState.NUMBERED
