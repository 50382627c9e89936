"""Storage collaborator protocols and an in-memory implementation."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable
from typing import Protocol

from .errors import ConflictError, NumberConflictError, OrderNotFoundError, StaleOrderError
from .models import Contact, Order, _utc_now

DeleteGuard = Callable[[Order, list[Order]], None]


class OrderStorage(Protocol):
    """Protocol for order persistence.

    Implementations must enforce two uniqueness constraints atomically
    with the write: ``order_number`` among top-level orders, and
    ``(parent_order_id, sub_number)`` among sub-orders. A violation raises
    NumberConflictError. ``update_order`` is optimistic: the order's
    ``version`` must match the stored one (StaleOrderError otherwise) and
    is incremented on success.
    """

    def get_order(self, order_id: str) -> Order:
        """Return a copy of the order.

        Raises:
            OrderNotFoundError: If no order has this ID.
        """
        ...

    def list_orders(self) -> list[Order]:
        """All orders in creation order."""
        ...

    def list_orders_by_customer(self, customer_id: str) -> list[Order]:
        ...

    def list_top_level_orders(self) -> list[Order]:
        """Orders without a parent, in creation order."""
        ...

    def list_sub_orders(self, parent_order_id: str) -> list[Order]:
        """Direct sub-orders of a parent, in creation order."""
        ...

    def insert_order(self, order: Order) -> Order:
        ...

    def update_order(self, order: Order) -> Order:
        ...

    def update_orders(self, orders: list[Order]) -> list[Order]:
        """Update several orders as one write.

        Every version and uniqueness check passes before anything is
        written; otherwise nothing is.
        """
        ...

    def delete_order(self, order_id: str, guard: DeleteGuard | None = None) -> Order:
        """Delete an order.

        Args:
            order_id: ID of the order to delete.
            guard: Called with the stored order and its sub-orders while the
                store is locked; raising from it aborts the delete.

        Returns:
            The deleted order.
        """
        ...


class CustomerDirectory(Protocol):
    """Protocol for resolving customer contact persons."""

    def get_contact(self, contact_id: str) -> Contact | None:
        """Return the contact, or None if it doesn't exist."""
        ...


def check_unique_numbers(order: Order, existing: Iterable[Order]) -> None:
    """
    Enforce the numbering uniqueness constraints for ``order``.

    Raises:
        NumberConflictError: If another order already holds the number.
    """
    if order.order_number is None and order.sub_number is None:
        return

    for other in existing:
        if other.id == order.id:
            continue
        if order.parent_order_id is None:
            if (
                other.parent_order_id is None
                and order.order_number is not None
                and other.order_number == order.order_number
            ):
                raise NumberConflictError(order.order_number)
        elif (
            order.sub_number is not None
            and other.parent_order_id == order.parent_order_id
            and other.sub_number == order.sub_number
        ):
            raise NumberConflictError(str(order.sub_number), order.parent_order_id)


class InMemoryOrderStore:
    """Thread-safe OrderStorage kept in process memory."""

    def __init__(self, orders: Iterable[Order] | None = None):
        self._lock = threading.RLock()
        self._orders: dict[str, Order] = {}
        for order in orders or []:
            self._orders[order.id] = copy.deepcopy(order)

    def get_order(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return copy.deepcopy(order)

    def list_orders(self) -> list[Order]:
        with self._lock:
            return [copy.deepcopy(o) for o in self._orders.values()]

    def list_orders_by_customer(self, customer_id: str) -> list[Order]:
        return [o for o in self.list_orders() if o.customer_id == customer_id]

    def list_top_level_orders(self) -> list[Order]:
        return [o for o in self.list_orders() if o.parent_order_id is None]

    def list_sub_orders(self, parent_order_id: str) -> list[Order]:
        return [o for o in self.list_orders() if o.parent_order_id == parent_order_id]

    def insert_order(self, order: Order) -> Order:
        with self._lock:
            if order.id in self._orders:
                raise ConflictError(f"Order {order.id} already exists")
            check_unique_numbers(order, self._orders.values())
            self._orders[order.id] = copy.deepcopy(order)
            return order

    def update_order(self, order: Order) -> Order:
        with self._lock:
            stored = self._orders.get(order.id)
            if stored is None:
                raise OrderNotFoundError(order.id)
            if stored.version != order.version:
                raise StaleOrderError(order.id, order.version, stored.version)
            check_unique_numbers(order, self._orders.values())

            order.version += 1
            order.updated_at = _utc_now()
            self._orders[order.id] = copy.deepcopy(order)
            return order

    def update_orders(self, orders: list[Order]) -> list[Order]:
        with self._lock:
            staged = dict(self._orders)
            for order in orders:
                stored = staged.get(order.id)
                if stored is None:
                    raise OrderNotFoundError(order.id)
                if stored.version != order.version:
                    raise StaleOrderError(order.id, order.version, stored.version)
                staged[order.id] = order
            for order in orders:
                check_unique_numbers(order, staged.values())

            now = _utc_now()
            for order in orders:
                order.version += 1
                order.updated_at = now
                self._orders[order.id] = copy.deepcopy(order)
            return orders

    def delete_order(self, order_id: str, guard: DeleteGuard | None = None) -> Order:
        with self._lock:
            stored = self._orders.get(order_id)
            if stored is None:
                raise OrderNotFoundError(order_id)
            if guard is not None:
                children = [o for o in self._orders.values() if o.parent_order_id == order_id]
                guard(copy.deepcopy(stored), copy.deepcopy(children))
            return self._orders.pop(order_id)


class InMemoryCustomerDirectory:
    """CustomerDirectory backed by a dict."""

    def __init__(self, contacts: Iterable[Contact] | None = None):
        self._contacts: dict[str, Contact] = {c.id: c for c in contacts or []}

    def add_contact(self, contact: Contact) -> Contact:
        self._contacts[contact.id] = contact
        return contact

    def get_contact(self, contact_id: str) -> Contact | None:
        return self._contacts.get(contact_id)
