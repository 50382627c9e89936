"""JSON file storage for orders and contacts."""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .errors import (
    ConflictError,
    InvalidSchemaVersionError,
    OrderNotFoundError,
    StaleOrderError,
)
from .models import Contact, Order, _utc_now
from .settings import _default_data_dir
from .storage import DeleteGuard, check_unique_numbers

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1
ORDERS_FILE = "orders.json"
LOCK_FILE = ".orders.lock"


class JsonOrderStore:
    """
    File-backed OrderStorage and CustomerDirectory.

    Every write is a read-modify-write under an exclusive ``fcntl`` lock,
    so uniqueness and version checks hold across processes sharing the
    data directory.
    """

    def __init__(self, data_dir: Path | None = None):
        """
        Initialize JsonOrderStore.

        Args:
            data_dir: Override data directory (for testing).
        """
        self.data_dir = Path(data_dir) if data_dir is not None else _default_data_dir
        self.path = self.data_dir / ORDERS_FILE

    def _ensure_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the orders file for read-modify-write operations."""
        self._ensure_dir()
        with open(self.data_dir / LOCK_FILE, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load_data(self) -> dict[str, Any]:
        """
        Load store data from disk.

        Raises:
            InvalidSchemaVersionError: If schema version is unsupported.
        """
        if not self.path.exists():
            return {"schema_version": SCHEMA_VERSION, "orders": [], "contacts": []}

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(version, SCHEMA_VERSION)

        data.setdefault("orders", [])
        data.setdefault("contacts", [])
        return data

    def _save_data(self, data: dict[str, Any]) -> None:
        """Save store data to disk atomically."""
        self._ensure_dir()

        fd, temp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".orders_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def _orders(self, data: dict[str, Any]) -> list[Order]:
        return [Order.from_dict(o) for o in data["orders"]]

    # Orders

    def get_order(self, order_id: str) -> Order:
        for order in self.list_orders():
            if order.id == order_id:
                return order
        raise OrderNotFoundError(order_id)

    def list_orders(self) -> list[Order]:
        return self._orders(self._load_data())

    def list_orders_by_customer(self, customer_id: str) -> list[Order]:
        return [o for o in self.list_orders() if o.customer_id == customer_id]

    def list_top_level_orders(self) -> list[Order]:
        return [o for o in self.list_orders() if o.parent_order_id is None]

    def list_sub_orders(self, parent_order_id: str) -> list[Order]:
        return [o for o in self.list_orders() if o.parent_order_id == parent_order_id]

    def resolve_order_id(self, prefix: str) -> str:
        """
        Resolve a full order ID from a unique prefix.

        Raises:
            OrderNotFoundError: If no order or more than one order matches.
        """
        matches = [o.id for o in self.list_orders() if o.id.startswith(prefix)]
        if len(matches) != 1:
            raise OrderNotFoundError(prefix if not matches else f"{prefix} (ambiguous)")
        return matches[0]

    def insert_order(self, order: Order) -> Order:
        with self._lock():
            data = self._load_data()
            existing = self._orders(data)
            if any(o.id == order.id for o in existing):
                raise ConflictError(f"Order {order.id} already exists")
            check_unique_numbers(order, existing)

            data["orders"].append(order.to_dict())
            self._save_data(data)
        return order

    def update_order(self, order: Order) -> Order:
        with self._lock():
            data = self._load_data()
            existing = self._orders(data)
            for i, stored in enumerate(existing):
                if stored.id != order.id:
                    continue
                if stored.version != order.version:
                    raise StaleOrderError(order.id, order.version, stored.version)
                check_unique_numbers(order, existing)

                order.version += 1
                order.updated_at = _utc_now()
                data["orders"][i] = order.to_dict()
                self._save_data(data)
                return order

            raise OrderNotFoundError(order.id)

    def update_orders(self, orders: list[Order]) -> list[Order]:
        """Update several orders with a single checked write of the file."""
        with self._lock():
            data = self._load_data()
            existing = self._orders(data)
            index = {o.id: i for i, o in enumerate(existing)}

            staged = list(existing)
            for order in orders:
                i = index.get(order.id)
                if i is None:
                    raise OrderNotFoundError(order.id)
                if existing[i].version != order.version:
                    raise StaleOrderError(order.id, order.version, existing[i].version)
                staged[i] = order
            for order in orders:
                check_unique_numbers(order, staged)

            now = _utc_now()
            for order in orders:
                order.version += 1
                order.updated_at = now
                data["orders"][index[order.id]] = order.to_dict()
            self._save_data(data)
        return orders

    def delete_order(self, order_id: str, guard: DeleteGuard | None = None) -> Order:
        with self._lock():
            data = self._load_data()
            existing = self._orders(data)
            for i, stored in enumerate(existing):
                if stored.id != order_id:
                    continue
                if guard is not None:
                    guard(stored, [o for o in existing if o.parent_order_id == order_id])
                data["orders"].pop(i)
                self._save_data(data)
                log.debug("Deleted order %s from %s", order_id, self.path)
                return stored

            raise OrderNotFoundError(order_id)

    # Contacts

    def list_contacts(self) -> list[Contact]:
        return [Contact.from_dict(c) for c in self._load_data()["contacts"]]

    def get_contact(self, contact_id: str) -> Contact | None:
        for contact in self.list_contacts():
            if contact.id == contact_id:
                return contact
        return None

    def add_contact(self, contact: Contact) -> Contact:
        with self._lock():
            data = self._load_data()
            data["contacts"].append(contact.to_dict())
            self._save_data(data)
        return contact
