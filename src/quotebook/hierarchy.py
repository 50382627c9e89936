"""Parent/sub-order relationships and hierarchy consistency checks."""

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import AlreadyNumberedError, HierarchyError, OrderNotFoundError
from .models import Order, OrderState, OrderSummary
from .storage import OrderStorage

log = logging.getLogger(__name__)


@dataclass
class _Node:
    """The fields of an order that the consistency check looks at."""

    id: str
    parent_order_id: str | None
    order_number: str | None
    sub_number: int | None
    is_extra_work: bool | None  # None when the flag is derived
    state: OrderState | None
    invalid_sub_number: Any = None  # raw value when it is not an integer


def _get(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def _as_node(record: Order | Mapping[str, Any]) -> _Node:
    if isinstance(record, Order):
        return _Node(
            id=record.id,
            parent_order_id=record.parent_order_id,
            order_number=record.order_number,
            sub_number=record.sub_number,
            is_extra_work=None,
            state=record.state,
        )

    # Legacy rows: integer ids, 0/1 flags, camelCase or snake_case keys
    parent = _get(record, "parent_order_id", "parentOrderId")
    number = _get(record, "order_number", "orderNumber")
    sub_number = _get(record, "sub_number", "subNumber")
    flag = _get(record, "is_extra_work", "isExtraWork")
    state = _get(record, "state")
    invalid_sub_number = None
    if sub_number is not None:
        try:
            sub_number = int(sub_number)
        except (TypeError, ValueError):
            invalid_sub_number, sub_number = sub_number, None
    return _Node(
        id=str(record["id"]),
        parent_order_id=str(parent) if parent not in (None, "") else None,
        order_number=str(number) if number is not None else None,
        sub_number=sub_number,
        is_extra_work=bool(flag) if flag is not None else None,
        state=OrderState(state) if state in _STATE_VALUES else None,
        invalid_sub_number=invalid_sub_number,
    )


_STATE_VALUES = {s.value for s in OrderState}


def find_hierarchy_problems(orders: Iterable[Order | Mapping[str, Any]]) -> list[str]:
    """
    Check a full order set for hierarchy inconsistencies.

    Accepts Order objects or raw record mappings (as found in legacy data).

    Returns:
        One human-readable line per problem; empty when consistent.
    """
    nodes = [_as_node(o) for o in orders]
    by_id = {n.id: n for n in nodes}
    problems: list[str] = []

    for node in nodes:
        parent_id = node.parent_order_id
        if node.invalid_sub_number is not None:
            problems.append(f"Order {node.id} has non-numeric sub-number {node.invalid_sub_number!r}")
        if node.is_extra_work is not None and node.is_extra_work != (parent_id is not None):
            problems.append(
                f"Order {node.id}: is_extra_work={node.is_extra_work} but "
                f"parent_order_id={parent_id}"
            )
        if parent_id is None:
            continue

        if parent_id == node.id:
            problems.append(f"Order {node.id} is its own parent")
            continue
        parent = by_id.get(parent_id)
        if parent is None:
            problems.append(f"Order {node.id} references missing parent {parent_id}")
            continue
        if parent.parent_order_id is not None:
            problems.append(
                f"Order {node.id} is nested under {parent_id}, which is itself "
                f"a sub-order of {parent.parent_order_id}"
            )
        if node.state is OrderState.NUMBERED and node.sub_number is None:
            problems.append(f"Sub-order {node.id} is numbered but has no sub-number")

    problems.extend(_find_cycles(nodes, by_id))

    top_numbers = Counter(
        n.order_number for n in nodes if n.parent_order_id is None and n.order_number is not None
    )
    for number, count in sorted(top_numbers.items()):
        if count > 1:
            problems.append(f"Order number {number} is used by {count} orders")

    sub_pairs = Counter(
        (n.parent_order_id, n.sub_number)
        for n in nodes
        if n.parent_order_id is not None and n.sub_number is not None
    )
    for (parent_id, sub_number), count in sorted(sub_pairs.items()):
        if count > 1:
            problems.append(f"Sub-number {sub_number} under {parent_id} is used by {count} orders")

    return problems


def _find_cycles(nodes: list[_Node], by_id: dict[str, _Node]) -> list[str]:
    problems = []
    reported: set[str] = set()
    for node in nodes:
        seen = {node.id}
        current = by_id.get(node.parent_order_id) if node.parent_order_id else None
        while current is not None and current.id != node.id:
            if current.id in seen:
                break
            seen.add(current.id)
            current = by_id.get(current.parent_order_id) if current.parent_order_id else None
        if current is not None and current.id == node.id and current.parent_order_id != node.id:
            if node.id not in reported:
                problems.append(f"Order {node.id} is its own ancestor")
                reported |= seen
    return problems


def validate_hierarchy(orders: Iterable[Order | Mapping[str, Any]]) -> None:
    """
    Raise if the order set is inconsistent.

    Raises:
        HierarchyError: Carrying every problem found in ``problems``.
    """
    problems = find_hierarchy_problems(orders)
    if problems:
        raise HierarchyError(f"{len(problems)} hierarchy problem(s) found", problems)


class HierarchyManager:
    """Enforces the single-level parent/sub-order structure."""

    def __init__(self, storage: OrderStorage):
        self._storage = storage

    def validate_parent(self, parent: Order, child: Order) -> None:
        """
        Check that ``parent`` may take ``child`` as extra work.

        Raises:
            HierarchyError: If the relationship is not allowed.
        """
        if parent.id == child.id:
            raise HierarchyError(f"Order {child.id} cannot be its own parent")
        if parent.parent_order_id is not None:
            raise HierarchyError(
                f"Order {parent.id} is itself extra work under {parent.parent_order_id}; "
                "sub-orders cannot be nested"
            )
        if parent.state is OrderState.DRAFT:
            raise HierarchyError(f"Parent order {parent.id} has not been numbered yet")
        if parent.state.is_terminal:
            raise HierarchyError(f"Parent order {parent.id} is {parent.state.value}")
        if parent.customer_id != child.customer_id:
            raise HierarchyError(
                f"Parent order {parent.id} belongs to customer {parent.customer_id}, "
                f"not {child.customer_id}"
            )

    def load_parent(self, parent_id: str) -> Order:
        """
        Raises:
            HierarchyError: If the parent does not exist.
        """
        try:
            return self._storage.get_order(parent_id)
        except OrderNotFoundError:
            raise HierarchyError(f"Parent order {parent_id} does not exist")

    def attach_as_sub_order(self, child: Order, parent_id: str) -> Order:
        """
        Make a draft order extra work under ``parent_id``.

        The sub-number is drawn when the child is confirmed.

        Returns:
            The parent order.

        Raises:
            AlreadyNumberedError: If the child is already numbered.
            HierarchyError: If the parent is missing or not allowed.
        """
        if child.is_numbered:
            raise AlreadyNumberedError(child.id, child.full_order_number)

        parent = self.load_parent(parent_id)
        try:
            self.validate_parent(parent, child)
        except HierarchyError as e:
            log.warning("Rejected attaching %s under %s: %s", child.id, parent_id, e)
            raise

        child.parent_order_id = parent.id
        return parent

    def detach_sub_order(self, child: Order) -> Order:
        """
        Turn a draft sub-order back into a top-level draft.

        Raises:
            HierarchyError: Once a sub-number has been issued; numbered
                extra work is superseded, never detached.
        """
        if child.parent_order_id is None:
            raise HierarchyError(f"Order {child.id} is not a sub-order")
        if child.sub_number is not None or child.is_numbered:
            raise HierarchyError(
                f"Order {child.id} already has sub-number {child.full_order_number}; "
                "supersede it instead"
            )
        child.parent_order_id = None
        return child

    def ensure_deletable(self, order: Order, sub_orders: list[Order]) -> None:
        """
        Deletion is restricted to drafts without sub-orders.

        Raises:
            HierarchyError: If the order has sub-orders.
            AlreadyNumberedError: If the order has been numbered.
        """
        if sub_orders:
            raise HierarchyError(
                f"Order {order.id} has {len(sub_orders)} sub-order(s) and cannot be deleted"
            )
        if order.is_numbered:
            raise AlreadyNumberedError(order.id, order.full_order_number)

    def summarize(self, parent: Order, sub_orders: list[Order]) -> OrderSummary:
        """Revenue roll-up of an order and its live extra work."""
        if parent.parent_order_id is not None:
            raise HierarchyError(f"Order {parent.id} is a sub-order; summarize its parent")

        live = [s for s in sub_orders if not s.state.is_terminal]
        live.sort(key=lambda s: (s.sub_number is None, s.sub_number or 0, s.created_at))
        return OrderSummary(
            order_id=parent.id,
            full_order_number=parent.full_order_number,
            revenue_main=parent.total,
            revenue_extra=sum((s.total for s in live), Decimal("0")),
            extra_work_count=len(live),
            extra_work_numbers=[s.full_order_number for s in live if s.full_order_number],
        )
