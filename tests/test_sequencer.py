"""Tests for OrderSequencer."""

import threading

import pytest

from quotebook.models import Order, OrderState
from quotebook.sequencer import OrderSequencer, parse_order_number
from quotebook.storage import InMemoryOrderStore


def top(order_id, number=None, state=OrderState.NUMBERED):
    return Order(id=order_id, customer_id="cust-1", order_number=number, state=state)


def sub(order_id, parent_id, number=None, sub_number=None, state=OrderState.NUMBERED):
    return Order(
        id=order_id,
        customer_id="cust-1",
        parent_order_id=parent_id,
        order_number=number,
        sub_number=sub_number,
        state=state,
    )


def run_concurrently(func, count):
    """Call func from `count` threads released at the same moment."""
    barrier = threading.Barrier(count)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        value = func()
        with lock:
            results.append(value)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestNextOrderNumber:
    def test_starts_at_one(self, store):
        sequencer = OrderSequencer(store)
        assert sequencer.next_order_number() == "0001"
        assert sequencer.next_order_number() == "0002"

    def test_continues_after_stored_numbers(self):
        store = InMemoryOrderStore([top("a", "0007"), top("b", "0041"), top("c", "0013")])
        assert OrderSequencer(store).next_order_number() == "0042"

    def test_ignores_sub_orders_and_non_numeric_numbers(self):
        store = InMemoryOrderStore(
            [top("a", "0003"), top("b", "Q-2019-77"), sub("c", "a", "0099", 1)]
        )
        assert OrderSequencer(store).next_order_number() == "0004"

    def test_width(self, store):
        assert OrderSequencer(store, width=6).next_order_number() == "000001"

    def test_grows_past_width(self):
        store = InMemoryOrderStore([top("a", "9999")])
        assert OrderSequencer(store).next_order_number() == "10000"

    def test_concurrent_callers_get_distinct_contiguous_numbers(self, store):
        sequencer = OrderSequencer(store)

        results = run_concurrently(sequencer.next_order_number, 25)

        assert len(set(results)) == 25
        assert sorted(results) == [f"{n:04d}" for n in range(1, 26)]


class TestNextSubNumber:
    def test_starts_at_one_per_parent(self, store):
        sequencer = OrderSequencer(store)

        assert sequencer.next_sub_number("a") == 1
        assert sequencer.next_sub_number("a") == 2
        assert sequencer.next_sub_number("b") == 1

    def test_continues_after_stored_sub_numbers(self):
        store = InMemoryOrderStore([top("a", "0001"), sub("a1", "a", "0001", 1), sub("a3", "a", "0001", 3)])
        assert OrderSequencer(store).next_sub_number("a") == 4

    def test_concurrent_callers_same_parent(self, store):
        sequencer = OrderSequencer(store)

        results = run_concurrently(lambda: sequencer.next_sub_number("a"), 10)

        assert sorted(results) == list(range(1, 11))


class TestRelease:
    def test_release_last_number_reissues_it(self, store):
        sequencer = OrderSequencer(store)
        number = sequencer.next_order_number()

        sequencer.release_order_number(number)

        assert sequencer.next_order_number() == number

    def test_release_older_number_leaves_gap(self, store):
        sequencer = OrderSequencer(store)
        first = sequencer.next_order_number()
        sequencer.next_order_number()

        sequencer.release_order_number(first)

        assert sequencer.next_order_number() == "0003"

    def test_release_sub_number(self, store):
        sequencer = OrderSequencer(store)
        value = sequencer.next_sub_number("a")

        sequencer.release_sub_number("a", value)

        assert sequencer.next_sub_number("a") == 1


class TestNumberingSpace:
    def test_is_reentrant(self, store):
        sequencer = OrderSequencer(store)
        with sequencer.numbering_space():
            with sequencer.numbering_space():
                assert sequencer.next_order_number() == "0001"

    def test_blocks_other_threads_in_same_space(self, store):
        sequencer = OrderSequencer(store)
        issued = []

        with sequencer.numbering_space():
            thread = threading.Thread(target=lambda: issued.append(sequencer.next_order_number()))
            thread.start()
            thread.join(timeout=0.2)
            assert thread.is_alive()
            assert issued == []

        thread.join()
        assert issued == ["0001"]

    def test_spaces_are_independent(self, store):
        sequencer = OrderSequencer(store)
        issued = []

        with sequencer.numbering_space("parent-a"):
            thread = threading.Thread(target=lambda: issued.append(sequencer.next_sub_number("parent-b")))
            thread.start()
            thread.join(timeout=5)

        assert issued == [1]


class TestBackfill:
    def test_numbers_records_in_creation_order(self, store):
        orders = [top("a", "0001"), top("b"), top("c")]

        changed = OrderSequencer(store).backfill_missing_numbers(orders)

        assert [o.id for o in changed] == ["b", "c"]
        assert [o.order_number for o in orders] == ["0001", "0002", "0003"]

    def test_numbers_by_created_at_not_list_position(self, store):
        orders = [
            Order(id="c", customer_id="cust-1", created_at="2021-03-01T09:00:00Z"),
            Order(id="a", customer_id="cust-1", created_at="2019-11-20T09:00:00Z"),
            Order(id="b", customer_id="cust-1", created_at="2020-06-15T09:00:00Z"),
        ]

        changed = OrderSequencer(store).backfill_missing_numbers(orders)

        assert [o.id for o in changed] == ["a", "b", "c"]
        assert {o.id: o.order_number for o in orders} == {"a": "0001", "b": "0002", "c": "0003"}

    def test_preserves_existing_numbers(self, store):
        orders = [top("a"), top("b", "0005"), top("c")]

        OrderSequencer(store).backfill_missing_numbers(orders)

        assert [o.order_number for o in orders] == ["0006", "0005", "0007"]

    def test_is_idempotent(self, store):
        orders = [top("a"), top("b", state=OrderState.DRAFT), sub("a1", "a"), top("c", "0002")]
        sequencer = OrderSequencer(store)

        sequencer.backfill_missing_numbers(orders)
        snapshot = [(o.order_number, o.sub_number, o.state) for o in orders]
        second = sequencer.backfill_missing_numbers(orders)

        assert second == []
        assert [(o.order_number, o.sub_number, o.state) for o in orders] == snapshot

    def test_promotes_drafts(self, store):
        orders = [top("a", state=OrderState.DRAFT)]

        OrderSequencer(store).backfill_missing_numbers(orders)

        assert orders[0].state is OrderState.NUMBERED
        assert orders[0].order_number == "0001"

    def test_skip_drafts(self, store):
        orders = [top("a", state=OrderState.DRAFT), top("b")]

        changed = OrderSequencer(store).backfill_missing_numbers(orders, skip_drafts=True)

        assert [o.id for o in changed] == ["b"]
        assert orders[0].order_number is None
        assert orders[0].state is OrderState.DRAFT
        assert orders[1].order_number == "0001"

    def test_sub_orders_inherit_parent_number(self, store):
        orders = [
            top("a", "0004"),
            sub("a1", "a", "0004", 1),
            sub("a2", "a"),
            top("b"),
            sub("b1", "b"),
        ]

        OrderSequencer(store).backfill_missing_numbers(orders)

        assert [(o.order_number, o.sub_number) for o in orders] == [
            ("0004", None),
            ("0004", 1),
            ("0004", 2),
            ("0005", None),
            ("0005", 1),
        ]

    def test_skips_sub_orders_without_parent(self, store):
        orders = [sub("x1", "missing")]

        changed = OrderSequencer(store).backfill_missing_numbers(orders)

        assert changed == []
        assert orders[0].sub_number is None

    def test_later_numbers_continue_after_backfill(self, store):
        sequencer = OrderSequencer(store)
        sequencer.backfill_missing_numbers([top("a"), top("b")])

        assert sequencer.next_order_number() == "0003"


@pytest.mark.parametrize(
    "value,expected",
    [("0042", 42), (" 7 ", 7), ("Q-1", None), (None, None)],
)
def test_parse_order_number(value, expected):
    assert parse_order_number(value) == expected
