"""Pytest fixtures for quotebook tests."""

import tempfile
from pathlib import Path

import pytest

from quotebook.models import Contact
from quotebook.quotes import QuoteAggregate
from quotebook.settings import Settings
from quotebook.storage import InMemoryCustomerDirectory, InMemoryOrderStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store():
    """Empty in-memory order store."""
    return InMemoryOrderStore()


@pytest.fixture
def contacts():
    """Directory with one contact for cust-1 and one for cust-2."""
    return InMemoryCustomerDirectory(
        [
            Contact(id="contact-1", customer_id="cust-1", name="Mette Hansen"),
            Contact(id="contact-2", customer_id="cust-2", name="Lars Jensen"),
        ]
    )


@pytest.fixture
def settings(temp_dir):
    return Settings(data_dir=temp_dir, retry_base_delay=0.01)


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def aggregate(store, contacts, settings, sleeps):
    return QuoteAggregate(store, contacts, settings=settings, sleep=sleeps.append)


@pytest.fixture
def numbered_parent(aggregate):
    """A confirmed top-level order for cust-1 worth 1000.00."""
    order = aggregate.create_draft("cust-1", "contact-1", title="Kitchen renovation")
    aggregate.add_line(
        order, {"description": "Carpentry", "quantity": 10, "unit": "days", "unit_price": 100}
    )
    aggregate.save(order)
    return aggregate.confirm(order)
