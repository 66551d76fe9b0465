"""Shared fixtures: every test gets its own data directory, ids and clock.

Nothing is written outside the temporary directory, and ids/timestamps
are deterministic so assertions can name them.
"""

import itertools
import os
import sys
import tempfile
from datetime import datetime, timedelta

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from user_data import NotesStore  # noqa: E402


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def temp_data_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 10, 0, 0))


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def store(temp_data_dir, id_factory, clock):
    """A NotesStore with deterministic ids and time."""
    return NotesStore(temp_data_dir, id_factory=id_factory, clock=clock)


@pytest.fixture
def book(store):
    return store.books.add("Dune", "Frank Herbert")
