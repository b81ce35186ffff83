import os
import sys
from contextlib import contextmanager

import pytest


# Tests import `backend.*`; make the repo root importable whether pytest runs
# from the root or from within `backend/`.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


class FakeConn:
    """Stands in for a pooled psycopg connection; hands out one shared cursor."""

    def __init__(self, cursor):
        self._cursor = cursor

    @contextmanager
    def cursor(self):
        yield self._cursor

    @contextmanager
    def transaction(self):
        yield self


@pytest.fixture
def fake_get_conn():
    def _make(cursor):
        @contextmanager
        def _get_conn():
            yield FakeConn(cursor)

        return _get_conn

    return _make
