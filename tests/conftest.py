from pathlib import Path

import pytest

from tally.db import get_connection, init_db

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def db(tmp_path):
    """Empty rules store with the schema applied."""
    db_path = tmp_path / "test.db"
    conn = get_connection(db_path)
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def statement_text():
    return (FIXTURES / "chase_statement.txt").read_text()
