import json
import sys
import pytest
from pathlib import Path

# Ensure project root on sys.path
_THIS_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _THIS_DIR.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


@pytest.fixture()
def tmp_db_path(tmp_path):
    return str(tmp_path / "fridge_test.db")


@pytest.fixture()
def fridge_db(tmp_db_path):
    from fridgedb.db import FridgeDB
    return FridgeDB(tmp_db_path)


@pytest.fixture()
def conn(fridge_db):
    c = fridge_db.open_connection()
    assert c is not None
    yield c
    c.close()


@pytest.fixture()
def ask(conn):
    """Send a request dict (or raw text) and return the decoded reply."""
    def _ask(request):
        text = request if isinstance(request, str) else json.dumps(request)
        return json.loads(conn.query(text))
    return _ask


@pytest.fixture()
def client(conn, fridge_db):
    from fastapi.testclient import TestClient
    from fridgedb.api import create_app
    return TestClient(create_app(conn, fridge_db.replies))
