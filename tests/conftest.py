# tests/conftest.py
import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# окружение должно быть готово до импорта приложения
os.environ["TESTING"] = "true"
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'startup.db'}"
)

# fmt: off
from bookclub import database, models  # noqa: E402
from bookclub.main import app  # noqa: E402

# fmt: on

ADMIN_ID = 1
ALICE_ID = 2
BOB_ID = 3
CAROL_ID = 4
DAN_ID = 5


@pytest.fixture
def test_engine(tmp_path):
    """Свежая файловая SQLite-база на каждый тест."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'books.db'}", connect_args={"check_same_thread": False}
    )
    database.init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def fail_statement(test_engine):
    """Makes the store reject SQL statements that start with a given prefix."""
    installed = []

    def install(prefix: str):
        def before_cursor_execute(conn, cursor, statement, parameters, context, many):
            if statement.lstrip().upper().startswith(prefix.upper()):
                raise OperationalError(statement, parameters, Exception("disk I/O error"))

        event.listen(test_engine, "before_cursor_execute", before_cursor_execute)
        installed.append(before_cursor_execute)

    yield install
    for listener in installed:
        event.remove(test_engine, "before_cursor_execute", listener)


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    session.add_all(
        [
            models.User(id=ADMIN_ID, name="Admin", email="admin@test.com", role="admin"),
            models.User(id=ALICE_ID, name="Alice", email="alice@test.com"),
            models.User(id=BOB_ID, name="Bob", email="bob@test.com"),
            models.User(id=CAROL_ID, name="Carol", email="carol@test.com"),
            models.User(id=DAN_ID, name="Dan", email="dan@test.com"),
        ]
    )
    session.commit()
    yield session
    session.close()


@pytest.fixture
def client(db_session, session_factory):
    """Переопределяет зависимость get_db: каждая заявка получает свою сессию."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[database.get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def create_book(client, title: str = "Dune", proposed_by=ALICE_ID, **fields):
    payload = {"title": title, "author": fields.pop("author", "Frank Herbert")}
    payload.update(fields)
    if proposed_by is not None:
        payload["proposed_by"] = proposed_by
    response = client.post("/api/books", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def cast_vote(client, book_id: int, user_id: int, vote_value):
    response = client.post(
        "/api/votes",
        json={"book_id": book_id, "user_id": user_id, "vote_value": vote_value},
    )
    assert response.status_code == 200, response.text
    return response.json()


def delete_json(client, url: str, payload: dict):
    return client.request("DELETE", url, json=payload)
