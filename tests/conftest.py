import os
import tempfile

# Point both stores at throwaway SQLite files before the app is imported
_TMP_DIR = tempfile.mkdtemp(prefix="library_api_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'library.db')}"
os.environ["CATALOG_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'catalog.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("ADMIN_USERNAME", None)
os.environ.pop("ADMIN_PASSWORD", None)

import pytest
from fastapi.testclient import TestClient

from library_api import crud, database, schemas
from library_api.ledger import LoanLedger
from main import app


@pytest.fixture(autouse=True)
def fresh_db():
    database.drop_db()
    database.init_db()
    yield


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog():
    session = database.CatalogSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger(db, catalog):
    return LoanLedger(db, catalog)


@pytest.fixture
def make_user(db):
    def _make_user(username="reader", role="user", password="secret123", is_active=True):
        user = crud.create_user(
            db,
            schemas.UserCreate(
                firstname=username.capitalize(),
                lastname="Tester",
                username=username,
                email=f"{username}@example.com",
                password=password,
                role=role,
            ),
        )
        if not is_active:
            user.is_active = False
            db.commit()
        return user

    return _make_user


@pytest.fixture
def make_book(catalog):
    def _make_book(title="Dune", authors=None, isbn=None, status=None, **extra):
        book = crud.create_book(
            catalog,
            schemas.BookCreate(
                title=title,
                authors=authors or ["Frank Herbert"],
                isbn=isbn,
                location=extra.pop("location", "Shelf A1"),
                **extra,
            ),
            librarian="tests",
        )
        if status:
            book.status = status
            catalog.commit()
        return book

    return _make_book


@pytest.fixture
def auth_headers(client):
    def _auth_headers(username, password="secret123"):
        response = client.post("/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200
        token = response.json()["data"]["token"]
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
