# conftest.py
# Test setup: a throwaway SQLite file for the SQL layer and mongomock for MongoDB.
# The environment has to be in place before db_mysql builds its engine.

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="rentalhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'rentalhub.db')}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-long-enough-for-hs256"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BCRYPT_LOG_ROUNDS"] = "4"
os.environ["ADMIN_SIGNUP_CODE"] = "letmein"
os.environ["MOCK_EXPORTS"] = "0"

import mongomock
import pytest
from sqlalchemy import text

import db_mongo
from app import app as flask_app
from db_mysql import engine
from init_db import TABLES, create_tables

create_tables(engine)


@pytest.fixture(autouse=True)
def clean_tables():
    with engine.begin() as conn:
        for table in TABLES:
            conn.execute(text(f"DELETE FROM {table}"))
    yield


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch):
    db = mongomock.MongoClient()["rental_homes_test"]
    monkeypatch.setattr(db_mongo, "get_db", lambda: db)
    return db


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    """Register an account through the API and return {id, token, headers, email}"""
    counter = {"n": 0}

    def _make(role="user", email=None, password="password123", name=None):
        counter["n"] += 1
        email = email or f"{role}{counter['n']}@example.com"
        body = {
            "name": name or f"{role.title()} {counter['n']}",
            "email": email,
            "password": password,
            "role": role,
        }
        if role == "admin":
            body["admin_code"] = "letmein"
        resp = client.post("/api/auth/register", json=body)
        assert resp.status_code == 201, resp.get_json()
        data = resp.get_json()
        return {
            "id": data["user"]["user_id"],
            "email": email,
            "password": password,
            "token": data["token"],
            "headers": bearer(data["token"]),
        }

    return _make


@pytest.fixture
def owner(make_user):
    return make_user("owner")


@pytest.fixture
def renter(make_user):
    return make_user("user")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_listing(client):
    def _make(account, **fields):
        body = {"title": "Test Flat", "price": 1500, "city": "Boston"}
        body.update(fields)
        resp = client.post("/api/listings", json=body, headers=account["headers"])
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["data"]

    return _make
