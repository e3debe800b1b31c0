import base64
import os

import pytest

# Default to the memory backend so tests never touch the filesystem unless they ask to
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ.setdefault("SEED_DEMO_DATA", "false")

from taskboard.api.auth import hash_password  # noqa: E402
from taskboard.api.repositories import get_repository  # noqa: E402

PASSWORD = "Password123"

# pbkdf2 is deliberately slow; hash once for every test user
_PASSWORD_HASH = hash_password(PASSWORD)


def basic_auth(login: str, password: str = PASSWORD) -> dict:
    token = base64.b64encode(f"{login}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def make_user(repo, name: str, username: str, email: str) -> dict:
    return repo.create_user(name=name, username=username, email=email, password_hash=_PASSWORD_HASH)


@pytest.fixture(autouse=True)
def repo():
    """A fresh process-wide repository per test."""
    get_repository.cache_clear()
    yield get_repository()
    get_repository.cache_clear()


@pytest.fixture
def users(repo):
    return {
        "alice": make_user(repo, "Alice Smith", "alice", "alice@example.com"),
        "bob": make_user(repo, "Bob Jones", "bob", "bob@example.com"),
        "carol": make_user(repo, "Carol White", "carol", "carol@example.com"),
    }


@pytest.fixture
def alice_auth(users):
    return basic_auth("alice@example.com")


@pytest.fixture
def bob_auth(users):
    return basic_auth("bob")
