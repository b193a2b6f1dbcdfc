"""
Shared fixtures for the Training Tracker test suite.

Database tests run against an in-memory SQLite database (StaticPool, so
every session and the TestClient share one connection) with foreign
keys enabled. API tests override get_db, get_today and
get_config_instance so nothing touches the real environment.
"""

import sys
from datetime import date
from pathlib import Path

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from access_policy import Role
from api.auth import hash_password
from config_manager import ConfigManager
from database.connection import enable_sqlite_foreign_keys
from database.models import Base
from database.repositories import PersonRepository, UserRepository
from database.training_service import TrainingService
from security_logger import get_security_logger, reset_security_logger

# Fixed reference date so status assertions never drift
TODAY = date(2025, 6, 1)
LOOKAHEAD_DAYS = 90
TEST_PASSWORD = "secret-pass"


@pytest.fixture(autouse=True)
def quiet_security_logger():
    """Security events go to the 'security' logger only, never to a file."""
    reset_security_logger()
    get_security_logger(enable_file=False)
    yield
    reset_security_logger()


@pytest.fixture
def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def service(db_session):
    return TrainingService(db_session, today=TODAY, lookahead_days=LOOKAHEAD_DAYS)


@pytest.fixture
def test_config(tmp_path):
    """ConfigManager loaded from a temporary config.yaml."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({
        "uploads": {
            "directory": str(tmp_path / "uploads"),
            "max_size_mb": 1,
            "url_prefix": "/uploads",
        },
        "status": {"lookahead_days": LOOKAHEAD_DAYS},
        "security": {
            "bcrypt_rounds": 4,
            "min_password_length": 6,
            "log_dir": str(tmp_path / "logs"),
        },
        "logging": {"level": "INFO", "file": ""},
    }), encoding="utf-8")
    return ConfigManager(str(config_path))


def create_account(session, email: str, role: Role = Role.USER, name: str = None):
    """Create a person and a linked account directly in the database."""
    person, _ = PersonRepository(session).upsert_by_email(email, name or email)
    user = UserRepository(session).create(
        email=email,
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role.value,
        username=name,
        person_id=person.id,
    )
    session.commit()
    return user


@pytest.fixture
def app_client(session_factory, test_config):
    """Factory for TestClients wired to the test database.

    Each call returns a fresh client with its own cookie jar; pass an
    email to log that account in first.
    """
    from fastapi.testclient import TestClient
    from api import server
    from api.dependencies import get_config_instance, get_today
    from database.connection import get_db

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    server.app.dependency_overrides[get_db] = override_get_db
    server.app.dependency_overrides[get_today] = lambda: TODAY
    server.app.dependency_overrides[get_config_instance] = lambda: test_config

    def make_client(email: str = None) -> TestClient:
        client = TestClient(server.app, raise_server_exceptions=False)
        if email:
            response = client.post(
                "/api/auth/login",
                json={"email": email, "password": TEST_PASSWORD},
            )
            assert response.status_code == 200, response.text
        return client

    yield make_client
    server.app.dependency_overrides.clear()


@pytest.fixture
def accounts(db_session):
    """One account per role."""
    return {
        "admin": create_account(db_session, "admin@example.com", Role.ADMIN, "Ada Admin"),
        "manager": create_account(db_session, "manager@example.com", Role.MANAGER, "Max Manager"),
        "alice": create_account(db_session, "alice@example.com", Role.USER, "Alice User"),
        "bob": create_account(db_session, "bob@example.com", Role.USER, "Bob User"),
    }
