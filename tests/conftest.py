import os
import tempfile
from pathlib import Path

import pytest

# Configuration is read at import time, so it has to be in place before the app is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="passa-pra-ela-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["ADMIN_EMAILS"] = "admin@passapraela.com"
os.environ.setdefault("PASSWORD_PBKDF2_ITERATIONS", "1000")
os.environ.setdefault("DB_CONNECT_ATTEMPTS", "1")

from fastapi.testclient import TestClient  # noqa: E402

from passa_pra_ela.db import Base, SessionLocal, engine  # noqa: E402
from passa_pra_ela.main import app  # noqa: E402
from passa_pra_ela.models import Player, User  # noqa: E402
from passa_pra_ela.seed import seed  # noqa: E402

ADMIN_EMAIL = "admin@passapraela.com"
DEFAULT_PASSWORD = "golaco-2025"


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed(session)
    finally:
        session.close()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def register(client: TestClient, email: str, team_name: str, password: str = DEFAULT_PASSWORD) -> dict:
    response = client.post(
        "/auth/register",
        json={"email": email, "password": password, "team_name": team_name},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    return register(client, ADMIN_EMAIL, "Comissão Técnica")


def add_player(db, name: str, **counters) -> Player:
    player = Player(name=name, **counters)
    db.add(player)
    db.commit()
    return player


def add_user(db, email: str, team_name: str, total_score: float = 0, lineup: dict | None = None) -> User:
    user = User(
        email=email,
        password_hash="unused",
        team_name=team_name,
        total_score=total_score,
        lineup=lineup,
    )
    db.add(user)
    db.commit()
    return user
