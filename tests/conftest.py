import os

os.environ.setdefault("AUTH_SECRET", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")

from datetime import date, datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import database  # noqa: E402
import models  # noqa: E402
from database import Base, get_db  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "correct-horse-1"


@pytest.fixture
def engine():
    engine = database.build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_client(session_factory):
    """Returns a factory of TestClients; each keeps its own cookie jar."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    clients = []

    def factory():
        client = TestClient(app)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


def signup(client, username, email=None, password=PASSWORD, first="Test", last="User"):
    response = client.post(
        "/api/auth/signup",
        json={
            "firstName": first,
            "lastName": last,
            "email": email or f"{username}@example.com",
            "username": username,
            "password": password,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def signin(client, ident, password=PASSWORD):
    response = client.post("/api/auth/signin", json={"id": ident, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["user"]


@pytest.fixture
def login(make_client):
    """Sign up and sign in a fresh user; returns (client, public user dict)."""

    def _login(username):
        client = make_client()
        signup(client, username)
        return client, signin(client, username)

    return _login


@pytest.fixture
def catalogue(db):
    """A small catalogue: five movies with genres, credits and platform releases."""
    drama = models.Genre(genre_uid=1, name="Drama")
    comedy = models.Genre(genre_uid=2, name="Comedy")
    action = models.Genre(genre_uid=3, name="Action")
    db.add_all([drama, comedy, action])
    db.add_all([
        models.FilmContributor(fc_uid=1, name="Alice Actor"),
        models.FilmContributor(fc_uid=2, name="Bob Actor"),
        models.FilmContributor(fc_uid=3, name="Dana Director"),
        models.FilmContributor(fc_uid=4, name="Acme Studios"),
        models.FilmContributor(fc_uid=5, name="Zenith Pictures"),
    ])
    db.add_all([
        models.Platform(platform_uid=1, name="Theaters"),
        models.Platform(platform_uid=2, name="Streaming"),
    ])
    db.add_all([
        models.Movie(mov_uid=1, title="The Long Road", duration=120, age_rating="PG"),
        models.Movie(mov_uid=2, title="Laugh Track", duration=95, age_rating="PG-13"),
        models.Movie(mov_uid=3, title="Road Rage", duration=101, age_rating="R"),
        models.Movie(mov_uid=4, title="Quiet Night", duration=None, age_rating="PG"),
        models.Movie(mov_uid=5, title="Laugh Track", duration=88, age_rating="PG"),
    ])
    db.flush()
    db.add_all([
        models.MovieGenre(mov_uid=1, genre_uid=1),
        models.MovieGenre(mov_uid=2, genre_uid=2),
        models.MovieGenre(mov_uid=3, genre_uid=3),
        models.MovieGenre(mov_uid=3, genre_uid=1),
        models.MovieGenre(mov_uid=4, genre_uid=1),
        models.MovieGenre(mov_uid=5, genre_uid=2),
        models.CastsIn(mov_uid=1, fc_uid=1),
        models.CastsIn(mov_uid=3, fc_uid=1),
        models.CastsIn(mov_uid=3, fc_uid=2),
        models.CastsIn(mov_uid=2, fc_uid=2),
        models.DirectsIn(mov_uid=1, fc_uid=3),
        models.DirectsIn(mov_uid=3, fc_uid=3),
        models.Produces(mov_uid=1, fc_uid=4),
        models.Produces(mov_uid=2, fc_uid=5),
        models.Produces(mov_uid=3, fc_uid=4),
        models.PlatformRelease(mov_uid=1, platform_uid=1, release_date=date(2001, 5, 4)),
        models.PlatformRelease(mov_uid=1, platform_uid=2, release_date=date(2003, 1, 1)),
        models.PlatformRelease(mov_uid=2, platform_uid=1, release_date=date(2010, 7, 9)),
        models.PlatformRelease(mov_uid=3, platform_uid=1, release_date=date(1999, 3, 3)),
        models.PlatformRelease(mov_uid=5, platform_uid=2, release_date=date(1988, 2, 2)),
    ])
    db.commit()
    return db


def add_user(db, user_id, username=None):
    now = datetime.now(timezone.utc)
    user = models.User(
        user_id=user_id,
        first_name="First",
        last_name=f"Last{user_id}",
        email=f"{username or 'user%d' % user_id}@example.com",
        username=username or f"user{user_id}",
        password_hash=None,
        account_creation_date=now,
        last_access_date=now,
    )
    db.add(user)
    db.commit()
    return user
