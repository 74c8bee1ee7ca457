import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./recruit_chat_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from recruit_chat.api import deps
from recruit_chat.client.backend import LocalBackend
from recruit_chat.core.security import create_access_token
from recruit_chat.db.base import Base
from recruit_chat.db.session import get_db
from recruit_chat.models.user import User, UserRole
from recruit_chat.realtime.bus import LiveEventBus


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def engine(tmp_path):
    # File-backed so threadpool workers share the same database
    engine = create_engine(
        f"sqlite:///{tmp_path / 'chat.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db):
    counter = iter(range(1, 10_000))

    def _make_user(role: UserRole = UserRole.ATHLETE, **fields) -> User:
        index = next(counter)
        user = User(
            email=fields.pop("email", f"{role.value}{index}@example.com"),
            role=role.value,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def athlete(make_user):
    return make_user(UserRole.ATHLETE, first_name="Sam", last_name="Okafor")


@pytest.fixture()
def coach(make_user):
    return make_user(UserRole.COACH, first_name="Dana", last_name="Whitfield")


@pytest.fixture()
def bus():
    bus = LiveEventBus()
    yield bus
    bus.close()


@pytest.fixture()
def backend(session_factory, bus):
    return LocalBackend(session_factory, bus)


@pytest.fixture()
def wait_until():
    async def _wait_until(predicate, timeout: float = 2.0) -> None:
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    return _wait_until


@pytest.fixture()
def app(session_factory):
    from recruit_chat.main import create_app

    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    return app


@pytest.fixture()
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def auth_headers():
    def _auth_headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _auth_headers
