"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from starsync.models.repository import RepositoryUpdate, StarredRepository  # noqa: F401
from starsync.models.user import AiSettings, SyncSettings, User  # noqa: F401


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="seeded_user")
def seeded_user_fixture(test_session: Session) -> User:
    """A persisted user with an access token."""
    user = User(github_id=583231, username="octocat", access_token="gho_test_token")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user
