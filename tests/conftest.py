"""
Shared fixtures: in-memory SQLite database, agents, idempotency store
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import UserAgent
from app.services.idempotency import IdempotencyCoordinator, IdempotencyStore

TEMPLATE = (
    "You are a friendly assistant calling on behalf of a real-estate team.\n\n"
    "{USER_BACKGROUND_SECTION}\n\n"
    "Keep the call short."
)


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(session_factory):
    return IdempotencyStore(session_factory)


@pytest.fixture
def coordinator(store):
    """Coordinator with short polling so wait tests finish quickly."""
    return IdempotencyCoordinator(
        store,
        poll_interval_seconds=0.01,
        max_wait_seconds=0.5,
        window_minutes=5,
        ttl_hours=24
    )


@pytest.fixture
def make_agent(db):
    """Factory for persisted UserAgent rows."""
    def _make(
        agent_id="agent-1",
        user_id="user-1",
        configured_prompt=TEMPLATE,
        retell_llm_id="llm_123",
        **kwargs
    ):
        agent = UserAgent(
            id=agent_id,
            user_id=user_id,
            name=kwargs.pop("name", "Listing Follow-up"),
            configured_prompt=configured_prompt,
            retell_llm_id=retell_llm_id,
            **kwargs
        )
        db.add(agent)
        db.commit()
        db.refresh(agent)
        return agent

    return _make
