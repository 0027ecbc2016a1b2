"""
Test configuration and fixtures for pytest.

This module provides shared fixtures used across all tests:
- Test database (SQLite in-memory for speed)
- Scripted fake AI provider (see tests/fakes.py)
- Service instances wired to the test database
- Test client (FastAPI TestClient) with authentication helpers
- Sample data factories
"""

from typing import Callable, Generator, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import get_db
from app.deps import get_generation_service, get_rate_limiter, get_streaming_transport
from app.generation.brief import BriefSynthesizer
from app.generation.orchestrator import RefinementOrchestrator
from app.generation.streaming import StreamingTransport
from app.main import app
from app.models.account import Account
from app.models.project import Project
from app.services.credit_service import CreditService
from app.services.generation_lock import GenerationLockRegistry
from app.services.generation_service import GenerationService
from app.services.project_store import ProjectStore
from app.services.rate_limiter import RateLimiter
from app.services.session_repository import SessionRepository
from tests.fakes import FakeClock, FakeProvider


# ---------------------------------------------------------------------------
# TEST DATABASE SETUP
# ---------------------------------------------------------------------------
# Use SQLite in-memory for fast tests (no PostgreSQL dependency)
# StaticPool keeps the same connection across all operations, so the
# services' own short-lived sessions see the same database as the fixtures.

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},  # Required for SQLite
    poolclass=StaticPool,  # Keep connection alive across operations
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ---------------------------------------------------------------------------
# DATABASE FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test function.

    - Creates all tables
    - Yields a session for the test
    - Drops all tables after test (clean slate)
    """
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# ---------------------------------------------------------------------------
# SERVICE FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Factory the services open their own short transactions with."""
    return TestingSessionLocal


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def lock_clock() -> FakeClock:
    """Monotonic clock behind the lock TTL and the stream heartbeat."""
    return FakeClock()


@pytest.fixture
def locks(lock_clock) -> GenerationLockRegistry:
    return GenerationLockRegistry(ttl_seconds=300, clock=lock_clock)


@pytest.fixture
def credits(session_factory) -> CreditService:
    return CreditService(session_factory)


@pytest.fixture
def repository(session_factory) -> SessionRepository:
    return SessionRepository(session_factory)


@pytest.fixture
def projects(session_factory) -> ProjectStore:
    return ProjectStore(session_factory)


@pytest.fixture
def orchestrator(repository, projects, credits, locks, provider, lock_clock) -> RefinementOrchestrator:
    return RefinementOrchestrator(
        repository=repository,
        projects=projects,
        credits=credits,
        locks=locks,
        provider=provider,
        resume_timeout_seconds=3600,
        heartbeat_seconds=100,
        clock=lock_clock,
    )


@pytest.fixture
def transport(orchestrator, repository) -> StreamingTransport:
    return StreamingTransport(orchestrator=orchestrator, repository=repository)


@pytest.fixture
def service(credits, locks, projects, repository, provider, orchestrator) -> GenerationService:
    return GenerationService(
        credits=credits,
        locks=locks,
        projects=projects,
        repository=repository,
        briefs=BriefSynthesizer(provider),
        orchestrator=orchestrator,
    )


# ---------------------------------------------------------------------------
# DATA FACTORIES
# ---------------------------------------------------------------------------

@pytest.fixture
def make_account(db: Session, credits: CreditService) -> Callable[..., Account]:
    """
    Factory for accounts. The starting balance is granted through the
    credit service so the ledger matches the balance.
    """
    def _make(tier: str = "ENHANCED", balance: int = 10) -> Account:
        account = Account(id=uuid4(), tier=tier, credits=0)
        db.add(account)
        db.commit()
        if balance:
            credits.grant(account.id, balance)
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def make_project(db: Session) -> Callable[..., Project]:
    def _make(account: Account, html: Optional[str] = None, history: Optional[list] = None) -> Project:
        project = Project(
            id=uuid4(),
            account_id=account.id,
            name="Landing page",
            html=html,
            conversation_history=history or [],
        )
        db.add(project)
        db.commit()
        db.refresh(project)
        return project

    return _make


# ---------------------------------------------------------------------------
# HTTP FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(limit=3, window_seconds=60)


@pytest.fixture(scope="function")
def client(db: Session, service, transport, rate_limiter) -> Generator[TestClient, None, None]:
    """
    Create a test client with the test database and test services.
    """
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_service] = lambda: service
    app.dependency_overrides[get_streaming_transport] = lambda: transport
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()

