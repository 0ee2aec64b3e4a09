"""Shared pytest fixtures."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grievance.infrastructure.database import Base
from grievance.issues.application import IssueLifecycleService
from grievance.issues.infrastructure import models  # noqa: F401
from grievance.issues.domain import IssueStateMachine
from grievance.shared.clock import FixedClock
from grievance.sla.application import SLAService
from grievance.sla.domain import PortalPolicyConfig, SLAEvaluator, WorkingTimeClock
from grievance.sla.infrastructure import PolicyConfigManager

from tests.fakes import InMemoryActorDirectory, InMemoryIssueRepository, utc

STAFF = {10: "Asha Rao", 20: "Ravi Kumar", 30: "Meera Iyer", 40: "Dev Shah", 99: "Portal Admin"}


@pytest.fixture
def clock() -> FixedClock:
    # Monday 2024-03-04 10:00 UTC
    return FixedClock(utc(2024, 3, 4, 10, 0))


@pytest.fixture
def working_clock() -> WorkingTimeClock:
    return WorkingTimeClock()


@pytest.fixture
def evaluator(working_clock) -> SLAEvaluator:
    return SLAEvaluator(working_clock)


@pytest.fixture
def machine(clock) -> IssueStateMachine:
    return IssueStateMachine(clock, reopen_window=timedelta(days=30), escalation_threshold=1)


@pytest.fixture
def policy() -> PolicyConfigManager:
    return PolicyConfigManager(PortalPolicyConfig())


@pytest.fixture
def repository() -> InMemoryIssueRepository:
    return InMemoryIssueRepository()


@pytest.fixture
def directory() -> InMemoryActorDirectory:
    return InMemoryActorDirectory(STAFF)


@pytest.fixture
def lifecycle(repository, directory, policy, clock) -> IssueLifecycleService:
    return IssueLifecycleService(repository, directory, SLAService(policy, clock), clock)


# ========== Database ==========

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
