# tests/conftest.py
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agiletrack.database.database import Base
from agiletrack.database import models  # noqa: F401  (테이블 등록)
from agiletrack.repositories.interfaces import IUnitOfWork


class FakeUnitOfWork(IUnitOfWork):
    """커밋/롤백 호출 횟수만 기록하는 Unit of Work 대역입니다."""

    def __init__(self):
        super().__init__()
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture
def fake_uow() -> FakeUnitOfWork:
    return FakeUnitOfWork()


@pytest.fixture
def engine():
    """테스트마다 새로 만드는 인메모리 SQLite 엔진. (모든 세션이 같은 연결을 공유)"""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()
