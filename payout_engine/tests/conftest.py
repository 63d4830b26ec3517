import os

# Settings() needs DATABASE_URL before any payout_engine module is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# FORCE model registration
import payout_engine.models  # noqa

from payout_engine.core.config import Settings
from payout_engine.db.base import Base
from payout_engine.services.payout_orchestrator import build_orchestrators
from payout_engine.tests.fakes import FakeRail


@pytest.fixture(scope="function")
def engine(tmp_path):
    # file-backed so worker threads share one database
    eng = create_engine(
        f"sqlite:///{tmp_path / 'payouts.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", stripe_secret_key="sk_test_dummy")


@pytest.fixture
def rail():
    return FakeRail()


@pytest.fixture
def orchestrators(rail, settings):
    return build_orchestrators(rail, settings)
