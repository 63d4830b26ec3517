import pytest
from fastapi.testclient import TestClient

from payout_engine.db.session import get_db
from payout_engine.main import create_app


@pytest.fixture
def app(settings, rail, session_factory):
    app = create_app(settings, rail=rail, session_factory=session_factory)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
