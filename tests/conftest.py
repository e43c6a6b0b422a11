import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from pixcheckout.config import Settings
from pixcheckout.database import Base, create_engine_and_sessionmaker
from pixcheckout.main import create_app
from pixcheckout.pixgo_service import PixGoClient
from pixcheckout.store import IntentStore


class FakeScheduler:
    """Records interval jobs instead of running them; tests call tick() by hand."""

    def __init__(self):
        self.jobs = {}
        self.cancelled = []
        self.running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=False):
        self.running = False

    def every(self, job_id, func, seconds):
        self.jobs[job_id] = (func, seconds)
        return job_id

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        return self.jobs.pop(job_id, None) is not None


def stepping_clock():
    start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    ticks = itertools.count()
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        pixgo_api_key="test-key",
        admin_password="secret",
        jwt_secret="test-jwt-secret",
        poll_interval_seconds=5,
        max_poll_attempts=10,
        overrides_path=tmp_path / "settings.json",
    )


@pytest.fixture
def store(settings):
    engine, SessionLocal = create_engine_and_sessionmaker(settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield IntentStore(SessionLocal, clock=stepping_clock())
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def provider(mocker):
    return mocker.Mock(spec=PixGoClient)


@pytest.fixture
def app(settings, provider, scheduler):
    fastapi_app = create_app(settings, provider=provider, scheduler=scheduler)
    fastapi_app.state.store.clock = stepping_clock()
    return fastapi_app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    response = client.post("/admin/login", json={"password": "secret"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
