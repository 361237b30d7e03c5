from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from main import create_app
from tracker.core.config import Settings
from tracker.db import make_engine
from tracker.schema import ensure_schema
from tracker.schemas.events import EventRecord
from tracker.services.event_store import EventStore


@pytest.fixture()
def db_url(tmp_path):
    # real file, not :memory: -> WAL and several connections behave like prod
    return f"sqlite:///{tmp_path / 'events.db'}"


@pytest.fixture()
def engine(db_url):
    eng = make_engine(db_url, busy_timeout_s=10.0)
    yield eng
    eng.dispose()


@pytest.fixture()
def store(engine):
    ensure_schema(engine)
    return EventStore(engine)


@pytest.fixture()
def settings(db_url):
    return Settings(
        database_url=db_url,
        write_timeout_s=10.0,
        summary_timeout_s=30.0,
        cors_allow_origins=[],
        cors_allow_origin_regex=None,
        log_level="WARNING",
    )


@pytest.fixture()
def app(settings):
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_event():
    def _make(**overrides) -> EventRecord:
        data = dict(
            occurred_at=int(time.time()),
            delivery_kind="beacon",
            source_ip="198.51.100.1",
            user_agent="pytest",
            page_url="http://example.com/",
            referrer_url="",
            visitor_id="",
            event_type="page_view",
        )
        data.update(overrides)
        return EventRecord(**data)

    return _make
