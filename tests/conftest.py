import pytest
from fastapi.testclient import TestClient

from chatlog.accumulator import ChatAccumulator
from chatlog.dates import DateNormalizer
from chatlog.db import init_db, make_engine
from chatlog.profiles import ProfileDirectory
from chatlog.reports import ReportQueryEngine
from chatlog.settings import Settings
from main import create_app


class RecordingMetrics:
    def __init__(self):
        self.counters = []
        self.timings = []

    def incr(self, name, count=1, rate=1):
        self.counters.append(name)

    def timing(self, name, value, rate=1):
        self.timings.append((name, value))


@pytest.fixture
def pg_engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def metrics():
    return RecordingMetrics()


@pytest.fixture
def normalizer():
    return DateNormalizer("Asia/Seoul")


@pytest.fixture
def accumulator(pg_engine, normalizer, metrics):
    return ChatAccumulator(pg_engine, normalizer, metrics)


@pytest.fixture
def reports(pg_engine, normalizer, metrics):
    return ReportQueryEngine(pg_engine, normalizer, metrics)


@pytest.fixture
def profiles(pg_engine, metrics):
    return ProfileDirectory(pg_engine, metrics)


@pytest.fixture
def settings():
    settings = Settings()
    settings.timezone = "Asia/Seoul"
    settings.admin_emails = ["admin@example.com"]
    settings.cors_origins = ["*"]
    return settings


@pytest.fixture
def client(settings, pg_engine, metrics):
    app = create_app(settings, pg_engine=pg_engine, metrics=metrics)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def file_engine(tmp_path):
    # a real file so that threads get their own connections
    engine = make_engine(f"sqlite:///{tmp_path / 'chatlog.db'}")
    init_db(engine)
    yield engine
    engine.dispose()
