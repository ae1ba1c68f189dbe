import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("PRS_ENVIRONMENT", "test")
os.environ.setdefault("PRS_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("PRS_KAFKA_BOOTSTRAP_SERVERS", "")
os.environ.setdefault("PRS_LOG_JSON", "false")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from app.core.config import get_settings

get_settings.cache_clear()

from app.api.security import set_authenticator  # noqa: E402
from app.core.database import engine  # noqa: E402
from app.events_engine.config import get_event_engine_config  # noqa: E402
from app.events_engine.publisher import LogEventPublisher  # noqa: E402
from app.events_engine.runtime import build_event_log, set_event_publisher  # noqa: E402
from app.main import create_app  # noqa: E402
from app.models import Base  # noqa: E402


class StubPublisher:
    def __init__(self) -> None:
        self.published = []

    def publish(self, envelope, event_class):
        self.published.append((envelope, event_class))
        return []


class FailingPublisher:
    def __init__(self) -> None:
        self.calls = 0

    def publish(self, envelope, event_class):
        self.calls += 1
        raise RuntimeError("broker unreachable")


@pytest.fixture()
def engine_config():
    return get_event_engine_config()


@pytest.fixture()
def event_log(engine_config):
    return build_event_log(engine_config)


@pytest.fixture(autouse=True)
def reset_database(event_log, engine_config):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_event_publisher(LogEventPublisher(event_log=event_log, topics=engine_config.topics), event_log)
    set_authenticator(None)
    yield
    set_event_publisher(None)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client() -> TestClient:  # noqa: ANN001
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def stub_publisher():
    publisher = StubPublisher()
    set_event_publisher(publisher)
    yield publisher
    set_event_publisher(None)


@pytest.fixture()
def failing_publisher():
    publisher = FailingPublisher()
    set_event_publisher(publisher)
    yield publisher
    set_event_publisher(None)
