import pytest
from fastapi.testclient import TestClient

from board_starter_svc.app import create_app
from board_starter_svc.config import (DatabaseOption, RestfulOption, SessionOption, Settings,
                                      SwaggerOption)
from board_starter_svc.exceptions import NotificationError
from board_starter_svc.models.base import build_engine, build_session_factory
from board_starter_svc.models.seed import prepare_schema
from board_starter_svc.notifications import EmailSender

PASSWORD = "Secret#123"


class RecordingEmailSender(EmailSender):
    def __init__(self):
        self.sent = []

    def send_email(self, to, subject, html_body):
        self.sent.append((to, subject, html_body))


class FailingEmailSender(EmailSender):
    def send_email(self, to, subject, html_body):
        raise NotificationError("smtp down")


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def build_settings(**overrides):
    values = dict(
        _env_file=None,
        app_env="development",
        session=SessionOption.IDENTITY,
        database=DatabaseOption.MEMORY,
        restful=RestfulOption.CORS,
        swagger=SwaggerOption.UI,
        auth_providers="google,facebook",
        google_client_id=None,
        google_client_secret=None,
        facebook_app_id=None,
        facebook_app_secret=None,
        smtp_host="",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings():
    return build_settings


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_app(email_sender):
    def _make(email_sender=email_sender, session_strategy=None, **overrides):
        return create_app(build_settings(**overrides), email_sender=email_sender,
                          session_strategy=session_strategy)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db_session(client):
    session = client.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def memory_db():
    """A standalone in-memory database with the schema created, for service-level tests."""
    engine = build_engine(build_settings())
    prepare_schema(engine, recreate=True)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
