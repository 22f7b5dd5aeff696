import inspect

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from board_starter_svc.auth.sessions import ServerSessionStore, ServerSessionStrategy
from board_starter_svc.config import DatabaseOption, SessionOption
from board_starter_svc.models.user import User
from board_starter_svc.routers import account as account_routes
from board_starter_svc.routers.account import LOGIN_FAILED, REGISTER_FAILED

CREDENTIALS = {"email": "new@example.com", "password": "Secret#123"}


def register(client, credentials=CREDENTIALS):
    return client.post("/account/register", data=credentials, follow_redirects=False)


def test_account_requires_authentication(client):
    response = client.get("/account")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_register_signs_in_and_redirects(client):
    response = register(client)
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == "/account"

    account = client.get("/account")
    assert account.status_code == 200
    assert account.json()["email"] == "new@example.com"


def test_register_twice_keeps_one_user(client, db_session):
    assert register(client).status_code == status.HTTP_302_FOUND

    second = register(client, {"email": "NEW@example.com", "password": "Other#456"})
    assert second.status_code == 200
    assert REGISTER_FAILED in second.text

    count = db_session.execute(select(func.count(User.id))).scalar_one()
    assert count == 1


def test_register_rejects_weak_password(client, db_session):
    response = register(client, {"email": "weak@example.com", "password": "password"})
    assert response.status_code == 200
    assert REGISTER_FAILED in response.text
    assert db_session.execute(select(User)).scalars().first() is None


def test_register_rejects_malformed_email(client):
    response = register(client, {"email": "nope", "password": "Secret#123"})
    assert response.status_code == 200
    assert REGISTER_FAILED in response.text


def test_register_form(client):
    response = client.get("/account/register")
    assert response.status_code == 200
    assert "Register" in response.text


def test_logout_clears_session(client):
    register(client)
    assert client.get("/account").status_code == 200

    response = client.get("/account/logout", follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == "/"

    assert client.get("/account").status_code == status.HTTP_401_UNAUTHORIZED


def test_logout_requires_authentication(client):
    response = client.get("/account/logout", follow_redirects=False)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_logout_is_mounted_at_configured_path(make_app):
    with TestClient(make_app(logout_path="/signout")) as client:
        register(client)
        assert client.get("/account/logout").status_code == status.HTTP_404_NOT_FOUND

        response = client.get("/signout", follow_redirects=False)
        assert response.status_code == status.HTTP_302_FOUND
        assert client.get("/account").status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.parametrize("handler", [
    account_routes.register,
    account_routes.login,
    account_routes.logout,
    account_routes.forgot_password,
    account_routes.reset_password,
])
def test_blocking_handlers_run_in_threadpool(handler):
    # Hashing, database and SMTP work must stay off the event loop
    assert not inspect.iscoroutinefunction(handler)


def test_tampered_identity_cookie_is_anonymous(client):
    client.cookies.set("board_starter.identity", "not-a-token")
    assert client.get("/account").status_code == status.HTTP_401_UNAUTHORIZED


def test_redirect_to_login_when_configured(make_app):
    with TestClient(make_app(redirect_to_login=True)) as client:
        response = client.get("/account", follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"].startswith("/account/login")


def test_cookie_session_register_and_logout(make_app):
    with TestClient(make_app(session=SessionOption.COOKIE)) as client:
        response = register(client)
        assert response.status_code == status.HTTP_302_FOUND
        assert "board_starter.session" in response.cookies
        assert client.get("/account").json()["email"] == "new@example.com"

        client.get("/account/logout")
        assert client.get("/account").status_code == status.HTTP_401_UNAUTHORIZED


def test_cookie_session_expires_after_idle_timeout(make_app, clock):
    store = ServerSessionStore(120, clock=clock)
    strategy = ServerSessionStrategy(store, "board_starter.session")
    with TestClient(make_app(session=SessionOption.COOKIE, session_strategy=strategy)) as client:
        register(client)

        # Each request slides the idle window forward
        clock.advance(100)
        assert client.get("/account").status_code == 200
        clock.advance(100)
        assert client.get("/account").status_code == 200

        clock.advance(121)
        assert client.get("/account").status_code == status.HTTP_401_UNAUTHORIZED


def test_no_session_option_keeps_everyone_anonymous(make_app):
    with TestClient(make_app(session=SessionOption.NONE)) as client:
        response = register(client)
        assert response.status_code == 200
        assert REGISTER_FAILED in response.text

        login = client.post("/account/login", data=CREDENTIALS, follow_redirects=False)
        assert login.status_code == status.HTTP_400_BAD_REQUEST
        assert LOGIN_FAILED in login.text
        assert client.get("/account").status_code == status.HTTP_401_UNAUTHORIZED


def test_no_database_still_serves_anonymous_pages(make_app):
    app = make_app(session=SessionOption.NONE, database=DatabaseOption.NONE)
    with TestClient(app) as client:
        assert client.get("/account/login").status_code == 200
        assert client.post("/account/login", data=CREDENTIALS).status_code == status.HTTP_400_BAD_REQUEST
        assert client.get("/api/boards").status_code == status.HTTP_404_NOT_FOUND
