from datetime import datetime, timedelta, timezone

import jwt
from starlette.responses import Response

from board_starter_svc.auth.sessions import (AuthContext, ClaimsCookieStrategy, NoSessionStrategy,
                                             Principal, ServerSessionStore, ServerSessionStrategy,
                                             build_session_strategy)
from board_starter_svc.config import SessionOption


class FakeRequest:
    def __init__(self, cookies=None):
        self.cookies = cookies or {}


def set_cookie_headers(response):
    return [value.decode() for key, value in response.raw_headers if key == b"set-cookie"]


def test_store_expires_idle_sessions(clock):
    store = ServerSessionStore(120, clock=clock)
    session_id = store.create()
    store.save(session_id, {"cart": 3})

    clock.advance(120)
    assert store.load(session_id) == {"cart": 3}

    clock.advance(121)
    assert store.load(session_id) is None
    assert len(store) == 0


def test_store_returns_copies(clock):
    store = ServerSessionStore(120, clock=clock)
    session_id = store.create()
    data = store.load(session_id)
    data["changed"] = True
    assert store.load(session_id) == {}


def test_store_create_sweeps_expired_sessions(clock):
    store = ServerSessionStore(10, clock=clock)
    store.create()
    store.create()
    clock.advance(11)
    store.create()
    assert len(store) == 1


def test_server_strategy_rotates_session_on_sign_in(clock):
    store = ServerSessionStore(120, clock=clock)
    strategy = ServerSessionStrategy(store, "sid")

    anonymous = strategy.authenticate(FakeRequest())
    anonymous.session["theme"] = "dark"
    first = Response()
    strategy.commit(anonymous, first)
    old_id = anonymous.session_id
    assert f"sid={old_id}" in set_cookie_headers(first)[0]

    context = strategy.authenticate(FakeRequest({"sid": old_id}))
    assert context.session == {"theme": "dark"}
    assert context.principal is None
    context.sign_in(Principal(user_id=7, email="seven@example.com"))
    second = Response()
    strategy.commit(context, second)

    assert context.session_id != old_id
    assert store.load(old_id) is None
    signed_in = strategy.authenticate(FakeRequest({"sid": context.session_id}))
    assert signed_in.principal == Principal(user_id=7, email="seven@example.com")
    assert signed_in.session["theme"] == "dark"


def test_store_save_does_not_recreate_deleted_session(clock):
    store = ServerSessionStore(120, clock=clock)
    session_id = store.create()
    store.delete(session_id)
    assert store.save(session_id, {"user_id": 1}) is False
    assert store.load(session_id) is None


def test_logout_sticks_while_another_request_is_in_flight(clock):
    store = ServerSessionStore(120, clock=clock)
    strategy = ServerSessionStrategy(store, "sid")

    login = strategy.authenticate(FakeRequest())
    login.sign_in(Principal(user_id=1, email="a@example.com"))
    strategy.commit(login, Response())
    session_id = login.session_id

    # Two requests for the same session; the logout commits first
    logout = strategy.authenticate(FakeRequest({"sid": session_id}))
    in_flight = strategy.authenticate(FakeRequest({"sid": session_id}))
    assert in_flight.principal is not None

    logout.sign_out()
    strategy.commit(logout, Response())
    assert store.load(session_id) is None

    strategy.commit(in_flight, Response())

    after = strategy.authenticate(FakeRequest({"sid": session_id}))
    assert after.principal is None
    assert len(store) == 0


def test_server_strategy_without_data_sets_no_cookie(clock):
    strategy = ServerSessionStrategy(ServerSessionStore(120, clock=clock), "sid")
    response = Response()
    strategy.commit(strategy.authenticate(FakeRequest()), response)
    assert set_cookie_headers(response) == []


def test_claims_cookie_carries_principal():
    strategy = ClaimsCookieStrategy("secret", "id", timedelta(days=150))
    token = strategy.issue(Principal(user_id=3, email="three@example.com", roles=("admin",)))

    claims = jwt.decode(token, "secret", algorithms=["HS256"])
    assert claims["sub"] == "3"
    assert claims["roles"] == ["admin"]
    assert strategy.authenticate(FakeRequest({"id": token})).principal.roles == ("admin",)


def test_claims_cookie_rejects_expired_and_foreign_tokens():
    issued_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    old = ClaimsCookieStrategy("secret", "id", timedelta(days=1), now=lambda: issued_at)
    token = old.issue(Principal(user_id=1, email="one@example.com"))

    later = ClaimsCookieStrategy("secret", "id", timedelta(days=1),
                                 now=lambda: issued_at + timedelta(days=2))
    assert later.read(token) is None

    other_key = ClaimsCookieStrategy("other", "id", timedelta(days=1), now=lambda: issued_at)
    assert other_key.read(token) is None


def test_claims_commit_sign_in_and_sign_out():
    strategy = ClaimsCookieStrategy("secret", "id", timedelta(days=150))

    context = AuthContext()
    context.sign_in(Principal(user_id=1, email="one@example.com"), persistent=True)
    response = Response()
    strategy.commit(context, response)
    assert "Max-Age=12960000" in set_cookie_headers(response)[0]

    context.sign_out()
    response = Response()
    strategy.commit(context, response)
    assert "Max-Age=0" in set_cookie_headers(response)[0]


def test_build_session_strategy(make_settings):
    assert isinstance(build_session_strategy(make_settings(session=SessionOption.NONE)), NoSessionStrategy)
    cookie = build_session_strategy(make_settings(session=SessionOption.COOKIE))
    assert isinstance(cookie, ServerSessionStrategy)
    assert cookie.store.idle_timeout_seconds == 120
    assert isinstance(build_session_strategy(make_settings()), ClaimsCookieStrategy)
