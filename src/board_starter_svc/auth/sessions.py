"""
Session strategies.

A strategy knows how authenticated state travels between requests. On the way
in it turns the request's cookie into an ``AuthContext``; on the way out it
turns whatever the request did to that context (sign in, sign out, session
writes) into ``Set-Cookie`` headers. Exactly one strategy is chosen at startup
by ``build_session_strategy``.

- ``NoSessionStrategy``: every request is anonymous.
- ``ServerSessionStrategy``: an opaque random cookie keys a server-side
  key/value map that expires after an idle timeout. The signed-in user id is
  stored in that map like any other value.
- ``ClaimsCookieStrategy``: the cookie itself is a signed JWT carrying the
  user's claims, so no server-side lookup is needed.
"""
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import jwt
from starlette.requests import Request
from starlette.responses import Response

from board_starter_svc.config import SessionOption, Settings

JWT_ALGORITHM = "HS256"

SESSION_USER_ID = "user_id"
SESSION_EMAIL = "email"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    user_id: int
    email: str
    roles: Tuple[str, ...] = ()


@dataclass
class AuthContext:
    """
    Per-request authentication state.

    Handlers and the auth service only record intent here (``sign_in`` /
    ``sign_out``); the active strategy applies it to the response.
    """
    principal: Optional[Principal] = None
    session: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    pending_sign_in: Optional[Principal] = None
    persistent: bool = False
    pending_sign_out: bool = False

    def sign_in(self, principal: Principal, persistent: bool = False) -> None:
        self.principal = principal
        self.pending_sign_in = principal
        self.persistent = persistent
        self.pending_sign_out = False

    def sign_out(self) -> None:
        self.principal = None
        self.pending_sign_in = None
        self.pending_sign_out = True


class SessionStrategy:
    def authenticate(self, request: Request) -> AuthContext:
        raise NotImplementedError

    def commit(self, context: AuthContext, response: Response) -> None:
        raise NotImplementedError


class NoSessionStrategy(SessionStrategy):
    def authenticate(self, request: Request) -> AuthContext:
        return AuthContext()

    def commit(self, context: AuthContext, response: Response) -> None:
        return None


class ServerSessionStore:
    """
    In-process session map keyed by session id, with a sliding idle timeout.

    Safe for concurrent use from the threads serving requests. Callers get a
    copy of the stored map and write it back with ``save``.
    """

    def __init__(self, idle_timeout_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout_seconds = idle_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expired(self, last_access: float, now: float) -> bool:
        return now - last_access > self.idle_timeout_seconds

    def create(self) -> str:
        session_id = secrets.token_urlsafe(32)
        with self._lock:
            now = self._clock()
            stale = [sid for sid, (seen, _) in self._sessions.items() if self._expired(seen, now)]
            for sid in stale:
                del self._sessions[sid]
            self._sessions[session_id] = (now, {})
        return session_id

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            now = self._clock()
            last_access, data = entry
            if self._expired(last_access, now):
                del self._sessions[session_id]
                return None
            self._sessions[session_id] = (now, data)
            return dict(data)

    def save(self, session_id: str, data: Dict[str, Any]) -> bool:
        """
        Replace the map of a live session. Returns False, storing nothing, when
        the session was deleted or expired in the meantime; only ``create`` adds ids.
        """
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return False
            now = self._clock()
            if self._expired(entry[0], now):
                del self._sessions[session_id]
                return False
            self._sessions[session_id] = (now, dict(data))
            return True

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class ServerSessionStrategy(SessionStrategy):
    def __init__(self, store: ServerSessionStore, cookie_name: str, secure: bool = False):
        self.store = store
        self.cookie_name = cookie_name
        self.secure = secure

    def authenticate(self, request: Request) -> AuthContext:
        session_id = request.cookies.get(self.cookie_name)
        data = self.store.load(session_id) if session_id else None
        if data is None:
            return AuthContext()

        context = AuthContext(session=data, session_id=session_id)
        user_id = data.get(SESSION_USER_ID)
        if user_id is not None:
            context.principal = Principal(user_id=int(user_id), email=data.get(SESSION_EMAIL, ""))
        return context

    def commit(self, context: AuthContext, response: Response) -> None:
        if context.pending_sign_out:
            if context.session_id:
                self.store.delete(context.session_id)
            context.session_id = None
            context.session.clear()
            response.delete_cookie(self.cookie_name, path="/")

        if context.pending_sign_in is not None:
            # New id on sign in so a pre-login session id cannot be reused
            if context.session_id:
                self.store.delete(context.session_id)
                context.session_id = None
            context.session[SESSION_USER_ID] = context.pending_sign_in.user_id
            context.session[SESSION_EMAIL] = context.pending_sign_in.email

        if context.session_id is None and not context.session:
            return

        is_new = context.session_id is None
        if is_new:
            context.session_id = self.store.create()
        self.store.save(context.session_id, context.session)
        if is_new:
            response.set_cookie(self.cookie_name, context.session_id, httponly=True,
                                secure=self.secure, samesite="lax", path="/")


class ClaimsCookieStrategy(SessionStrategy):
    def __init__(self, secret: str, cookie_name: str, expire: timedelta, secure: bool = False,
                 now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.secret = secret
        self.cookie_name = cookie_name
        self.expire = expire
        self.secure = secure
        self._now = now

    def issue(self, principal: Principal) -> str:
        """
        Encode the principal's claims as a signed token valid for the configured lifetime.
        """
        issued = self._now()
        payload = {
            "sub": str(principal.user_id),
            "email": principal.email,
            "roles": list(principal.roles),
            "iat": int(issued.timestamp()),
            "exp": int((issued + self.expire).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def read(self, token: str) -> Optional[Principal]:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                # Expiry is checked below against the injected clock
                options={"require": ["sub", "exp"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            logging.debug("Rejected identity cookie: %s", e)
            return None
        if claims["exp"] <= int(self._now().timestamp()):
            return None
        return Principal(
            user_id=int(claims["sub"]),
            email=claims.get("email", ""),
            roles=tuple(claims.get("roles", ())),
        )

    def authenticate(self, request: Request) -> AuthContext:
        token = request.cookies.get(self.cookie_name)
        if not token:
            return AuthContext()
        return AuthContext(principal=self.read(token))

    def commit(self, context: AuthContext, response: Response) -> None:
        if context.pending_sign_out:
            response.delete_cookie(self.cookie_name, path="/")
        if context.pending_sign_in is not None:
            max_age = int(self.expire.total_seconds()) if context.persistent else None
            response.set_cookie(self.cookie_name, self.issue(context.pending_sign_in),
                                max_age=max_age, httponly=True, secure=self.secure,
                                samesite="lax", path="/")


def build_session_strategy(settings: Settings) -> SessionStrategy:
    if settings.session == SessionOption.COOKIE:
        store = ServerSessionStore(settings.session_idle_timeout_seconds)
        return ServerSessionStrategy(store, settings.session_cookie_name, settings.cookie_secure)
    if settings.session == SessionOption.IDENTITY:
        return ClaimsCookieStrategy(
            settings.secret_key,
            settings.identity_cookie_name,
            timedelta(days=settings.identity_cookie_expire_days),
            settings.cookie_secure,
        )
    return NoSessionStrategy()
