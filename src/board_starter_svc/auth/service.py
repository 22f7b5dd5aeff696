"""
Auth Service: login, logout, registration and password reset over the user
database, the request's ``AuthContext`` and an ``EmailSender``.

Outcomes the caller can recover from (bad credentials, duplicate email, weak
password, unknown email) are reported as ``False``. Database failures surface
as ``CredentialStoreError`` and delivery failures as ``NotificationError``.
"""
import hashlib
import hmac
import html
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from board_starter_svc.auth.passwords import (PasswordPolicy, dummy_verify, hash_password,
                                              verify_password)
from board_starter_svc.auth.sessions import AuthContext, Principal
from board_starter_svc.config import SessionOption, Settings
from board_starter_svc.exceptions import AccountLinkError, CredentialStoreError
from board_starter_svc.models.user import PasswordResetCode, User, as_utc, utcnow
from board_starter_svc.notifications import EmailSender

UrlBuilder = Callable[[Dict[str, str]], str]
AuthServiceFactory = Callable[[Optional[Session], AuthContext], "AuthService"]

RESET_SUBJECT = "Reset Password"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def digest_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LockoutPolicy:
    enabled: bool = False
    max_failed_attempts: int = 10
    duration: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            enabled=settings.lockout_on_failure,
            max_failed_attempts=settings.lockout_max_failed_attempts,
            duration=timedelta(minutes=settings.lockout_minutes),
        )


class AuthService:
    """Operations the account endpoints rely on."""

    def login(self, email: str, password: str, remember: bool = True) -> bool:
        raise NotImplementedError

    def logout(self) -> None:
        raise NotImplementedError

    def register(self, email: str, password: str) -> bool:
        raise NotImplementedError

    def reset_password(self, email: str, url_builder: UrlBuilder) -> bool:
        raise NotImplementedError

    def confirm_password_reset(self, user_id: int, code: str, new_password: str) -> bool:
        raise NotImplementedError

    def external_login(self, email: str, provider: str) -> Optional[Principal]:
        raise NotImplementedError


class NullAuthService(AuthService):
    """Wired when sessions are disabled: nobody can sign in."""

    def login(self, email: str, password: str, remember: bool = True) -> bool:
        return False

    def logout(self) -> None:
        return None

    def register(self, email: str, password: str) -> bool:
        return False

    def reset_password(self, email: str, url_builder: UrlBuilder) -> bool:
        return False

    def confirm_password_reset(self, user_id: int, code: str, new_password: str) -> bool:
        return False

    def external_login(self, email: str, provider: str) -> Optional[Principal]:
        return None


class DatabaseAuthService(AuthService):
    def __init__(self, db: Session, context: AuthContext, emailer: EmailSender,
                 policy: PasswordPolicy = PasswordPolicy(),
                 lockout: LockoutPolicy = LockoutPolicy(),
                 reset_code_ttl: timedelta = timedelta(hours=1),
                 now: Callable[[], datetime] = utcnow):
        self.db = db
        self.context = context
        self.emailer = emailer
        self.policy = policy
        self.lockout = lockout
        self.reset_code_ttl = reset_code_ttl
        self._now = now

    @contextmanager
    def _credential_store(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            raise CredentialStoreError(str(e)) from e

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.db.execute(select(User).filter(User.email == email)).scalars().first()

    def _is_locked_out(self, user: User) -> bool:
        return user.lockout_end is not None and as_utc(user.lockout_end) > self._now()

    def _record_failure(self, user: User) -> None:
        if not self.lockout.enabled:
            return
        user.access_failed_count = (user.access_failed_count or 0) + 1
        if user.access_failed_count >= self.lockout.max_failed_attempts:
            user.lockout_end = self._now() + self.lockout.duration
            user.access_failed_count = 0
            logging.info("User %s locked out until %s", user.id, user.lockout_end.isoformat())
        self.db.commit()

    @staticmethod
    def _principal(user: User) -> Principal:
        return Principal(user_id=user.id, email=user.email)

    def login(self, email: str, password: str, remember: bool = True) -> bool:
        """
        Sign the request in when the email exists, is not locked out, and the password matches.

        Every failure path performs one hash verification so unknown and
        known emails take comparable time.
        """
        email = normalize_email(email)
        with self._credential_store():
            user = self._find_by_email(email)
            if user is None or self._is_locked_out(user):
                dummy_verify()
                return False
            if not verify_password(password, user.hashed_password):
                self._record_failure(user)
                return False
            if user.access_failed_count or user.lockout_end is not None:
                user.access_failed_count = 0
                user.lockout_end = None
                self.db.commit()
            principal = self._principal(user)

        self.context.sign_in(principal, persistent=remember)
        return True

    def logout(self) -> None:
        self.context.sign_out()

    def register(self, email: str, password: str) -> bool:
        email = normalize_email(email)
        if not email or not self.policy.is_valid(password):
            return False

        with self._credential_store():
            if self._find_by_email(email) is not None:
                return False
            user = User(email=email, hashed_password=hash_password(password))
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError:
                # Lost a race with a concurrent registration for the same email
                self.db.rollback()
                return False
            self.db.refresh(user)
            principal = self._principal(user)

        self.context.sign_in(principal, persistent=True)
        return True

    def reset_password(self, email: str, url_builder: UrlBuilder) -> bool:
        """
        Issue a single-use reset code for the account and email its callback link.

        Returns False without sending anything when no account has that email.
        Earlier unused codes for the same account stop working.
        """
        email = normalize_email(email)
        with self._credential_store():
            user = self._find_by_email(email)
            if user is None:
                return False

            code = secrets.token_urlsafe(32)
            self.db.execute(
                update(PasswordResetCode)
                .where(PasswordResetCode.user_id == user.id, PasswordResetCode.used.is_(False))
                .values(used=True)
            )
            self.db.add(PasswordResetCode(
                user_id=user.id,
                code_hash=digest_code(code),
                expires_at=self._now() + self.reset_code_ttl,
            ))
            self.db.commit()
            user_id = user.id

        url = url_builder({"user_id": str(user_id), "code": code})
        self.emailer.send_email(
            email,
            RESET_SUBJECT,
            f"Please reset your password by clicking here: <a href='{html.escape(url)}'>link</a>",
        )
        return True

    def confirm_password_reset(self, user_id: int, code: str, new_password: str) -> bool:
        if not code or not self.policy.is_valid(new_password):
            return False

        digest = digest_code(code)
        now = self._now()
        with self._credential_store():
            candidates = self.db.execute(
                select(PasswordResetCode).filter(
                    PasswordResetCode.user_id == user_id,
                    PasswordResetCode.used.is_(False),
                )
            ).scalars().all()
            match = None
            for candidate in candidates:
                if hmac.compare_digest(candidate.code_hash, digest) and as_utc(candidate.expires_at) > now:
                    match = candidate
            if match is None:
                return False

            user = self.db.get(User, user_id)
            if user is None:
                return False
            user.hashed_password = hash_password(new_password)
            user.access_failed_count = 0
            user.lockout_end = None
            match.used = True
            self.db.commit()
        return True

    def external_login(self, email: str, provider: str) -> Optional[Principal]:
        """
        Sign in the account for an email vouched for by an external provider, creating it if needed.

        Accounts created this way get an unusable random password; the
        provider has already confirmed the address. An existing account is
        only signed in when the same provider created it, otherwise
        ``AccountLinkError`` is raised.
        """
        email = normalize_email(email)
        if not email:
            return None

        with self._credential_store():
            user = self._find_by_email(email)
            if user is None:
                user = User(email=email, hashed_password=hash_password(secrets.token_urlsafe(32)),
                            email_confirmed=True, external_provider=provider)
                self.db.add(user)
                try:
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    user = self._find_by_email(email)
                    if user is None:
                        return None
                else:
                    self.db.refresh(user)
            if user.external_provider != provider:
                raise AccountLinkError(f"account is not linked to {provider}")
            principal = self._principal(user)

        self.context.sign_in(principal, persistent=True)
        return principal


def build_auth_service_factory(settings: Settings, emailer: EmailSender) -> AuthServiceFactory:
    """
    Pick the Auth Service implementation for the configured session option.
    """
    if settings.session == SessionOption.NONE:
        null_service = NullAuthService()
        return lambda db, context: null_service

    policy = PasswordPolicy.from_settings(settings)
    # Lockout is part of the identity option only
    if settings.session == SessionOption.IDENTITY:
        lockout = LockoutPolicy.from_settings(settings)
    else:
        lockout = LockoutPolicy(enabled=False)
    reset_code_ttl = timedelta(minutes=settings.reset_code_ttl_minutes)

    def factory(db: Optional[Session], context: AuthContext) -> AuthService:
        return DatabaseAuthService(db, context, emailer, policy, lockout, reset_code_ttl)

    return factory
