from typing import Iterator

from fastapi import HTTPException, Request, status

from board_starter_svc.auth.service import AuthService
from board_starter_svc.auth.sessions import Principal
from board_starter_svc.config import SessionOption


def get_auth_service(request: Request) -> Iterator[AuthService]:
    """
    Build the configured Auth Service around a request-scoped database session.
    """
    session_factory = request.app.state.session_factory
    db = session_factory() if session_factory is not None else None
    try:
        yield request.app.state.auth_service_factory(db, request.state.auth)
    finally:
        if db is not None:
            db.close()


def require_user(request: Request) -> Principal:
    """
    Reject anonymous callers with 401, or redirect them to the login page when configured to.
    """
    principal = request.state.auth.principal
    if principal is not None:
        return principal

    settings = request.app.state.settings
    if settings.redirect_to_login and settings.session == SessionOption.IDENTITY:
        raise HTTPException(
            status_code=status.HTTP_302_FOUND,
            headers={"Location": f"{settings.login_path}?next={request.url.path}"},
        )
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
