from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from board_starter_svc.auth.sessions import SessionStrategy


class AuthSessionMiddleware(BaseHTTPMiddleware):
    """
    Attach an ``AuthContext`` to ``request.state.auth`` and let the session
    strategy write the resulting cookies on the response.
    """

    def __init__(self, app, strategy: SessionStrategy):
        super().__init__(app)
        self.strategy = strategy

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = self.strategy.authenticate(request)
        request.state.auth = context
        response = await call_next(request)
        self.strategy.commit(context, response)
        return response
