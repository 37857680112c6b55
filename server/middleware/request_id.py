"""
Request context middleware for log tracing.

Generates or propagates the X-Request-ID header and records the caller's
X-User-Id so every log line written while serving the request carries both.
"""

import logging
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from logging_config import request_id_var, user_id_var

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with a request id and the calling user.

    - Reuses X-Request-ID from the incoming request, or generates a UUID
    - Sets request_id and user_id context vars for logging
    - Echoes X-Request-ID on the response
    """

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        user_header: str = "X-User-Id",
        generator: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize the middleware.

        Args:
            app: FastAPI application.
            header_name: Header carrying the request id.
            user_header: Header carrying the caller's user id.
            generator: Optional custom request id generator.
        """
        super().__init__(app)
        self.header_name = header_name
        self.user_header = user_header
        self.generator = generator or (lambda: str(uuid.uuid4()))

    async def dispatch(self, request: Request, call_next) -> Response:
        """
        Run the request with request and user context set.

        Args:
            request: Incoming HTTP request.
            call_next: Next middleware or handler in the chain.

        Returns:
            Response with the X-Request-ID header set.
        """
        request_id = request.headers.get(self.header_name) or self.generator()
        request.state.request_id = request_id

        request_token = request_id_var.set(request_id)
        user_token = user_id_var.set(request.headers.get(self.user_header))
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            user_id_var.reset(user_token)
            request_id_var.reset(request_token)

