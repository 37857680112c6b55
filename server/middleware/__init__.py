"""
Middleware components for the Bloker server.

Provides:
- RequestIDMiddleware: Request tracing with X-Request-ID and X-User-Id
"""

from .request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
]
