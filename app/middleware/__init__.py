"""
Middleware components for request processing.

- Request context (request ID, IP address, user agent)
"""

from app.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
