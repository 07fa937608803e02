"""Middleware package for request logging."""

from .logging import RequestLoggingMiddleware, configure_request_logging

__all__ = [
    "RequestLoggingMiddleware",
    "configure_request_logging",
]
