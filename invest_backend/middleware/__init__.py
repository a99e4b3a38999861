"""Middleware package for request handling."""

from .audit_logging import AuditLoggingMiddleware

__all__ = [
    "AuditLoggingMiddleware",
]
