"""Audit logging middleware for money-moving and admin endpoints."""

import time
from typing import List
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import logging

from invest_backend.core.config import settings

logger = logging.getLogger("invest_backend.audit")


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Writes one audit line per financial, auth or admin request.

    Request bodies are never logged; they carry passwords and bank details.
    """

    def __init__(self, app, api_prefix: str = None):
        super().__init__(app)
        self.api_prefix = api_prefix or settings.api_prefix
        self.financial_endpoints = self._get_financial_endpoints()

    def _get_financial_endpoints(self) -> List[str]:
        return [
            f"{self.api_prefix}/products/purchase",
            f"{self.api_prefix}/products/daily-profit",
            f"{self.api_prefix}/recharge/",
            f"{self.api_prefix}/withdrawals/",
        ]

    def _determine_event_type(self, request: Request) -> str:
        """Determine event type based on endpoint."""
        path = request.url.path

        if path.startswith(f"{self.api_prefix}/auth/"):
            return "AUTHENTICATION"
        elif any(path.startswith(endpoint) for endpoint in self.financial_endpoints):
            return "FINANCIAL"
        elif path.startswith(f"{self.api_prefix}/admin/"):
            return "ADMIN"
        elif path.startswith(f"{self.api_prefix}/referral/"):
            return "REFERRAL"
        return "API_ACCESS"

    def _get_client_ip(self, request: Request) -> str:
        """Get client IP address considering proxies."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        event_type = self._determine_event_type(request)

        response = await call_next(request)

        should_audit = event_type != "API_ACCESS" and request.method != "GET"
        if should_audit or response.status_code >= 500:
            processing_time_ms = int((time.time() - start_time) * 1000)
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                f"{event_type} {request.method} {request.url.path} -> {response.status_code} "
                f"in {processing_time_ms}ms ip={self._get_client_ip(request)} "
                f"authenticated={'authorization' in request.headers}"
            )

        return response
