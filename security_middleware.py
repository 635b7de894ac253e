"""
Security middleware for the donation API.
Includes rate limiting, security headers, and request validation.
"""

import json
import logging
import re
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1 * 1024 * 1024

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to all responses
    """
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["Cache-Control"] = "no-store"

        # API only; QR codes travel as data: URLs
        response.headers["Content-Security-Policy"] = "default-src 'none'; img-src data:; frame-ancestors 'none';"

        return response


def find_operator_keys(value, path: str = "") -> list:
    """Return paths of object keys that look like MongoDB operators (``$ne``, ``$where``...)."""
    found = []
    if isinstance(value, dict):
        for key, child in value.items():
            child_path = f"{path}.{key}" if path else str(key)
            if str(key).startswith("$"):
                found.append(child_path)
            found.extend(find_operator_keys(child, child_path))
    elif isinstance(value, list):
        for index, child in enumerate(value):
            found.extend(find_operator_keys(child, f"{path}[{index}]"))
    return found


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """
    Rejects oversized bodies, MongoDB operator injection and script payloads
    """

    XSS_PATTERNS = [
        r"(<script[^>]*>.*?</script>)",
        r"(javascript:)",
        r"(<[^>]*\bon\w+\s*=)",
        r"(<iframe[^>]*>)",
        r"(<object[^>]*>)",
        r"(<embed[^>]*>)"
    ]

    async def dispatch(self, request: Request, call_next: Callable):
        if request.method not in ["POST", "PUT", "PATCH", "DELETE"]:
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_BYTES:
            return JSONResponse(
                status_code=413,
                content={"detail": "Request payload too large. Maximum size is 1MB."}
            )

        if request.headers.get("content-type", "").startswith("application/json"):
            body = await request.body()
            try:
                body_str = body.decode('utf-8')
                parsed = json.loads(body_str) if body_str.strip() else None
            except (UnicodeDecodeError, json.JSONDecodeError):
                # Malformed JSON is reported by the route's own validation
                return await call_next(request)

            operator_keys = find_operator_keys(parsed)
            if operator_keys:
                logger.warning(f"Rejected operator keys {operator_keys} on {request.url.path}")
                return JSONResponse(status_code=400, content={"detail": "Invalid input detected"})

            for pattern in self.XSS_PATTERNS:
                if re.search(pattern, body_str, re.IGNORECASE):
                    logger.warning(f"Rejected script payload on {request.url.path}")
                    return JSONResponse(status_code=400, content={"detail": "Invalid input detected"})

        return await call_next(request)


class IPWhitelistMiddleware(BaseHTTPMiddleware):
    """
    Optional IP whitelist for admin endpoints
    Set ADMIN_IP_WHITELIST environment variable to enable
    """

    def __init__(self, app, whitelist: list = None):
        super().__init__(app)
        self.whitelist = whitelist or []

    async def dispatch(self, request: Request, call_next: Callable):
        if self.whitelist and request.url.path.startswith("/api/admin"):
            client_ip = get_remote_address(request)

            if client_ip not in self.whitelist:
                return JSONResponse(
                    status_code=403,
                    content={"detail": "Access denied from this IP address"}
                )

        return await call_next(request)


def setup_rate_limits(app):
    """
    Configure rate limits for different endpoints
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    return limiter
