"""
Security Middleware for the ArtAdventureHub admin API
Includes rate limiting, security headers, and request validation
"""

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import logging
import re

from config import MAX_UPLOAD_SIZE, RATE_LIMIT_ENABLED

logger = logging.getLogger(__name__)

# Multipart framing on top of the largest allowed image
MAX_REQUEST_SIZE = MAX_UPLOAD_SIZE + 64 * 1024

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to all responses; API answers are never cached
    """

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    }

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)

        response.headers.update(self.HEADERS)
        # Wallet balances and withdrawal details must not linger in shared caches
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"

        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """
    Rejects oversized payloads and script injection in JSON bodies
    """

    XSS_PATTERNS = [
        r"(<script[^>]*>.*?</script>)",
        r"(javascript:)",
        r"(<iframe[^>]*>)",
        r"(<object[^>]*>)",
        r"(<embed[^>]*>)"
    ]

    async def dispatch(self, request: Request, call_next: Callable):
        if request.method not in ["POST", "PUT", "PATCH", "DELETE"]:
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
            return JSONResponse(
                status_code=413,
                content={
                    "success": False,
                    "message": f"Request payload too large. Maximum size is {MAX_UPLOAD_SIZE // (1024 * 1024)}MB.",
                }
            )

        if request.headers.get("content-type", "").startswith("application/json"):
            body = await request.body()
            try:
                body_str = body.decode('utf-8')
            except UnicodeDecodeError:
                return JSONResponse(status_code=400, content={"success": False, "message": "Invalid request body"})

            for pattern in self.XSS_PATTERNS:
                if re.search(pattern, body_str, re.IGNORECASE):
                    logger.warning(f"Blocked suspicious payload on {request.url.path}")
                    return JSONResponse(
                        status_code=400,
                        content={"success": False, "message": "Invalid input detected"}
                    )

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
        if self.whitelist and "/admin" in request.url.path:
            client_ip = get_remote_address(request)

            if client_ip not in self.whitelist:
                return JSONResponse(
                    status_code=403,
                    content={"success": False, "message": "Access denied from this IP address"}
                )

        return await call_next(request)


def setup_rate_limits(app):
    """
    Configure rate limits for different endpoints
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    return limiter
