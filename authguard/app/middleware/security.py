# authguard/app/middleware/security.py
"""
Response hardening and CSRF cookie issuance.

The CSRF check itself lives in the security gate (double-submit: cookie
value must be echoed in the X-CSRF-Token header). This middleware only
makes sure a browser has a cookie to echo.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from authguard.app.security.crypto import generate_secure_token

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; object-src 'none'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "X-XSS-Protection": "1; mode=block",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_hsts: bool = True):
        super().__init__(app)
        self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if self.enable_hsts:
            response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
        return response


class CSRFCookieMiddleware(BaseHTTPMiddleware):
    """Issue a csrf_token cookie to clients that do not have one yet."""

    def __init__(self, app, cookie_name: str = "csrf_token", secure: bool = True):
        super().__init__(app)
        self.cookie_name = cookie_name
        self.secure = secure

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if self.cookie_name not in request.cookies:
            # Readable by scripts so the value can be echoed in the header
            response.set_cookie(
                self.cookie_name,
                generate_secure_token(32),
                path="/",
                httponly=False,
                secure=self.secure,
                samesite="lax",
            )
        return response
