"""Security headers middleware.

Every response gets:
- X-Content-Type-Options / X-Frame-Options: no sniffing, no framing
- Referrer-Policy: no-referrer, since the stream URL carries a token
  in its query string
- Cache-Control: no-store unless the route already chose a policy;
  inboxes are per-user data and must not sit in shared caches
- Strict-Transport-Security on HTTPS connections only
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Referrer-Policy"] = "no-referrer"
        if "cache-control" not in headers:
            headers["Cache-Control"] = "no-store"
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = HSTS
        return response
