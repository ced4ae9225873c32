"""Rate limiting configuration for API endpoints.

Rate limit tiers:
- Global default: 60/minute per IP (covers ALL endpoints automatically)
- Expensive: 10/minute (calls that reach the openHAB server)
- Critical: 5/minute (manual sync)

Usage in route modules:
    from twinsync.api.rate_limit import limiter

    @router.post("/sync")
    @limiter.limit("5/minute")
    async def trigger_sync(request: Request, ...):
        ...
"""

from slowapi import Limiter
from starlette.requests import Request


def _get_real_client_ip(request: Request) -> str:
    """Client IP, taking the leftmost X-Forwarded-For entry behind a proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(
    key_func=_get_real_client_ip,
    default_limits=["60/minute"],
)

# Maximum request body size (bytes); enforced by middleware in main.py
MAX_REQUEST_BODY_BYTES = 1_048_576  # 1 MB
