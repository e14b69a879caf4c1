"""Rate limiter configuration."""

from slowapi import Limiter
from slowapi.util import get_remote_address


def _get_rate_limit_key(request):
    """Key by the first X-Forwarded-For hop when behind a proxy, otherwise by IP."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=_get_rate_limit_key)

GENERATE_RATE_LIMIT = "5/minute"
