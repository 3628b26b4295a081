from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from core.prometheus_metrics import REGISTRY

# Limits are declared per route; checkout validation is the only public hot path
limiter = Limiter(
    key_func=get_remote_address,
    # storage_uri="redis://localhost:6379", # needed once the API runs with several workers
)

# Metric for monitoring
rate_limit_exceeded_counter = Counter(
    'port_rate_limit_exceeded_total',
    'Total rate limit violations',
    ['endpoint'],
    registry=REGISTRY
)

def custom_rate_limit_exceeded(request: Request, exc: RateLimitExceeded):
    rate_limit_exceeded_counter.labels(endpoint=request.url.path).inc()

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "message": "Rate limit exceeded. Please try again later.",
            "limit": str(exc.detail),
        },
    )
