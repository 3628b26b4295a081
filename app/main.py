from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from core.db import init_models
from core.environment import create_tables_on_startup
from core.logging import setup_logging
from exceptions import domain_exception_handler
from middleware.rate_limit import custom_rate_limit_exceeded, limiter
from routers import allocation, availability, health, metrics, payments, ports
from services.exceptions import AllocationDomainError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if create_tables_on_startup():
        await init_models()
    logger.info("Port allocator API started")
    yield


app = FastAPI(title="Port Allocator API", lifespan=lifespan)

app.state.limiter = limiter

# Register exception handlers
app.add_exception_handler(AllocationDomainError, domain_exception_handler)
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],   # Allows POST, GET, OPTIONS, etc
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(availability.router)
app.include_router(payments.router)
app.include_router(ports.router)
app.include_router(allocation.router)
