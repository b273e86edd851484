"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from legal_chat.config import settings
from legal_chat.db import database
from legal_chat.history import router as history_router
from legal_chat.routes import router
from legal_chat.services.cache import answer_cache
from legal_chat.services.llm import llm_service
from legal_chat.services.quota import quota_tracker
from legal_chat.services.rate_limit import anonymous_limiter, registered_limiter

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def connect_stores(client: redis.Redis) -> None:
    """Point every Redis-backed service at one shared client."""
    answer_cache.connect(client)
    anonymous_limiter.connect(client)
    registered_limiter.connect(client)
    quota_tracker.connect(client)


def disconnect_stores() -> None:
    anonymous_limiter.close()
    registered_limiter.close()
    quota_tracker.close()
    answer_cache.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    logger.info("Starting legal chat service...")

    llm_service.initialize()
    logger.info("LLM service initialized")

    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        connect_stores(client)
        logger.info("Connected to Redis")
    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise

    database.init_engine()
    await database.create_tables()
    logger.info("Database ready")

    logger.info("Legal chat service started successfully")

    yield

    logger.info("Shutting down legal chat service...")
    disconnect_stores()
    await database.dispose_engine()
    logger.info("Legal chat service stopped")


app = FastAPI(
    title="Legal Chat API",
    description="Legal question answering with answer caching, free quota and conversation history",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render errors as ``{"error": ...}``; dict details are sent as-is."""
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


app.include_router(router)
app.include_router(history_router)
