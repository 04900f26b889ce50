"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

import logging

from app.config import get_settings
from app.core.llm import shutdown_llm_client
from app.db.session import dispose_engine
from app.services.embedding import shutdown_embedding_client
from app.api.deps import limiter
from app.api.admin import health, knowledge, escalation, x_agents
from app.api.public import chat, x402, realtime, solana

logger = logging.getLogger(__name__)

settings = get_settings()


async def _check_knowledge_base() -> None:
    """Warn about documents that were stored but never embedded."""
    from sqlalchemy import text
    from app.db.session import async_session_maker

    try:
        async with async_session_maker() as db:
            result = await db.execute(
                text("SELECT COUNT(*) FROM advisor_documents WHERE processed_at IS NULL")
            )
            pending = result.scalar() or 0

            if pending:
                logger.warning(
                    f"{pending} knowledge-base documents have no embeddings. "
                    f"Run: python scripts/generate_embeddings.py"
                )
            else:
                logger.info("Knowledge-base embeddings ready")
    except Exception as e:
        logger.warning(f"Could not check knowledge-base embeddings: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup/shutdown events."""
    app.state.redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not configured; chat, embeddings and realtime will fail")

    await _check_knowledge_base()

    yield
    await shutdown_llm_client()
    await shutdown_embedding_client()
    await app.state.redis.aclose()
    await dispose_engine()


app = FastAPI(
    title="Talk to My Sim",
    description="Sim chat, knowledge base, realtime voice relay and x402 payments",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

# Rate limiting applies the default limit to every route
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing request fields are client errors (400)."""
    return JSONResponse(
        status_code=400,
        content={"error": "Missing or invalid parameters", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(knowledge.router)
app.include_router(escalation.router)
app.include_router(x_agents.router)
app.include_router(chat.router)
app.include_router(x402.router)
app.include_router(realtime.router)
app.include_router(solana.router)
