# dealerbot/transport/http_app.py
"""
Thin HTTP surface over the conversation engine.

Endpoints:
1. Public: ``/health`` and ``/providers/status``
2. Dev-only: ``/dev/chat`` (404 in production)

Channel webhooks live outside this service; whatever delivers customer
messages calls ``ConversationEngine.handle(identity, message)``.
"""
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dealerbot.config import settings
from dealerbot.core.engine import ConversationEngine, PendingConfirmations
from dealerbot.core.guardrails import GuardrailsService
from dealerbot.core.llm import CircuitBreakerRegistry, ProviderRouter, build_providers
from dealerbot.infra.catalog_search import CatalogSearchProvider
from dealerbot.infra.lead_channels import get_lead_channel
from dealerbot.infra.logging_config import get_logger, setup_logging
from dealerbot.infra.memory_store import MemoryConversationStore
from dealerbot.infra.metrics import get_metrics_collector
from dealerbot.infra.privacy import StorePrivacyService
from dealerbot.infra.rate_limiter import InMemoryRateLimiter
from dealerbot.transport.schemas import ChatIn, ChatOut, MutationOut

setup_logging(level=settings.log_level, use_json=settings.use_json_logs)

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

def build_router(s) -> ProviderRouter:
    breakers = CircuitBreakerRegistry(
        failure_threshold=s.circuit_failure_threshold,
        cooldown_seconds=s.circuit_cooldown_seconds,
        backoff_factor=s.circuit_backoff_factor,
        max_cooldown_seconds=s.circuit_max_cooldown_seconds,
    )
    return ProviderRouter(build_providers(s), breakers, default_timeout=s.llm_timeout_seconds)


def build_engine(s, store, router: ProviderRouter | None = None, search=None, lead_channel=None) -> ConversationEngine:
    """Assemble the engine and its collaborators from settings."""
    router = router or build_router(s)
    guardrails = GuardrailsService(
        InMemoryRateLimiter(
            max_requests=s.chat_rate_limit_per_minute,
            window_seconds=s.chat_rate_limit_window_seconds,
        ),
        max_input_length=s.max_input_length,
        max_output_length=s.max_output_length,
    )
    return ConversationEngine.from_settings(
        s,
        store=store,
        guardrails=guardrails,
        router=router,
        search=search or CatalogSearchProvider.from_file(s.catalog_path),
        lead_channel=lead_channel or get_lead_channel(s),
        privacy=StorePrivacyService(store),
        confirmations=PendingConfirmations(ttl_seconds=s.data_rights_confirmation_ttl_seconds),
    )


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_engine(request: Request) -> ConversationEngine:
    return request.app.state.engine


def require_dev_environment():
    """Allow access only outside production. The endpoint is hidden (404) in prod."""
    def dependency():
        if settings.is_production:
            logger.warning(
                "Attempted access to dev-only endpoint in production",
                extra={"env": settings.app_env},
            )
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return dependency


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request for tracing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    logger.info(f"Starting application: env={settings.app_env}, lead_channel={settings.lead_channel}")

    use_db = bool(settings.database_url)
    if use_db:
        from dealerbot.infra.db_async import init_pool
        from dealerbot.infra.migrations_async import apply_migrations
        from dealerbot.infra.pg_conversation_store import AsyncPostgresConversationStore

        await init_pool()
        result = await apply_migrations()
        logger.info(f"Database ready: {result['count']} migrations applied")
        store = AsyncPostgresConversationStore()
    else:
        logger.warning("DATABASE_URL not set: using the in-memory conversation store")
        store = MemoryConversationStore()

    engine = build_engine(settings, store)
    fastapi_app.state.engine = engine
    fastapi_app.state.router = engine.router

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")

    from dealerbot.infra.http_client import close_all_sessions
    await close_all_sessions()

    if use_db:
        from dealerbot.infra.db_async import close_pool
        await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Dealerbot",
    description="Conversational car-dealership assistant",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.add_middleware(RequestIDMiddleware)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
    detail = "Internal server error" if settings.is_production else f"{exc.__class__.__name__}: {exc}"
    return JSONResponse(status_code=500, content={"error": detail})


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Basic health check for load balancers. Minimal information."""
    return {"status": "healthy"}


@app.get("/providers/status")
def providers_status(request: Request):
    router: ProviderRouter = request.app.state.router
    providers = router.status()
    return {
        "providers": providers,
        "available": sum(1 for p in providers if p["enabled"] and not p["circuit_open"]),
    }


# ============================================================================
# DEV-ONLY ENDPOINTS
# ============================================================================

@app.post("/dev/chat", response_model=ChatOut, dependencies=[Depends(require_dev_environment())])
async def dev_chat(payload: ChatIn, engine: ConversationEngine = Depends(get_engine)):
    """Drive one conversation turn without a messaging channel."""
    result = await engine.handle(payload.identity, payload.message)
    return ChatOut(
        reply=result.response_text,
        node=result.node.value if result.node else None,
        conversation_id=result.conversation_id,
        mutations=[MutationOut(kind=m.kind.value, detail=m.detail) for m in result.mutations],
    )


@app.get("/dev/metrics", dependencies=[Depends(require_dev_environment())], include_in_schema=False)
def dev_metrics():
    return get_metrics_collector().get_metrics()
