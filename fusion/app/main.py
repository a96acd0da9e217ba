from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from fusion.app.api.fusion import router as fusion_router
from fusion.app.api.fusion_count import router as fusion_count_router
from fusion.app.core.config import Settings, settings as default_settings
from fusion.app.core.http_client import init_http_client
from fusion.app.core.logging import get_log_context, get_logger, setup_logging
from fusion.app.exceptions import FusionError, RateLimitedError
from fusion.app.middleware.request_id import RequestIdMiddleware, get_request_id
from fusion.app.middleware.request_size import RequestSizeLimitMiddleware
from fusion.app.providers.gemini import GeminiProvider
from fusion.app.providers.retry import BackoffClient, RetryPolicy
from fusion.app.services.fusion import FusionService
from fusion.app.services.fusion_counter import FusionCounter
from fusion.app.services.rate_limit import RateLimiter, RateLimitSweeper


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to build the app from; the global instance
            loaded from the environment when omitted.

    Returns:
        Configured FastAPI application instance
    """
    cfg = app_settings or default_settings

    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the shared HTTP client, provider, rate limiter and counter.

        Components live on ``app.state`` and are injected into handlers.
        """
        async with init_http_client(cfg) as http_client:
            backoff = BackoffClient(
                http_client=http_client,
                policy=RetryPolicy(
                    max_retries=cfg.retry_max_attempts,
                    base_delay=cfg.retry_base_delay,
                    max_delay=cfg.retry_max_delay,
                ),
            )
            provider = GeminiProvider(
                base_url=cfg.gemini_base_url,
                api_key=cfg.gemini_api_key,
                text_model=cfg.gemini_text_model,
                image_model=cfg.gemini_image_model,
                backoff=backoff,
            )
            rate_limiter = RateLimiter.from_settings(cfg)

            app.state.rate_limiter = rate_limiter
            app.state.fusion_service = FusionService(provider, rate_limiter, cfg)
            app.state.fusion_counter = FusionCounter(cfg.fusion_count_file)

            sweeper: Optional[RateLimitSweeper] = None
            if cfg.rate_limit_sweep_interval_seconds > 0:
                sweeper = RateLimitSweeper(rate_limiter, cfg.rate_limit_sweep_interval_seconds)
                await sweeper.start()

            if not provider.is_configured:
                logger.warning("GEMINI_API_KEY is not set; generation endpoints will return 500")

            logger.info(
                "Application startup complete",
                extra={
                    "rate_limits": rate_limiter.endpoint_classes,
                    "debug_mode": cfg.debug,
                },
            )

            yield

            if sweeper is not None:
                await sweeper.stop()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Fusion Gateway",
        description="Generative fusion backend with retry, backoff and per-client rate limiting",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Middleware order: last added = first executed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=cfg.max_request_body_bytes)

    # Generated images come back base64-encoded; compress anything over 1KB
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(RequestIdMiddleware)

    app.include_router(fusion_router)
    app.include_router(fusion_count_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Report provider configuration and rate limiter occupancy."""
        fusion_service: FusionService = request.app.state.fusion_service
        rate_limiter: RateLimiter = request.app.state.rate_limiter

        configured = fusion_service.provider.is_configured
        return {
            "status": "ok" if configured else "degraded",
            "components": {
                "provider": {
                    "status": "ok" if configured else "error",
                    "configured": configured,
                },
                "rate_limiter": {
                    "status": "ok",
                    "tracked_clients": {
                        name: len(rate_limiter.limiter_for(name))
                        for name in rate_limiter.endpoint_classes
                    },
                },
            },
        }

    @app.exception_handler(FusionError)
    async def fusion_error_handler(request: Request, exc: FusionError) -> JSONResponse:
        """Render any FusionError as an ``{"error": ...}`` envelope.

        ``exc.message`` may carry provider internals; it is only logged.
        """
        context = get_log_context(
            request_id=get_request_id(request),
            path=request.url.path,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
        )
        if exc.status_code >= 500:
            logger.error(f"Request failed: {exc.message}", extra=context)
        else:
            logger.info(f"Request rejected: {exc.message}", extra=context)

        headers = None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed or mistyped JSON bodies are client errors (400)."""
        logger.info(
            f"Invalid request body: {exc.errors()}",
            extra=get_log_context(request_id=get_request_id(request), path=request.url.path),
        )
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Last-resort handler; never returns a traceback to the client."""
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


# Create the application instance
app = create_app()
