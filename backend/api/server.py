# api/server.py
# ============================================================================
# FOODIE ORDER SERVICE: FASTAPI SERVER
# ============================================================================
# Orders, Razorpay payment links, webhook/callback reconciliation, payment
# status polling, cancellation and delivery tracking.
#
# pip install fastapi uvicorn pydantic structlog httpx redis
# ============================================================================

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import ServiceConfig, config as default_config
from pipeline.agent_integrations import OrderPipeline
from pipeline.errors import OrderServiceError
from schemas.order_models import OrderRequest, PaymentLinkRequest


# ============================================================================
# LOGGING
# ============================================================================

def configure_logging(config: ServiceConfig) -> None:
    """structlog: JSON lines in production, colored console in development."""
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if config.is_development
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.LOG_LEVEL)
        ),
        cache_logger_on_first_use=False,
    )


logger = structlog.get_logger(component="server")


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    env: str
    version: str
    uptime_seconds: float
    active_simulators: int
    store_connected: bool


def _render(model: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    if model is None:
        return None
    return model.model_dump(mode="json", by_alias=True)


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    config: Optional[ServiceConfig] = None,
    pipeline: Optional[OrderPipeline] = None,
) -> FastAPI:
    """
    Build the FastAPI app around one OrderPipeline.

    Tests pass their own pipeline (in-memory store, fake gateway).
    """
    config = config or default_config
    pipeline = pipeline or OrderPipeline.build(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic"""
        logger.info("server_starting", version=config.VERSION, env=config.ENV)
        if not config.webhook_verification_enabled:
            logger.warning("webhook_secret_missing", detail="webhook signatures will not be verified")
        await pipeline.startup()

        yield

        logger.info("server_shutting_down")
        await pipeline.shutdown()

    app = FastAPI(
        title="Foodie Order Service",
        description="Food-delivery orders with COD / UPI payment links and delivery tracking",
        version=config.VERSION,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.state.config = config
    app.state.started_at = datetime.now(timezone.utc)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------------
    # MIDDLEWARE
    # ------------------------------------------------------------------------

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing and request ID headers, log one access line"""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())[:8]
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration, 2),
            request_id=request_id,
        )
        return response

    @app.exception_handler(OrderServiceError)
    async def order_service_error_handler(request: Request, exc: OrderServiceError):
        level = "error" if exc.status_code >= 500 else "info"
        getattr(logger, level)(
            "request_failed",
            path=request.url.path,
            error=exc.code,
            message=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # ------------------------------------------------------------------------
    # HEALTH
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint"""
        health = await pipeline.health_check()
        uptime = (datetime.now(timezone.utc) - app.state.started_at).total_seconds()
        return HealthResponse(
            status="healthy" if health["store"] else "degraded",
            service="payments-service",
            env=config.ENV,
            version=config.VERSION,
            uptime_seconds=uptime,
            active_simulators=health["active_simulators"],
            store_connected=health["store"],
        )

    # ------------------------------------------------------------------------
    # ORDERS
    # ------------------------------------------------------------------------

    @app.post("/api/orders", status_code=201)
    async def create_order(request: OrderRequest):
        order, link = await pipeline.intake.create_order(request)
        return {"order": _render(order), "paymentLink": _render(link)}

    @app.get("/api/orders/{order_id}")
    async def get_order(order_id: str):
        """Order plus its delivery record (driver position) for tracking"""
        order, delivery = await pipeline.intake.get_order(order_id)
        return {"order": _render(order), "delivery": _render(delivery)}

    @app.post("/api/orders/{order_id}/payment-link")
    async def ensure_payment_link(order_id: str, request: Optional[PaymentLinkRequest] = None):
        request = request or PaymentLinkRequest()
        link = await pipeline.links.ensure_link(
            order_id,
            amount=request.amount,
            customer=request.customer,
        )
        return {"orderId": order_id, "paymentLink": _render(link)}

    @app.post("/api/orders/{order_id}/cancel")
    async def cancel_order(order_id: str):
        result = await pipeline.cancellation.cancel(order_id)
        return _render(result)

    # ------------------------------------------------------------------------
    # PAYMENTS
    # ------------------------------------------------------------------------

    @app.get("/api/payments/status/{order_id}")
    async def payment_status(order_id: str):
        view = await pipeline.resolver.resolve(order_id)
        return _render(view)

    @app.get("/api/payments/callback")
    async def payment_callback(
        order_id: str = Query(..., alias="orderId"),
        razorpay_payment_link_status: Optional[str] = Query(default=None),
        razorpay_payment_link_id: Optional[str] = Query(default=None),
    ):
        """Browser redirect after checkout. The reported status is re-verified."""
        return await pipeline.reconciler.handle_callback(
            order_id,
            razorpay_payment_link_status,
            payment_link_id=razorpay_payment_link_id,
        )

    @app.post("/api/razorpay/webhook")
    async def razorpay_webhook(
        request: Request,
        x_razorpay_signature: Optional[str] = Header(default=None),
        x_signature: Optional[str] = Header(default=None),
    ):
        # Signature covers the exact bytes sent, so read the raw body
        raw_body = await request.body()
        return await pipeline.reconciler.handle_webhook(
            raw_body,
            x_razorpay_signature or x_signature,
        )

    return app


configure_logging(default_config)
app = create_app(default_config)


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=default_config.HOST,
        port=default_config.PORT,
        reload=default_config.is_development,
        log_level=default_config.LOG_LEVEL.lower(),
    )
