from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI
from fastapi.routing import APIRoute
from starlette.middleware.cors import CORSMiddleware

from chat_gateway.api.main import api_router
from chat_gateway.core.config import settings
from chat_gateway.core.db import init_db
from chat_gateway.core.errors import ChatError, chat_error_handler
from chat_gateway.core.logging import configure_logging
from chat_gateway.middleware.auth import ApiKeyAuthMiddleware
from chat_gateway.middleware.request_id import RequestIdMiddleware
from chat_gateway.observability import MetricsMiddleware, metrics_router
from chat_gateway.services.resumable import stream_context
from chat_gateway.services.titles import wait_for_pending_titles

logger = structlog.get_logger()


def custom_generate_unique_id(route: APIRoute) -> str:
    if not route.tags:
        return route.name
    return f"{route.tags[0]}-{route.name}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    logger.info("startup", environment=settings.ENVIRONMENT)
    yield
    await wait_for_pending_titles()
    await stream_context.aclose()
    logger.info("shutdown")


if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
    lifespan=lifespan,
)

app.add_exception_handler(ChatError, chat_error_handler)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(ApiKeyAuthMiddleware)
app.add_middleware(MetricsMiddleware)

# Set all CORS enabled origins
if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(metrics_router)
app.include_router(api_router, prefix=settings.API_V1_STR)
