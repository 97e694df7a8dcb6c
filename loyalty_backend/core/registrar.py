from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from loyalty_backend.app.router import router
from loyalty_backend.common.log import set_custom_logfile, setup_logging
from loyalty_backend.common.middleware import billing_exception_handler, request_id_middleware
from loyalty_backend.core.conf import settings
from loyalty_backend.database.db import async_engine
from loyalty_backend.src.billing.shared.exceptions import BillingError


@asynccontextmanager
async def register_init(app: FastAPI):
    """
    Startup and shutdown

    :param app: FastAPI app
    :return:
    """
    yield

    await async_engine.dispose()


def register_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL if settings.ENVIRONMENT == 'dev' else None,
        redoc_url=settings.FASTAPI_REDOC_URL if settings.ENVIRONMENT == 'dev' else None,
        openapi_url=settings.FASTAPI_OPENAPI_URL if settings.ENVIRONMENT == 'dev' else None,
        lifespan=register_init,
    )

    register_logger()
    register_middleware(app)
    register_router(app)
    register_exception(app)

    return app


def register_logger() -> None:
    setup_logging()
    set_custom_logfile()


def register_middleware(app: FastAPI) -> None:
    app.middleware('http')(request_id_middleware)

    if settings.MIDDLEWARE_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=['*'],
            allow_headers=['*'],
            expose_headers=settings.CORS_EXPOSE_HEADERS,
        )


def register_router(app: FastAPI) -> None:
    app.include_router(router)


def register_exception(app: FastAPI) -> None:
    app.exception_handler(BillingError)(billing_exception_handler)
