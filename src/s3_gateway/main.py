import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from s3_gateway import __version__
from s3_gateway.adapters.storage import BaseBackend
from s3_gateway.config.settings import Settings
from s3_gateway.errors import (
    HandleBroadExceptionsMiddleware,
    ProxyError,
    handle_http_exception,
    handle_proxy_error,
)
from s3_gateway.routers.health import router as health_router
from s3_gateway.routers.objects import router as objects_router

# Set up logging
logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    backend: BaseBackend,
    manage_backend: bool = False,
) -> FastAPI:
    """
    Create a FastAPI application serving ``backend``.

    The backend is created and owned by the caller and shared by every
    request. By default the caller also drives its lifecycle (init before
    serving, close after). With ``manage_backend=True`` the app initializes
    it from its lifespan instead, for hosts such as AWS Lambda that have no
    separate startup phase and may run the lifespan once per invocation.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_backend:
            result = await backend.init()
            if not result.ready:
                raise RuntimeError(
                    f"Backend initialization failed for bucket {settings.bucket}: {result.error!r}"
                )
        yield

    app = FastAPI(
        title="S3 Gateway",
        version=__version__,
        # every path below the root belongs to the bucket, so no schema or docs routes
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.backend = backend

    app.include_router(health_router)
    app.include_router(objects_router)

    app.add_exception_handler(ProxyError, handle_proxy_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_middleware(HandleBroadExceptionsMiddleware)

    return app
