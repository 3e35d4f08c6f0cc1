import logging
import platform
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from s3_gateway.adapters.storage import BaseBackend
from s3_gateway.dependencies import get_backend
from s3_gateway.errors import ProxyError
from s3_gateway.schemas import BackendHealthFailure, VersionResponse
from s3_gateway.streaming import RelayResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    """
    Liveness probe. Never touches the backend, so it answers 200 whenever
    the process is serving requests.
    """
    return Response(status_code=200)


@router.get("/health/s3")
async def backend_health_check(backend: BaseBackend = Depends(get_backend)):
    """
    Backend reachability probe.

    Relays the status and headers of a HeadBucket call against the gateway's
    bucket, or answers 503 with a small diagnostic body when the probe fails,
    so orchestrators can tell "process alive" from "bucket reachable".
    """
    try:
        stream = await backend.health_check()
    except ProxyError as e:
        logger.error(f"S3 health check failed: {e.code} ({e.http_status}) {e.message}")
        return _health_failure(e.code)
    except Exception:
        logger.exception("S3 health check failed unexpectedly")
        return _health_failure("InternalError")
    return RelayResponse(stream)


def _health_failure(code: str) -> JSONResponse:
    failure = BackendHealthFailure(
        message="S3 connectivity check failed",
        code=code,
        timestamp=_now(),
    )
    return JSONResponse(status_code=503, content=failure.model_dump())


@router.get("/version", response_model=VersionResponse)
async def version(backend: BaseBackend = Depends(get_backend)) -> VersionResponse:
    """Versions of the gateway and of the S3 client library backing it."""
    versions = backend.version()
    return VersionResponse(
        version=versions["version"],
        boto3=versions.get("boto3"),
        botocore=versions.get("botocore"),
        python=platform.python_version(),
        timestamp=_now(),
    )
