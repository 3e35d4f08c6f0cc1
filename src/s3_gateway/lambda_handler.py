"""Lambda handler for the S3 gateway using Mangum.

The same FastAPI app as the long-running server, except that the app's own
lifespan initializes the backend on cold start, since Lambda has no separate
startup phase to do it in. Responses are buffered by API Gateway/Lambda, so
there is no streaming here.
"""
from mangum import Mangum

from s3_gateway.adapters.storage import S3Backend
from s3_gateway.config.settings import Settings, load_settings
from s3_gateway.credentials import resolve_credentials
from s3_gateway.main import create_app


def build_handler(settings: Settings | None = None) -> Mangum:
    """Create the Mangum handler wrapping a fully wired app."""
    settings = settings or load_settings()
    backend = S3Backend(
        bucket=settings.bucket,
        credentials=resolve_credentials(settings.is_production, settings.credentials_file),
        region_name=settings.aws_region,
        endpoint_url=settings.aws_endpoint_url,
        chunk_size=settings.stream_chunk_size,
    )
    app = create_app(settings, backend, manage_backend=True)
    return Mangum(app, lifespan="auto")


_handler: Mangum | None = None


def lambda_handler(event, context):
    """Lambda entrypoint; the handler is built on the first invocation."""
    global _handler
    if _handler is None:
        _handler = build_handler()
    return _handler(event, context)
