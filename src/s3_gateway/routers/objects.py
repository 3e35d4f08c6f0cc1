from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import RedirectResponse

from s3_gateway.adapters.storage import BaseBackend, InboundRequest
from s3_gateway.dependencies import get_backend, get_inbound_request
from s3_gateway.streaming import RelayResponse

DEFAULT_DOCUMENT = "/index.html"

router = APIRouter()


@router.api_route("/", methods=["GET", "HEAD"])
async def root():
    """Send bare requests for the bucket root to the default document."""
    return RedirectResponse(url=DEFAULT_DOCUMENT, status_code=status.HTTP_301_MOVED_PERMANENTLY)


@router.head("/{object_key:path}")
async def head_object(
    inbound: InboundRequest = Depends(get_inbound_request),
    backend: BaseBackend = Depends(get_backend),
):
    """
    Object metadata, with the status and headers S3 returned and no body.

    Failures are answered with the XML error document by the ProxyError handler.
    """
    result = await backend.head(inbound)
    return Response(status_code=result.status_code, headers=result.headers)


@router.get("/{object_key:path}")
async def get_object(
    inbound: InboundRequest = Depends(get_inbound_request),
    backend: BaseBackend = Depends(get_backend),
):
    """
    Stream an object from the bucket.

    The S3 status (200, or 206 for ranged reads) and headers are relayed as is
    and the body is piped through without buffering.
    """
    stream = await backend.get(inbound)
    return RelayResponse(stream)
