from types import MappingProxyType

from fastapi import Request

from s3_gateway.adapters.storage import BaseBackend, InboundRequest


def get_backend(request: Request) -> BaseBackend:
    """Backend dependency: the process-wide handle injected at app creation."""
    return request.app.state.backend


def get_inbound_request(request: Request) -> InboundRequest:
    """Read-only view of the current request for the backend adapter."""
    return InboundRequest(
        method=request.method,
        path=request.scope["path"],
        headers=MappingProxyType(dict(request.headers)),
        query=request.url.query,
    )
