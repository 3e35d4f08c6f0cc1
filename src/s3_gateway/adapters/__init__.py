"""
Adapter layer for the S3 gateway.

Wraps the external object-store client (boto3) behind the small contract the
HTTP routes depend on: init, head, get, health_check and close.
"""

from .storage import (
    BackendState,
    BaseBackend,
    InboundRequest,
    InitResult,
    ObjectResponse,
    ObjectStream,
    S3Backend,
)

__all__ = [
    "BackendState",
    "BaseBackend",
    "InboundRequest",
    "InitResult",
    "ObjectResponse",
    "ObjectStream",
    "S3Backend",
]
