"""Relay of backend object streams to the HTTP client."""

import logging

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from s3_gateway.adapters.storage import ObjectStream

logger = logging.getLogger(__name__)


class RelayResponse(StreamingResponse):
    """
    Streams an ObjectStream to the client without buffering.

    Each chunk is read from the backend only after the previous one has been
    handed to the server, so backpressure from a slow client reaches S3. The
    backend stream is released however the response ends: completion, a
    backend error, or the client going away.
    """

    def __init__(self, stream: ObjectStream):
        self.stream = stream
        super().__init__(
            content=stream,
            status_code=stream.status_code,
            headers=stream.headers,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if not self.stream.closed:
                logger.debug("Releasing backend stream left open by the client")
            await self.stream.aclose()
