"""
Backend failures and their translation into S3-style error documents.

Many S3 SDKs parse non-2xx responses expecting an XML document, so every
failed request is answered with one, mirroring the shape S3 itself uses.
"""

import http
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from xml.sax.saxutils import escape, quoteattr

from fastapi import Request, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import ClientDisconnect
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

DEFAULT_ERROR_CODE = "InternalError"
DEFAULT_HTTP_STATUS = 500
ERROR_MEDIA_TYPE = "application/xml"
GENERIC_ERROR_MESSAGE = "We encountered an internal error. Please try again."
NOT_MODIFIED_DROPPED_HEADERS = {"content-length", "content-type"}


def _valid_status(value: Any) -> Optional[int]:
    try:
        status = int(value)
    except (TypeError, ValueError):
        return None
    return status if 100 <= status <= 599 else None


class ProxyError(Exception):
    """
    A failed backend call for a single request.

    Always carries a non-empty ``code`` and an ``http_status`` in
    [100, 599]; missing or invalid values fall back to
    ``InternalError`` / 500.
    """

    def __init__(
        self,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        message: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        request_url: str = "",
        request_method: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code or DEFAULT_ERROR_CODE
        self.http_status = _valid_status(http_status) or DEFAULT_HTTP_STATUS
        self.message = message or ""
        self.occurred_at = occurred_at or datetime.now(timezone.utc)
        self.request_url = request_url
        self.request_method = request_method
        # backend response headers, relayed on 304 only
        self.headers = dict(headers or {})
        super().__init__(self.message or self.code)

    @classmethod
    def service_unavailable(cls, message: str, request_url: str = "", request_method: str = "") -> "ProxyError":
        return cls(
            code="ServiceUnavailable",
            http_status=503,
            message=message,
            request_url=request_url,
            request_method=request_method,
        )

    def __repr__(self) -> str:
        return f"ProxyError(code={self.code!r}, http_status={self.http_status}, message={self.message!r})"


class StreamInterruptedError(Exception):
    """The backend stream failed after the response had started."""


@dataclass(frozen=True)
class TranslatedError:
    http_status: int
    body: str


def translate(err: Any, request_url: str, request_method: str) -> TranslatedError:
    """
    Build the wire-level error document for a failed request.

    :param err: A ProxyError, or any object exposing ``code``,
        ``http_status`` (or ``status_code``), ``message`` and ``occurred_at``.
    :param request_url: Path and query of the failed request.
    :param request_method: HTTP method of the failed request.
    :return: The HTTP status to answer with and the XML body.
    """
    code = getattr(err, "code", None) or DEFAULT_ERROR_CODE
    status = _valid_status(getattr(err, "http_status", None) or getattr(err, "status_code", None))
    status = status or DEFAULT_HTTP_STATUS
    message = getattr(err, "message", None) or ""
    occurred_at = getattr(err, "occurred_at", None) or datetime.now(timezone.utc)
    if isinstance(occurred_at, datetime):
        occurred_at = occurred_at.isoformat()

    body = (
        '<?xml version="1.0"?>\n'
        f"<error time={quoteattr(str(occurred_at))}"
        f" code={quoteattr(str(code))}"
        f" statusCode={quoteattr(str(status))}"
        f" url={quoteattr(request_url or '')}"
        f" method={quoteattr(request_method or '')}>"
        f"{escape(str(message))}</error>\n"
    )
    return TranslatedError(http_status=status, body=body)


def request_target(request: Request) -> str:
    """Path plus query string, as it appeared on the request line."""
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return target


def error_response(err: Any, request: Request) -> Response:
    translated = translate(err, request_target(request), request.method)
    return Response(
        content=translated.body,
        status_code=translated.http_status,
        media_type=ERROR_MEDIA_TYPE,
    )


async def handle_proxy_error(request: Request, exc: ProxyError) -> Response:
    """Exception handler for per-request backend failures."""
    if exc.http_status == 304:
        # Not Modified responses carry no body, but keep the validators
        headers = {
            name: value for name, value in exc.headers.items() if name.lower() not in NOT_MODIFIED_DROPPED_HEADERS
        }
        return Response(status_code=304, headers=headers)
    logger.info(
        f"{request.method} {request_target(request)} failed: {exc.code} ({exc.http_status}) {exc.message}"
    )
    return error_response(exc, request)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> Response:
    """Answer routing failures (unsupported methods and the like) in the same document shape."""
    try:
        code = http.HTTPStatus(exc.status_code).phrase.replace(" ", "")
    except ValueError:
        code = None
    response = error_response(
        ProxyError(code=code, http_status=exc.status_code, message=str(exc.detail)),
        request,
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


class HandleBroadExceptionsMiddleware:
    """
    Handle any exception that goes unhandled by a more specific exception handler.

    Before the response has started the client gets a generic InternalError
    document. Once headers are on the wire the status can no longer change,
    so the response is abandoned without its final frame and the server
    closes the connection; the client sees a truncated body.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        except Exception as exc:
            request = Request(scope)
            if response_started:
                if isinstance(exc, (ClientDisconnect, OSError)):
                    logger.info(f"Client went away during {request.method} {request_target(request)}")
                else:
                    logger.error(
                        f"Aborting {request.method} {request_target(request)} after response started: {exc!r}"
                    )
                return
            if isinstance(exc, ProxyError):
                response = await handle_proxy_error(request, exc)
            else:
                logger.exception(f"Unhandled error for {request.method} {request_target(request)}")
                response = error_response(
                    ProxyError(message=GENERIC_ERROR_MESSAGE), request
                )
            await response(scope, receive, send)

