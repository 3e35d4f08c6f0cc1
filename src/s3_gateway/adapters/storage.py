"""
S3 backend adapter.

Owns the single long-lived boto3 client for the gateway's bucket. Blocking
boto3 calls are run through Starlette's threadpool so the event loop keeps
serving other connections; object bodies are pulled one chunk at a time, so
a slow client slows the backend reads down with it.
"""

import asyncio
import http
import logging
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

import boto3
import botocore
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from s3_gateway import __version__
from s3_gateway.credentials import CredentialSet
from s3_gateway.errors import ProxyError, StreamInterruptedError
from s3_gateway.utils.decorators import log_backend_call

try:
    from mypy_boto3_s3 import S3Client
except ImportError:
    ...

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

# Request headers forwarded to S3, keyed by lowercase header name
FORWARDED_REQUEST_HEADERS = {
    "range": "Range",
    "if-match": "IfMatch",
    "if-none-match": "IfNoneMatch",
    "if-modified-since": "IfModifiedSince",
    "if-unmodified-since": "IfUnmodifiedSince",
}
DATE_PARAMS = {"IfModifiedSince", "IfUnmodifiedSince"}

# Response headers that describe the backend connection rather than the object
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "server",
    "date",
}

BACKEND_ERROR_MESSAGE = "Error communicating with the storage backend"


class BackendState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class InboundRequest:
    """Read-only view of the HTTP request handed to the backend."""

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    query: str = ""

    @property
    def key(self) -> str:
        """Object key: the request path without its leading slash."""
        return self.path[1:] if self.path.startswith("/") else self.path

    @property
    def url(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass(frozen=True)
class ObjectResponse:
    """Status and headers of a body-less backend response."""

    status_code: int
    headers: Dict[str, str]


@dataclass(frozen=True)
class InitResult:
    """Outcome of BaseBackend.init(): ready, or a terminal failure."""

    state: BackendState
    error: Optional[ProxyError] = None

    @property
    def ready(self) -> bool:
        return self.state is BackendState.READY


class ObjectStream:
    """
    An in-progress backend response: status, headers and a body that can be
    iterated once.

    The underlying connection is released when the body is exhausted, when
    iteration fails, or when aclose() is called, whichever happens first.
    """

    def __init__(
        self,
        status_code: int,
        headers: Dict[str, str],
        body: Any = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.status_code = status_code
        self.headers = headers
        self._body = body
        self._chunk_size = chunk_size
        self._on_close = on_close
        self._consumed = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("Object stream can only be consumed once")
        self._consumed = True
        if self._body is None or self._closed:
            self._release()
            return

        try:
            while True:
                chunk = await run_in_threadpool(self._body.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
        except (BotoCoreError, OSError) as e:
            self._release()
            raise StreamInterruptedError(f"Backend stream failed: {e}") from e
        self._release()

    async def aclose(self) -> None:
        self._release()

    def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._body is not None:
                self._body.close()
        finally:
            if self._on_close is not None:
                self._on_close()


class BaseBackend:
    """Base class for object-store backends (to be extended by specific implementations)"""

    state: BackendState = BackendState.UNINITIALIZED

    async def init(self) -> InitResult:
        raise NotImplementedError

    async def head(self, request: InboundRequest) -> ObjectResponse:
        raise NotImplementedError

    async def get(self, request: InboundRequest) -> ObjectStream:
        raise NotImplementedError

    async def health_check(self) -> ObjectStream:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    def version(self) -> Dict[str, str]:
        return {"version": __version__}

    @property
    def ready(self) -> bool:
        return self.state is BackendState.READY


def filter_response_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Drop hop-by-hop headers from a backend response."""
    return {
        name.lower(): str(value)
        for name, value in headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    }


def _status_code_name(status: int) -> Optional[str]:
    try:
        return http.HTTPStatus(status).phrase.replace(" ", "").replace("-", "")
    except ValueError:
        return None


class S3Backend(BaseBackend):
    """Backend adapter for a single S3 bucket."""

    def __init__(
        self,
        bucket: str,
        credentials: Optional[CredentialSet] = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        s3_client: Optional["S3Client"] = None,
    ):
        """
        :param bucket: Name of the bucket exposed by the gateway.
        :param credentials: Explicit credentials; None uses the SDK credential chain.
        :param region_name: Optional AWS region.
        :param endpoint_url: Optional S3-compatible endpoint.
        :param chunk_size: Bytes read from the backend per relayed chunk.
        :param s3_client: An optional boto3 S3 client. If not provided, one will be created.
        """
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.state = BackendState.UNINITIALIZED
        self._client = s3_client or self._build_client(credentials, region_name, endpoint_url)
        self._init_task: Optional[asyncio.Future] = None
        self._init_result: Optional[InitResult] = None
        self._listeners: Dict[str, List[Callable[..., Any]]] = {"ready": [], "error": []}
        self._open_streams = 0

        logger.info(f"S3Backend created for bucket: {bucket}")
        logger.debug(f"  Region: {region_name}")
        logger.debug(f"  Endpoint: {endpoint_url}")
        logger.debug(f"  Explicit credentials: {credentials is not None}")

    @staticmethod
    def _build_client(
        credentials: Optional[CredentialSet],
        region_name: Optional[str],
        endpoint_url: Optional[str],
    ) -> "S3Client":
        session_kwargs = credentials.as_client_kwargs() if credentials else {}
        if region_name:
            session_kwargs["region_name"] = region_name
        session = boto3.session.Session(**session_kwargs)
        return session.client(
            "s3",
            endpoint_url=endpoint_url,
            config=BotoConfig(retries={"mode": "standard"}),
        )

    # Lifecycle events

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        """Subscribe to 'ready' or 'error' lifecycle events."""
        if event not in self._listeners:
            raise ValueError(f"Unknown backend event: {event}")
        self._listeners[event].append(listener)

    def _emit(self, event: str, *args: Any) -> None:
        for listener in self._listeners[event]:
            listener(*args)

    async def init(self) -> InitResult:
        """
        Verify the bucket is reachable. Runs the check once; later calls
        return the first result.
        """
        if self._init_result is not None:
            return self._init_result
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        self._init_result = await asyncio.shield(self._init_task)
        return self._init_result

    async def _initialize(self) -> InitResult:
        self.state = BackendState.INITIALIZING
        logger.info(f"Checking access to bucket: {self.bucket}")
        try:
            await run_in_threadpool(self._client.head_bucket, Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            error = self._proxy_error(e)
            self.state = BackendState.ERROR
            logger.error(
                f"Failed to initialize backend for bucket {self.bucket}: {error.code} ({error.http_status})"
            )
            self._emit("error", error)
            return InitResult(state=BackendState.ERROR, error=error)

        self.state = BackendState.READY
        logger.info(f"Backend ready for bucket: {self.bucket}")
        self._emit("ready")
        return InitResult(state=BackendState.READY)

    async def close(self) -> None:
        if self.state is BackendState.CLOSED:
            return
        self.state = BackendState.CLOSED
        if self._open_streams:
            logger.warning(f"Closing backend with {self._open_streams} open stream(s)")
        self._client.close()
        logger.info(f"Backend closed for bucket: {self.bucket}")

    # Requests

    @log_backend_call("s3.head_object")
    async def head(self, request: InboundRequest) -> ObjectResponse:
        self._require_ready(request)
        params = self._object_params(request)
        try:
            response = await run_in_threadpool(self._client.head_object, **params)
        except (ClientError, BotoCoreError) as e:
            raise self._proxy_error(e, request) from e
        metadata = response.get("ResponseMetadata", {})
        return ObjectResponse(
            status_code=metadata.get("HTTPStatusCode", 200),
            headers=filter_response_headers(metadata.get("HTTPHeaders", {})),
        )

    @log_backend_call("s3.get_object")
    async def get(self, request: InboundRequest) -> ObjectStream:
        self._require_ready(request)
        params = self._object_params(request)
        try:
            response = await run_in_threadpool(self._client.get_object, **params)
        except (ClientError, BotoCoreError) as e:
            raise self._proxy_error(e, request) from e
        metadata = response.get("ResponseMetadata", {})
        return self._open_stream(
            status_code=metadata.get("HTTPStatusCode", 200),
            headers=filter_response_headers(metadata.get("HTTPHeaders", {})),
            body=response.get("Body"),
        )

    @log_backend_call("s3.head_bucket")
    async def health_check(self) -> ObjectStream:
        self._require_ready()
        try:
            response = await run_in_threadpool(self._client.head_bucket, Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise self._proxy_error(e) from e
        metadata = response.get("ResponseMetadata", {})
        return self._open_stream(
            status_code=metadata.get("HTTPStatusCode", 200),
            headers=filter_response_headers(metadata.get("HTTPHeaders", {})),
        )

    def version(self) -> Dict[str, str]:
        return {
            "version": __version__,
            "boto3": boto3.__version__,
            "botocore": botocore.__version__,
        }

    @property
    def open_streams(self) -> int:
        """Number of object streams handed out and not yet released."""
        return self._open_streams

    # Helpers

    def _require_ready(self, request: Optional[InboundRequest] = None) -> None:
        if self.state is not BackendState.READY:
            raise ProxyError.service_unavailable(
                f"Backend for bucket {self.bucket} is {self.state.value}",
                request_url=request.url if request else "",
                request_method=request.method if request else "",
            )

    def _object_params(self, request: InboundRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": request.key}
        for header, param in FORWARDED_REQUEST_HEADERS.items():
            value = request.header(header)
            if not value:
                continue
            if param in DATE_PARAMS:
                try:
                    value = parsedate_to_datetime(value)
                except (TypeError, ValueError, IndexError):
                    # An unparseable validator is ignored, as HTTP requires
                    logger.debug(f"Ignoring invalid {header} header: {value!r}")
                    continue
            params[param] = value
        return params

    def _open_stream(self, status_code: int, headers: Dict[str, str], body: Any = None) -> ObjectStream:
        self._open_streams += 1
        return ObjectStream(
            status_code=status_code,
            headers=headers,
            body=body,
            chunk_size=self.chunk_size,
            on_close=self._stream_closed,
        )

    def _stream_closed(self) -> None:
        self._open_streams -= 1

    def _proxy_error(self, exc: Exception, request: Optional[InboundRequest] = None) -> ProxyError:
        """Convert a botocore failure into a ProxyError."""
        code = None
        status = None
        message = None
        headers = None
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            metadata = exc.response.get("ResponseMetadata", {})
            status = metadata.get("HTTPStatusCode")
            headers = filter_response_headers(metadata.get("HTTPHeaders", {}))
            code = error.get("Code")
            message = error.get("Message")
            # HEAD responses have no body, so botocore reports the bare status
            if code and code.isdigit():
                status = status or int(code)
                code = _status_code_name(int(code))
            if not message and status:
                try:
                    message = http.HTTPStatus(status).phrase
                except ValueError:
                    message = None
        else:
            logger.warning(f"Backend request failed: {exc!r}")
            message = BACKEND_ERROR_MESSAGE

        return ProxyError(
            code=code,
            http_status=status,
            message=message,
            request_url=request.url if request else "",
            request_method=request.method if request else "",
            headers=headers,
        )
