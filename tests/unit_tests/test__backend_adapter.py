import asyncio

import pytest
from botocore.exceptions import ClientError

from s3_gateway.adapters.storage import BackendState, InboundRequest, S3Backend, filter_response_headers
from s3_gateway.errors import ProxyError
from tests.consts import TEST_REGION

TEST_KEY = "docs/readme.txt"
TEST_CONTENT = b"Hello, world!"


@pytest.fixture
def uploaded(mocked_aws):
    mocked_aws.put_object(Bucket="some-bucket", Key=TEST_KEY, Body=TEST_CONTENT, ContentType="text/plain")
    return TEST_KEY


def get_request(path: str, **headers) -> InboundRequest:
    return InboundRequest(method="GET", path=path, headers=headers)


async def read_all(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


async def test__init__reaches_ready_and_emits_once(backend: S3Backend):
    events = []
    backend.on("ready", lambda: events.append("ready"))
    backend.on("error", lambda error: events.append("error"))

    first, second = await asyncio.gather(backend.init(), backend.init())
    third = await backend.init()

    assert first.ready and second.ready and third.ready
    assert backend.state is BackendState.READY
    assert events == ["ready"]


async def test__init__missing_bucket_fails(mocked_aws):
    backend = S3Backend(bucket="no-such-bucket", region_name=TEST_REGION)
    errors = []
    backend.on("error", errors.append)

    result = await backend.init()

    assert not result.ready
    assert backend.state is BackendState.ERROR
    assert result.error.http_status == 404
    assert result.error.code == "NotFound"
    assert errors == [result.error]


async def test__on__unknown_event(backend: S3Backend):
    with pytest.raises(ValueError):
        backend.on("finish", lambda: None)


async def test__get__before_init_is_unavailable(backend: S3Backend, uploaded):
    with pytest.raises(ProxyError) as exc_info:
        await backend.get(get_request(f"/{uploaded}"))

    assert exc_info.value.http_status == 503
    assert exc_info.value.code == "ServiceUnavailable"
    assert exc_info.value.request_url == f"/{uploaded}"


async def test__get__streams_object_in_chunks(ready_backend: S3Backend, uploaded):
    stream = await ready_backend.get(get_request(f"/{uploaded}"))

    assert stream.status_code == 200
    assert stream.headers["content-type"] == "text/plain"
    assert stream.headers["content-length"] == str(len(TEST_CONTENT))
    assert ready_backend.open_streams == 1

    chunks = [chunk async for chunk in stream]

    assert b"".join(chunks) == TEST_CONTENT
    assert max(len(chunk) for chunk in chunks) <= ready_backend.chunk_size
    assert stream.closed
    assert ready_backend.open_streams == 0


async def test__get__stream_can_only_be_consumed_once(ready_backend: S3Backend, uploaded):
    stream = await ready_backend.get(get_request(f"/{uploaded}"))
    await read_all(stream)

    with pytest.raises(RuntimeError):
        await read_all(stream)


async def test__get__aclose_releases_unread_stream(ready_backend: S3Backend, uploaded):
    stream = await ready_backend.get(get_request(f"/{uploaded}"))

    await stream.aclose()
    await stream.aclose()

    assert ready_backend.open_streams == 0


async def test__get__missing_object(ready_backend: S3Backend):
    with pytest.raises(ProxyError) as exc_info:
        await ready_backend.get(get_request("/missing.txt"))

    assert exc_info.value.code == "NoSuchKey"
    assert exc_info.value.http_status == 404
    assert exc_info.value.request_method == "GET"
    assert ready_backend.open_streams == 0


async def test__get__range(ready_backend: S3Backend, uploaded):
    stream = await ready_backend.get(get_request(f"/{uploaded}", Range="bytes=0-4"))

    assert stream.status_code == 206
    assert stream.headers["content-range"].startswith("bytes 0-4/")
    assert await read_all(stream) == TEST_CONTENT[:5]


async def test__get__invalid_conditional_date_is_ignored(ready_backend: S3Backend, uploaded):
    stream = await ready_backend.get(get_request(f"/{uploaded}", **{"If-Modified-Since": "yesterday-ish"}))

    assert stream.status_code == 200
    assert await read_all(stream) == TEST_CONTENT


async def test__get__query_string_kept_on_error(ready_backend: S3Backend):
    request = InboundRequest(method="GET", path="/missing.txt", query="v=1")

    with pytest.raises(ProxyError) as exc_info:
        await ready_backend.get(request)

    assert exc_info.value.request_url == "/missing.txt?v=1"


async def test__head__returns_metadata(ready_backend: S3Backend, uploaded):
    response = await ready_backend.head(InboundRequest(method="HEAD", path=f"/{uploaded}"))

    assert response.status_code == 200
    assert response.headers["content-length"] == str(len(TEST_CONTENT))
    assert "etag" in response.headers
    assert ready_backend.open_streams == 0


async def test__head__missing_object(ready_backend: S3Backend):
    with pytest.raises(ProxyError) as exc_info:
        await ready_backend.head(InboundRequest(method="HEAD", path="/missing.txt"))

    assert exc_info.value.http_status == 404
    assert exc_info.value.code == "NotFound"


async def test__health_check__relays_head_bucket(ready_backend: S3Backend):
    stream = await ready_backend.health_check()

    assert stream.status_code == 200
    assert await read_all(stream) == b""
    assert ready_backend.open_streams == 0


async def test__close__rejects_later_calls(ready_backend: S3Backend, uploaded):
    await ready_backend.close()
    await ready_backend.close()

    assert ready_backend.state is BackendState.CLOSED
    with pytest.raises(ProxyError) as exc_info:
        await ready_backend.head(InboundRequest(method="HEAD", path=f"/{uploaded}"))
    assert exc_info.value.http_status == 503


def test__version__names_client_library(backend: S3Backend):
    versions = backend.version()

    assert set(versions) == {"version", "boto3", "botocore"}


def test__filter_response_headers__drops_hop_by_hop():
    headers = filter_response_headers(
        {"Content-Type": "text/plain", "Connection": "keep-alive", "Transfer-Encoding": "chunked", "ETag": '"abc"'}
    )

    assert headers == {"content-type": "text/plain", "etag": '"abc"'}


def test__inbound_request__key_and_header_lookup():
    request = InboundRequest(method="GET", path="/a/b c.txt", headers={"Range": "bytes=0-1"})

    assert request.key == "a/b c.txt"
    assert request.header("range") == "bytes=0-1"
    assert request.header("if-match") is None


def test__proxy_error__keeps_validators_from_not_modified(backend: S3Backend):
    exc = ClientError(
        {
            "Error": {"Code": "304", "Message": "Not Modified"},
            "ResponseMetadata": {
                "HTTPStatusCode": 304,
                "HTTPHeaders": {"etag": '"abc"', "last-modified": "Mon, 01 Jan 2024 00:00:00 GMT", "connection": "keep-alive"},
            },
        },
        "GetObject",
    )

    error = backend._proxy_error(exc, get_request("/cached.txt"))

    assert error.http_status == 304
    assert error.code == "NotModified"
    assert error.headers == {"etag": '"abc"', "last-modified": "Mon, 01 Jan 2024 00:00:00 GMT"}
