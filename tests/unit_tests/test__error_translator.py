from datetime import datetime, timezone
from types import SimpleNamespace

from s3_gateway.errors import ProxyError, translate

OCCURRED_AT = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test__translate__no_such_key():
    err = ProxyError(
        code="NoSuchKey",
        http_status=404,
        message="The specified key does not exist.",
        occurred_at=OCCURRED_AT,
    )

    translated = translate(err, "/missing.txt", "GET")

    assert translated.http_status == 404
    assert translated.body == (
        '<?xml version="1.0"?>\n'
        '<error time="2024-01-02T03:04:05+00:00" code="NoSuchKey" statusCode="404" '
        'url="/missing.txt" method="GET">The specified key does not exist.</error>\n'
    )


def test__translate__escapes_attributes_and_text():
    err = ProxyError(code="AccessDenied", http_status=403, message='<script>alert("x")</script> & more')

    translated = translate(err, '/a"b<c>.txt?x=1&y=2', "GET")

    assert "<script>" not in translated.body
    assert "&lt;script&gt;" in translated.body
    assert "&amp; more" in translated.body
    assert '&lt;c&gt;.txt?x=1&amp;y=2' in translated.body
    assert '<c>' not in translated.body
    assert translated.body.rstrip().endswith("</error>")


def test__translate__defaults_for_missing_code_and_status():
    translated = translate(SimpleNamespace(message="boom"), "/x", "HEAD")

    assert translated.http_status == 500
    assert 'code="InternalError"' in translated.body
    assert 'statusCode="500"' in translated.body
    assert 'method="HEAD"' in translated.body


def test__translate__accepts_status_code_attribute():
    translated = translate(SimpleNamespace(code="SlowDown", status_code=503, message=""), "/x", "GET")

    assert translated.http_status == 503


def test__translate__out_of_range_status_defaults_to_500():
    translated = translate(SimpleNamespace(code="Weird", http_status=700, message="?"), "/x", "GET")

    assert translated.http_status == 500
    assert 'statusCode="500"' in translated.body


def test__proxy_error__invariants():
    err = ProxyError(code="", http_status=42)

    assert err.code == "InternalError"
    assert err.http_status == 500
    assert err.occurred_at.tzinfo is not None


def test__proxy_error__service_unavailable():
    err = ProxyError.service_unavailable("not ready", request_url="/a", request_method="GET")

    assert (err.code, err.http_status, err.request_url) == ("ServiceUnavailable", 503, "/a")
