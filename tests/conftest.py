import pytest

from s3_gateway.config.settings import get_settings

pytest_plugins = [
    "tests.fixtures.s3_fixtures",
]


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real AWS account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    for name in (
        "BUCKET", "PORT", "HOST", "NODE_ENV", "DEPLOYMENT_MODE", "LOG_LEVEL",
        "CREDENTIALS_FILE", "NOTIFY_SOCKET", "AWS_REGION", "AWS_ENDPOINT_URL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
