####################################
# --- Response schemas --- #
####################################

from pydantic import BaseModel


class VersionResponse(BaseModel):
    """Response model for `GET /version`."""
    version: str
    boto3: str | None = None
    botocore: str | None = None
    python: str
    timestamp: str


class BackendHealthFailure(BaseModel):
    """Body of a failed `GET /health/s3` probe."""
    status: str = "error"
    message: str
    code: str
    timestamp: str
