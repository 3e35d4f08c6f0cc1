"""Credential source resolution for the S3 client.

Outside production a developer can drop the output of
``aws sts get-session-token --duration 900 > credentials.json`` next to the
process and the gateway will sign requests with those temporary keys. In
production the file is never read and boto3's default credential chain
(environment, shared config, instance/task metadata) is used instead.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class CredentialSet(BaseModel):
    """Explicit AWS credentials handed to the S3 client."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_key_id: str = Field(alias="AccessKeyId", min_length=1)
    secret_access_key: str = Field(alias="SecretAccessKey", min_length=1)
    session_token: Optional[str] = Field(default=None, alias="SessionToken")

    def as_client_kwargs(self) -> dict:
        """Keyword arguments accepted by ``boto3.session.Session``."""
        kwargs = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
        }
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs

    def __repr__(self) -> str:
        return f"CredentialSet(access_key_id={self.access_key_id!r}, secret_access_key='***')"


def resolve_credentials(
    is_production: bool, credentials_file: Optional[str] = None
) -> Optional[CredentialSet]:
    """
    Decide which credentials the S3 client should use.

    :param is_production: True when running a production deployment. Local
        credential files are never loaded in that case.
    :param credentials_file: Path to an STS ``get-session-token`` JSON document.
    :return: The credentials from the file, or None to use the SDK chain.
        Never raises.
    """
    if is_production:
        logger.info("Production mode: using AWS SDK credential chain")
        return None

    if not credentials_file:
        logger.info("No credentials file configured, using AWS SDK credential chain")
        return None

    path = Path(credentials_file)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
        credentials = CredentialSet.model_validate(document["Credentials"])
    except FileNotFoundError:
        logger.info(f"No credentials file at {path}, using AWS SDK credential chain")
        return None
    except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        # ValidationError and JSONDecodeError are both ValueError subclasses
        reason = "invalid fields" if isinstance(e, ValidationError) else type(e).__name__
        logger.info(f"Ignoring credentials file {path} ({reason}), using AWS SDK credential chain")
        return None

    logger.info(f"Development mode: using credentials from {path}")
    return credentials
