"""Pipeline credentials sourced from the process environment.

Credentials are never part of a pipeline definition. They are read from
environment variables when the pipeline runs, and every secret value is
redacted from command lines before they are logged or printed.
"""

import os
import re
from collections.abc import Mapping

from pydantic import BaseModel, SecretStr

from pipeline_manager.exceptions import CredentialError
from pipeline_manager.logging_config import get_logger

logger = get_logger(__name__)

REDACTED = "****"

# Field name -> environment variable
ENVIRONMENT_VARIABLES = {
    "registry_username": "REGISTRY_USERNAME",
    "registry_password": "REGISTRY_PASSWORD",
    "aws_access_key_id": "AWS_ACCESS_KEY_ID",
    "aws_secret_access_key": "AWS_SECRET_ACCESS_KEY",
    "sonar_token": "SONAR_TOKEN",
}

SECRET_KEY_PATTERN = re.compile(r"(password|passwd|secret|token|access_key)", re.IGNORECASE)


class Credentials(BaseModel):
    """Credentials consumed by the pipeline stages."""

    registry_username: str | None = None
    registry_password: SecretStr | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: SecretStr | None = None
    sonar_token: SecretStr | None = None

    @classmethod
    def from_environment(cls, env: Mapping[str, str] | None = None) -> "Credentials":
        """Read credentials from environment variables.

        Empty values are treated as missing.
        """
        env = os.environ if env is None else env
        values = {}
        for field, variable in ENVIRONMENT_VARIABLES.items():
            value = env.get(variable, "")
            if value:
                values[field] = value
        logger.debug(f"Loaded credentials from environment: {sorted(values)}")
        return cls(**values)

    def get(self, field: str) -> str | None:
        """Return the plain value of a credential field, or None if unset."""
        value = getattr(self, field)
        if isinstance(value, SecretStr):
            return value.get_secret_value() or None
        return value or None

    def require(self, *fields: str) -> None:
        """Ensure the given credential fields are set.

        Raises:
            CredentialError: Listing every missing environment variable
        """
        missing = [ENVIRONMENT_VARIABLES[f] for f in fields if self.get(f) is None]
        if missing:
            raise CredentialError(
                f"Missing required credentials: {', '.join(missing)}",
                "Export them in the environment of the pipeline, for example from "
                "your CI server's credential store. Never put them in pipeline.yml.",
            )

    def secret_values(self) -> list[str]:
        """Return every non-empty secret value, longest first."""
        values = []
        for field in ENVIRONMENT_VARIABLES:
            if isinstance(getattr(self, field), SecretStr):
                value = self.get(field)
                if value:
                    values.append(value)
        return sorted(values, key=len, reverse=True)

    def redact(self, text: str) -> str:
        """Replace every secret value occurring in text."""
        for value in self.secret_values():
            text = text.replace(value, REDACTED)
        return text


def scan_for_literal_secrets(data: Mapping, prefix: str = "") -> list[str]:
    """Find keys that look like credentials and carry a literal value.

    Args:
        data: Parsed configuration mapping (nested mappings and lists are scanned)
        prefix: Dotted path of data within the document

    Returns:
        Dotted paths of offending keys
    """
    found = []
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            found.extend(scan_for_literal_secrets(value, path))
        elif isinstance(value, list):
            for i, item in enumerate(value):
                if isinstance(item, Mapping):
                    found.extend(scan_for_literal_secrets(item, f"{path}[{i}]"))
        elif SECRET_KEY_PATTERN.search(str(key)) and value not in (None, ""):
            found.append(path)
    return found
