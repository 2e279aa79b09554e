"""
Configuration & Secrets
=======================

Function configuration comes from environment variables first and
falls back to a JSON secret in AWS Secrets Manager. The secret is
read at most once per execution context.
"""

import json
import os
from typing import Any
from functools import lru_cache

import boto3
from botocore.exceptions import ClientError
from aws_lambda_powertools import Logger

logger = Logger()

# Secret holding shared backend credentials
SECRET_NAME = os.environ.get("SECRETS_NAME", "expense-claims-secrets")

# Keys every function needs
EXPECTED_SECRETS = {
    "SUPABASE_URL": "Supabase project URL",
    "SUPABASE_SERVICE_ROLE_KEY": "Supabase service role key (full access)",
}

_secrets_client = None


def _get_secrets_client():
    global _secrets_client
    if _secrets_client is None:
        _secrets_client = boto3.client("secretsmanager")
    return _secrets_client


@lru_cache(maxsize=1)
def get_all_secrets() -> dict[str, Any]:
    """
    Load the backend secret as a dict.

    A secret that does not exist yields an empty dict, so functions
    configured purely through environment variables never need one.

    Raises:
        ClientError: Any other Secrets Manager failure
    """
    try:
        response = _get_secrets_client().get_secret_value(SecretId=SECRET_NAME)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        if error_code == "ResourceNotFoundException":
            logger.warning(f"Secret {SECRET_NAME} not found, using environment only")
            return {}
        logger.error(f"Failed to retrieve secrets: {error_code}")
        raise

    logger.info("Loaded configuration from Secrets Manager")
    return json.loads(response.get("SecretString") or "{}")


def get_secret(key: str, default: Any = None) -> Any:
    """
    Configuration value for `key`.

    The environment wins; Secrets Manager is only called for keys
    the environment does not set.
    """
    value = os.environ.get(key)
    if value:
        return value
    return get_all_secrets().get(key, default)


def clear_secrets_cache():
    get_all_secrets.cache_clear()


def validate_secrets() -> list[str]:
    """Expected keys that resolve to nothing."""
    missing = [key for key in EXPECTED_SECRETS if not get_secret(key)]
    if missing:
        logger.warning(f"Missing configuration: {missing}")
    return missing
