import os
from functools import cache
from typing import Any, Optional

import boto3
from boto3.resources.base import ServiceResource
from botocore.config import Config

from shared.constants.entitlements import (
    DEFAULT_ACCOUNTS_TABLE_NAME,
    DEFAULT_AUDIT_TABLE_NAME,
    DEFAULT_PACKAGES_TABLE_NAME,
)

# Conditional writes are retried by the services themselves; botocore only
# retries throttling and transient network errors.
DYNAMODB_CLIENT_CONFIG = Config(
    retries={"max_attempts": 3, "mode": "standard"},
    connect_timeout=3,
    read_timeout=5,
)


def get_region_name() -> Optional[str]:
    """AWS_REGION if set; None lets boto3 resolve the region itself."""
    return os.getenv("AWS_REGION")


@cache
def get_dynamodb_resource() -> ServiceResource:
    """Shared DynamoDB resource, created once per Lambda container."""
    kwargs: dict = {"config": DYNAMODB_CLIENT_CONFIG}
    region = get_region_name()
    if region:
        kwargs["region_name"] = region
    return boto3.resource("dynamodb", **kwargs)


@cache
def get_ddb_table(table_name: str) -> Any:
    return get_dynamodb_resource().Table(table_name)


def _table_name(env_var: str, default: str) -> str:
    return os.environ.get(env_var) or default


def get_accounts_table_name() -> str:
    """Accounts and consume receipts."""
    return _table_name("ACCOUNTS_TABLE_NAME", DEFAULT_ACCOUNTS_TABLE_NAME)


def get_packages_table_name() -> str:
    return _table_name("PACKAGES_TABLE_NAME", DEFAULT_PACKAGES_TABLE_NAME)


def get_audit_table_name() -> str:
    """Append-only payment and subscription records."""
    return _table_name("AUDIT_TABLE_NAME", DEFAULT_AUDIT_TABLE_NAME)
