import os

import pytest

# Set before any handler module reads its configuration at import
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_REGION"] = "us-east-1"
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "entitlements-test")

from shared.services.aws import get_ddb_table, get_dynamodb_resource  # noqa: E402


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Drop cached boto3 resources so each test talks to its own moto backend."""
    get_ddb_table.cache_clear()
    get_dynamodb_resource.cache_clear()
    yield
    get_ddb_table.cache_clear()
    get_dynamodb_resource.cache_clear()
