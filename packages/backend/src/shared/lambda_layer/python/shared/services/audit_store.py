"""Append-only audit trail of payments and subscriptions."""
import uuid
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from shared.constants.entitlements import (
    PAYMENT_KEY_PREFIX,
    SUBSCRIPTION_KEY_PREFIX,
    USER_KEY_PREFIX,
)
from shared.models.entitlement import PaymentRecord, StoreUnavailableError, SubscriptionRecord
from shared.services.aws import get_audit_table_name, get_ddb_table

logger = Logger()


class AuditStore:
    """Service for writing payment and subscription audit records."""

    def __init__(self, table_name: Optional[str] = None, table: Any = None):
        self.table_name = table_name or get_audit_table_name()
        self._table = table

    @property
    def table(self):
        """Lazy load DynamoDB table."""
        if self._table is None:
            self._table = get_ddb_table(self.table_name)
        return self._table

    def record_payment(self, record: PaymentRecord) -> bool:
        """
        Write a payment record once per payment_id.

        Returns:
            True if written, False if the payment was already recorded
        """
        item = record.to_dynamodb_item(
            pk=f"{USER_KEY_PREFIX}{record.user_id}",
            sk=f"{PAYMENT_KEY_PREFIX}{record.payment_id}",
        )
        try:
            self.table.put_item(Item=item, ConditionExpression="attribute_not_exists(SK)")
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.info(f"Payment {record.payment_id} already recorded")
                return False
            logger.error(
                f"Error recording payment {record.payment_id}: {e.response['Error']['Message']}"
            )
            raise StoreUnavailableError(f"Failed to record payment {record.payment_id}") from e
        except BotoCoreError as e:
            logger.error(f"AWS connection error: {str(e)}")
            raise StoreUnavailableError(f"Failed to record payment {record.payment_id}") from e

        logger.info(f"Recorded payment {record.payment_id} for user {record.user_id}")
        return True

    def record_subscription(self, record: SubscriptionRecord) -> bool:
        """
        Write a subscription record.

        Paid subscriptions are keyed by payment_id, so writing the same one
        twice is a no-op.

        Returns:
            True if written, False if the record already existed
        """
        if record.payment_id:
            sk = f"{SUBSCRIPTION_KEY_PREFIX}{record.payment_id}"
        else:
            sk = f"{SUBSCRIPTION_KEY_PREFIX}{record.created_at.isoformat()}#{uuid.uuid4()}"
        item = record.to_dynamodb_item(pk=f"{USER_KEY_PREFIX}{record.user_id}", sk=sk)
        try:
            self.table.put_item(Item=item, ConditionExpression="attribute_not_exists(SK)")
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.info(f"Subscription for payment {record.payment_id} already recorded")
                return False
            logger.error(f"Error recording subscription for user {record.user_id}: {str(e)}")
            raise StoreUnavailableError(
                f"Failed to record subscription for user {record.user_id}"
            ) from e
        except BotoCoreError as e:
            logger.error(f"AWS connection error: {str(e)}")
            raise StoreUnavailableError(
                f"Failed to record subscription for user {record.user_id}"
            ) from e
        logger.info(f"Recorded subscription to {record.package_id} for user {record.user_id}")
        return True

    def list_records(self, user_id: str, record_prefix: str = "") -> List[Dict[str, Any]]:
        """Return a user's audit records, optionally limited to one SK prefix."""
        key_condition = Key("PK").eq(f"{USER_KEY_PREFIX}{user_id}")
        if record_prefix:
            key_condition = key_condition & Key("SK").begins_with(record_prefix)
        try:
            response = self.table.query(KeyConditionExpression=key_condition)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing audit records for user {user_id}: {str(e)}")
            raise StoreUnavailableError(f"Failed to list audit records for {user_id}") from e
        return response.get("Items", [])
