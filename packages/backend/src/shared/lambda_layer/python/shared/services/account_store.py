"""
Account Store for the entitlement engine.

Accounts live in a single DynamoDB table keyed by PK=USER#<user_id> and
SK=ACCOUNT. Every mutation is a conditional write so that check-then-act
sequences are atomic per account.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from shared.constants.entitlements import (
    ACCOUNT_SORT_KEY,
    APPLIED_PAYMENT_KEY_PREFIX,
    RECEIPT_KEY_PREFIX,
    USER_KEY_PREFIX,
)
from shared.models.entitlement import (
    Account,
    AccountNotFoundError,
    ConditionalWriteFailed,
    StoreUnavailableError,
)
from shared.services.aws import get_accounts_table_name, get_ddb_table

logger = Logger()

_CONDITION_FAILURES = ("ConditionalCheckFailedException", "TransactionCanceledException")


class AccountStore:
    """DynamoDB-backed storage for accounts and consume receipts"""

    def __init__(self, table_name: Optional[str] = None, table: Any = None):
        self.table_name = table_name or get_accounts_table_name()
        self._table = table

    @property
    def table(self):
        """Lazy load DynamoDB table."""
        if self._table is None:
            self._table = get_ddb_table(self.table_name)
        return self._table

    @staticmethod
    def _key(user_id: str, sort_key: str = ACCOUNT_SORT_KEY) -> Dict[str, str]:
        return {"PK": f"{USER_KEY_PREFIX}{user_id}", "SK": sort_key}

    def get(self, user_id: str) -> Account:
        """
        Read an account snapshot.

        Raises:
            AccountNotFoundError: no account item exists for the user
            StoreUnavailableError: DynamoDB failure
        """
        try:
            response = self.table.get_item(Key=self._key(user_id), ConsistentRead=True)
        except ClientError as e:
            logger.error(
                f"Error reading account for user {user_id}: {e.response['Error']['Message']}"
            )
            raise StoreUnavailableError(f"Failed to read account {user_id}") from e
        except BotoCoreError as e:
            logger.error(f"AWS connection error: {str(e)}")
            raise StoreUnavailableError(f"Failed to read account {user_id}") from e

        item = response.get("Item")
        if not item:
            raise AccountNotFoundError(user_id)
        return Account.from_dynamodb_item(item)

    def create(self, account: Account) -> bool:
        """
        Provision an account item unless one already exists.

        Returns:
            True if created, False if the user already had an account
        """
        item = {**self._key(account.user_id), **account.model_dump(mode="json")}
        try:
            self.table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.info(f"Account for user {account.user_id} already exists")
                return False
            logger.error(
                f"Error creating account for user {account.user_id}: {e.response['Error']['Message']}"
            )
            raise StoreUnavailableError(f"Failed to create account {account.user_id}") from e
        except BotoCoreError as e:
            logger.error(f"AWS connection error: {str(e)}")
            raise StoreUnavailableError(f"Failed to create account {account.user_id}") from e

        logger.info(f"Created account for user {account.user_id}")
        return True

    def get_receipt(self, user_id: str, action_id: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Return an unexpired consume receipt, if one exists."""
        try:
            response = self.table.get_item(
                Key=self._key(user_id, f"{RECEIPT_KEY_PREFIX}{action_id}"),
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading receipt {action_id} for user {user_id}: {str(e)}")
            raise StoreUnavailableError(f"Failed to read receipt {action_id}") from e

        item = response.get("Item")
        if not item or int(item.get("expires_at", 0)) < int(now.timestamp()):
            return None
        return item

    def consume_counter(
        self,
        user_id: str,
        counter: str,
        now: datetime,
        receipt: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """
        Decrement a counter by one if it is still above zero.

        Returns the new counter value, or None when written with a receipt.

        Raises:
            ConditionalWriteFailed: counter is zero, null, or the account is gone
        """
        attributes = self._update(
            user_id,
            update_expression="SET #counter = #counter - :one, updated_at = :ts",
            condition="attribute_exists(PK) AND #counter > :zero",
            names={"#counter": counter},
            values={":one": 1, ":zero": 0, ":ts": now.isoformat()},
            now=now,
            receipt=receipt,
        )
        if attributes is None:
            return None
        return int(attributes[counter])

    def touch_unlimited(
        self,
        user_id: str,
        counter: str,
        now: datetime,
        receipt: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record use of an unlimited counter without decrementing it.

        Raises:
            ConditionalWriteFailed: the counter became limited since it was read
        """
        self._update(
            user_id,
            update_expression="SET updated_at = :ts",
            condition=(
                "attribute_exists(PK) AND "
                "(attribute_not_exists(#counter) OR attribute_type(#counter, :null_type))"
            ),
            names={"#counter": counter},
            values={":null_type": "NULL", ":ts": now.isoformat()},
            now=now,
            receipt=receipt,
        )

    def increment_trial_posts(
        self,
        user_id: str,
        now: datetime,
        limit: Optional[int] = None,
        receipt: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """
        Increment trial_posts_used, capped at limit when the limit is known.

        Raises:
            ConditionalWriteFailed: the cap is reached or the account is gone
        """
        condition = "attribute_exists(PK)"
        values: Dict[str, Any] = {":one": 1, ":zero": 0, ":ts": now.isoformat()}
        if limit is not None:
            if limit <= 0:
                raise ConditionalWriteFailed(f"Trial limit is {limit} for user {user_id}")
            condition += " AND (attribute_not_exists(trial_posts_used) OR trial_posts_used < :limit)"
            values[":limit"] = limit

        attributes = self._update(
            user_id,
            update_expression=(
                "SET trial_posts_used = if_not_exists(trial_posts_used, :zero) + :one, "
                "updated_at = :ts"
            ),
            condition=condition,
            names=None,
            values=values,
            now=now,
            receipt=receipt,
        )
        if attributes is None:
            return None
        return int(attributes["trial_posts_used"])

    def payment_applied(self, user_id: str, payment_id: str) -> bool:
        """True once an activation for payment_id has been written to the account."""
        try:
            response = self.table.get_item(
                Key=self._key(user_id, f"{APPLIED_PAYMENT_KEY_PREFIX}{payment_id}"),
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading applied payment {payment_id} for user {user_id}: {str(e)}")
            raise StoreUnavailableError(f"Failed to read applied payment {payment_id}") from e
        return "Item" in response

    def apply_activation(
        self,
        user_id: str,
        fields: Dict[str, Any],
        expected_version: int,
        require_trial_unused: bool = False,
        payment_id: Optional[str] = None,
    ) -> Account:
        """
        Write all subscription and quota fields in one compare-and-swap.

        The write succeeds only if the stored version still equals
        expected_version (and, for free activations, the trial is unused).
        With a payment_id, an APPLIED#<payment_id> item is written in the same
        transaction and the whole write fails if that payment was applied before.

        Raises:
            ConditionalWriteFailed: version moved, trial already claimed or
                payment already applied
        """
        names: Dict[str, str] = {"#version": "version"}
        values: Dict[str, Any] = {
            ":expected_version": expected_version,
            ":next_version": expected_version + 1,
        }
        assignments = ["#version = :next_version"]
        for index, (name, value) in enumerate(fields.items()):
            names[f"#f{index}"] = name
            values[f":v{index}"] = value
            assignments.append(f"#f{index} = :v{index}")

        condition = (
            "attribute_exists(PK) AND "
            "(attribute_not_exists(#version) OR #version = :expected_version)"
        )
        if require_trial_unused:
            names["#trial"] = "trial_package"
            values[":false"] = False
            condition += " AND (attribute_not_exists(#trial) OR #trial = :false)"

        companion = None
        if payment_id:
            companion = {
                "Item": {
                    **self._key(user_id, f"{APPLIED_PAYMENT_KEY_PREFIX}{payment_id}"),
                    "payment_id": payment_id,
                    "package_id": fields.get("package_id"),
                    "applied_at": fields.get("updated_at"),
                },
                "ConditionExpression": "attribute_not_exists(SK)",
            }

        attributes = self._update(
            user_id,
            update_expression="SET " + ", ".join(assignments),
            condition=condition,
            names=names,
            values=values,
            companion=companion,
        )
        logger.info(f"Applied activation for user {user_id} at version {expected_version + 1}")
        if attributes is None:
            return self.get(user_id)
        return Account.from_dynamodb_item(attributes)

    def _update(
        self,
        user_id: str,
        update_expression: str,
        condition: str,
        names: Optional[Dict[str, str]],
        values: Dict[str, Any],
        now: Optional[datetime] = None,
        receipt: Optional[Dict[str, Any]] = None,
        companion: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Conditionally update the account item.

        A receipt or companion Put is written in the same transaction; in
        that case nothing is returned.
        """
        update: Dict[str, Any] = {
            "Key": self._key(user_id),
            "UpdateExpression": update_expression,
            "ConditionExpression": condition,
            "ExpressionAttributeValues": values,
        }
        if names:
            update["ExpressionAttributeNames"] = names

        if receipt is not None:
            companion = {
                "Item": {
                    **self._key(user_id, f"{RECEIPT_KEY_PREFIX}{receipt['action_id']}"),
                    **receipt,
                },
                "ConditionExpression": "attribute_not_exists(SK) OR expires_at < :now",
                "ExpressionAttributeValues": {":now": int(now.timestamp())},
            }

        try:
            if companion is None:
                response = self.table.update_item(ReturnValues="ALL_NEW", **update)
                return response.get("Attributes", {})

            self.table.meta.client.transact_write_items(
                TransactItems=[
                    {"Update": {"TableName": self.table.name, **update}},
                    {"Put": {"TableName": self.table.name, **companion}},
                ]
            )
            return None

        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code in _CONDITION_FAILURES:
                raise ConditionalWriteFailed(
                    f"Conditional update rejected for user {user_id}"
                ) from e
            logger.error(
                f"DynamoDB error updating account {user_id}: "
                f"{error_code} - {e.response['Error']['Message']}"
            )
            raise StoreUnavailableError(f"Failed to update account {user_id}") from e
        except BotoCoreError as e:
            logger.error(f"AWS connection error: {str(e)}")
            raise StoreUnavailableError(f"Failed to update account {user_id}") from e
