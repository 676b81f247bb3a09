from typing import Dict, Any
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from shared.models.entitlement import Account, EntitlementInternalError
from shared.services.account_store import AccountStore
from shared.services.aws import get_accounts_table_name

# Initialize the logger
logger = Logger()

ACCOUNTS_TABLE_NAME = get_accounts_table_name()


def extract_user_id(event: Dict[str, Any]) -> str:
    """Extract the Cognito sub from a post-confirmation event."""
    try:
        user_id = event["request"]["userAttributes"]["sub"]
    except KeyError as e:
        logger.error(f"Missing required user attribute: {e}")
        raise ValueError(f"Invalid Cognito event structure: missing {e}")

    logger.info(f"Processing post-confirmation for user: {user_id}")
    return user_id


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Cognito Post-Confirmation Lambda handler.

    Provisions an account with no subscription for every confirmed user.

    Input: Cognito Post-Confirmation trigger event
    Output: Same event (required by Cognito)
    """
    logger.info("Post-confirmation Lambda triggered", extra={
        "event_source": event.get("triggerSource", "unknown"),
        "user_pool_id": event.get("userPoolId", "unknown")
    })

    try:
        user_id = extract_user_id(event)
        created = AccountStore(ACCOUNTS_TABLE_NAME).create(Account(user_id=user_id))
        if created:
            logger.info(f"Provisioned account for user {user_id}")
        else:
            logger.info(f"Account for user {user_id} already provisioned")
    except (ValueError, EntitlementInternalError) as e:
        # Registration must complete even when provisioning fails
        logger.error(f"Post-confirmation failed but allowing registration to proceed: {e}")

    return event
