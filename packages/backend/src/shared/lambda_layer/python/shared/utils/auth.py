"""
Authentication utilities for extracting caller identity from API Gateway events.
"""
from typing import Dict, Any, Optional
from aws_lambda_powertools import Logger

logger = Logger()


def get_user_claims(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return the Cognito claims API Gateway placed in the request context.

    Args:
        event: API Gateway event dictionary

    Returns:
        Dictionary of JWT claims, empty when the request was not authorized
    """
    request_context = event.get("requestContext") or {}
    authorizer = request_context.get("authorizer") or {}
    return authorizer.get("claims") or {}


def extract_user_id_from_event(event: Dict[str, Any]) -> Optional[str]:
    """
    Extract user_id (the 'sub' claim) from an API Gateway event.

    Returns:
        User ID from the JWT token, or None if not found
    """
    user_id = get_user_claims(event).get("sub")
    if user_id:
        logger.debug(f"Successfully extracted user_id: {user_id}")
        return user_id
    logger.warning("No user_id found in JWT claims")
    return None


def validate_user_access(event: Dict[str, Any], required_user_id: str) -> bool:
    """
    Check that the authenticated caller is acting on its own account.

    Args:
        event: API Gateway event dictionary
        required_user_id: User the request targets

    Returns:
        True if the caller is authenticated as required_user_id
    """
    authenticated_user_id = extract_user_id_from_event(event)
    if not authenticated_user_id:
        return False

    if authenticated_user_id != required_user_id:
        logger.warning(
            f"User {authenticated_user_id} attempted to access resource for user {required_user_id}"
        )
        return False

    return True
