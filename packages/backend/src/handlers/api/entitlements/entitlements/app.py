import json
from aws_lambda_powertools import Logger
from aws_lambda_powertools.event_handler import APIGatewayRestResolver, Response, content_types
from aws_lambda_powertools.event_handler.api_gateway import CORSConfig
from aws_lambda_powertools.event_handler.exceptions import (
    BadRequestError,
    InternalServerError,
    NotFoundError,
    ServiceError,
    UnauthorizedError,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError
from typing import Any, Dict

from shared.models.entitlement import (
    AccountNotFoundError,
    ActionKind,
    EntitlementInternalError,
)
from shared.services.account_store import AccountStore
from shared.services.audit_store import AuditStore
from shared.services.aws import (
    get_accounts_table_name,
    get_audit_table_name,
    get_packages_table_name,
)
from shared.services.entitlement_service import EntitlementService
from shared.services.package_store import PackageStore
from shared.services.payment_gateway import PaymentGatewayError, StripePaymentGateway
from shared.utils.auth import extract_user_id_from_event, validate_user_access

from entitlements.models import ActivateRequest, ConsumeRequest

# Initialize the logger
logger = Logger()

# Retrieve environment variables
ACCOUNTS_TABLE_NAME = get_accounts_table_name()
PACKAGES_TABLE_NAME = get_packages_table_name()
AUDIT_TABLE_NAME = get_audit_table_name()

# Configure CORS
cors_config = CORSConfig(
    allow_origin="*",  # In production, specify your actual domain
)

# Initialize the APIGatewayRestResolver
app = APIGatewayRestResolver(cors=cors_config)


def get_entitlement_service() -> EntitlementService:
    return EntitlementService(
        account_store=AccountStore(ACCOUNTS_TABLE_NAME),
        package_store=PackageStore(PACKAGES_TABLE_NAME),
        audit_store=AuditStore(AUDIT_TABLE_NAME),
    )


def authorize(user_id: str) -> None:
    """Only the authenticated owner may act on an account."""
    raw_event = app.current_event.raw_event
    if not extract_user_id_from_event(raw_event):
        logger.error("No user_id found in JWT token")
        raise UnauthorizedError("Authentication required")
    if not validate_user_access(raw_event, user_id):
        raise ServiceError(403, "Access denied")


def json_response(status_code: int, body: Dict[str, Any]) -> Response:
    return Response(
        status_code=status_code,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps(body, default=str),
    )


def parse_action(value: str) -> ActionKind:
    try:
        return ActionKind(value)
    except ValueError:
        raise BadRequestError("Invalid action. Must be 'post', 'prompt' or 'group'")


@app.get("/entitlements/<user_id>")
def get_entitlements(user_id: str) -> Dict[str, Any]:
    """
    Get account state, usage and per-action capabilities
    """
    authorize(user_id)
    try:
        return get_entitlement_service().get_status(user_id)
    except AccountNotFoundError:
        raise NotFoundError(f"User {user_id} not found")
    except EntitlementInternalError as exc:
        logger.error(f"Error reading entitlements for {user_id}: {str(exc)}")
        raise InternalServerError("Failed to retrieve entitlements")


@app.post("/entitlements/<user_id>/check")
def check_entitlement(user_id: str) -> Response:
    """
    Check whether the user may perform an action
    Query: ?action=post|prompt|group
    """
    authorize(user_id)
    action = parse_action(
        app.current_event.get_query_string_value(name="action", default_value="post")
    )

    try:
        result = get_entitlement_service().check(user_id, action)
    except EntitlementInternalError as exc:
        logger.error(f"Error checking {action.value} for {user_id}: {str(exc)}")
        raise InternalServerError("Failed to check entitlement")

    if result.eligible:
        return json_response(200, {"eligible": True, "mode": result.mode.value})
    return json_response(403, {"eligible": False, "reason": result.reason.value})


@app.post("/entitlements/<user_id>/consume")
def consume_entitlement(user_id: str) -> Response:
    """
    Consume one unit of the allowance for an action
    Expected body: {"action": "post|prompt|group", "action_id": "optional-idempotency-key"}
    """
    authorize(user_id)
    try:
        request = ConsumeRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    try:
        result = get_entitlement_service().consume(
            user_id, request.action, action_id=request.action_id
        )
    except EntitlementInternalError as exc:
        logger.error(f"Error consuming {request.action.value} for {user_id}: {str(exc)}")
        raise InternalServerError("Failed to consume entitlement")

    body = result.model_dump(mode="json")
    return json_response(200 if result.success else 403, body)


@app.post("/entitlements/<user_id>/activate")
def activate_package(user_id: str) -> Response:
    """
    Activate a package, free when no payment_id is given
    Expected body: {"package_id": "pkg_xxx", "payment_id": "pi_xxx"}
    """
    authorize(user_id)
    try:
        request = ActivateRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    payment = None
    if request.payment_id:
        try:
            payment = StripePaymentGateway().retrieve_payment(request.payment_id)
        except PaymentGatewayError as exc:
            raise InternalServerError(str(exc))
        if payment.user_id != user_id:
            logger.warning(f"Payment {payment.payment_id} is not for user {user_id}")
            raise BadRequestError("Payment belongs to a different user")
        if payment.package_id and payment.package_id != request.package_id:
            logger.warning(
                f"Payment {payment.payment_id} is for package {payment.package_id}, "
                f"not {request.package_id}"
            )
            raise BadRequestError("Payment was made for a different package")

    try:
        result = get_entitlement_service().activate(user_id, request.package_id, payment=payment)
    except EntitlementInternalError as exc:
        logger.error(f"Activation failed for {user_id}: {str(exc)}")
        raise InternalServerError(str(exc))

    body = result.model_dump(mode="json", exclude={"account"})
    return json_response(200 if result.success else 400, body)


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
