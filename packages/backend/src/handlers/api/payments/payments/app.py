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
from typing import Any, Dict, Optional

from shared.models.entitlement import (
    ActivationResult,
    EntitlementInternalError,
    PackageNotFoundError,
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
from shared.utils.auth import extract_user_id_from_event

from payments.models import ConfirmPaymentRequest, CreatePaymentIntentRequest

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


def get_caller_id() -> str:
    caller_id = extract_user_id_from_event(app.current_event.raw_event)
    if not caller_id:
        logger.error("No user_id found in JWT token")
        raise UnauthorizedError("Authentication required")
    return caller_id


def require_owner(caller_id: str, user_id: str) -> None:
    if caller_id != user_id:
        logger.warning(f"User {caller_id} attempted to pay for user {user_id}")
        raise ServiceError(403, "Access denied")


def activation_response(result: ActivationResult, payment_status: Optional[str] = None) -> Response:
    body = result.model_dump(mode="json", exclude={"account"})
    if payment_status is not None:
        body["payment_status"] = payment_status
    return Response(
        status_code=200 if result.success else 400,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps(body),
    )


@app.post("/payments/create-payment-intent")
def create_payment_intent() -> Any:
    """
    Create a Stripe PaymentIntent for the package price, or activate directly when the package is free
    Expected body: {"package_id": "...", "user_id": "...", "amount": 9.99, "currency": "usd"}
    """
    caller_id = get_caller_id()
    try:
        request = CreatePaymentIntentRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")
    require_owner(caller_id, request.user_id)

    try:
        package = PackageStore(PACKAGES_TABLE_NAME).get(request.package_id)
    except PackageNotFoundError:
        raise NotFoundError(f"Package {request.package_id} not found")
    except EntitlementInternalError as exc:
        logger.error(f"Error reading package {request.package_id}: {str(exc)}")
        raise InternalServerError("Failed to read package")

    if request.amount is not None and round(request.amount, 2) != round(package.price, 2):
        logger.warning(
            f"User {request.user_id} sent amount {request.amount} for package "
            f"{package.package_id} priced {package.price}"
        )
        raise BadRequestError("Amount does not match the package price")

    if package.price == 0:
        logger.info(f"Free package {request.package_id} requested by user {request.user_id}")
        try:
            result = get_entitlement_service().activate(request.user_id, request.package_id)
        except EntitlementInternalError as exc:
            logger.error(f"Free activation failed for {request.user_id}: {str(exc)}")
            raise InternalServerError(str(exc))
        return activation_response(result)

    try:
        intent = StripePaymentGateway().create_payment_intent(
            amount=package.price,
            package_id=request.package_id,
            user_id=request.user_id,
            currency=request.currency,
        )
    except PaymentGatewayError as exc:
        raise InternalServerError(str(exc))

    return {**intent, "is_free": False}


@app.post("/payments/confirm-payment")
def confirm_payment() -> Response:
    """
    Activate the package paid for by a PaymentIntent
    Expected body: {"payment_intent_id": "pi_xxx"}
    """
    caller_id = get_caller_id()
    try:
        request = ConfirmPaymentRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    try:
        payment = StripePaymentGateway().retrieve_payment(request.payment_intent_id)
    except PaymentGatewayError as exc:
        raise InternalServerError(str(exc))

    logger.info(f"Payment intent {payment.payment_id} status: {payment.status}")
    if not payment.package_id or not payment.user_id:
        raise BadRequestError("Missing package_id or user_id in payment metadata")
    require_owner(caller_id, payment.user_id)

    try:
        result = get_entitlement_service().activate(
            payment.user_id, payment.package_id, payment=payment
        )
    except EntitlementInternalError as exc:
        logger.error(f"Paid activation failed for {payment.user_id}: {str(exc)}")
        raise InternalServerError(str(exc))

    return activation_response(result, payment_status=payment.status)


@app.get("/payments/payment-status/<payment_intent_id>")
def get_payment_status(payment_intent_id: str) -> Dict[str, Any]:
    """
    Get the status of a PaymentIntent
    """
    caller_id = get_caller_id()
    try:
        payment = StripePaymentGateway().retrieve_payment(payment_intent_id)
    except PaymentGatewayError as exc:
        raise InternalServerError(str(exc))

    if payment.user_id:
        require_owner(caller_id, payment.user_id)

    return {
        "status": payment.status,
        "amount": payment.amount,
        "currency": payment.currency,
        "package_id": payment.package_id,
        "user_id": payment.user_id,
    }


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
