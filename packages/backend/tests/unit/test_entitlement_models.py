from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from shared.models.entitlement import (
    Account,
    ActionKind,
    EntitlementInternalError,
    Package,
    Payment,
    PaymentRecord,
    SubscriptionStatus,
)
from shared.services.activation import build_activation_fields, payment_status_message
from shared.services.payment_gateway import from_minor_units, to_minor_units


def test_package_parses_stored_strings():
    package = Package(
        package_id="pro",
        price=Decimal("9.99"),
        duration="",
        package_limit="25",
        trial_posts=None,
        storage="5",
        max_group="",
    )
    assert package.duration == "1 year"
    assert package.package_limit == 25
    assert package.trial_posts == 0
    assert package.storage == 5
    assert package.max_group == 0
    assert package.price == pytest.approx(9.99)


def test_package_limit_blank_is_unlimited_and_zero_stays_zero():
    assert Package(package_id="a", package_limit=" ").package_limit is None
    assert Package(package_id="b", package_limit=0).package_limit == 0


def test_package_rejects_negative_price():
    with pytest.raises(ValidationError):
        Package(package_id="bad", price=-1)


def test_account_from_dynamodb_item():
    account = Account.from_dynamodb_item(
        {
            "PK": "USER#u1",
            "SK": "ACCOUNT",
            "user_id": "u1",
            "subscription_status": "active",
            "subscription_date": "2024-01-01T00:00:00Z",
            "expiry_date": "2024-02-01T00:00:00",
            "remaining_posts": Decimal("4"),
            "remaining_prompts": None,
            "trial_posts_used": None,
            "version": Decimal("3"),
        }
    )
    assert account.subscription_status == SubscriptionStatus.ACTIVE
    assert account.subscription_date == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert account.expiry_date.tzinfo is not None
    assert account.remaining_posts == 4
    assert account.trial_posts_used == 0
    assert account.version == 3
    assert account.counter_for(ActionKind.POST) == 4
    assert account.counter_for(ActionKind.PROMPT) is None


def test_account_defaults_to_no_subscription():
    account = Account(user_id="u1", subscription_status=None)
    assert account.subscription_status == SubscriptionStatus.NONE
    assert account.trial_package is False


def test_payment_confirmation_statuses():
    assert Payment(payment_id="pi_1", status="succeeded").is_confirmed
    assert Payment(payment_id="pi_1", status="requires_capture").is_confirmed
    assert not Payment(payment_id="pi_1", status="processing").is_confirmed


def test_payment_status_messages():
    assert payment_status_message("canceled") == "Payment was canceled"
    assert payment_status_message("requires_payment_method") == "Payment requires a payment method"
    assert payment_status_message("something_new") == "Payment not completed"


def test_payment_record_item_uses_decimal():
    record = PaymentRecord(
        payment_id="pi_1", user_id="u1", package_id="pro", amount=19.5, currency="usd"
    )
    item = record.to_dynamodb_item(pk="USER#u1", sk="PAYMENT#pi_1")
    assert item["amount"] == Decimal("19.5")
    assert item["status"] == "completed"


def test_internal_error_carries_payment_id():
    error = EntitlementInternalError("Account update failed", payment_id="pi_9")
    assert error.payment_id == "pi_9"
    assert "pi_9" in str(error)


def test_build_activation_fields_free_and_paid():
    now = datetime(2024, 1, 31, tzinfo=timezone.utc)
    package = Package(package_id="pro", duration="1 month", package_limit=10, storage=2, max_group=1)

    free = build_activation_fields(package, now)
    assert free["trial_package"] is True
    assert "last_payment_id" not in free
    assert free["expiry_date"] == "2024-02-29T00:00:00+00:00"
    assert free["remaining_posts"] == free["remaining_prompts"] == 10
    assert free["trial_posts_used"] == 0

    paid = build_activation_fields(package, now, Payment(payment_id="pi_1", status="succeeded"))
    assert paid["last_payment_id"] == "pi_1"
    assert "trial_package" not in paid


def test_minor_units():
    assert to_minor_units(9.99) == 999
    assert from_minor_units(1999) == 19.99
    assert from_minor_units(None) == 0
