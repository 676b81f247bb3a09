from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from moto import mock_aws

from entitlements import app as entitlements_app
from shared.models.entitlement import ConditionalWriteFailed, Payment
from tests.fixtures.ddb import create_all_tables, put_account, put_package
from tests.fixtures.events import api_gateway_event, response_body


def call(method, path, user_id="u1", body=None, query=None):
    event = api_gateway_event(method, path, user_id=user_id, body=body, query=query)
    return entitlements_app.handler(event, None)


def active_paid_account(tables, user_id="u1", **overrides):
    now = datetime.now(timezone.utc)
    fields = dict(
        subscription_status="active",
        package_id="pro",
        subscription_date=now - timedelta(days=1),
        expiry_date=now + timedelta(days=30),
        remaining_posts=1,
        remaining_prompts=5,
        max_group=0,
    )
    fields.update(overrides)
    put_account(tables["accounts"], user_id, **fields)


@mock_aws
def test_check_allows_and_denies():
    tables = create_all_tables()
    active_paid_account(tables)

    allowed = call("POST", "/entitlements/u1/check", query={"action": "prompt"})
    denied = call("POST", "/entitlements/u1/check", query={"action": "group"})

    assert allowed["statusCode"] == 200
    assert response_body(allowed) == {"eligible": True, "mode": "paid"}
    assert denied["statusCode"] == 403
    assert response_body(denied) == {"eligible": False, "reason": "quota_exhausted"}


@mock_aws
def test_check_defaults_to_post_and_rejects_unknown_action():
    tables = create_all_tables()
    active_paid_account(tables)

    assert call("POST", "/entitlements/u1/check")["statusCode"] == 200
    assert call("POST", "/entitlements/u1/check", query={"action": "video"})["statusCode"] == 400


@mock_aws
def test_check_unknown_user_is_denied():
    create_all_tables()
    response = call("POST", "/entitlements/ghost/check", user_id="ghost")
    assert response["statusCode"] == 403
    assert response_body(response)["reason"] == "user_not_found"


@mock_aws
def test_requires_authentication_and_ownership():
    tables = create_all_tables()
    active_paid_account(tables)

    assert call("POST", "/entitlements/u1/check", user_id=None)["statusCode"] == 401
    assert call("POST", "/entitlements/u1/check", user_id="intruder")["statusCode"] == 403
    assert call("GET", "/entitlements/u1", user_id="intruder")["statusCode"] == 403


@mock_aws
def test_consume_until_exhausted():
    tables = create_all_tables()
    active_paid_account(tables)

    first = call("POST", "/entitlements/u1/consume", body={"action": "post", "action_id": "a1"})
    replay = call("POST", "/entitlements/u1/consume", body={"action": "post", "action_id": "a1"})
    second = call("POST", "/entitlements/u1/consume", body={"action": "post"})

    assert first["statusCode"] == 200
    assert response_body(first)["remaining"] == 0
    assert response_body(replay)["replayed"] is True
    assert second["statusCode"] == 403
    assert response_body(second)["reason"] == "quota_exhausted"


@mock_aws
def test_consume_rejects_invalid_body():
    tables = create_all_tables()
    active_paid_account(tables)

    response = call("POST", "/entitlements/u1/consume", body={"action": "teleport"})
    assert response["statusCode"] == 400


@mock_aws
def test_get_entitlements():
    tables = create_all_tables()
    active_paid_account(tables)

    response = call("GET", "/entitlements/u1")
    body = response_body(response)

    assert response["statusCode"] == 200
    assert body["state"] == "paid_active"
    assert body["usage"]["remaining_posts"] == 1
    assert body["capabilities"]["group"]["reason"] == "quota_exhausted"


@mock_aws
def test_get_entitlements_unknown_user():
    create_all_tables()
    assert call("GET", "/entitlements/ghost", user_id="ghost")["statusCode"] == 404


@mock_aws
def test_activate_free_package():
    tables = create_all_tables()
    put_package(tables["packages"], "starter", duration="14 days", package_limit=5)
    put_account(tables["accounts"], "u1")

    response = call("POST", "/entitlements/u1/activate", body={"package_id": "starter"})
    again = call("POST", "/entitlements/u1/activate", body={"package_id": "starter"})

    assert response["statusCode"] == 200
    body = response_body(response)
    assert body["success"] is True
    assert body["is_free"] is True
    assert "account" not in body
    assert again["statusCode"] == 400
    assert response_body(again)["reason"] == "trial_already_used"


@mock_aws
def test_activate_with_payment():
    tables = create_all_tables()
    put_package(tables["packages"], "pro", price="9.99", package_limit=20)
    put_account(tables["accounts"], "u1")
    payment = Payment(payment_id="pi_1", status="succeeded", amount=9.99, package_id="pro", user_id="u1")

    with patch.object(entitlements_app, "StripePaymentGateway") as gateway:
        gateway.return_value.retrieve_payment.return_value = payment
        response = call(
            "POST", "/entitlements/u1/activate", body={"package_id": "pro", "payment_id": "pi_1"}
        )

    assert response["statusCode"] == 200
    assert response_body(response)["payment_id"] == "pi_1"
    gateway.return_value.retrieve_payment.assert_called_once_with("pi_1")


@mock_aws
def test_activate_with_someone_elses_payment():
    tables = create_all_tables()
    put_package(tables["packages"], "pro", package_limit=20)
    put_account(tables["accounts"], "u1")
    payment = Payment(payment_id="pi_2", status="succeeded", amount=9.99, user_id="u2")

    with patch.object(entitlements_app, "StripePaymentGateway") as gateway:
        gateway.return_value.retrieve_payment.return_value = payment
        response = call(
            "POST", "/entitlements/u1/activate", body={"package_id": "pro", "payment_id": "pi_2"}
        )

    assert response["statusCode"] == 400
    assert tables["accounts"].get_item(Key={"PK": "USER#u1", "SK": "ACCOUNT"})["Item"][
        "subscription_status"
    ] == "none"


@mock_aws
def test_activate_reports_payment_id_on_internal_error():
    tables = create_all_tables()
    put_package(tables["packages"], "pro", package_limit=20)
    put_account(tables["accounts"], "u1")
    payment = Payment(payment_id="pi_3", status="succeeded", amount=9.99, user_id="u1")

    with patch.object(entitlements_app, "StripePaymentGateway") as gateway, patch(
        "shared.services.account_store.AccountStore.apply_activation",
        side_effect=ConditionalWriteFailed("raced"),
    ):
        gateway.return_value.retrieve_payment.return_value = payment
        response = call(
            "POST", "/entitlements/u1/activate", body={"package_id": "pro", "payment_id": "pi_3"}
        )

    assert response["statusCode"] == 500
    assert "pi_3" in response_body(response)["message"]


@mock_aws
def test_activate_rejects_payment_for_another_package():
    tables = create_all_tables()
    put_package(tables["packages"], "cheap", price="1.00", package_limit=1)
    put_package(tables["packages"], "premium", price="99.00", package_limit=1000)
    put_account(tables["accounts"], "u1")
    payment = Payment(
        payment_id="pi_cheap", status="succeeded", amount=1.0, package_id="cheap", user_id="u1"
    )

    with patch.object(entitlements_app, "StripePaymentGateway") as gateway:
        gateway.return_value.retrieve_payment.return_value = payment
        response = call(
            "POST",
            "/entitlements/u1/activate",
            body={"package_id": "premium", "payment_id": "pi_cheap"},
        )

    assert response["statusCode"] == 400
    item = tables["accounts"].get_item(Key={"PK": "USER#u1", "SK": "ACCOUNT"})["Item"]
    assert item["subscription_status"] == "none"
    assert "package_id" not in item


@mock_aws
def test_activate_rejects_payment_without_user_metadata():
    tables = create_all_tables()
    put_package(tables["packages"], "pro", package_limit=20)
    put_account(tables["accounts"], "u1")
    payment = Payment(payment_id="pi_anon", status="succeeded", amount=9.99, package_id="pro")

    with patch.object(entitlements_app, "StripePaymentGateway") as gateway:
        gateway.return_value.retrieve_payment.return_value = payment
        response = call(
            "POST", "/entitlements/u1/activate", body={"package_id": "pro", "payment_id": "pi_anon"}
        )

    assert response["statusCode"] == 400
