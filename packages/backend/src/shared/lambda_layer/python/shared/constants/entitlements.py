"""
Centralized entitlement engine constants.

Defaults for package durations, retry bounds and payment status handling
live here so the evaluator, ledger and activation code share one source.
"""

# Package duration parsing
DEFAULT_DURATION = "1 year"
DEFAULT_YEAR_COUNT = 1
DEFAULT_MONTH_COUNT = 1
DEFAULT_DAY_COUNT = 30  # "days" without a number means a 30 day package

# Package catalog: packages ending within this window are "expiring soon"
EXPIRING_SOON_DAYS = 30

# Optimistic concurrency
MAX_OPTIMISTIC_RETRIES = 3

# Consume idempotency receipts are honoured for 24 hours
CONSUME_RECEIPT_TTL_SECONDS = 24 * 60 * 60

# Payments
DEFAULT_CURRENCY = "usd"
CONFIRMED_PAYMENT_STATUSES = ("succeeded", "requires_capture")
PAYMENT_STATUS_MESSAGES = {
    "requires_payment_method": "Payment requires a payment method",
    "requires_confirmation": "Payment requires confirmation",
    "processing": "Payment is being processed",
    "canceled": "Payment was canceled",
}
DEFAULT_PAYMENT_STATUS_MESSAGE = "Payment not completed"

# DynamoDB key layout
USER_KEY_PREFIX = "USER#"
ACCOUNT_SORT_KEY = "ACCOUNT"
RECEIPT_KEY_PREFIX = "CONSUME#"
APPLIED_PAYMENT_KEY_PREFIX = "APPLIED#"
PAYMENT_KEY_PREFIX = "PAYMENT#"
SUBSCRIPTION_KEY_PREFIX = "SUBSCRIPTION#"

# Default table names per environment
DEFAULT_ACCOUNTS_TABLE_NAME = "es-accounts-dev"
DEFAULT_PACKAGES_TABLE_NAME = "es-packages-dev"
DEFAULT_AUDIT_TABLE_NAME = "es-audit-dev"
