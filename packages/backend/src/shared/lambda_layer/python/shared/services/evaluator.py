"""
Subscription Evaluator

Pure classification of an account snapshot: lifecycle state, consumption
mode and per-action eligibility. Nothing here reads or writes storage.
"""

from datetime import datetime
from typing import Optional

from aws_lambda_powertools import Logger

from shared.models.entitlement import (
    Account,
    ActionKind,
    DenialReason,
    EligibilityResult,
    EntitlementMode,
    LifecycleState,
    Package,
    SubscriptionStatus,
)

logger = Logger()


def is_trial_mode(account: Account) -> bool:
    """
    Trial mode applies when the account has a subscription date and a
    package, and either never expires or was subscribed after its expiry.
    """
    return (
        account.subscription_date is not None
        and account.package_id is not None
        and (
            account.expiry_date is None
            or account.subscription_date > account.expiry_date
        )
    )


def is_expired(account: Account, now: datetime) -> bool:
    return account.expiry_date is not None and account.expiry_date < now


def lifecycle_state(account: Account, now: datetime) -> LifecycleState:
    """Classify an account into one of the five lifecycle states."""
    if account.subscription_status != SubscriptionStatus.ACTIVE:
        return LifecycleState.NO_SUBSCRIPTION
    trial = is_trial_mode(account)
    if is_expired(account, now):
        return LifecycleState.TRIAL_EXPIRED if trial else LifecycleState.PAID_EXPIRED
    return LifecycleState.TRIAL_ACTIVE if trial else LifecycleState.PAID_ACTIVE


def evaluate(
    account: Account,
    now: datetime,
    action: ActionKind = ActionKind.POST,
    package: Optional[Package] = None,
    strict_trial_package: bool = False,
) -> EligibilityResult:
    """
    Decide whether the account may perform an action right now.

    Args:
        account: Account snapshot
        now: Evaluation time (timezone aware)
        action: post, prompt or group
        package: The account's current package, needed for trial limits
        strict_trial_package: Deny trial actions when the package is missing
            instead of allowing them

    Returns:
        EligibilityResult with the governing mode, or the denial reason
    """
    if account.subscription_status != SubscriptionStatus.ACTIVE:
        return EligibilityResult.deny(DenialReason.NO_SUBSCRIPTION)

    if is_expired(account, now):
        return EligibilityResult.deny(DenialReason.EXPIRED)

    mode = EntitlementMode.TRIAL if is_trial_mode(account) else EntitlementMode.PAID

    if action == ActionKind.GROUP:
        if account.max_group > 0:
            return EligibilityResult.allow(mode)
        return EligibilityResult.deny(DenialReason.QUOTA_EXHAUSTED)

    if mode == EntitlementMode.TRIAL:
        if package is None:
            if strict_trial_package:
                return EligibilityResult.deny(DenialReason.PACKAGE_NOT_FOUND)
            logger.warning(
                f"Package {account.package_id} missing for trial user {account.user_id}, allowing"
            )
            return EligibilityResult.allow(mode)
        if account.trial_posts_used < package.trial_posts:
            return EligibilityResult.allow(mode)
        return EligibilityResult.deny(DenialReason.TRIAL_LIMIT_EXCEEDED)

    remaining = account.counter_for(action)
    if remaining is None or remaining > 0:
        return EligibilityResult.allow(mode)
    return EligibilityResult.deny(DenialReason.QUOTA_EXHAUSTED)


def can_create_post(account: Account, now: datetime, package: Optional[Package] = None) -> bool:
    return evaluate(account, now, ActionKind.POST, package).eligible


def can_generate_prompt(account: Account, now: datetime, package: Optional[Package] = None) -> bool:
    return evaluate(account, now, ActionKind.PROMPT, package).eligible


def can_create_group(account: Account, now: datetime) -> bool:
    return evaluate(account, now, ActionKind.GROUP).eligible
