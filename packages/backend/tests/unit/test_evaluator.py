from datetime import datetime, timedelta, timezone

from shared.models.entitlement import (
    Account,
    ActionKind,
    DenialReason,
    EntitlementMode,
    LifecycleState,
    Package,
    SubscriptionStatus,
)
from shared.services.evaluator import (
    can_create_group,
    can_create_post,
    can_generate_prompt,
    evaluate,
    is_trial_mode,
    lifecycle_state,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
TRIAL_PACKAGE = Package(package_id="trial", trial_posts=3)


def paid_account(**overrides) -> Account:
    fields = dict(
        user_id="u1",
        subscription_status=SubscriptionStatus.ACTIVE,
        package_id="pro",
        subscription_date=NOW - timedelta(days=10),
        expiry_date=NOW + timedelta(days=20),
        remaining_posts=5,
        remaining_prompts=5,
        max_group=2,
    )
    fields.update(overrides)
    return Account(**fields)


def trial_account(**overrides) -> Account:
    fields = dict(
        user_id="u2",
        subscription_status=SubscriptionStatus.ACTIVE,
        package_id="trial",
        subscription_date=NOW - timedelta(days=1),
        expiry_date=None,
    )
    fields.update(overrides)
    return Account(**fields)


def test_inactive_account_has_no_subscription():
    account = paid_account(subscription_status=SubscriptionStatus.NONE)
    result = evaluate(account, NOW)
    assert not result.eligible
    assert result.reason == DenialReason.NO_SUBSCRIPTION
    assert lifecycle_state(account, NOW) == LifecycleState.NO_SUBSCRIPTION


def test_expired_wins_over_counters():
    account = paid_account(expiry_date=NOW - timedelta(seconds=1), remaining_posts=100)
    for action in ActionKind:
        assert evaluate(account, NOW, action).reason == DenialReason.EXPIRED
    assert lifecycle_state(account, NOW) == LifecycleState.PAID_EXPIRED


def test_expiry_exactly_now_is_not_expired():
    account = paid_account(expiry_date=NOW)
    assert evaluate(account, NOW).eligible


def test_paid_mode_uses_counters():
    account = paid_account(remaining_posts=0, remaining_prompts=1)
    post = evaluate(account, NOW, ActionKind.POST)
    prompt = evaluate(account, NOW, ActionKind.PROMPT)
    assert post.reason == DenialReason.QUOTA_EXHAUSTED
    assert prompt.eligible
    assert prompt.mode == EntitlementMode.PAID
    assert lifecycle_state(account, NOW) == LifecycleState.PAID_ACTIVE


def test_paid_mode_null_counter_is_unlimited():
    account = paid_account(remaining_posts=None, remaining_prompts=None)
    assert can_create_post(account, NOW)
    assert can_generate_prompt(account, NOW)


def test_trial_mode_when_no_expiry():
    account = trial_account()
    assert is_trial_mode(account)
    assert lifecycle_state(account, NOW) == LifecycleState.TRIAL_ACTIVE


def test_trial_mode_when_subscribed_after_expiry():
    account = trial_account(
        subscription_date=NOW - timedelta(days=1),
        expiry_date=NOW - timedelta(days=5),
    )
    assert is_trial_mode(account)
    assert lifecycle_state(account, NOW) == LifecycleState.TRIAL_EXPIRED


def test_trial_mode_requires_package_and_date():
    assert not is_trial_mode(trial_account(package_id=None))
    assert not is_trial_mode(trial_account(subscription_date=None))


def test_trial_limit():
    assert evaluate(trial_account(trial_posts_used=2), NOW, package=TRIAL_PACKAGE).eligible
    result = evaluate(trial_account(trial_posts_used=3), NOW, package=TRIAL_PACKAGE)
    assert result.reason == DenialReason.TRIAL_LIMIT_EXCEEDED


def test_trial_counts_prompts_against_trial_posts():
    result = evaluate(trial_account(trial_posts_used=3), NOW, ActionKind.PROMPT, package=TRIAL_PACKAGE)
    assert result.reason == DenialReason.TRIAL_LIMIT_EXCEEDED


def test_trial_missing_package_fails_open_by_default():
    result = evaluate(trial_account(trial_posts_used=50), NOW, package=None)
    assert result.eligible
    assert result.mode == EntitlementMode.TRIAL


def test_trial_missing_package_fails_closed_when_strict():
    result = evaluate(trial_account(), NOW, package=None, strict_trial_package=True)
    assert result.reason == DenialReason.PACKAGE_NOT_FOUND


def test_group_depends_on_max_group_in_both_modes():
    assert can_create_group(paid_account(max_group=1), NOW)
    assert not can_create_group(paid_account(max_group=0), NOW)
    assert evaluate(trial_account(max_group=1), NOW, ActionKind.GROUP).mode == EntitlementMode.TRIAL
    assert evaluate(trial_account(), NOW, ActionKind.GROUP).reason == DenialReason.QUOTA_EXHAUSTED
