"""
Entitlement Service

Entry point used by the API handlers: check eligibility, consume
allowances, activate packages and report account status.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger

from shared.models.entitlement import (
    Account,
    AccountNotFoundError,
    ActionKind,
    ActivationResult,
    ConsumeResult,
    DenialReason,
    EligibilityResult,
    LifecycleState,
    Package,
    Payment,
)
from shared.services.account_store import AccountStore
from shared.services.activation import ActivationService
from shared.services.audit_store import AuditStore
from shared.services.evaluator import evaluate, is_trial_mode, lifecycle_state
from shared.services.package_store import PackageStore
from shared.services.quota_ledger import QuotaLedger

logger = Logger()


def strict_trial_package_enabled() -> bool:
    return os.environ.get("ENTITLEMENTS_STRICT_TRIAL_PACKAGE", "false").lower() == "true"


class EntitlementService:
    """Service for checking and consuming user entitlements"""

    def __init__(
        self,
        account_store: Optional[AccountStore] = None,
        package_store: Optional[PackageStore] = None,
        audit_store: Optional[AuditStore] = None,
        strict_trial_package: Optional[bool] = None,
    ):
        self.account_store = account_store or AccountStore()
        self.package_store = package_store or PackageStore()
        self.audit_store = audit_store or AuditStore()
        self.strict_trial_package = (
            strict_trial_package_enabled() if strict_trial_package is None else strict_trial_package
        )
        self.ledger = QuotaLedger(self.account_store, self.package_store)
        self.activation = ActivationService(
            self.account_store, self.package_store, self.audit_store
        )

    def create_account(self, user_id: str) -> bool:
        """Provision an account with no subscription."""
        return self.account_store.create(Account(user_id=user_id))

    def _package_for(self, account: Account) -> Optional[Package]:
        if not is_trial_mode(account):
            return None
        return self.package_store.find(account.package_id)

    def check(
        self, user_id: str, action: ActionKind, now: Optional[datetime] = None
    ) -> EligibilityResult:
        """Evaluate whether a user may perform an action."""
        now = now or datetime.now(timezone.utc)
        try:
            account = self.account_store.get(user_id)
        except AccountNotFoundError:
            logger.warning(f"Eligibility check for unknown user {user_id}")
            return EligibilityResult.deny(DenialReason.USER_NOT_FOUND)

        result = evaluate(
            account,
            now,
            action,
            package=self._package_for(account),
            strict_trial_package=self.strict_trial_package,
        )
        if not result.eligible:
            logger.info(f"User {user_id} denied {action.value}: {result.reason.value}")
        return result

    def consume(
        self,
        user_id: str,
        action: ActionKind,
        action_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConsumeResult:
        """Evaluate, then consume one unit of the governing allowance.

        A retry carrying the action_id of an earlier successful consume is
        replayed before evaluation, so it succeeds even when that consume
        used the last unit.
        """
        now = now or datetime.now(timezone.utc)
        try:
            account = self.account_store.get(user_id)
        except AccountNotFoundError:
            return ConsumeResult(success=False, action=action, reason=DenialReason.USER_NOT_FOUND)

        if action_id:
            replay = self.ledger.replay(user_id, action_id, now)
            if replay:
                return replay

        eligibility = evaluate(
            account,
            now,
            action,
            package=self._package_for(account),
            strict_trial_package=self.strict_trial_package,
        )
        if not eligibility.eligible:
            return ConsumeResult(success=False, action=action, reason=eligibility.reason)

        return self.ledger.consume(account, eligibility.mode, action, action_id=action_id, now=now)

    def activate(
        self,
        user_id: str,
        package_id: str,
        payment: Optional[Payment] = None,
        **kwargs: Any,
    ) -> ActivationResult:
        return self.activation.activate(user_id, package_id, payment=payment, **kwargs)

    def get_status(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summarise an account for dashboards.

        Raises:
            AccountNotFoundError: unknown user
        """
        now = now or datetime.now(timezone.utc)
        account = self.account_store.get(user_id)
        package = self._package_for(account)

        capabilities = {}
        for action in ActionKind:
            result = evaluate(
                account,
                now,
                action,
                package=package,
                strict_trial_package=self.strict_trial_package,
            )
            capabilities[action.value] = {
                "eligible": result.eligible,
                "mode": result.mode.value if result.mode else None,
                "reason": result.reason.value if result.reason else None,
            }

        state = lifecycle_state(account, now)
        days_remaining = None
        if account.expiry_date is not None:
            days_remaining = max(0, (account.expiry_date - now).days)

        return {
            "user_id": account.user_id,
            "state": state.value,
            "subscription_status": account.subscription_status.value,
            "package_id": account.package_id,
            "subscription_date": account.subscription_date.isoformat() if account.subscription_date else None,
            "expiry_date": account.expiry_date.isoformat() if account.expiry_date else None,
            "days_remaining": days_remaining,
            "usage": {
                "remaining_posts": account.remaining_posts,
                "remaining_prompts": account.remaining_prompts,
                "trial_posts_used": account.trial_posts_used,
                "max_group": account.max_group,
                "storage": account.storage,
                "unlimited": state != LifecycleState.NO_SUBSCRIPTION and account.remaining_posts is None,
            },
            "trial_package_used": account.trial_package,
            "capabilities": capabilities,
        }
