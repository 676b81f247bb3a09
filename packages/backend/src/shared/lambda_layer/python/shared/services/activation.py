"""
Activation Procedure

Binds a package to an account after a free claim or a confirmed payment.
This is the only writer of subscription state and the only path that
refills quotas.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger

from shared.constants.entitlements import (
    DEFAULT_CURRENCY,
    DEFAULT_PAYMENT_STATUS_MESSAGE,
    MAX_OPTIMISTIC_RETRIES,
    PAYMENT_STATUS_MESSAGES,
)
from shared.models.entitlement import (
    Account,
    AccountNotFoundError,
    ActivationResult,
    ConditionalWriteFailed,
    DenialReason,
    EntitlementInternalError,
    Package,
    PackageNotFoundError,
    Payment,
    PaymentRecord,
    SubscriptionRecord,
    SubscriptionStatus,
)
from shared.services.account_store import AccountStore
from shared.services.audit_store import AuditStore
from shared.services.duration import compute_expiry
from shared.services.package_store import PackageStore

logger = Logger()


def build_activation_fields(
    package: Package,
    now: datetime,
    payment: Optional[Payment] = None,
) -> Dict[str, Any]:
    """
    Compute every account field an activation writes.

    Quota and subscription fields are produced together so they can be
    written in a single update.
    """
    expiry_date = compute_expiry(now, package.duration)
    fields: Dict[str, Any] = {
        "subscription_status": SubscriptionStatus.ACTIVE.value,
        "package_id": package.package_id,
        "subscription_date": now.isoformat(),
        "expiry_date": expiry_date.isoformat(),
        "remaining_posts": package.package_limit,
        "remaining_prompts": package.package_limit,
        "storage": package.storage,
        "max_group": package.max_group,
        "trial_posts_used": 0,
        "updated_at": now.isoformat(),
    }
    if payment is None:
        fields["trial_package"] = True
    else:
        fields["last_payment_id"] = payment.payment_id
    return fields


def payment_status_message(status: str) -> str:
    return PAYMENT_STATUS_MESSAGES.get(status, DEFAULT_PAYMENT_STATUS_MESSAGE)


class ActivationService:
    """Applies packages to accounts"""

    def __init__(
        self,
        account_store: AccountStore,
        package_store: PackageStore,
        audit_store: AuditStore,
        max_retries: int = MAX_OPTIMISTIC_RETRIES,
    ):
        self.account_store = account_store
        self.package_store = package_store
        self.audit_store = audit_store
        self.max_retries = max_retries

    def activate(
        self,
        user_id: str,
        package_id: str,
        payment: Optional[Payment] = None,
        currency: str = DEFAULT_CURRENCY,
        now: Optional[datetime] = None,
    ) -> ActivationResult:
        """
        Activate a package for a user.

        Args:
            user_id: Target account
            package_id: Package being purchased or claimed
            payment: Confirmed payment, or None for a free/trial claim
            currency: Currency recorded for free claims
            now: Activation time, defaults to UTC now

        Returns:
            ActivationResult describing the outcome

        Raises:
            EntitlementInternalError: the account could not be updated after a
                payment was recorded; payment_id is set for reconciliation
        """
        now = now or datetime.now(timezone.utc)
        is_free = payment is None
        payment_id = None if is_free else payment.payment_id

        if payment is not None and not payment.is_confirmed:
            logger.warning(f"Payment {payment_id} not confirmed: {payment.status}")
            return ActivationResult(
                success=False,
                reason=DenialReason.PAYMENT_NOT_COMPLETED,
                message=payment_status_message(payment.status),
                payment_id=payment_id,
            )

        try:
            package = self.package_store.get(package_id)
        except PackageNotFoundError:
            logger.warning(f"Activation for user {user_id} with unknown package {package_id}")
            return ActivationResult(
                success=False,
                reason=DenialReason.PACKAGE_NOT_FOUND,
                is_free=is_free,
                payment_id=payment_id,
            )

        if is_free:
            return self._activate_free(user_id, package, currency, now)
        return self._activate_paid(user_id, package, payment, now)

    def _activate_free(
        self, user_id: str, package: Package, currency: str, now: datetime
    ) -> ActivationResult:
        for attempt in range(1, self.max_retries + 1):
            try:
                account = self.account_store.get(user_id)
            except AccountNotFoundError:
                return ActivationResult(
                    success=False, reason=DenialReason.USER_NOT_FOUND, is_free=True
                )

            if account.trial_package:
                logger.warning(f"User {user_id} already used the trial package")
                return ActivationResult(
                    success=False, reason=DenialReason.TRIAL_ALREADY_USED, is_free=True
                )

            fields = build_activation_fields(package, now)
            try:
                updated = self.account_store.apply_activation(
                    user_id, fields, expected_version=account.version, require_trial_unused=True
                )
            except ConditionalWriteFailed:
                logger.info(f"Free activation for user {user_id} raced, retrying (attempt {attempt})")
                continue

            try:
                self.audit_store.record_subscription(
                    SubscriptionRecord(
                        user_id=user_id,
                        package_id=package.package_id,
                        expiry_date=updated.expiry_date,
                        amount=0.0,
                        currency=currency,
                        created_at=now,
                    )
                )
            except EntitlementInternalError as e:
                # Account already holds the trial
                logger.error(
                    f"Trial package {package.package_id} activated for user {user_id} "
                    f"but the subscription record was not written: {str(e)}"
                )
            logger.info(f"Trial package {package.package_id} activated for user {user_id}")
            return ActivationResult(
                success=True,
                message="Trial package activated successfully",
                account=updated,
                expiry_date=updated.expiry_date,
                is_free=True,
            )

        logger.warning(f"Free activation for user {user_id} gave up after {self.max_retries} attempts")
        return ActivationResult(
            success=False, reason=DenialReason.PERSISTENCE_CONFLICT, is_free=True
        )

    def _activate_paid(
        self, user_id: str, package: Package, payment: Payment, now: datetime
    ) -> ActivationResult:
        payment_id = payment.payment_id
        try:
            self._record_audit(user_id, package, payment, now)
            return self._apply_paid(user_id, package, payment, now)
        except AccountNotFoundError:
            logger.error(f"Payment {payment_id} recorded but user {user_id} does not exist")
            return ActivationResult(
                success=False, reason=DenialReason.USER_NOT_FOUND, payment_id=payment_id
            )
        except EntitlementInternalError as e:
            if e.payment_id:
                raise
            logger.error(f"Activation failed for user {user_id} after payment {payment_id}: {str(e)}")
            raise EntitlementInternalError(
                f"Activation failed for user {user_id}", payment_id=payment_id
            ) from e

    def _record_audit(
        self, user_id: str, package: Package, payment: Payment, now: datetime
    ) -> None:
        """Write payment and subscription records before touching the account.

        Both writes are keyed by payment_id and attempted on every call, so a
        retry fills in whatever an earlier failed attempt left out.
        """
        self.audit_store.record_payment(
            PaymentRecord(
                payment_id=payment.payment_id,
                user_id=user_id,
                package_id=package.package_id,
                amount=payment.amount,
                currency=payment.currency,
                created_at=now,
            )
        )
        self.audit_store.record_subscription(
            SubscriptionRecord(
                user_id=user_id,
                package_id=package.package_id,
                payment_id=payment.payment_id,
                expiry_date=compute_expiry(now, package.duration),
                amount=payment.amount,
                currency=payment.currency,
                created_at=now,
            )
        )

    def _already_applied(self, account: Account, payment_id: str) -> ActivationResult:
        logger.info(f"Payment {payment_id} already applied for user {account.user_id}")
        return ActivationResult(
            success=True,
            message="Payment already applied",
            account=account,
            expiry_date=account.expiry_date,
            payment_id=payment_id,
            already_applied=True,
        )

    def _apply_paid(
        self, user_id: str, package: Package, payment: Payment, now: datetime
    ) -> ActivationResult:
        payment_id = payment.payment_id
        for attempt in range(1, self.max_retries + 1):
            account = self.account_store.get(user_id)

            if self.account_store.payment_applied(user_id, payment_id):
                return self._already_applied(account, payment_id)

            fields = build_activation_fields(package, now, payment)
            try:
                updated = self.account_store.apply_activation(
                    user_id, fields, expected_version=account.version, payment_id=payment_id
                )
            except ConditionalWriteFailed:
                logger.info(f"Activation for user {user_id} raced, retrying (attempt {attempt})")
                continue

            logger.info(
                f"Package {package.package_id} activated for user {user_id} via payment {payment_id}"
            )
            return ActivationResult(
                success=True,
                message="Payment confirmed and subscription created",
                account=updated,
                expiry_date=updated.expiry_date,
                payment_id=payment_id,
            )

        logger.error(
            f"Activation for user {user_id} gave up after {self.max_retries} attempts, "
            f"payment {payment_id} needs reconciliation"
        )
        raise EntitlementInternalError(
            f"Account update conflicted for user {user_id}", payment_id=payment_id
        )
