"""
Quota Ledger

Consumes allowances with per-account conditional writes so that concurrent
requests can never drive a counter below zero.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger

from shared.constants.entitlements import (
    CONSUME_RECEIPT_TTL_SECONDS,
    MAX_OPTIMISTIC_RETRIES,
)
from shared.models.entitlement import (
    Account,
    AccountNotFoundError,
    ActionKind,
    ConditionalWriteFailed,
    ConsumeResult,
    DenialReason,
    EntitlementMode,
)
from shared.services.account_store import AccountStore
from shared.services.package_store import PackageStore

logger = Logger()

COUNTER_FIELDS = {
    ActionKind.POST: "remaining_posts",
    ActionKind.PROMPT: "remaining_prompts",
    ActionKind.GROUP: "max_group",
}


class QuotaLedger:
    """Atomic decrement-on-use of account allowances"""

    def __init__(
        self,
        account_store: AccountStore,
        package_store: Optional[PackageStore] = None,
        max_retries: int = MAX_OPTIMISTIC_RETRIES,
        receipt_ttl_seconds: int = CONSUME_RECEIPT_TTL_SECONDS,
    ):
        self.account_store = account_store
        self.package_store = package_store
        self.max_retries = max_retries
        self.receipt_ttl_seconds = receipt_ttl_seconds

    def consume(
        self,
        account: Account,
        mode: EntitlementMode,
        action: ActionKind,
        action_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConsumeResult:
        """
        Use one unit of the allowance governing an action.

        Args:
            account: Account snapshot the caller evaluated
            mode: Mode returned by the evaluator
            action: post, prompt or group
            action_id: Caller supplied id; retries with the same id are
                replayed instead of consuming again
            now: Consume time, defaults to UTC now

        Returns:
            ConsumeResult; on denial the stored counter is unchanged
        """
        now = now or datetime.now(timezone.utc)
        user_id = account.user_id

        if action_id:
            replay = self.replay(user_id, action_id, now)
            if replay:
                return replay
        receipt = self._receipt(action_id, mode, action, now) if action_id else None

        trial_limit = self._trial_limit(account) if self._uses_trial_counter(mode, action) else None
        snapshot = account

        for attempt in range(1, self.max_retries + 1):
            try:
                remaining = self._apply(snapshot, mode, action, now, receipt, trial_limit)
            except ConditionalWriteFailed:
                if action_id:
                    replay = self.replay(user_id, action_id, now)
                    if replay:
                        return replay
                try:
                    current = self.account_store.get(user_id)
                except AccountNotFoundError:
                    logger.warning(f"Consume for unknown user {user_id}")
                    return ConsumeResult(
                        success=False, action=action, mode=mode, reason=DenialReason.USER_NOT_FOUND
                    )

                if self._could_succeed(current, mode, action, trial_limit):
                    logger.info(
                        f"Account {user_id} changed during consume, retrying (attempt {attempt})"
                    )
                    snapshot = current
                    continue

                reason = (
                    DenialReason.TRIAL_LIMIT_EXCEEDED
                    if self._uses_trial_counter(mode, action)
                    else DenialReason.QUOTA_EXHAUSTED
                )
                logger.warning(f"Consume of {action.value} denied for user {user_id}: {reason.value}")
                return ConsumeResult(success=False, action=action, mode=mode, reason=reason)

            if receipt is not None and remaining is None:
                remaining = self._remaining_after(user_id, mode, action, trial_limit)
            logger.info(f"Consumed {action.value} ({mode.value}) for user {user_id}")
            return ConsumeResult(success=True, action=action, mode=mode, remaining=remaining)

        logger.warning(f"Consume for user {user_id} gave up after {self.max_retries} attempts")
        return ConsumeResult(
            success=False, action=action, mode=mode, reason=DenialReason.PERSISTENCE_CONFLICT
        )

    @staticmethod
    def _uses_trial_counter(mode: EntitlementMode, action: ActionKind) -> bool:
        return mode == EntitlementMode.TRIAL and action != ActionKind.GROUP

    def _trial_limit(self, account: Account) -> Optional[int]:
        if self.package_store is None:
            return None
        package = self.package_store.find(account.package_id)
        return package.trial_posts if package else None

    def _apply(
        self,
        snapshot: Account,
        mode: EntitlementMode,
        action: ActionKind,
        now: datetime,
        receipt: Optional[Dict[str, Any]],
        trial_limit: Optional[int],
    ) -> Optional[int]:
        user_id = snapshot.user_id
        if self._uses_trial_counter(mode, action):
            used = self.account_store.increment_trial_posts(
                user_id, now, limit=trial_limit, receipt=receipt
            )
            if used is None or trial_limit is None:
                return None
            return trial_limit - used

        counter = COUNTER_FIELDS[action]
        if action != ActionKind.GROUP and snapshot.counter_for(action) is None:
            self.account_store.touch_unlimited(user_id, counter, now, receipt=receipt)
            return None
        return self.account_store.consume_counter(user_id, counter, now, receipt=receipt)

    def _could_succeed(
        self,
        current: Account,
        mode: EntitlementMode,
        action: ActionKind,
        trial_limit: Optional[int],
    ) -> bool:
        if self._uses_trial_counter(mode, action):
            return trial_limit is not None and current.trial_posts_used < trial_limit
        remaining = current.counter_for(action)
        return remaining is None or remaining > 0

    def _remaining_after(
        self,
        user_id: str,
        mode: EntitlementMode,
        action: ActionKind,
        trial_limit: Optional[int],
    ) -> Optional[int]:
        current = self.account_store.get(user_id)
        if self._uses_trial_counter(mode, action):
            return None if trial_limit is None else trial_limit - current.trial_posts_used
        return current.counter_for(action)

    def _receipt(
        self, action_id: str, mode: EntitlementMode, action: ActionKind, now: datetime
    ) -> Dict[str, Any]:
        return {
            "action_id": action_id,
            "action": action.value,
            "mode": mode.value,
            "created_at": now.isoformat(),
            "expires_at": int(now.timestamp()) + self.receipt_ttl_seconds,
        }

    def replay(self, user_id: str, action_id: str, now: datetime) -> Optional[ConsumeResult]:
        """Result of an earlier consume with the same action_id, if its receipt is live."""
        receipt = self.account_store.get_receipt(user_id, action_id, now)
        if not receipt:
            return None
        logger.info(f"Replaying consume {action_id} for user {user_id}")
        return ConsumeResult(
            success=True,
            action=ActionKind(receipt["action"]),
            mode=EntitlementMode(receipt["mode"]),
            replayed=True,
        )
