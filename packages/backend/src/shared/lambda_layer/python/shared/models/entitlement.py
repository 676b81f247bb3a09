from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional

from shared.constants.entitlements import (
    CONFIRMED_PAYMENT_STATUSES,
    DEFAULT_CURRENCY,
    DEFAULT_DURATION,
)


class EntitlementError(Exception):
    """Base exception for entitlement engine errors"""

    pass


class AccountNotFoundError(EntitlementError):
    """Raised when no account exists for a user"""

    def __init__(self, user_id: str):
        super().__init__(f"Account not found for user {user_id}.")
        self.user_id = user_id


class PackageNotFoundError(EntitlementError):
    """Raised when a package id does not resolve to a package"""

    def __init__(self, package_id: str):
        super().__init__(f"Package {package_id} not found.")
        self.package_id = package_id


class ConditionalWriteFailed(EntitlementError):
    """Raised by stores when a conditional write is rejected by DynamoDB"""

    pass


class EntitlementInternalError(EntitlementError):
    """System failure; callers should retry with backoff.

    When raised after a payment has been recorded, payment_id identifies the
    payment that needs manual reconciliation.
    """

    def __init__(self, message: str, payment_id: Optional[str] = None):
        if payment_id:
            message = f"{message} (payment {payment_id})"
        super().__init__(message)
        self.payment_id = payment_id


class StoreUnavailableError(EntitlementInternalError):
    """DynamoDB could not be reached or returned an unexpected error"""

    pass


def ensure_utc(value: Optional[datetime | str]) -> Optional[datetime]:
    """Parse ISO strings and make naive datetimes UTC aware."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionStatus(str, Enum):
    """Account subscription status"""
    NONE = "none"
    ACTIVE = "active"


class ActionKind(str, Enum):
    """Actions gated by the entitlement engine"""
    POST = "post"
    PROMPT = "prompt"
    GROUP = "group"


class EntitlementMode(str, Enum):
    """Consumption path selected by the evaluator"""
    TRIAL = "trial"
    PAID = "paid"


class LifecycleState(str, Enum):
    NO_SUBSCRIPTION = "no_subscription"
    TRIAL_ACTIVE = "trial_active"
    TRIAL_EXPIRED = "trial_expired"
    PAID_ACTIVE = "paid_active"
    PAID_EXPIRED = "paid_expired"


class PackageStatus(str, Enum):
    """Availability of a package in the catalog"""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class DenialReason(str, Enum):
    """Expected policy outcomes reported to callers as structured denials"""
    USER_NOT_FOUND = "user_not_found"
    PACKAGE_NOT_FOUND = "package_not_found"
    NO_SUBSCRIPTION = "no_subscription"
    EXPIRED = "expired"
    TRIAL_LIMIT_EXCEEDED = "trial_limit_exceeded"
    QUOTA_EXHAUSTED = "quota_exhausted"
    TRIAL_ALREADY_USED = "trial_already_used"
    PERSISTENCE_CONFLICT = "persistence_conflict"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"


class Package(BaseModel):
    """Purchasable plan definition"""
    package_id: str
    name: Optional[str] = None
    price: float = Field(default=0.0, ge=0)
    duration: str = Field(default=DEFAULT_DURATION, description="Free-form, e.g. '3 months'")
    package_limit: Optional[int] = Field(
        default=None, description="Posts/prompts granted; None means unlimited"
    )
    trial_posts: int = Field(default=0, ge=0, description="Posts allowed in trial mode")
    storage: int = Field(default=0, ge=0)
    max_group: int = Field(default=0, ge=0)
    description: Optional[str] = None
    category: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    is_active: bool = Field(default=True)
    start_date: Optional[datetime] = Field(default=None, description="Catalog availability window")
    end_date: Optional[datetime] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)

    @field_validator("duration", mode="before")
    @classmethod
    def default_duration(cls, v):
        return v or DEFAULT_DURATION

    @field_validator("package_limit", mode="before")
    @classmethod
    def parse_limit(cls, v):
        """Package documents store limits as numbers or numeric strings"""
        if isinstance(v, str):
            return int(v) if v.strip() else None
        return v

    @field_validator("trial_posts", "storage", "max_group", mode="before")
    @classmethod
    def parse_allowance(cls, v):
        if v is None or v == "":
            return 0
        if isinstance(v, str):
            return int(v)
        return v

    @field_validator("start_date", "end_date", "created_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v):
        return ensure_utc(v)

    @field_validator("features", mode="before")
    @classmethod
    def default_features(cls, v):
        return v or []

    def to_dynamodb_item(self) -> Dict[str, Any]:
        item = self.model_dump(mode="json", exclude_none=True)
        item["price"] = Decimal(str(self.price))
        return item


class Account(BaseModel):
    """Per-user subscription and quota state"""
    user_id: str
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.NONE)
    package_id: Optional[str] = Field(default=None)
    subscription_date: Optional[datetime] = Field(default=None)
    expiry_date: Optional[datetime] = Field(
        default=None, description="None means the subscription never lapses"
    )
    remaining_posts: Optional[int] = Field(default=None, description="None means not enforced")
    remaining_prompts: Optional[int] = Field(default=None, description="None means not enforced")
    trial_posts_used: int = Field(default=0, ge=0)
    trial_package: bool = Field(default=False)
    max_group: int = Field(default=0, ge=0)
    storage: int = Field(default=0, ge=0)
    last_payment_id: Optional[str] = Field(default=None)
    version: int = Field(default=0, ge=0)
    updated_at: Optional[datetime] = Field(default=None)

    @field_validator("subscription_date", "expiry_date", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v):
        return ensure_utc(v)

    @field_validator("subscription_status", mode="before")
    @classmethod
    def default_status(cls, v):
        return v or SubscriptionStatus.NONE

    @field_validator("trial_posts_used", "max_group", "storage", "version", mode="before")
    @classmethod
    def default_counters(cls, v):
        return 0 if v is None else v

    def counter_for(self, action: ActionKind) -> Optional[int]:
        """Return the paid-mode counter that gates the given action."""
        if action == ActionKind.POST:
            return self.remaining_posts
        if action == ActionKind.PROMPT:
            return self.remaining_prompts
        return self.max_group

    @classmethod
    def from_dynamodb_item(cls, item: Dict[str, Any]) -> "Account":
        fields = {key: value for key, value in item.items() if key in cls.model_fields}
        return cls(**fields)


class Payment(BaseModel):
    """Payment confirmed by the payment gateway"""
    payment_id: str
    status: str
    amount: float = Field(default=0.0, ge=0)
    currency: str = Field(default=DEFAULT_CURRENCY)
    package_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status in CONFIRMED_PAYMENT_STATUSES


class PaymentRecord(BaseModel):
    """Append-only audit of a completed payment"""
    payment_id: str
    user_id: str
    package_id: str
    amount: float
    currency: str
    status: str = "completed"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dynamodb_item(self, pk: str, sk: str) -> Dict[str, Any]:
        return {
            "PK": pk,
            "SK": sk,
            "record_type": "payment",
            "payment_id": self.payment_id,
            "user_id": self.user_id,
            "package_id": self.package_id,
            "amount": Decimal(str(self.amount)),
            "currency": self.currency,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }


class SubscriptionRecord(BaseModel):
    """Append-only audit of an activation"""
    user_id: str
    package_id: str
    payment_id: Optional[str] = None
    status: str = "active"
    expiry_date: datetime
    amount: float = 0.0
    currency: str = DEFAULT_CURRENCY
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dynamodb_item(self, pk: str, sk: str) -> Dict[str, Any]:
        item = {
            "PK": pk,
            "SK": sk,
            "record_type": "subscription",
            "user_id": self.user_id,
            "package_id": self.package_id,
            "status": self.status,
            "expiry_date": self.expiry_date.isoformat(),
            "amount": Decimal(str(self.amount)),
            "currency": self.currency,
            "created_at": self.created_at.isoformat(),
        }
        if self.payment_id:
            item["payment_id"] = self.payment_id
        return item


class EligibilityResult(BaseModel):
    eligible: bool
    mode: Optional[EntitlementMode] = None
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls, mode: EntitlementMode) -> "EligibilityResult":
        return cls(eligible=True, mode=mode)

    @classmethod
    def deny(cls, reason: DenialReason) -> "EligibilityResult":
        return cls(eligible=False, reason=reason)


class ConsumeResult(BaseModel):
    success: bool
    action: ActionKind
    mode: Optional[EntitlementMode] = None
    reason: Optional[DenialReason] = None
    remaining: Optional[int] = Field(
        default=None, description="Counter value after the consume; None when unlimited"
    )
    replayed: bool = Field(default=False, description="True when an earlier consume was replayed")


class ActivationResult(BaseModel):
    success: bool
    reason: Optional[DenialReason] = None
    message: Optional[str] = None
    account: Optional[Account] = None
    expiry_date: Optional[datetime] = None
    is_free: bool = False
    payment_id: Optional[str] = None
    already_applied: bool = False
