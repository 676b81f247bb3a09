from typing import Optional
from pydantic import BaseModel, Field

from shared.models.entitlement import ActionKind


class ConsumeRequest(BaseModel):
    action: ActionKind = Field(default=ActionKind.POST)
    action_id: Optional[str] = Field(
        default=None, max_length=128, description="Idempotency key for client retries"
    )


class ActivateRequest(BaseModel):
    package_id: str = Field(min_length=1)
    payment_id: Optional[str] = Field(default=None, description="Stripe PaymentIntent id")
