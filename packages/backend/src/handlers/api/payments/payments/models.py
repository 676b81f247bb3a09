from typing import Optional

from pydantic import BaseModel, Field

from shared.constants.entitlements import DEFAULT_CURRENCY


class CreatePaymentIntentRequest(BaseModel):
    package_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    amount: Optional[float] = Field(
        default=None, ge=0, description="Price the client displayed; must match the package"
    )
    currency: str = Field(default=DEFAULT_CURRENCY)


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)
