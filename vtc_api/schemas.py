from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreatePaymentIntentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # validated by the gateway so that a bad amount is a 400, not a coercion
    amount: Any = None
    currency: Optional[str] = None
    ride_id: Optional[str] = Field(default=None, alias="rideId")
    user_id: Optional[str] = Field(default=None, alias="userId")

    @field_validator("ride_id", "user_id", mode="before")
    @classmethod
    def reference_as_text(cls, value):
        # ride and user references are free-form; numeric ids are kept as text
        if value is None or isinstance(value, str):
            return value
        return str(value)


class CreatePaymentIntentOut(BaseModel):
    clientSecret: str
    paymentIntentId: str


class PaymentStatusOut(BaseModel):
    status: str
    receiptUrl: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    warning: Optional[str] = None


class RegisterIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    phone: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
