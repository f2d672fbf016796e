from pydantic import BaseModel, model_validator
from typing import Optional


class CheckoutOut(BaseModel):
    # Passed straight to PaystackPop.setup() in the browser
    key: str
    email: str
    amount: int
    currency: str
    reference: str
    inlineJsUrl: str
    accessCode: str = ""
    metadata: dict = {}
    conversionNote: str = ""


class PaymentCallbackIn(BaseModel):
    reference: Optional[str] = None
    cancelled: bool = False

    @model_validator(mode="after")
    def check_reference(self):
        if not self.cancelled and not (self.reference or "").strip():
            raise ValueError("reference is required unless cancelled")
        return self


class WidgetErrorIn(BaseModel):
    reason: str = ""


class PaymentResultOut(BaseModel):
    state: str
    reference: str
    verified: bool
    amount: Optional[int] = None
    currency: Optional[str] = None
    gatewayResponse: Optional[str] = None
