from datetime import date
from pydantic import BaseModel, Field
from typing import List, Optional

class SessionCreate(BaseModel):
    tourId: str

class TripIn(BaseModel):
    selectedDate: Optional[date] = None
    adults: int = Field(default=2, ge=0)
    children: int = Field(default=0, ge=0)

class TravelerIn(BaseModel):
    firstName: str = ""
    lastName: str = ""
    age: int = Field(default=25, ge=0, le=120)
    passportNumber: Optional[str] = None
    dietaryRequirements: Optional[str] = None

class CustomerIn(BaseModel):
    email: str = ""  # plain str; shape is checked by the wizard step
    firstName: str = ""
    lastName: str = ""
    phone: str = ""
    nationality: Optional[str] = None
    emergencyContact: Optional[str] = None
    dietaryRequirements: Optional[str] = None
    medicalConditions: Optional[str] = None

class FieldErrorOut(BaseModel):
    field: str
    message: str

class PricingOut(BaseModel):
    baseAmount: int
    childDiscountRate: float
    totalAmount: int
    currency: str

class PaymentOut(BaseModel):
    reference: Optional[str] = None
    verified: bool = False
    gatewayState: str = "idle"

class SessionOut(BaseModel):
    id: str
    tourId: str
    tourTitle: str
    currentStep: str
    selectedDate: Optional[date] = None
    adults: int
    children: int
    travelers: List[TravelerIn]
    customer: CustomerIn
    pricing: PricingOut
    payment: PaymentOut
    lastError: Optional[str] = None

class TransitionOut(BaseModel):
    accepted: bool
    currentStep: str
    errors: List[FieldErrorOut] = []
    session: SessionOut

class BookingOut(BaseModel):
    id: str
    bookingReference: str
    status: str = ""
    paymentStatus: str = ""
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    adultsCount: int = 0
    childrenCount: int = 0
    totalPrice: int = 0
    paymentReference: Optional[str] = None
