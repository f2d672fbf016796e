"""Wizard state for one tour booking.

The wizard moves through TourDetails -> Travelers -> ContactInfo -> Payment.
`transition` is the only way the current step changes: it takes the session
and an action and returns either the next step or the field errors that
block it. "previous" is always allowed and never clears entered data.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum, IntEnum

from tourbook.core.errors import FieldError, PaymentStateError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ADULT_DEFAULT_AGE = 25
CHILD_DEFAULT_AGE = 10
MIN_AGE = 1
MAX_AGE = 120


class Step(IntEnum):
    TOUR_DETAILS = 1
    TRAVELERS = 2
    CONTACT_INFO = 3
    PAYMENT = 4


class Action(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"


@dataclass
class Traveler:
    first_name: str = ""
    last_name: str = ""
    age: int = ADULT_DEFAULT_AGE
    passport_number: str | None = None
    dietary_requirements: str | None = None

    @property
    def named(self) -> bool:
        return bool(self.first_name.strip() and self.last_name.strip())


@dataclass
class Customer:
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    nationality: str | None = None
    emergency_contact: str | None = None
    dietary_requirements: str | None = None
    medical_conditions: str | None = None


@dataclass(frozen=True)
class PartyComposition:
    adults: int = 2
    children: int = 0

    @property
    def size(self) -> int:
        return self.adults + self.children


@dataclass(frozen=True)
class Pricing:
    base_amount: int            # canonical minor units per adult
    child_discount_rate: float
    total_amount: int


@dataclass(frozen=True)
class PaymentState:
    """verified=True always carries a reference; build with unpaid()/verified_with()."""

    reference: str | None = None
    verified: bool = False

    def __post_init__(self):
        if self.verified and not self.reference:
            raise PaymentStateError("a verified payment needs a reference")

    @classmethod
    def unpaid(cls) -> "PaymentState":
        return cls()

    @classmethod
    def verified_with(cls, reference: str) -> "PaymentState":
        return cls(reference=reference, verified=True)


@dataclass(frozen=True)
class TourSummary:
    id: str
    title: str
    duration_days: int
    base_amount: int   # canonical minor units
    slug: str = ""


@dataclass(frozen=True)
class Transition:
    step: Step
    errors: tuple[FieldError, ...] = ()

    @property
    def accepted(self) -> bool:
        return not self.errors


def compute_total(base_amount: int, adults: int, children: int, child_discount_rate: float) -> int:
    """base*adults + round_half_up(base*(1-rate))*children, in exact decimal arithmetic."""
    rate = Decimal(str(child_discount_rate))
    child_unit = (Decimal(base_amount) * (Decimal(1) - rate)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return base_amount * adults + int(child_unit) * children


def resize_travelers(travelers: list[Traveler], adults: int, children: int) -> list[Traveler]:
    resized = list(travelers[: adults + children])
    for i in range(len(resized), adults + children):
        resized.append(Traveler(age=ADULT_DEFAULT_AGE if i < adults else CHILD_DEFAULT_AGE))
    return resized


def _tour_details_errors(s: "BookingSession") -> list[FieldError]:
    errors = []
    if not s.selected_date:
        errors.append(FieldError("selectedDate", "Please select a tour date"))
    if s.party.adults < 1:
        errors.append(FieldError("adults", "At least one adult is required"))
    return errors


def _traveler_errors(s: "BookingSession") -> list[FieldError]:
    errors = []
    for i, t in enumerate(s.travelers):
        if not t.first_name.strip():
            errors.append(FieldError(f"travelers[{i}].firstName", f"Please enter first name for traveler {i + 1}"))
        if not t.last_name.strip():
            errors.append(FieldError(f"travelers[{i}].lastName", f"Please enter last name for traveler {i + 1}"))
        if not MIN_AGE <= t.age <= MAX_AGE:
            errors.append(FieldError(f"travelers[{i}].age", f"Age for traveler {i + 1} must be between {MIN_AGE} and {MAX_AGE}"))
    return errors


def _contact_errors(s: "BookingSession") -> list[FieldError]:
    c = s.customer
    errors = []
    if not c.first_name.strip():
        errors.append(FieldError("customer.firstName", "Please enter your first name"))
    if not c.last_name.strip():
        errors.append(FieldError("customer.lastName", "Please enter your last name"))
    if not EMAIL_RE.match(c.email.strip()):
        errors.append(FieldError("customer.email", "Please enter a valid email address"))
    if not c.phone.strip():
        errors.append(FieldError("customer.phone", "Please enter your phone number"))
    return errors


def _payment_errors(s: "BookingSession") -> list[FieldError]:
    if not s.payment.verified:
        return [FieldError("payment", "Please complete online payment before booking")]
    if s.paid_total is not None and s.paid_total != s.pricing.total_amount:
        return [FieldError("payment", "The booking total changed after payment. Please contact support.")]
    return []


STEP_VALIDATORS = {
    Step.TOUR_DETAILS: _tour_details_errors,
    Step.TRAVELERS: _traveler_errors,
    Step.CONTACT_INFO: _contact_errors,
    Step.PAYMENT: _payment_errors,
}


def validate_step(session: "BookingSession", step: Step) -> list[FieldError]:
    return STEP_VALIDATORS[step](session)


def validate_for_submission(session: "BookingSession") -> list[FieldError]:
    """Every step re-checked, since backward navigation may have changed earlier answers."""
    errors = []
    for step in Step:
        errors.extend(validate_step(session, step))
    return errors


def transition(session: "BookingSession", action: Action) -> Transition:
    current = session.current_step
    if action == Action.PREVIOUS:
        return Transition(step=Step(max(current - 1, Step.TOUR_DETAILS)))
    if current == Step.PAYMENT:
        # the only way out of Payment is submission
        return Transition(step=current, errors=tuple(_payment_errors(session)))
    errors = validate_step(session, current)
    if errors:
        return Transition(step=current, errors=tuple(errors))
    return Transition(step=Step(current + 1))


@dataclass
class BookingSession:
    tour: TourSummary
    child_discount_rate: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    current_step: Step = Step.TOUR_DETAILS
    selected_date: date | None = None
    party: PartyComposition = field(default_factory=PartyComposition)
    travelers: list[Traveler] = field(default_factory=list)
    customer: Customer = field(default_factory=Customer)
    pricing: Pricing | None = None
    payment: PaymentState = field(default_factory=PaymentState.unpaid)
    paid_total: int | None = None   # canonical total the verified payment covered
    booking: dict | None = None
    last_error: str | None = None

    def __post_init__(self):
        self.travelers = resize_travelers(self.travelers, self.party.adults, self.party.children)
        self._reprice()

    def _reprice(self) -> None:
        self.pricing = Pricing(
            base_amount=self.tour.base_amount,
            child_discount_rate=self.child_discount_rate,
            total_amount=compute_total(self.tour.base_amount, self.party.adults, self.party.children, self.child_discount_rate),
        )

    def set_party(self, adults: int, children: int) -> None:
        if self.payment.verified:
            raise PaymentStateError(f"party is locked by verified payment {self.payment.reference}")
        if adults < 0 or children < 0:
            raise ValueError("party counts must be >= 0")
        self.party = PartyComposition(adults=adults, children=children)
        self.travelers = resize_travelers(self.travelers, adults, children)
        self._reprice()

    def set_travelers(self, travelers: list[Traveler]) -> None:
        if len(travelers) != self.party.size:
            raise ValueError(f"expected {self.party.size} travelers, got {len(travelers)}")
        self.travelers = list(travelers)

    def apply(self, action: Action) -> Transition:
        t = transition(self, action)
        if t.accepted:
            self.current_step = t.step
        return t

    def mark_verified(self, reference: str, paid_total: int | None = None) -> None:
        self.payment = PaymentState.verified_with(reference)
        self.paid_total = self.pricing.total_amount if paid_total is None else paid_total

    @property
    def submitted(self) -> bool:
        return self.booking is not None
