from __future__ import annotations
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tourbook.db.session import get_db
from tourbook.api.deps import build_wizard, get_graphql_client, get_rate_cache, get_wizard_store
from tourbook.core.errors import (
    ConfigurationError,
    GraphQLError,
    InitializationError,
    PaymentStateError,
    SubmissionError,
    UnverifiedPayment,
    ValidationError,
    VerificationError,
)
from tourbook.schemas.booking import (
    BookingOut,
    CustomerIn,
    FieldErrorOut,
    PaymentOut,
    PricingOut,
    SessionCreate,
    SessionOut,
    TransitionOut,
    TravelerIn,
    TripIn,
)
from tourbook.schemas.currency import PriceOut
from tourbook.schemas.payments import CheckoutOut, PaymentCallbackIn, PaymentResultOut, WidgetErrorIn
from tourbook.api.v1.routes.currency import quote_out
from tourbook.services.audit_service import link_booking, log_audit, record_attempt
from tourbook.services.booking_session import Customer, Transition, Traveler
from tourbook.services.booking_submission import BookingSubmissionClient
from tourbook.services.booking_wizard import BookingWizard, WizardStore, load_tour
from tourbook.services.currency_service import ExchangeRateCache, format_price_with_conversion
from tourbook.services.graphql_client import GraphQLClient
from tourbook.services.paystack_gateway import BrowserCheckoutWidget, WidgetResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["booking-sessions"])


def _wizard(store: WizardStore, session_id: str) -> BookingWizard:
    wizard = store.get(session_id)
    if not wizard:
        raise HTTPException(status_code=404, detail="Booking session not found")
    return wizard


def _field_errors(errors) -> list[dict]:
    return [{"field": e.field, "message": e.message} for e in errors]


def _session_out(wizard: BookingWizard) -> SessionOut:
    s = wizard.session
    c = s.customer
    return SessionOut(
        id=s.id,
        tourId=s.tour.id,
        tourTitle=s.tour.title,
        currentStep=s.current_step.name,
        selectedDate=s.selected_date,
        adults=s.party.adults,
        children=s.party.children,
        travelers=[
            TravelerIn(
                firstName=t.first_name,
                lastName=t.last_name,
                age=t.age,
                passportNumber=t.passport_number,
                dietaryRequirements=t.dietary_requirements,
            )
            for t in s.travelers
        ],
        customer=CustomerIn(
            email=c.email,
            firstName=c.first_name,
            lastName=c.last_name,
            phone=c.phone,
            nationality=c.nationality,
            emergencyContact=c.emergency_contact,
            dietaryRequirements=c.dietary_requirements,
            medicalConditions=c.medical_conditions,
        ),
        pricing=PricingOut(
            baseAmount=s.pricing.base_amount,
            childDiscountRate=s.pricing.child_discount_rate,
            totalAmount=s.pricing.total_amount,
            currency=wizard.rates.base,
        ),
        payment=PaymentOut(
            reference=s.payment.reference,
            verified=s.payment.verified,
            gatewayState=wizard.gateway.state.value,
        ),
        lastError=s.last_error,
    )


def _transition_out(wizard: BookingWizard, t: Transition) -> TransitionOut:
    return TransitionOut(
        accepted=t.accepted,
        currentStep=wizard.session.current_step.name,
        errors=[FieldErrorOut(field=e.field, message=e.message) for e in t.errors],
        session=_session_out(wizard),
    )


def _record_current_attempt(db: Session, wizard: BookingWizard, action: str) -> None:
    attempt = wizard.gateway.current
    if not attempt:
        return
    record_attempt(db, wizard.session.id, wizard.session.tour.id, attempt)
    log_audit(db, actor="public", action=action, entity_type="payment", entity_id=attempt.reference,
              details={"sessionId": wizard.session.id, "state": attempt.state.value, "error": attempt.error})
    db.commit()


@router.post("/public/booking-sessions", response_model=SessionOut)
async def create_session(
    body: SessionCreate,
    graphql: GraphQLClient = Depends(get_graphql_client),
    rates: ExchangeRateCache = Depends(get_rate_cache),
    store: WizardStore = Depends(get_wizard_store),
    db: Session = Depends(get_db),
):
    try:
        tour = await load_tour(graphql, body.tourId)
    except GraphQLError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not tour:
        raise HTTPException(status_code=404, detail="Tour not found")
    wizard = store.add(build_wizard(tour, graphql, rates))
    log_audit(db, actor="public", action="booking_session.created", entity_type="booking_session", entity_id=wizard.session.id, details={"tourId": tour.id})
    db.commit()
    return _session_out(wizard)


@router.get("/public/booking-sessions/{session_id}", response_model=SessionOut)
def get_session(session_id: str, store: WizardStore = Depends(get_wizard_store)):
    return _session_out(_wizard(store, session_id))


@router.delete("/public/booking-sessions/{session_id}")
def discard_session(session_id: str, store: WizardStore = Depends(get_wizard_store)):
    _wizard(store, session_id)
    store.discard(session_id)
    return {"ok": True}


@router.put("/public/booking-sessions/{session_id}/trip", response_model=SessionOut)
def update_trip(session_id: str, body: TripIn, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(store, session_id)
    try:
        wizard.update_trip(body.selectedDate, body.adults, body.children)
    except PaymentStateError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_out(wizard)


@router.put("/public/booking-sessions/{session_id}/travelers", response_model=SessionOut)
def update_travelers(session_id: str, body: list[TravelerIn], store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(store, session_id)
    travelers = [
        Traveler(
            first_name=t.firstName,
            last_name=t.lastName,
            age=t.age,
            passport_number=t.passportNumber,
            dietary_requirements=t.dietaryRequirements,
        )
        for t in body
    ]
    try:
        wizard.update_travelers(travelers)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_out(wizard)


@router.put("/public/booking-sessions/{session_id}/customer", response_model=SessionOut)
def update_customer(session_id: str, body: CustomerIn, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(store, session_id)
    wizard.update_customer(Customer(
        email=body.email,
        first_name=body.firstName,
        last_name=body.lastName,
        phone=body.phone,
        nationality=body.nationality,
        emergency_contact=body.emergencyContact,
        dietary_requirements=body.dietaryRequirements,
        medical_conditions=body.medicalConditions,
    ))
    return _session_out(wizard)


@router.post("/public/booking-sessions/{session_id}/next", response_model=TransitionOut)
def next_step(session_id: str, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(store, session_id)
    try:
        t = wizard.next()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return _transition_out(wizard, t)


@router.post("/public/booking-sessions/{session_id}/previous", response_model=TransitionOut)
def previous_step(session_id: str, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(store, session_id)
    return _transition_out(wizard, wizard.previous())


@router.get("/public/booking-sessions/{session_id}/quote", response_model=PriceOut)
def price_quote(session_id: str, store: WizardStore = Depends(get_wizard_store)):
    """Priced total in the billing currency using whatever quote is cached right now."""
    wizard = _wizard(store, session_id)
    conversion = wizard.price()
    q = conversion.quote
    return PriceOut(
        canonicalAmount=wizard.session.pricing.total_amount,
        canonicalCurrency=q.base,
        billingAmount=conversion.amount,
        billingCurrency=q.target,
        display=format_price_with_conversion(wizard.session.pricing.total_amount, q),
        note=conversion.human_readable_note,
        quote=quote_out(q, wizard.rates.clock()),
    )


@router.post("/public/booking-sessions/{session_id}/payments", response_model=CheckoutOut)
async def start_payment(session_id: str, store: WizardStore = Depends(get_wizard_store), db: Session = Depends(get_db)):
    wizard = _wizard(store, session_id)
    try:
        attempt = await wizard.start_payment()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=e.message)
    except PaymentStateError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except InitializationError as e:
        _record_current_attempt(db, wizard, "payment.initialization_failed")
        raise HTTPException(status_code=502, detail=e.message)

    _record_current_attempt(db, wizard, "payment.initialized")
    c = attempt.checkout
    return CheckoutOut(
        key=c.key,
        email=c.email,
        amount=c.amount,
        currency=c.currency,
        reference=c.reference,
        inlineJsUrl=c.inline_js_url,
        accessCode=c.access_code,
        metadata=c.metadata,
        conversionNote=wizard.price().human_readable_note,
    )


@router.post("/public/booking-sessions/{session_id}/payments/callback", response_model=PaymentResultOut)
async def payment_callback(session_id: str, body: PaymentCallbackIn, store: WizardStore = Depends(get_wizard_store), db: Session = Depends(get_db)):
    """Relay of PaystackPop's callback/onClose from the browser."""
    wizard = _wizard(store, session_id)
    result = WidgetResult.cancel() if body.cancelled else WidgetResult.success(body.reference.strip())
    try:
        outcome = await wizard.complete_payment(result)
    except PaymentStateError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except UnverifiedPayment as e:
        _record_current_attempt(db, wizard, "payment.unverified")
        raise HTTPException(status_code=402, detail={"message": e.message, "reference": e.reference, "status": e.status})
    except VerificationError as e:
        _record_current_attempt(db, wizard, "payment.verification_failed")
        raise HTTPException(status_code=502, detail=e.message)

    _record_current_attempt(db, wizard, "payment.settled" if outcome.settled else "payment.cancelled")
    v = outcome.verification
    return PaymentResultOut(
        state=outcome.state.value,
        reference=outcome.reference,
        verified=wizard.session.payment.verified,
        amount=v.amount if v else None,
        currency=v.currency if v else None,
        gatewayResponse=v.gateway_response if v else None,
    )


@router.post("/public/booking-sessions/{session_id}/payments/widget-error")
def payment_widget_error(session_id: str, body: WidgetErrorIn, store: WizardStore = Depends(get_wizard_store), db: Session = Depends(get_db)):
    """The browser could not load the checkout library: payment is off for this session."""
    wizard = _wizard(store, session_id)
    widget = wizard.gateway.widget
    if isinstance(widget, BrowserCheckoutWidget):
        widget.report_load_failure(body.reason)
    logger.error("Checkout widget failed to load for session %s: %s", session_id, body.reason)
    log_audit(db, actor="public", action="payment.widget_load_failed", entity_type="booking_session", entity_id=session_id, details={"reason": body.reason})
    db.commit()
    return {"ok": False, "detail": "Failed to load payment system. Please contact support."}


@router.post("/public/booking-sessions/{session_id}/submit", response_model=BookingOut)
async def submit_booking(session_id: str, store: WizardStore = Depends(get_wizard_store), db: Session = Depends(get_db)):
    wizard = _wizard(store, session_id)
    try:
        record = await wizard.submit()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_field_errors(e.errors))
    except SubmissionError as e:
        # the verified reference stays on the session so submission alone can be retried
        log_audit(db, actor="public", action="booking.submission_failed", entity_type="payment", entity_id=e.payment_reference or "", details={"sessionId": session_id, "error": str(e)})
        db.commit()
        raise HTTPException(
            status_code=409 if e.duplicate else 502,
            detail={"message": e.message, "paymentReference": e.payment_reference, "duplicate": e.duplicate},
        )

    reference = wizard.session.payment.reference
    booking_ref = str(record.get("bookingReference") or "")
    link_booking(db, reference, booking_ref)
    log_audit(db, actor="public", action="booking.created", entity_type="booking", entity_id=booking_ref, details={"sessionId": session_id, "paymentReference": reference})
    db.commit()
    store.discard(session_id)
    return BookingOut(
        id=str(record.get("id") or ""),
        bookingReference=booking_ref,
        status=str(record.get("status") or ""),
        paymentStatus=str(record.get("paymentStatus") or ""),
        startDate=record.get("startDate"),
        endDate=record.get("endDate"),
        adultsCount=int(record.get("adultsCount") or 0),
        childrenCount=int(record.get("childrenCount") or 0),
        totalPrice=int(record.get("totalPrice") or 0),
        paymentReference=reference,
    )


@router.post("/public/bookings/{booking_id}/cancel")
async def cancel_booking(booking_id: str, graphql: GraphQLClient = Depends(get_graphql_client), db: Session = Depends(get_db)):
    try:
        result = await BookingSubmissionClient(graphql).cancel(booking_id)
    except SubmissionError as e:
        raise HTTPException(status_code=502, detail=str(e))
    log_audit(db, actor="public", action="booking.cancelled", entity_type="booking", entity_id=booking_id, details=result)
    db.commit()
    return {"ok": True, "id": result.get("id", booking_id), "status": result.get("status")}
