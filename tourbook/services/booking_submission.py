import asyncio
import logging
from datetime import timedelta

from tourbook.core.errors import GraphQLError, SubmissionError, ValidationError
from tourbook.services.booking_session import BookingSession, validate_for_submission
from tourbook.services.graphql_client import GraphQLClient

logger = logging.getLogger(__name__)

DUPLICATE_MARKERS = ("duplicate", "already exists", "already used", "already associated")


def build_booking_payload(session: BookingSession) -> dict:
    start = session.selected_date
    end = start + timedelta(days=session.tour.duration_days)
    c = session.customer
    customer = {
        "email": c.email.strip(),
        "firstName": c.first_name.strip(),
        "lastName": c.last_name.strip(),
        "phone": c.phone.strip(),
    }
    for key, value in (
        ("nationality", c.nationality),
        ("emergencyContact", c.emergency_contact),
        ("dietaryRequirements", c.dietary_requirements),
        ("medicalConditions", c.medical_conditions),
    ):
        if value:
            customer[key] = value
    travelers = [
        {
            "firstName": t.first_name.strip(),
            "lastName": t.last_name.strip(),
            "age": t.age,
            "passportNumber": t.passport_number or "",
            "dietaryRequirements": t.dietary_requirements or "",
        }
        for t in session.travelers
        if t.named
    ]
    return {
        "tourId": session.tour.id,
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "adultsCount": session.party.adults,
        "childrenCount": session.party.children,
        "totalPrice": session.pricing.total_amount,
        "customer": customer,
        "travelers": travelers,
        "paymentReference": session.payment.reference,
    }


class BookingSubmissionClient:
    def __init__(self, graphql: GraphQLClient):
        self.graphql = graphql

    async def submit(self, session: BookingSession) -> dict:
        """Create the booking once. A session that already holds a booking is returned as-is."""
        if session.submitted:
            return session.booking
        errors = validate_for_submission(session)
        if errors:
            raise ValidationError(errors)

        payload = build_booking_payload(session)
        reference = session.payment.reference
        try:
            record = await asyncio.to_thread(self.graphql.create_booking, payload)
        except GraphQLError as e:
            duplicate = any(m in str(e).lower() for m in DUPLICATE_MARKERS)
            session.last_error = str(e)
            logger.error("createBooking rejected for payment %s: %s", reference, e)
            raise SubmissionError("Booking could not be created", payment_reference=reference, duplicate=duplicate, cause=e) from e
        if not record:
            session.last_error = "empty createBooking response"
            raise SubmissionError("Booking could not be created", payment_reference=reference)

        session.booking = record
        session.last_error = None
        logger.info("Booking %s created for payment %s", record.get("bookingReference"), reference)
        return record

    async def cancel(self, booking_id: str) -> dict:
        try:
            return await asyncio.to_thread(self.graphql.cancel_booking, booking_id)
        except GraphQLError as e:
            logger.error("cancelBooking %s failed: %s", booking_id, e)
            raise SubmissionError("Booking could not be cancelled", payment_reference=None, cause=e) from e
