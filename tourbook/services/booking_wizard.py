import asyncio
import logging
from datetime import date
from decimal import Decimal

from tourbook.core.errors import PaymentStateError
from tourbook.services.booking_session import Action, BookingSession, Customer, Step, TourSummary, Transition, Traveler
from tourbook.services.booking_submission import BookingSubmissionClient
from tourbook.services.currency_service import Conversion, ExchangeRateCache, convert, round_half_up
from tourbook.services.graphql_client import GraphQLClient
from tourbook.services.paystack_gateway import (
    GatewayState,
    PaymentAttempt,
    PaymentOutcome,
    PaystackGatewayAdapter,
    WidgetResult,
)

logger = logging.getLogger(__name__)


class BookingWizard:
    """Owns one BookingSession and drives pricing, payment and submission for it.

    Data only flows forward: session -> priced total -> gateway attempt ->
    verified reference -> booking record.
    """

    def __init__(
        self,
        session: BookingSession,
        *,
        rates: ExchangeRateCache,
        gateway: PaystackGatewayAdapter,
        submitter: BookingSubmissionClient,
    ):
        self.session = session
        self.rates = rates
        self.gateway = gateway
        self.submitter = submitter

    # -- step editing -------------------------------------------------

    def update_trip(self, selected_date: date | None, adults: int, children: int) -> None:
        if (adults, children) != (self.session.party.adults, self.session.party.children):
            if self.gateway.state in (GatewayState.AWAITING_USER_ACTION, GatewayState.VERIFYING_RESULT):
                raise PaymentStateError(f"party is locked while payment {self.gateway.current.reference} is in progress")
            self.session.set_party(adults, children)
        self.session.selected_date = selected_date

    def update_travelers(self, travelers: list[Traveler]) -> None:
        self.session.set_travelers(travelers)

    def update_customer(self, customer: Customer) -> None:
        self.session.customer = customer

    def next(self) -> Transition:
        t = self.session.apply(Action.NEXT)
        if t.accepted and t.step == Step.PAYMENT:
            self.gateway.ensure_ready()
        return t

    def previous(self) -> Transition:
        return self.session.apply(Action.PREVIOUS)

    # -- pricing --------------------------------------------------------

    def price(self) -> Conversion:
        return convert(self.session.pricing.total_amount, self.rates.get_cached_quote())

    async def refreshed_price(self) -> Conversion:
        quote = await self.rates.refresh_quote()
        return convert(self.session.pricing.total_amount, quote)

    # -- payment --------------------------------------------------------

    async def start_payment(self) -> PaymentAttempt:
        s = self.session
        if s.current_step != Step.PAYMENT:
            raise PaymentStateError("payment is only available on the payment step")
        if s.payment.verified:
            raise PaymentStateError(f"payment {s.payment.reference} is already verified")
        self.gateway.ensure_ready()

        conversion = await self.refreshed_price()
        metadata = {
            "sessionId": s.id,
            "tourId": s.tour.id,
            "tourTitle": s.tour.title,
            "adults": s.party.adults,
            "children": s.party.children,
            "canonicalAmount": s.pricing.total_amount,
            "canonicalCurrency": conversion.quote.base,
            "exchangeRate": str(conversion.quote.rate),
            "rateSource": conversion.quote.source.value,
        }
        return await self.gateway.initialize(
            email=s.customer.email.strip(),
            amount=conversion.amount,
            currency=conversion.quote.target,
            metadata=metadata,
        )

    async def complete_payment(self, result: WidgetResult | None = None) -> PaymentOutcome:
        """Feed the widget's verdict (when it arrives out of band) and settle the current attempt."""
        attempt = self.gateway.current
        if attempt is None or attempt.state != GatewayState.AWAITING_USER_ACTION:
            raise PaymentStateError("no payment is awaiting a result")
        if result is not None:
            accepted = attempt.on_close() if result.cancelled else attempt.on_success(result.reference)
            if not accepted:
                raise PaymentStateError(f"payment {attempt.reference} already received a result")
        outcome = await self.gateway.settle(attempt)
        if outcome.settled:
            self.session.mark_verified(outcome.reference, attempt.metadata.get("canonicalAmount"))
            logger.info("Session %s paid with %s", self.session.id, outcome.reference)
        return outcome

    async def pay(self) -> PaymentOutcome:
        """For widgets that call back in-process: start, wait, verify."""
        await self.start_payment()
        return await self.complete_payment()

    # -- submission -----------------------------------------------------

    async def submit(self) -> dict:
        return await self.submitter.submit(self.session)


def tour_from_backend(data: dict) -> TourSummary:
    """`priceFrom` comes in canonical major units; sessions price in minor units."""
    return TourSummary(
        id=str(data["id"]),
        title=str(data.get("title") or ""),
        slug=str(data.get("slug") or ""),
        duration_days=int(data.get("duration") or 0),
        base_amount=round_half_up(Decimal(str(data.get("priceFrom") or 0)) * 100),
    )


async def load_tour(graphql: GraphQLClient, tour_id: str) -> TourSummary | None:
    data = await asyncio.to_thread(graphql.tour_by_id, tour_id)
    return tour_from_backend(data) if data else None


class WizardStore:
    """Live wizards keyed by session id. Each wizard is used by exactly one customer."""

    def __init__(self):
        self._wizards: dict[str, BookingWizard] = {}

    def add(self, wizard: BookingWizard) -> BookingWizard:
        self._wizards[wizard.session.id] = wizard
        return wizard

    def get(self, session_id: str) -> BookingWizard | None:
        return self._wizards.get(session_id)

    def discard(self, session_id: str) -> None:
        self._wizards.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._wizards)
