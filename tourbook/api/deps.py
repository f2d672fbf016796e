from functools import lru_cache

from tourbook.core.config import settings
from tourbook.services.booking_session import BookingSession, TourSummary
from tourbook.services.booking_submission import BookingSubmissionClient
from tourbook.services.booking_wizard import BookingWizard, WizardStore
from tourbook.services.currency_service import ExchangeRateCache
from tourbook.services.graphql_client import GraphQLClient, GraphQLConfig
from tourbook.services.payment_verification import PaymentVerificationClient
from tourbook.services.paystack_gateway import BrowserCheckoutWidget, PaystackGatewayAdapter


@lru_cache
def get_graphql_client() -> GraphQLClient:
    return GraphQLClient(GraphQLConfig(
        url=settings.GRAPHQL_URL,
        auth_token=settings.GRAPHQL_AUTH_TOKEN,
        timeout=settings.GRAPHQL_TIMEOUT,
    ))


@lru_cache
def get_rate_cache() -> ExchangeRateCache:
    # one cache per process; populated lazily by the first refresh
    return ExchangeRateCache(
        base=settings.CANONICAL_CURRENCY,
        target=settings.BILLING_CURRENCY,
        ttl_seconds=settings.FX_QUOTE_TTL_SECONDS,
        fallback_rate=settings.FX_FALLBACK_RATE,
        app_id=settings.OPEN_EXCHANGE_RATES_APP_ID,
        url=settings.OPEN_EXCHANGE_RATES_URL,
        timeout=settings.FX_TIMEOUT,
    )


@lru_cache
def get_wizard_store() -> WizardStore:
    return WizardStore()


def build_wizard(tour: TourSummary, graphql: GraphQLClient, rates: ExchangeRateCache) -> BookingWizard:
    """Fresh session + its own gateway adapter; nothing is shared between bookings but the rate cache."""
    gateway = PaystackGatewayAdapter(
        public_key=settings.PAYSTACK_PUBLIC_KEY,
        graphql=graphql,
        verifier=PaymentVerificationClient(graphql),
        widget=BrowserCheckoutWidget(settings.PAYSTACK_INLINE_JS_URL),
        inline_js_url=settings.PAYSTACK_INLINE_JS_URL,
    )
    return BookingWizard(
        BookingSession(tour=tour, child_discount_rate=settings.CHILD_DISCOUNT_RATE),
        rates=rates,
        gateway=gateway,
        submitter=BookingSubmissionClient(graphql),
    )
