from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tourbook.api import deps
from tourbook.core.config import settings
from tourbook.db.session import Base, get_db
from tourbook.main import app
from tourbook.models.audit_log import AuditLog  # noqa: F401
from tourbook.models.payment_attempt import PaymentAttemptRecord  # noqa: F401
from tourbook.services.booking_session import BookingSession, TourSummary
from tourbook.services.booking_submission import BookingSubmissionClient
from tourbook.services.booking_wizard import BookingWizard, WizardStore
from tourbook.services.currency_service import ExchangeRateCache
from tourbook.services.graphql_client import GraphQLClient
from tourbook.services.payment_verification import PaymentVerificationClient
from tourbook.services.paystack_gateway import PaystackGatewayAdapter

from tests.fakes import FakeClock, FakeWidget, verify_payload


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tour():
    return TourSummary(id="tour-1", title="Kakum Canopy Walk", duration_days=3, base_amount=10000, slug="kakum-canopy-walk")


@pytest.fixture
def graphql():
    g = Mock(spec=GraphQLClient)
    initialized = {}

    def _initialize(*, email, amount, currency, reference, metadata=None):
        initialized[reference] = {"amount": amount, "currency": currency}
        return {"authorization_url": "https://checkout.paystack.com/abc", "access_code": "abc", "reference": reference}

    def _verify(reference):
        tx = initialized.get(reference, {"amount": 0, "currency": "GHS"})
        return verify_payload(reference, amount=tx["amount"], currency=tx["currency"])

    g.paystack_initialize.side_effect = _initialize
    g.paystack_verify.side_effect = _verify
    g.create_booking.side_effect = lambda payload: {
        "id": "bk-1",
        "bookingReference": "BK-2026-0001",
        "startDate": payload["startDate"],
        "endDate": payload["endDate"],
        "adultsCount": payload["adultsCount"],
        "childrenCount": payload["childrenCount"],
        "totalPrice": payload["totalPrice"],
        "status": "CONFIRMED",
        "paymentStatus": "PAID",
    }
    g.cancel_booking.return_value = {"id": "bk-1", "status": "CANCELLED"}
    g.tour_by_id.return_value = {"id": "tour-1", "title": "Kakum Canopy Walk", "slug": "kakum-canopy-walk", "duration": 3, "priceFrom": 100}
    return g


@pytest.fixture
def rates(clock):
    return ExchangeRateCache(base="USD", target="GHS", ttl_seconds=3600, fallback_rate=15.5, clock=clock)


@pytest.fixture
def widget():
    return FakeWidget()


@pytest.fixture
def make_wizard(tour, graphql, rates, widget):
    def _make(public_key="pk_test_123", widget_=None):
        gateway = PaystackGatewayAdapter(
            public_key=public_key,
            graphql=graphql,
            verifier=PaymentVerificationClient(graphql),
            widget=widget_ or widget,
        )
        return BookingWizard(
            BookingSession(tour=tour, child_discount_rate=0.3),
            rates=rates,
            gateway=gateway,
            submitter=BookingSubmissionClient(graphql),
        )
    return _make


@pytest.fixture
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def api(db_session, graphql, rates, monkeypatch):
    store = WizardStore()
    monkeypatch.setattr(settings, "PAYSTACK_PUBLIC_KEY", "pk_test_123")

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_graphql_client] = lambda: graphql
    app.dependency_overrides[deps.get_rate_cache] = lambda: rates
    app.dependency_overrides[deps.get_wizard_store] = lambda: store
    client = TestClient(app)
    client.store = store
    client.db = db_session
    yield client
    app.dependency_overrides.clear()
