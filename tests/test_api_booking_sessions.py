import json

from tests.fakes import verify_payload
from tourbook.core.config import settings
from tourbook.core.errors import GraphQLError
from tourbook.models.audit_log import AuditLog
from tourbook.models.payment_attempt import PaymentAttemptRecord

BASE = "/api/v1/public/booking-sessions"

TRAVELERS = [
    {"firstName": "Ama", "lastName": "Mensah", "age": 34},
    {"firstName": "Kofi", "lastName": "Mensah", "age": 36},
    {"firstName": "Esi", "lastName": "Mensah", "age": 8},
]
CUSTOMER = {"email": "ama@example.com", "firstName": "Ama", "lastName": "Mensah", "phone": "+233201234567"}


def _create(api):
    r = api.post(BASE, json={"tourId": "tour-1"})
    assert r.status_code == 200, r.text
    return r.json()["id"]


def _fill(api, sid):
    assert api.put(f"{BASE}/{sid}/trip", json={"selectedDate": "2026-05-10", "adults": 2, "children": 1}).status_code == 200
    assert api.put(f"{BASE}/{sid}/travelers", json=TRAVELERS).status_code == 200
    assert api.put(f"{BASE}/{sid}/customer", json=CUSTOMER).status_code == 200


def _to_payment(api):
    sid = _create(api)
    _fill(api, sid)
    for _ in range(3):
        r = api.post(f"{BASE}/{sid}/next")
        assert r.status_code == 200, r.text
        assert r.json()["accepted"] is True
    assert r.json()["currentStep"] == "PAYMENT"
    return sid


def _actions(api):
    return [row.action for row in api.db.query(AuditLog).order_by(AuditLog.created_at).all()]


def test_create_session(api):
    r = api.post(BASE, json={"tourId": "tour-1"})
    assert r.status_code == 200
    body = r.json()
    assert body["currentStep"] == "TOUR_DETAILS"
    assert body["pricing"] == {"baseAmount": 10000, "childDiscountRate": 0.3, "totalAmount": 20000, "currency": "USD"}
    assert len(body["travelers"]) == 2
    assert body["payment"] == {"reference": None, "verified": False, "gatewayState": "idle"}
    assert len(api.store) == 1
    assert "booking_session.created" in _actions(api)


def test_unknown_tour(api, graphql):
    graphql.tour_by_id.return_value = None
    assert api.post(BASE, json={"tourId": "nope"}).status_code == 404


def test_tour_lookup_failure(api, graphql):
    graphql.tour_by_id.side_effect = GraphQLError("backend down")
    assert api.post(BASE, json={"tourId": "tour-1"}).status_code == 502


def test_unknown_session(api):
    assert api.get(f"{BASE}/missing").status_code == 404
    assert api.post(f"{BASE}/missing/next").status_code == 404


def test_rejected_next_reports_field_errors(api):
    sid = _create(api)
    r = api.post(f"{BASE}/{sid}/next")
    assert r.status_code == 200
    body = r.json()
    assert body["accepted"] is False
    assert body["currentStep"] == "TOUR_DETAILS"
    assert body["errors"][0]["field"] == "selectedDate"


def test_travelers_length_must_match_party(api):
    sid = _create(api)
    r = api.put(f"{BASE}/{sid}/travelers", json=TRAVELERS)
    assert r.status_code == 400


def test_previous_keeps_entries(api):
    sid = _to_payment(api)
    r = api.post(f"{BASE}/{sid}/previous")
    assert r.json()["currentStep"] == "CONTACT_INFO"
    assert r.json()["session"]["customer"]["email"] == "ama@example.com"


def test_quote(api):
    sid = _create(api)
    _fill(api, sid)
    body = api.get(f"{BASE}/{sid}/quote").json()
    assert body["canonicalAmount"] == 27000
    assert body["billingAmount"] == 418500
    assert body["billingCurrency"] == "GHS"
    assert body["display"] == "$270.00 (≈ GH₵4,185.00)"
    assert body["quote"]["source"] == "fallback"


def test_full_booking_flow(api, graphql):
    sid = _to_payment(api)

    r = api.post(f"{BASE}/{sid}/payments")
    assert r.status_code == 200, r.text
    checkout = r.json()
    assert checkout["key"] == "pk_test_123"
    assert checkout["amount"] == 418500
    assert checkout["currency"] == "GHS"
    assert checkout["email"] == "ama@example.com"
    assert checkout["inlineJsUrl"].startswith("https://")
    ref = checkout["reference"]
    assert api.get(f"{BASE}/{sid}").json()["payment"]["gatewayState"] == "awaiting_user_action"

    r = api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref})
    assert r.status_code == 200, r.text
    assert r.json() == {
        "state": "settled", "reference": ref, "verified": True,
        "amount": 418500, "currency": "GHS", "gatewayResponse": "Approved",
    }

    r = api.post(f"{BASE}/{sid}/submit")
    assert r.status_code == 200, r.text
    booking = r.json()
    assert booking["bookingReference"] == "BK-2026-0001"
    assert booking["paymentReference"] == ref
    assert booking["endDate"] == "2026-05-13"
    assert booking["totalPrice"] == 27000

    row = api.db.get(PaymentAttemptRecord, ref)
    assert row.state == "settled"
    assert row.verification_status == "success"
    assert row.booking_ref == "BK-2026-0001"
    assert row.amount == 418500

    actions = _actions(api)
    assert "payment.initialized" in actions
    assert "payment.settled" in actions
    assert "booking.created" in actions
    assert api.get(f"{BASE}/{sid}").status_code == 404


def test_submit_before_payment(api, graphql):
    sid = _to_payment(api)
    r = api.post(f"{BASE}/{sid}/submit")
    assert r.status_code == 422
    assert r.json()["detail"][0]["field"] == "payment"
    graphql.create_booking.assert_not_called()


def test_cancelled_payment_then_retry(api):
    sid = _to_payment(api)
    first = api.post(f"{BASE}/{sid}/payments").json()["reference"]

    r = api.post(f"{BASE}/{sid}/payments/callback", json={"cancelled": True})
    assert r.json()["state"] == "cancelled"
    assert r.json()["verified"] is False

    second = api.post(f"{BASE}/{sid}/payments").json()["reference"]
    assert second != first
    assert api.db.get(PaymentAttemptRecord, first).state == "cancelled"


def test_second_payment_while_pending(api):
    sid = _to_payment(api)
    assert api.post(f"{BASE}/{sid}/payments").status_code == 200
    assert api.post(f"{BASE}/{sid}/payments").status_code == 409


def test_duplicate_callback(api):
    sid = _to_payment(api)
    ref = api.post(f"{BASE}/{sid}/payments").json()["reference"]
    assert api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref}).status_code == 200
    assert api.post(f"{BASE}/{sid}/payments/callback", json={"cancelled": True}).status_code == 409
    assert api.get(f"{BASE}/{sid}").json()["payment"]["verified"] is True


def test_callback_needs_reference(api):
    sid = _to_payment(api)
    api.post(f"{BASE}/{sid}/payments")
    assert api.post(f"{BASE}/{sid}/payments/callback", json={}).status_code == 422


def test_unverified_payment(api, graphql):
    graphql.paystack_verify.side_effect = lambda ref: verify_payload(ref, status="pending", amount=418500)
    sid = _to_payment(api)
    ref = api.post(f"{BASE}/{sid}/payments").json()["reference"]

    r = api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref})
    assert r.status_code == 402
    assert r.json()["detail"]["reference"] == ref
    assert r.json()["detail"]["status"] == "pending"
    assert api.get(f"{BASE}/{sid}").json()["payment"]["verified"] is False
    assert api.db.get(PaymentAttemptRecord, ref).state == "failed"
    assert "payment.unverified" in _actions(api)


def test_verification_backend_failure(api, graphql):
    graphql.paystack_verify.side_effect = GraphQLError("timeout")
    sid = _to_payment(api)
    ref = api.post(f"{BASE}/{sid}/payments").json()["reference"]
    assert api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref}).status_code == 502


def test_initialization_failure(api, graphql):
    graphql.paystack_initialize.side_effect = GraphQLError("Invalid key")
    sid = _to_payment(api)
    r = api.post(f"{BASE}/{sid}/payments")
    assert r.status_code == 502
    row = api.db.query(PaymentAttemptRecord).one()
    assert row.state == "failed"
    assert "Invalid key" in row.error


def test_missing_public_key(api, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_PUBLIC_KEY", "")
    sid = _create(api)
    _fill(api, sid)
    api.post(f"{BASE}/{sid}/next")
    api.post(f"{BASE}/{sid}/next")
    assert api.post(f"{BASE}/{sid}/next").status_code == 500
    assert api.post(f"{BASE}/{sid}/payments").status_code == 500


def test_widget_load_failure_locks_payment(api, graphql):
    sid = _to_payment(api)
    r = api.post(f"{BASE}/{sid}/payments/widget-error", json={"reason": "script blocked"})
    assert r.json()["ok"] is False
    assert api.post(f"{BASE}/{sid}/payments").status_code == 500
    graphql.paystack_initialize.assert_not_called()
    assert "payment.widget_load_failed" in _actions(api)


def test_rejected_submission_keeps_reference(api, graphql):
    succeed = graphql.create_booking.side_effect
    graphql.create_booking.side_effect = GraphQLError("duplicate payment reference")
    sid = _to_payment(api)
    ref = api.post(f"{BASE}/{sid}/payments").json()["reference"]
    api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref})

    r = api.post(f"{BASE}/{sid}/submit")
    assert r.status_code == 409
    assert r.json()["detail"]["paymentReference"] == ref
    session = api.get(f"{BASE}/{sid}").json()
    assert session["payment"] == {"reference": ref, "verified": True, "gatewayState": "settled"}
    assert session["lastError"]

    graphql.create_booking.side_effect = succeed
    r = api.post(f"{BASE}/{sid}/submit")
    assert r.status_code == 200
    assert r.json()["paymentReference"] == ref
    assert graphql.paystack_initialize.call_count == 1


def test_other_submission_failure_is_bad_gateway(api, graphql):
    graphql.create_booking.side_effect = GraphQLError("Tour is fully booked")
    sid = _to_payment(api)
    ref = api.post(f"{BASE}/{sid}/payments").json()["reference"]
    api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref})
    assert api.post(f"{BASE}/{sid}/submit").status_code == 502


def test_discard_session(api):
    sid = _create(api)
    assert api.delete(f"{BASE}/{sid}").json() == {"ok": True}
    assert api.delete(f"{BASE}/{sid}").status_code == 404


def test_cancel_booking(api, graphql):
    r = api.post("/api/v1/public/bookings/bk-1/cancel")
    assert r.json() == {"ok": True, "id": "bk-1", "status": "CANCELLED"}
    row = api.db.query(AuditLog).filter(AuditLog.action == "booking.cancelled").one()
    assert json.loads(row.details_json)["status"] == "CANCELLED"

    graphql.cancel_booking.side_effect = GraphQLError("not found")
    assert api.post("/api/v1/public/bookings/bk-2/cancel").status_code == 502


def test_fx_endpoints(api):
    quote = api.get("/api/v1/public/fx/quote").json()
    assert quote["base"] == "USD"
    assert quote["target"] == "GHS"
    assert quote["rate"] == 15.5
    assert quote["source"] == "fallback"

    refreshed = api.post("/api/v1/public/fx/refresh").json()
    assert refreshed["changed"] is False
    assert refreshed["quote"]["source"] == "fallback"

    status = api.get("/api/v1/public/fx/status").json()
    assert status["cached"] is False
    assert status["apiEnabled"] is False
    assert status["fallbackRate"] == 15.5


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


def test_party_change_after_payment_is_refused(api, graphql):
    sid = _to_payment(api)
    ref = api.post(f"{BASE}/{sid}/payments").json()["reference"]
    api.post(f"{BASE}/{sid}/payments/callback", json={"reference": ref})
    for _ in range(3):
        api.post(f"{BASE}/{sid}/previous")

    r = api.put(f"{BASE}/{sid}/trip", json={"selectedDate": "2026-05-10", "adults": 5, "children": 1})
    assert r.status_code == 409
    session = api.get(f"{BASE}/{sid}").json()
    assert session["adults"] == 2
    assert session["pricing"]["totalAmount"] == 27000

    r = api.post(f"{BASE}/{sid}/submit")
    assert r.status_code == 200
    assert r.json()["adultsCount"] == 2
    assert r.json()["totalPrice"] == 27000
