import logging
from dataclasses import dataclass
import requests

from tourbook.core.errors import GraphQLError

logger = logging.getLogger(__name__)

TOUR_BY_ID_QUERY = """
query TourById($id: ID!) {
  tour(id: $id) {
    id
    title
    slug
    duration
    priceFrom
  }
}
"""

PAYSTACK_INITIALIZE_MUTATION = """
mutation PaystackInitialize($input: PaystackInitializeInput!) {
  paystackInitialize(input: $input) {
    success
    message
    data {
      authorization_url
      access_code
      reference
    }
  }
}
"""

PAYSTACK_VERIFY_MUTATION = """
mutation PaystackVerify($reference: String!) {
  paystackVerify(reference: $reference) {
    success
    message
    data {
      reference
      amount
      status
      gateway_response
      paid_at
      channel
      currency
    }
  }
}
"""

CREATE_BOOKING_MUTATION = """
mutation CreateBooking($input: CreateBookingInput!) {
  createBooking(input: $input) {
    id
    bookingReference
    startDate
    endDate
    adultsCount
    childrenCount
    totalPrice
    status
    paymentStatus
    createdAt
  }
}
"""

CANCEL_BOOKING_MUTATION = """
mutation CancelBooking($id: ID!) {
  cancelBooking(id: $id) {
    id
    status
    updatedAt
  }
}
"""


@dataclass
class GraphQLConfig:
    url: str                # e.g. http://localhost:4000/graphql
    auth_token: str = ""    # sent as Bearer when set
    timeout: int = 25


class GraphQLClient:
    def __init__(self, cfg: GraphQLConfig, session: requests.Session | None = None):
        self.cfg = cfg
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.cfg.auth_token:
            headers["Authorization"] = f"Bearer {self.cfg.auth_token}"
        return headers

    def request(self, query: str, variables: dict | None = None) -> dict:
        """POST a query and return its `data` object. Raises GraphQLError on any failure."""
        try:
            r = self.session.post(
                self.cfg.url,
                json={"query": query, "variables": variables or {}},
                headers=self._headers(),
                timeout=self.cfg.timeout,
            )
        except requests.RequestException as e:
            logger.error("GraphQL request to %s failed: %s", self.cfg.url, e)
            raise GraphQLError(f"GraphQL request failed: {e}") from e
        try:
            body = r.json() if r.text else {}
        except ValueError:
            body = {"raw": r.text}
        errors = body.get("errors") or []
        if r.status_code >= 400 or errors:
            msg = "; ".join(str(e.get("message", e)) for e in errors if isinstance(e, dict)) or f"HTTP {r.status_code}"
            logger.error("GraphQL %s error: %s", r.status_code, msg)
            raise GraphQLError(msg, status_code=r.status_code, errors=errors)
        return body.get("data") or {}

    def tour_by_id(self, tour_id: str) -> dict | None:
        return self.request(TOUR_BY_ID_QUERY, {"id": tour_id}).get("tour")

    def paystack_initialize(self, *, email: str, amount: int, currency: str, reference: str, metadata: str | None = None) -> dict:
        payload = {"email": email, "amount": amount, "currency": currency, "reference": reference}
        if metadata:
            payload["metadata"] = metadata
        return _unwrap(self.request(PAYSTACK_INITIALIZE_MUTATION, {"input": payload}), "paystackInitialize")

    def paystack_verify(self, reference: str) -> dict:
        return _unwrap(self.request(PAYSTACK_VERIFY_MUTATION, {"reference": reference}), "paystackVerify")

    def create_booking(self, payload: dict) -> dict:
        return self.request(CREATE_BOOKING_MUTATION, {"input": payload}).get("createBooking") or {}

    def cancel_booking(self, booking_id: str) -> dict:
        return self.request(CANCEL_BOOKING_MUTATION, {"id": booking_id}).get("cancelBooking") or {}


def _unwrap(data: dict, field: str) -> dict:
    # Paystack mutations answer {success, message, data}; success=false is an application error
    envelope = data.get(field) or {}
    if not envelope.get("success") or envelope.get("data") is None:
        raise GraphQLError(envelope.get("message") or f"{field} failed")
    return envelope["data"]
