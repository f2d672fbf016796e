import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from tourbook.core.errors import GraphQLError, VerificationError
from tourbook.services.graphql_client import GraphQLClient

logger = logging.getLogger(__name__)

PENDING_STATUSES = ("pending", "ongoing", "processing", "queued")


class VerificationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class VerificationResult:
    reference: str
    status: VerificationStatus
    amount: int            # minor units, as settled by the gateway
    currency: str
    gateway_response: str = ""
    paid_at: str | None = None
    channel: str = ""
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def settled(self) -> bool:
        return self.status == VerificationStatus.SUCCESS


def _status_from_gateway(raw_status: str) -> VerificationStatus:
    s = (raw_status or "").strip().lower()
    if s == "success":
        return VerificationStatus.SUCCESS
    if s in PENDING_STATUSES:
        return VerificationStatus.PENDING
    return VerificationStatus.FAILED


class PaymentVerificationClient:
    """Read-only settlement check; safe to call repeatedly for the same reference."""

    def __init__(self, graphql: GraphQLClient):
        self.graphql = graphql

    async def verify(self, reference: str) -> VerificationResult:
        if not reference:
            raise VerificationError("payment reference is required")
        try:
            data = await asyncio.to_thread(self.graphql.paystack_verify, reference)
        except GraphQLError as e:
            logger.error("Verification of %s failed: %s", reference, e)
            raise VerificationError("Payment verification failed", cause=e) from e

        try:
            result = VerificationResult(
                reference=str(data.get("reference") or reference),
                status=_status_from_gateway(data.get("status", "")),
                amount=int(data.get("amount") or 0),
                currency=str(data.get("currency") or "").upper(),
                gateway_response=str(data.get("gateway_response") or ""),
                paid_at=data.get("paid_at"),
                channel=str(data.get("channel") or ""),
                raw=data,
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.error("Unreadable verification payload for %s: %r", reference, data)
            raise VerificationError("Payment verification returned an unreadable response", cause=e) from e
        logger.info("Verified %s: status=%s amount=%s %s", reference, result.status.value, result.amount, result.currency)
        return result
