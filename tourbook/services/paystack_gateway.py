"""Paystack inline checkout, driven as one awaitable attempt at a time.

Each attempt walks Idle -> Initializing -> AwaitingUserAction and then either
VerifyingResult -> Settled | Failed, or Cancelled. The widget's success and
close callbacks resolve a single future per attempt; the first one to fire
wins and later callbacks for the same attempt are ignored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from tourbook.core.errors import (
    ConfigurationError,
    GraphQLError,
    InitializationError,
    PaymentStateError,
    UnverifiedPayment,
    VerificationError,
)
from tourbook.services.graphql_client import GraphQLClient
from tourbook.services.payment_verification import PaymentVerificationClient, VerificationResult

logger = logging.getLogger(__name__)


class GatewayState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    AWAITING_USER_ACTION = "awaiting_user_action"
    VERIFYING_RESULT = "verifying_result"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (GatewayState.SETTLED, GatewayState.FAILED, GatewayState.CANCELLED)


def generate_reference() -> str:
    return f"TRA_{int(time.time() * 1000)}_{secrets.token_hex(6)}".upper()


@dataclass(frozen=True)
class WidgetResult:
    reference: str | None = None
    cancelled: bool = False

    @classmethod
    def success(cls, reference: str) -> "WidgetResult":
        return cls(reference=reference)

    @classmethod
    def cancel(cls) -> "WidgetResult":
        return cls(cancelled=True)


@dataclass(frozen=True)
class CheckoutConfig:
    """Everything the browser needs for PaystackPop.setup()."""

    key: str
    email: str
    amount: int
    currency: str
    reference: str
    inline_js_url: str
    metadata: dict = field(default_factory=dict)
    access_code: str = ""
    authorization_url: str = ""


class CheckoutWidget(Protocol):
    def load(self) -> None:
        """Make the client library available; raise ConfigurationError if it cannot be."""

    def open(self, config: CheckoutConfig, on_success: Callable[[str], None], on_close: Callable[[], None]) -> None:
        ...


class BrowserCheckoutWidget:
    """The widget renders in the customer's browser; callbacks come back over HTTP."""

    def __init__(self, inline_js_url: str):
        self.inline_js_url = inline_js_url
        self.load_error: str | None = None
        self.opened: CheckoutConfig | None = None

    def report_load_failure(self, reason: str) -> None:
        self.load_error = reason or "payment widget failed to load"

    def load(self) -> None:
        if self.load_error:
            raise ConfigurationError(f"Payment system unavailable ({self.load_error}). Please contact support.")
        if not self.inline_js_url.startswith("https://"):
            raise ConfigurationError("Payment widget library URL is not configured. Please contact support.")

    def open(self, config, on_success, on_close) -> None:
        self.opened = config


class PaymentAttempt:
    def __init__(self, *, reference: str, email: str, amount: int, currency: str, metadata: dict | None = None):
        self.reference = reference
        self.email = email
        self.amount = amount
        self.currency = currency
        self.metadata = metadata or {}
        self.state = GatewayState.IDLE
        self.checkout: CheckoutConfig | None = None
        self.verification: VerificationResult | None = None
        self.error: str | None = None
        self._result: Future = Future()

    def __repr__(self) -> str:
        return f"PaymentAttempt(reference={self.reference!r}, state={self.state.value})"

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _move(self, state: GatewayState) -> None:
        logger.info("Payment %s: %s -> %s", self.reference, self.state.value, state.value)
        self.state = state

    def _resolve(self, result: WidgetResult) -> bool:
        if self.state != GatewayState.AWAITING_USER_ACTION:
            logger.warning("Ignoring widget callback for %s in state %s", self.reference, self.state.value)
            return False
        if self._result.done():
            return False
        self._result.set_result(result)
        return True

    def on_success(self, reference: str) -> bool:
        return self._resolve(WidgetResult.success(reference))

    def on_close(self) -> bool:
        return self._resolve(WidgetResult.cancel())

    async def wait_for_widget(self) -> WidgetResult:
        return await asyncio.wrap_future(self._result)


@dataclass(frozen=True)
class PaymentOutcome:
    state: GatewayState
    reference: str
    verification: VerificationResult | None = None

    @property
    def settled(self) -> bool:
        return self.state == GatewayState.SETTLED

    @property
    def cancelled(self) -> bool:
        return self.state == GatewayState.CANCELLED


class PaystackGatewayAdapter:
    def __init__(
        self,
        *,
        public_key: str,
        graphql: GraphQLClient,
        verifier: PaymentVerificationClient,
        widget: CheckoutWidget,
        inline_js_url: str = "https://js.paystack.co/v1/inline.js",
    ):
        self.public_key = public_key
        self.graphql = graphql
        self.verifier = verifier
        self.widget = widget
        self.inline_js_url = inline_js_url
        self.current: PaymentAttempt | None = None
        self.used_references: set[str] = set()

    @property
    def state(self) -> GatewayState:
        return self.current.state if self.current else GatewayState.IDLE

    def ensure_ready(self) -> None:
        if not self.public_key:
            raise ConfigurationError("Payment configuration error. Please contact support.")
        self.widget.load()

    def _fresh_reference(self) -> str:
        ref = generate_reference()
        while ref in self.used_references:
            ref = generate_reference()
        self.used_references.add(ref)
        return ref

    async def initialize(self, *, email: str, amount: int, currency: str, metadata: dict | None = None) -> PaymentAttempt:
        """Register a pending transaction and open the widget. Returns once the customer can act."""
        if self.current and not self.current.done:
            raise PaymentStateError(f"payment {self.current.reference} is still {self.current.state.value}")
        self.ensure_ready()

        attempt = PaymentAttempt(reference=self._fresh_reference(), email=email, amount=amount, currency=currency, metadata=metadata)
        self.current = attempt
        attempt._move(GatewayState.INITIALIZING)

        if amount <= 0:
            attempt.error = "amount must be > 0"
            attempt._move(GatewayState.FAILED)
            raise InitializationError("Payment amount must be greater than zero")
        try:
            data = await asyncio.to_thread(
                self.graphql.paystack_initialize,
                email=email,
                amount=amount,
                currency=currency,
                reference=attempt.reference,
                metadata=json.dumps(attempt.metadata) if attempt.metadata else None,
            )
        except GraphQLError as e:
            attempt.error = str(e)
            attempt._move(GatewayState.FAILED)
            raise InitializationError("Payment initialization failed", cause=e) from e
        except Exception as e:
            attempt.error = f"{type(e).__name__}: {e}"
            attempt._move(GatewayState.FAILED)
            raise InitializationError("Payment initialization failed", cause=e) from e
        if not isinstance(data, dict):
            attempt.error = f"unreadable initialize response {data!r}"
            attempt._move(GatewayState.FAILED)
            raise InitializationError("Payment initialization returned an unreadable response")

        attempt.checkout = CheckoutConfig(
            key=self.public_key,
            email=email,
            amount=amount,
            currency=currency,
            reference=attempt.reference,
            inline_js_url=self.inline_js_url,
            metadata=attempt.metadata,
            access_code=str(data.get("access_code") or ""),
            authorization_url=str(data.get("authorization_url") or ""),
        )
        attempt._move(GatewayState.AWAITING_USER_ACTION)
        self.widget.open(attempt.checkout, attempt.on_success, attempt.on_close)
        return attempt

    async def settle(self, attempt: PaymentAttempt) -> PaymentOutcome:
        """Wait for the widget's verdict, then verify server-side before reporting success."""
        result = await attempt.wait_for_widget()
        if result.cancelled:
            attempt._move(GatewayState.CANCELLED)
            return PaymentOutcome(state=GatewayState.CANCELLED, reference=attempt.reference)

        attempt._move(GatewayState.VERIFYING_RESULT)
        if result.reference != attempt.reference:
            attempt.error = f"callback reference {result.reference!r} does not match attempt"
            attempt._move(GatewayState.FAILED)
            raise UnverifiedPayment("Payment reference mismatch", reference=attempt.reference)
        try:
            verification = await self.verifier.verify(attempt.reference)
        except VerificationError as e:
            attempt.error = str(e)
            attempt._move(GatewayState.FAILED)
            raise
        except Exception as e:
            # an attempt never stays in VerifyingResult
            attempt.error = f"{type(e).__name__}: {e}"
            attempt._move(GatewayState.FAILED)
            raise VerificationError("Payment verification failed", cause=e) from e

        attempt.verification = verification
        if not verification.settled:
            # pending counts as failed: only a settled payment unlocks submission
            attempt.error = f"verification status {verification.status.value}"
            attempt._move(GatewayState.FAILED)
            raise UnverifiedPayment("Payment verification failed", reference=attempt.reference, status=verification.status.value)
        if verification.amount != attempt.amount or (verification.currency and verification.currency != attempt.currency):
            attempt.error = f"settled {verification.amount} {verification.currency}, expected {attempt.amount} {attempt.currency}"
            attempt._move(GatewayState.FAILED)
            raise UnverifiedPayment("Settled amount does not match the booking total", reference=attempt.reference, status=verification.status.value)

        attempt._move(GatewayState.SETTLED)
        return PaymentOutcome(state=GatewayState.SETTLED, reference=attempt.reference, verification=verification)

    async def pay(self, *, email: str, amount: int, currency: str, metadata: dict | None = None) -> PaymentOutcome:
        attempt = await self.initialize(email=email, amount=amount, currency=currency, metadata=metadata)
        return await self.settle(attempt)
