"""
Payment processor integration.

The engine consumes two primitives from the processor: "charge now" and
"create a proration invoice item". Every call goes through
``PaymentGateway``, which bounds it with a timeout and turns anything other
than a confirmed success into ``PaymentFailedError``.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import stripe
import structlog

from oficaz.platform.billing.config import PaymentConfig
from oficaz.platform.billing.exceptions import BillingConfigurationError, PaymentFailedError
from oficaz.platform.billing.money_utils import create_money, money_handler

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChargeRequest:
    """A single outbound charge."""

    company_id: int
    amount: Decimal
    currency: str
    description: str
    idempotency_key: str
    customer_ref: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    amount: Decimal
    reference: str | None = None
    failure_reason: str | None = None


class PaymentProcessor(Protocol):
    """What the engine needs from a payment provider."""

    async def charge(self, request: ChargeRequest) -> ChargeResult: ...

    async def create_proration_item(self, request: ChargeRequest) -> ChargeResult: ...


class StripePaymentProcessor:
    """Stripe-backed processor.

    The SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise BillingConfigurationError(
                "Stripe API key is not configured", config_key="billing.stripe_api_key"
            )
        self.api_key = api_key

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        return await asyncio.to_thread(self._charge_sync, request)

    async def create_proration_item(self, request: ChargeRequest) -> ChargeResult:
        return await asyncio.to_thread(self._invoice_item_sync, request)

    def _require_customer(self, request: ChargeRequest) -> str:
        if not request.customer_ref:
            raise PaymentFailedError(
                "No payment method on file", amount=request.amount, reason="no_customer"
            )
        return request.customer_ref

    def _charge_sync(self, request: ChargeRequest) -> ChargeResult:
        customer = self._require_customer(request)
        money = create_money(request.amount, request.currency)
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=money_handler.money_to_minor_units(money),
                currency=request.currency.lower(),
                customer=customer,
                description=request.description,
                metadata={"company_id": str(request.company_id), **request.metadata},
                confirm=True,
                off_session=True,
                idempotency_key=request.idempotency_key,
            )
        except stripe.CardError as e:
            return ChargeResult(
                success=False,
                amount=request.amount,
                failure_reason=e.user_message or e.code or "card_declined",
            )

        if intent.status != "succeeded":
            return ChargeResult(
                success=False,
                amount=request.amount,
                reference=intent.id,
                failure_reason=f"payment_intent_{intent.status}",
            )
        return ChargeResult(success=True, amount=request.amount, reference=intent.id)

    def _invoice_item_sync(self, request: ChargeRequest) -> ChargeResult:
        customer = self._require_customer(request)
        money = create_money(request.amount, request.currency)
        item = stripe.InvoiceItem.create(
            api_key=self.api_key,
            customer=customer,
            amount=money_handler.money_to_minor_units(money),
            currency=request.currency.lower(),
            description=request.description,
            metadata={"company_id": str(request.company_id), **request.metadata},
            idempotency_key=request.idempotency_key,
        )
        return ChargeResult(success=True, amount=request.amount, reference=item.id)


class PaymentGateway:
    """Timeout-bounded access to the processor.

    Zero amounts never reach the processor. A timeout, an exception or an
    unsuccessful result all raise ``PaymentFailedError``; a stuck call is
    never treated as paid.
    """

    def __init__(self, processor: PaymentProcessor, timeout_seconds: float = 10.0) -> None:
        self.processor = processor
        self.timeout_seconds = timeout_seconds

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        return await self._call("charge", self.processor.charge, request)

    async def create_proration_item(self, request: ChargeRequest) -> ChargeResult:
        return await self._call("proration_item", self.processor.create_proration_item, request)

    async def _call(self, kind: str, func: Any, request: ChargeRequest) -> ChargeResult:
        if request.amount <= 0:
            return ChargeResult(success=True, amount=Decimal("0.00"))

        log = logger.bind(
            company_id=request.company_id,
            kind=kind,
            amount=str(request.amount),
            idempotency_key=request.idempotency_key,
        )
        try:
            result: ChargeResult = await asyncio.wait_for(
                func(request), timeout=self.timeout_seconds
            )
        except TimeoutError as e:
            log.warning("billing.payment.timeout", timeout_seconds=self.timeout_seconds)
            raise PaymentFailedError(
                "Payment processor did not respond in time",
                amount=request.amount,
                reason="timeout",
            ) from e
        except PaymentFailedError:
            log.warning("billing.payment.rejected")
            raise
        except Exception as e:
            log.error("billing.payment.error", error=str(e), error_type=type(e).__name__)
            raise PaymentFailedError(
                "Payment could not be processed", amount=request.amount, reason=str(e)
            ) from e

        if not result.success:
            log.warning("billing.payment.declined", reason=result.failure_reason)
            raise PaymentFailedError(
                "Payment was declined",
                amount=request.amount,
                reason=result.failure_reason,
                reference=result.reference,
            )

        log.info("billing.payment.succeeded", reference=result.reference)
        return result


def build_payment_processor(config: PaymentConfig) -> PaymentProcessor:
    """Processor for the configured provider.

    Raises:
        BillingConfigurationError: unknown provider or missing credentials
    """
    if config.provider == "stripe":
        return StripePaymentProcessor(api_key=config.stripe_api_key or "")
    raise BillingConfigurationError(
        f"Unsupported payment provider '{config.provider}'", config_key="billing.payment_provider"
    )


__all__ = [
    "ChargeRequest",
    "ChargeResult",
    "PaymentGateway",
    "PaymentProcessor",
    "StripePaymentProcessor",
    "build_payment_processor",
]
