"""
Payment providers.

Every provider turns a pending BillingTransaction into something the payer can
act on and returns a dict:

    {"provider", "providerPaymentId", "paymentUrl", "payload", "instructions",
     "autoSettle"}

``providerPaymentId`` is stored on the transaction and is the key webhooks
settle by.
"""
import hashlib
import secrets
import string
import time
from typing import Any, Dict
from urllib.parse import urljoin

from flask import current_app
from stripe import StripeClient

from app.errors import InternalError

MODE_STUB = "stub"
MODE_SIMULATED = "simulated"
MODE_STRIPE = "stripe"
PROVIDER_MODES = (MODE_STUB, MODE_SIMULATED, MODE_STRIPE)

PROVIDER_KASPI = "kaspi"
PROVIDER_SIMULATED = "simulated"
PROVIDER_STRIPE = "stripe"

_REF_ALPHABET = string.ascii_uppercase + string.digits


def _reference(prefix: str) -> str:
    # <PREFIX>_<epoch ms>_<7 chars>
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(7))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


class KaspiStubProvider:
    """Manual-settlement provider: returns a Kaspi invoice link and QR payload."""

    provider_id = PROVIDER_KASPI

    def create_payment_intent(self, transaction, title: str) -> Dict[str, Any]:
        ref = _reference("KASPI")
        instructions = "\n".join([
            "1. Open the Kaspi.kz app",
            '2. Go to "Payments"',
            f"3. Find the payment: {title}",
            f"4. Pay {transaction.amount} {transaction.currency_code}",
            "",
            "Or scan the QR code to pay.",
        ])
        return {
            "provider": self.provider_id,
            "providerPaymentId": ref,
            "paymentUrl": f"https://kaspi.kz/pay/{ref}",
            "payload": {
                "qr_payload": f"kaspi://pay/{ref}",
                "dev_note": (
                    "Stub payment. To complete: POST /api/dev/billing/settle "
                    f'with {{"transaction_id": {transaction.id}, "status": "completed"}}'
                ),
            },
            "instructions": instructions,
            "autoSettle": False,
        }


class SimulatedProvider:
    """Settles in the same request; never available in production."""

    provider_id = PROVIDER_SIMULATED

    def create_payment_intent(self, transaction, title: str) -> Dict[str, Any]:
        ref = _reference("SIM")
        current_app.logger.info(
            "billing.simulated.intent",
            extra={"transaction_id": transaction.id, "provider_payment_id": ref, "amount": transaction.amount},
        )
        return {
            "provider": self.provider_id,
            "providerPaymentId": ref,
            "paymentUrl": None,
            "payload": {"simulation_note": "Simulated payment, settled immediately.", "auto_settle": True},
            "instructions": "\n".join([
                "[SIMULATION MODE]",
                "No actual payment is required.",
                f"Payment: {title}",
                f"Amount: {transaction.amount} {transaction.currency_code}",
                f"Reference: {ref}",
            ]),
            "autoSettle": True,
        }


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class StripeCheckoutProvider:
    """One-time Stripe Checkout Session; the webhook settles by session id."""

    provider_id = PROVIDER_STRIPE

    def _client(self) -> StripeClient:
        key = current_app.config.get("STRIPE_SECRET_KEY")
        if not key:
            raise InternalError("STRIPE_SECRET_KEY is not configured")
        return StripeClient(key)

    def create_payment_intent(self, transaction, title: str) -> Dict[str, Any]:
        client = self._client()
        metadata = {"transaction_id": str(transaction.id), "user_id": str(transaction.user_id or "")}
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{
                "quantity": 1,
                "price_data": {
                    "currency": transaction.currency_code.lower(),
                    # Stripe amounts are in minor units
                    "unit_amount": transaction.amount * 100,
                    "product_data": {"name": title},
                },
            }],
            "success_url": _absolute_url("billing/success?session_id={CHECKOUT_SESSION_ID}"),
            "cancel_url": _absolute_url("billing/cancelled"),
            "metadata": metadata,
        }
        idem = make_idempotency_key("checkout", "payment", transaction.id)
        session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
        return {
            "provider": self.provider_id,
            "providerPaymentId": session.id,
            "paymentUrl": getattr(session, "url", None),
            "payload": {},
            "instructions": f"Complete the payment for {title} on the Stripe checkout page.",
            "autoSettle": False,
        }


_PROVIDERS = {
    MODE_STUB: KaspiStubProvider,
    MODE_SIMULATED: SimulatedProvider,
    MODE_STRIPE: StripeCheckoutProvider,
}


def provider_mode() -> str:
    mode = (current_app.config.get("PAYMENT_PROVIDER_MODE") or MODE_STUB).strip().lower()
    if mode not in PROVIDER_MODES:
        current_app.logger.warning("Unknown PAYMENT_PROVIDER_MODE=%r; using %r", mode, MODE_STUB)
        mode = MODE_STUB
    if mode == MODE_SIMULATED and current_app.config.get("APP_ENV") == "production":
        raise InternalError("PAYMENT_PROVIDER_MODE='simulated' is not allowed in production")
    return mode


def provider_id_for_mode(mode) -> str:
    return {
        MODE_SIMULATED: PROVIDER_SIMULATED,
        MODE_STRIPE: PROVIDER_STRIPE,
    }.get((mode or "").strip().lower(), PROVIDER_KASPI)


def get_payment_provider():
    return _PROVIDERS[provider_mode()]()
