"""
Payment Gateways

Thin REST clients for Stripe (recurring subscriptions, card) and
MercadoPago (one-off PIX payments), plus webhook signature verification.

Without credentials a gateway runs in mock mode: no network calls, and
ids are derived from the inputs so repeated calls are reproducible.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import hashlib
import hmac
import logging
import time
import httpx

from fitos.config import get_settings
from fitos.core.exceptions import PaymentProviderError, WebhookSignatureError

logger = logging.getLogger(__name__)

STRIPE_SIGNATURE_TOLERANCE = 300

# 1x1 transparent PNG, stands in for the PIX QR image in mock mode
MOCK_QR_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="


def _mock_id(prefix: str, *parts: str) -> str:
    digest = hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()[:16]
    return f"{prefix}_mock_{digest}"


@dataclass
class StripeSubscriptionResult:
    customer_id: str
    subscription_id: str
    status: str
    current_period_end: datetime
    client_secret: Optional[str] = None


@dataclass
class PixPayment:
    payment_id: str
    status: str
    qr_code: str
    qr_code_base64: str
    expires_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict)


class StripeGateway:
    """Stripe REST API (form-encoded requests, JSON responses)."""

    name = "stripe"

    def __init__(self, secret_key: str, base_url: str = "https://api.stripe.com/v1", timeout_seconds: float = 15.0):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def mock(self) -> bool:
        return not self.secret_key

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self.base_url + path
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.request(
                    method,
                    url,
                    data=data,
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            body = e.response.text[:300]
            logger.error(f"Stripe HTTP {e.response.status_code} on {path}: {body}")
            raise PaymentProviderError(self.name, f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"Stripe request failed on {path}: {e}")
            raise PaymentProviderError(self.name, "request failed")

    def create_customer(self, tenant_id: str, email: str, name: str) -> str:
        if self.mock:
            return _mock_id("cus", tenant_id)
        customer = self._request("POST", "/customers", {
            "email": email,
            "name": name,
            "metadata[tenant_id]": tenant_id,
        })
        return customer["id"]

    def create_subscription(self, customer_id: str, price_id: str, tenant_id: str) -> StripeSubscriptionResult:
        if self.mock:
            return StripeSubscriptionResult(
                customer_id=customer_id,
                subscription_id=_mock_id("sub", customer_id, price_id),
                status="active",
                current_period_end=datetime.utcnow() + timedelta(days=30),
                client_secret=_mock_id("pi", customer_id, price_id) + "_secret_mock",
            )
        sub = self._request("POST", "/subscriptions", {
            "customer": customer_id,
            "items[0][price]": price_id,
            "metadata[tenant_id]": tenant_id,
            "payment_behavior": "default_incomplete",
            "expand[]": "latest_invoice.payment_intent",
        })
        client_secret = None
        invoice = sub.get("latest_invoice") or {}
        if isinstance(invoice, dict):
            intent = invoice.get("payment_intent") or {}
            if isinstance(intent, dict):
                client_secret = intent.get("client_secret")
        return StripeSubscriptionResult(
            customer_id=customer_id,
            subscription_id=sub["id"],
            status=sub.get("status", "incomplete"),
            current_period_end=datetime.utcfromtimestamp(sub["current_period_end"]),
            client_secret=client_secret,
        )

    def change_price(self, subscription_id: str, price_id: str) -> Dict[str, Any]:
        """Swap the subscription's single item to another price, with proration."""
        if self.mock:
            return {"id": subscription_id, "status": "active", "price": price_id}
        sub = self._request("GET", f"/subscriptions/{subscription_id}")
        item_id = sub["items"]["data"][0]["id"]
        return self._request("POST", f"/subscriptions/{subscription_id}", {
            "items[0][id]": item_id,
            "items[0][price]": price_id,
            "proration_behavior": "create_prorations",
        })

    def cancel_subscription(self, subscription_id: str, at_period_end: bool = True) -> Dict[str, Any]:
        if self.mock:
            return {
                "id": subscription_id,
                "cancel_at_period_end": at_period_end,
                "status": "active" if at_period_end else "canceled",
            }
        if at_period_end:
            return self._request("POST", f"/subscriptions/{subscription_id}", {"cancel_at_period_end": "true"})
        return self._request("DELETE", f"/subscriptions/{subscription_id}")


class MercadoPagoGateway:
    """MercadoPago payments API (JSON)."""

    name = "mercadopago"

    def __init__(self, access_token: str, base_url: str = "https://api.mercadopago.com", timeout_seconds: float = 15.0):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def mock(self) -> bool:
        return not self.access_token

    def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None,
                 idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.request(method, self.base_url + path, json=json_body, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"MercadoPago HTTP {e.response.status_code} on {path}: {e.response.text[:300]}")
            raise PaymentProviderError(self.name, f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"MercadoPago request failed on {path}: {e}")
            raise PaymentProviderError(self.name, "request failed")

    def create_pix_payment(self, amount: float, description: str, payer_email: str, external_reference: str) -> PixPayment:
        """Create a PIX charge; the QR code expires after 30 minutes."""
        expires_at = datetime.utcnow() + timedelta(minutes=30)
        if self.mock:
            payment_id = _mock_id("mp", external_reference)
            return PixPayment(
                payment_id=payment_id,
                status="pending",
                qr_code="00020126580014br.gov.bcb.pix0136" + payment_id,
                qr_code_base64=MOCK_QR_BASE64,
                expires_at=expires_at,
            )
        payment = self._request(
            "POST",
            "/v1/payments",
            {
                "transaction_amount": round(amount, 2),
                "description": description,
                "payment_method_id": "pix",
                "payer": {"email": payer_email},
                "external_reference": external_reference,
                "date_of_expiration": expires_at.strftime("%Y-%m-%dT%H:%M:%S.000-00:00"),
            },
            idempotency_key=external_reference,
        )
        transaction = (payment.get("point_of_interaction") or {}).get("transaction_data") or {}
        return PixPayment(
            payment_id=str(payment["id"]),
            status=payment.get("status", "pending"),
            qr_code=transaction.get("qr_code", ""),
            qr_code_base64=transaction.get("qr_code_base64", ""),
            expires_at=expires_at,
            raw=payment,
        )

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        """
        Look a payment up. Returns at least id, status and
        external_reference. Mock mode reports every payment as approved.
        """
        if self.mock:
            return {"id": payment_id, "status": "approved", "status_detail": "accredited"}
        return self._request("GET", f"/v1/payments/{payment_id}")


def get_stripe_gateway() -> StripeGateway:
    settings = get_settings()
    return StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_API_BASE, settings.PAYMENT_TIMEOUT_SECONDS)


def get_mercadopago_gateway() -> MercadoPagoGateway:
    settings = get_settings()
    return MercadoPagoGateway(
        settings.MERCADOPAGO_ACCESS_TOKEN,
        settings.MERCADOPAGO_API_BASE,
        settings.PAYMENT_TIMEOUT_SECONDS,
    )


# ============================================================================
# Webhook signatures
# ============================================================================

def _parse_signature_header(header: str) -> Dict[str, list]:
    parts: Dict[str, list] = {}
    for item in (header or "").split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts.setdefault(key, []).append(value)
    return parts


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_stripe_signature(payload: bytes, header: str, secret: str,
                            tolerance: int = STRIPE_SIGNATURE_TOLERANCE, now: Optional[float] = None) -> None:
    """
    Verify a `Stripe-Signature` header (t=<ts>,v1=<hex>[,v1=...]).

    The signed message is "{t}.{payload}". Raises WebhookSignatureError.
    """
    if not secret:
        raise WebhookSignatureError("Stripe webhook secret not configured")
    parts = _parse_signature_header(header)
    try:
        timestamp = int(parts["t"][0])
    except (KeyError, ValueError):
        raise WebhookSignatureError("Malformed Stripe-Signature header")
    signatures = parts.get("v1", [])
    if not signatures:
        raise WebhookSignatureError("No v1 signature in Stripe-Signature header")

    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance:
        raise WebhookSignatureError("Stripe webhook timestamp outside tolerance")

    expected = _hmac_hex(secret, f"{timestamp}.".encode("utf-8") + payload)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError()


def verify_mercadopago_signature(header: str, request_id: str, data_id: str, secret: str) -> None:
    """
    Verify a MercadoPago `x-signature` header (ts=<ts>,v1=<hex>).

    The signed manifest is "id:{data.id};request-id:{x-request-id};ts:{ts};".
    """
    if not secret:
        raise WebhookSignatureError("MercadoPago webhook secret not configured")
    parts = _parse_signature_header(header)
    ts = (parts.get("ts") or [None])[0]
    v1 = (parts.get("v1") or [None])[0]
    if not ts or not v1:
        raise WebhookSignatureError("Malformed x-signature header")

    manifest = f"id:{str(data_id).lower()};request-id:{request_id};ts:{ts};"
    if not hmac.compare_digest(_hmac_hex(secret, manifest.encode("utf-8")), v1):
        raise WebhookSignatureError()
