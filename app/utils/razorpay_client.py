import razorpay
import requests

from app.core.config import settings
from app.core.exceptions import ProviderError
from app.core.logging_config import get_logger

logger = get_logger("payment")


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


def from_paise(amount) -> float:
    return round((amount or 0) / 100, 2)


class RazorpayGateway:
    """
    Thin wrapper over the Razorpay SDK.

    Every network call is bounded by ``payment_provider_timeout`` and any
    SDK or transport failure surfaces as ``ProviderError``. Signature
    checks never raise; they return True or False.
    """

    def __init__(self, key_id=None, key_secret=None, webhook_secret=None, timeout=None):
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        )
        self.timeout = timeout or settings.payment_provider_timeout
        self.client = razorpay.Client(auth=(self.key_id, self.key_secret))

    def _call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, timeout=self.timeout, **kwargs)
        except (
            razorpay.errors.BadRequestError,
            razorpay.errors.GatewayError,
            razorpay.errors.ServerError,
            requests.RequestException,
        ) as e:
            logger.error(f"Razorpay {action} failed: {e}")
            raise ProviderError(f"Payment provider error during {action}, please retry")

    # ----------------------------------------------------------------
    # NETWORK CALLS
    # ----------------------------------------------------------------
    def create_order(self, amount: float, currency: str, receipt: str, notes=None) -> dict:
        return self._call(
            "order creation",
            self.client.order.create,
            data={
                "amount": to_paise(amount),
                "currency": currency,
                "receipt": receipt,
                "payment_capture": 1,
                "notes": notes or {},
            },
        )

    def fetch_payment(self, payment_id: str) -> dict:
        return self._call("payment fetch", self.client.payment.fetch, payment_id)

    def refund_payment(self, payment_id: str, amount: float, notes=None) -> dict:
        return self._call(
            "refund",
            self.client.payment.refund,
            payment_id,
            data={"amount": to_paise(amount), "notes": notes or {}},
        )

    # ----------------------------------------------------------------
    # SIGNATURES
    # ----------------------------------------------------------------
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (signature and self.key_secret):
            return False
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
            return True
        except razorpay.errors.SignatureVerificationError:
            return False

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        if not (signature and self.webhook_secret):
            return False
        try:
            self.client.utility.verify_webhook_signature(
                raw_body.decode("utf-8"), signature, self.webhook_secret
            )
            return True
        except (razorpay.errors.SignatureVerificationError, UnicodeDecodeError):
            return False


def get_payment_gateway() -> RazorpayGateway:
    return RazorpayGateway()
