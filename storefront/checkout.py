"""
Checkout orchestration for the storefront.

    INITIALIZING --start--> READY --submit--> PROCESSING --> SUCCEEDED
          |                   |                   |
          +------------------ +-------------------+--------> FAILED

The orchestrator only talks to the payment service. It never writes cart rows
or orders; a succeeded payment fires `on_success(payment_intent_id)` and the
order finalization collaborator takes it from there.
"""

import enum
import logging
from typing import Callable, Optional

from storefront.cart import CartStore
from storefront.clients import CheckoutDetails, PaymentServiceClient

logger = logging.getLogger(__name__)


class CheckoutState(str, enum.Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CheckoutOrchestrator:
    """Drives one checkout attempt from cart total to confirmed payment."""

    def __init__(
        self,
        cart: CartStore,
        payments: PaymentServiceClient,
        on_success: Optional[Callable[[str], None]] = None,
    ):
        self.cart = cart
        self.payments = payments
        self.on_success = on_success

        self.state = CheckoutState.INITIALIZING
        self.error: Optional[str] = None
        self.client_secret: Optional[str] = None
        self.payment_intent_id: Optional[str] = None
        self.amount: int = 0
        self.discount_code: Optional[str] = None
        self.discounted_amount: Optional[int] = None
        self.payment_status: Optional[str] = None

    def _fail(self, message: str) -> CheckoutState:
        self.state = CheckoutState.FAILED
        self.error = message
        logger.warning(f"Checkout failed: {message}")
        return self.state

    def _request_intent(self) -> CheckoutState:
        amount = self.cart.get_payable_amount()
        if amount <= 0:
            return self._fail("Cart is empty")

        items = [{"productId": line.product_id, "quantity": line.quantity} for line in self.cart.items]
        user_id = self.cart.user_id
        try:
            response = self.payments.create_payment_intent(amount, user_id, items, self.discount_code)
        except Exception as e:
            logger.exception("Error initializing checkout")
            return self._fail(str(e) or "Failed to initialize checkout")

        if not response.get("clientSecret"):
            return self._fail(response.get("error") or "Failed to create payment intent")

        self.client_secret = response["clientSecret"]
        self.payment_intent_id = response.get("paymentIntentId")
        self.amount = response.get("amount", amount)
        self.error = None
        self.state = CheckoutState.READY
        logger.info(f"Checkout ready with payment intent {self.payment_intent_id} for {self.amount}")
        return self.state

    def start(self) -> CheckoutState:
        """Create the payment intent for the current cart total."""
        self.state = CheckoutState.INITIALIZING
        return self._request_intent()

    def apply_discount(self, code: str) -> bool:
        """
        Validate a discount code and, if the intent already exists, re-create
        it so the amount Stripe collects includes the discount.
        """
        if self.state not in (CheckoutState.INITIALIZING, CheckoutState.READY):
            self.error = "Discount can no longer be changed"
            return False

        code = (code or "").strip()
        if not code:
            self.error = "Please enter a discount code"
            return False

        amount = self.cart.get_payable_amount()
        try:
            result = self.payments.validate_discount(code, amount)
        except Exception as e:
            logger.error(f"Error validating discount {code}: {e}")
            self.error = "Failed to validate discount code"
            return False

        if not result.get("valid"):
            self.error = result.get("error") or "Invalid discount code"
            return False

        self.discount_code = result.get("code", code)
        self.discounted_amount = result.get("amount")
        self.error = None

        if self.state == CheckoutState.READY:
            self._request_intent()
        return self.state != CheckoutState.FAILED

    def submit(self, details: CheckoutDetails) -> CheckoutState:
        """Confirm the payment with the buyer's details."""
        if self.state not in (CheckoutState.READY, CheckoutState.PROCESSING) or not self.client_secret:
            self.error = "Checkout is not ready"
            return self.state

        if not details.email or not details.full_name:
            self.error = "Please fill in all required fields"
            return self.state

        self.state = CheckoutState.PROCESSING
        self.error = None
        try:
            response = self.payments.confirm_payment(self.client_secret, details)
        except Exception as e:
            logger.exception("Unexpected error confirming payment")
            return self._fail(str(e) or "An unexpected error occurred")

        if response.get("error"):
            return self._fail(response["error"])

        self.payment_status = response.get("status")
        if self.payment_status == "succeeded":
            self.payment_intent_id = response.get("paymentIntentId", self.payment_intent_id)
            self.state = CheckoutState.SUCCEEDED
            logger.info(f"Payment {self.payment_intent_id} succeeded")
            if self.on_success:
                self.on_success(self.payment_intent_id)
        elif not self.payment_status:
            return self._fail("Payment failed")
        else:
            logger.info(f"Payment {self.payment_intent_id} is {self.payment_status}")
        return self.state
