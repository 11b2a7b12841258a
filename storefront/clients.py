"""
HTTP clients for the cart and payment services.

Both wrap a shared httpx.Client. The cart client raises on any non-2xx
response so cart writes fail closed. The payment client returns the decoded
body for 4xx/5xx answers that carry an `error`, which the checkout flow shows
to the buyer; transport failures propagate as httpx errors.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from services.cart_service.cart_repository import MergeResult
from services.cart_service.schemas import CartLine, CartResponse
from shared.owners import Owner, UserOwner

logger = logging.getLogger(__name__)


class CartServiceClient:
    """
    Cart backend talking to the cart service over HTTP.

    A user cart is addressed by the signed-in user's access token; the
    service resolves the user id from it.
    """

    def __init__(
        self,
        base_url: str,
        http: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        access_token: Optional[str] = None,
    ):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self.access_token = access_token

    def owner_headers(self, owner: Owner) -> Dict[str, str]:
        if isinstance(owner, UserOwner):
            if not self.access_token:
                raise ValueError(f"No access token for {owner}")
            return {"Authorization": f"Bearer {self.access_token}"}
        return {"X-Session-Id": owner.session_id}

    def _cart(self, response: httpx.Response) -> List[CartLine]:
        response.raise_for_status()
        return CartResponse.model_validate(response.json()).items

    def list_lines(self, owner: Owner) -> List[CartLine]:
        return self._cart(self.http.get("/cart", headers=self.owner_headers(owner)))

    def add_item(self, owner: Owner, product_id: str, quantity: int = 1) -> List[CartLine]:
        response = self.http.post(
            "/cart/items",
            headers=self.owner_headers(owner),
            json={"product_id": product_id, "quantity": quantity},
        )
        return self._cart(response)

    def set_quantity(self, owner: Owner, item_id: str, quantity: int) -> List[CartLine]:
        response = self.http.put(
            f"/cart/items/{item_id}",
            headers=self.owner_headers(owner),
            json={"quantity": quantity},
        )
        return self._cart(response)

    def delete_item(self, owner: Owner, item_id: str) -> List[CartLine]:
        return self._cart(self.http.delete(f"/cart/items/{item_id}", headers=self.owner_headers(owner)))

    def clear(self, owner: Owner) -> None:
        self.http.delete("/cart", headers=self.owner_headers(owner)).raise_for_status()

    def merge_guest_cart(self, session_id: str, user_id: str) -> MergeResult:
        response = self.http.post(
            "/cart/merge",
            headers=self.owner_headers(UserOwner(user_id=user_id)),
            json={"session_id": session_id},
        )
        response.raise_for_status()
        body = response.json()
        return MergeResult(moved=body["moved"], combined=body["combined"])


class ShippingAddress(BaseModel):
    line1: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "US"


class CheckoutDetails(BaseModel):
    """What the buyer types into the checkout form."""

    email: str = ""
    full_name: str = ""
    phone: Optional[str] = None
    address: ShippingAddress = Field(default_factory=ShippingAddress)
    payment_method: Optional[str] = None
    return_url: Optional[str] = None


class PaymentServiceClient:
    """Client for the payment glue endpoints used during checkout."""

    def __init__(self, base_url: str, http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.http.post(path, json=payload)
        if response.is_success:
            return response.json()
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            logger.warning(f"{path} answered {response.status_code}: {body['error']}")
            return body
        response.raise_for_status()
        return {}

    def create_payment_intent(
        self,
        amount: int,
        user_id: Optional[str],
        items: List[Dict[str, Any]],
        discount_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"amount": amount, "items": items}
        if user_id:
            payload["userId"] = user_id
        if discount_code:
            payload["discountCode"] = discount_code
        return self._post("/create-payment-intent", payload)

    def validate_discount(self, code: str, amount: int) -> Dict[str, Any]:
        return self._post("/validate-discount", {"code": code, "amount": amount})

    def confirm_payment(self, client_secret: str, details: CheckoutDetails) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "clientSecret": client_secret,
            "receiptEmail": details.email,
            "fullName": details.full_name,
        }
        if details.phone:
            payload["phone"] = details.phone
        if details.address.line1:
            payload["address"] = {
                "line1": details.address.line1,
                "city": details.address.city,
                "state": details.address.state,
                "postalCode": details.address.postal_code,
                "country": details.address.country,
            }
        if details.payment_method:
            payload["paymentMethod"] = details.payment_method
        if details.return_url:
            payload["returnUrl"] = details.return_url
        return self._post("/confirm-payment", payload)
