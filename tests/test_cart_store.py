from decimal import Decimal

import httpx
import pytest

from services.cart_service.schemas import CartLine, ProductSummary
from storefront.cart import CartMergeError, CartStore, DirectCartBackend
from storefront.clients import CartServiceClient
from storefront.identity import RedisSessionStorage, SessionIdentityResolver
from tests.conftest import CUSTOMER_ID


def make_line(line_id, quantity, price=None):
    product = None
    if price is not None:
        product = ProductSummary(id=f"p-{line_id}", name=f"Product {line_id}", price=Decimal(price))
    return CartLine(id=line_id, product_id=f"p-{line_id}", quantity=quantity, product=product)


class StaticBackend:
    def __init__(self, lines):
        self.lines = lines

    def list_lines(self, owner):
        return self.lines


class BrokenBackend:
    """Every call fails the way an unreachable backend would."""

    def __init__(self):
        self.merge_calls = 0

    def _fail(self, *args, **kwargs):
        raise ConnectionError("backend unavailable")

    list_lines = add_item = set_quantity = delete_item = clear = _fail

    def merge_guest_cart(self, session_id, user_id):
        self.merge_calls += 1
        raise ConnectionError("backend unavailable")


@pytest.fixture()
def resolver(fake_redis):
    return SessionIdentityResolver(RedisSessionStorage(fake_redis, "test"))


def test_totals_from_fetched_lines(resolver):
    store = CartStore(StaticBackend([make_line("a", 2, "9.99"), make_line("b", 3, "4.50")]), resolver)

    store.fetch_cart()

    assert store.get_total_items() == 5
    assert store.get_total_price() == Decimal("33.48")
    assert store.get_payable_amount() == 3348


def test_lines_without_product_are_skipped_in_price(resolver):
    store = CartStore(StaticBackend([make_line("a", 2, "9.99"), make_line("gone", 4)]), resolver)

    store.fetch_cart()

    assert store.get_total_price() == Decimal("19.98")
    assert store.get_total_items() == 6


def test_fetch_failure_degrades_to_empty(resolver):
    store = CartStore(BrokenBackend(), resolver)
    store.items = [make_line("stale", 1, "1.00")]

    assert store.fetch_cart() == []
    assert store.get_total_price() == Decimal("0.00")


@pytest.mark.parametrize(
    "call",
    [
        lambda store: store.add_to_cart("p-1"),
        lambda store: store.update_quantity("item-1", 2),
        lambda store: store.remove_from_cart("item-1"),
        lambda store: store.clear_cart(),
    ],
)
def test_write_failures_propagate(resolver, call):
    store = CartStore(BrokenBackend(), resolver)

    with pytest.raises(ConnectionError):
        call(store)


def test_guest_store_uses_session_identity(db, products, resolver):
    store = CartStore(DirectCartBackend(db), resolver)

    store.add_to_cart(products["whey"].id, 2)
    store.add_to_cart(products["whey"].id)

    assert str(store.owner) == f"guest:{resolver.peek()}"
    assert [(line.product_id, line.quantity) for line in store.items] == [(products["whey"].id, 3)]


@pytest.mark.parametrize("quantity", [0, -1])
def test_update_to_zero_or_less_removes(db, products, resolver, quantity):
    store = CartStore(DirectCartBackend(db), resolver, user_id="user-1")
    store.add_to_cart(products["oats"].id, 2)

    store.update_quantity(store.items[0].id, quantity)

    assert store.items == []
    assert store.fetch_cart() == []


def test_clear_cart_empties_local_list(db, products, resolver):
    store = CartStore(DirectCartBackend(db), resolver, user_id="user-1")
    store.add_to_cart(products["oats"].id)

    store.clear_cart()

    assert store.items == []
    assert store.fetch_cart() == []


def test_sign_in_merges_guest_cart_once(db, products, resolver):
    backend = DirectCartBackend(db)
    store = CartStore(backend, resolver)
    store.add_to_cart(products["whey"].id, 2)
    store.add_to_cart(products["oats"].id, 1)
    CartStore(backend, resolver, user_id="user-1").add_to_cart(products["whey"].id, 1)

    result = store.sign_in("user-1")

    assert (result.moved, result.combined) == (1, 1)
    assert resolver.peek() is None
    assert {line.product_id: line.quantity for line in store.items} == {
        products["whey"].id: 3,
        products["oats"].id: 1,
    }

    # no stored session any more, so a second sign-in does not merge
    assert store.sign_in("user-1") is None


def test_failed_merge_keeps_session_for_retry(resolver):
    session_id = resolver.get_session_id()
    backend = BrokenBackend()
    store = CartStore(backend, resolver)

    with pytest.raises(CartMergeError):
        store.sign_in("user-1")

    assert backend.merge_calls == 1
    assert resolver.peek() == session_id
    assert store.user_id == "user-1"


def test_sign_out_reverts_to_guest(resolver):
    store = CartStore(StaticBackend([]), resolver, user_id="user-1")

    store.sign_out()

    assert store.owner.session_id == resolver.peek()


def test_http_backend_against_cart_service(cart_client, products, resolver):
    client = CartServiceClient("", http=cart_client)
    store = CartStore(client, resolver)

    store.add_to_cart(products["whey"].id, 2)
    store.add_to_cart(products["oats"].id, 3)

    assert store.get_total_price() == Decimal("33.48")

    client.access_token = "customer-token"
    store.sign_in(CUSTOMER_ID)
    assert resolver.peek() is None
    assert store.get_total_items() == 5
    assert str(store.owner) == f"user:{CUSTOMER_ID}"


def test_http_backend_needs_a_token_for_user_carts(cart_client, products, resolver):
    store = CartStore(CartServiceClient("", http=cart_client), resolver)
    store.add_to_cart(products["whey"].id)
    session_id = resolver.peek()

    with pytest.raises(CartMergeError):
        store.sign_in(CUSTOMER_ID)

    assert resolver.peek() == session_id


def test_http_backend_fails_closed_on_server_error(cart_client, products, resolver):
    store = CartStore(CartServiceClient("", http=cart_client), resolver)

    with pytest.raises(httpx.HTTPStatusError):
        store.add_to_cart("missing-product")
