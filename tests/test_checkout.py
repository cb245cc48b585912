import pytest
from pymongo.errors import PyMongoError

import carts
import catalog
import orders
from errors import BadRequestError, NotFoundError


class _CartCollection:
    """Wraps the cart collection to interfere with the clearing write."""

    def __init__(self, collection, on_update):
        self._collection = collection
        self._on_update = on_update

    def update_one(self, *args, **kwargs):
        return self._on_update(self._collection, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


class _Database:
    def __init__(self, db, on_update):
        self._db = db
        self._on_update = on_update

    def __getitem__(self, name):
        collection = self._db[name]
        if name == "cart":
            return _CartCollection(collection, self._on_update)
        return collection


def test_checkout_snapshots_prices_and_clears_cart(db, client_doc, make_product):
    product = make_product(pricing=[{"size": "medium", "price": 10}])
    carts.add_item(db, client_doc["id"], product["id"], "medium", 2)

    order = orders.checkout(db, client_doc["id"])

    assert order["total_price"] == 20
    assert order["status"] == "pending"
    assert order["client_id"] == client_doc["id"]
    assert order["items"] == [{"product_id": product["id"], "size": "medium", "quantity": 2, "price": 10}]
    assert carts.get_cart(db, client_doc["id"])["items"] == []
    assert db["cart"].count_documents({"client_id": client_doc["id"]}) == 1


def test_checkout_uses_price_at_checkout_time(db, client_doc, make_product):
    product = make_product()
    carts.add_item(db, client_doc["id"], product["id"], "small", 3)
    catalog.update_product(db, product["id"], {"pricing": [{"size": "small", "price": 7}]})

    order = orders.checkout(db, client_doc["id"])

    assert order["total_price"] == 21
    assert order["items"][0]["price"] == 7


def test_order_is_unaffected_by_later_price_changes(db, client_doc, make_product):
    product = make_product()
    carts.add_item(db, client_doc["id"], product["id"], "small", 2)
    order = orders.checkout(db, client_doc["id"])

    catalog.update_product(db, product["id"], {"pricing": [{"size": "small", "price": 99}]})

    stored = orders.get_order(db, order["id"])
    assert stored["items"][0]["price"] == 5
    assert stored["total_price"] == 10


def test_checkout_total_over_several_lines(db, client_doc, make_product):
    dragon = make_product("Dragon")
    knight = make_product("Knight", pricing=[{"size": "large", "price": 12.5}])
    carts.add_item(db, client_doc["id"], dragon["id"], "small", 2)
    carts.add_item(db, client_doc["id"], dragon["id"], "medium", 1)
    carts.add_item(db, client_doc["id"], knight["id"], "large", 2)

    order = orders.checkout(db, client_doc["id"])

    assert order["total_price"] == 2 * 5 + 10 + 2 * 12.5
    assert len(order["items"]) == 3


def test_checkout_empty_cart(db, client_doc, make_product):
    with pytest.raises(BadRequestError, match="Cart is empty"):
        orders.checkout(db, client_doc["id"])

    product = make_product()
    carts.add_item(db, client_doc["id"], product["id"], "small")
    carts.clear_cart(db, client_doc["id"])
    with pytest.raises(BadRequestError, match="Cart is empty"):
        orders.checkout(db, client_doc["id"])
    assert db["order"].count_documents({}) == 0


def test_checkout_unknown_client(db):
    with pytest.raises(NotFoundError, match="Client not found"):
        orders.checkout(db, "64b000000000000000000000")


def test_checkout_aborts_on_deleted_product(db, client_doc, make_product):
    dragon = make_product("Dragon")
    knight = make_product("Knight")
    carts.add_item(db, client_doc["id"], dragon["id"], "small")
    carts.add_item(db, client_doc["id"], knight["id"], "small")
    catalog.delete_product(db, knight["id"])
    before = db["cart"].find_one({"client_id": client_doc["id"]})["items"]

    with pytest.raises(NotFoundError, match=knight["id"]):
        orders.checkout(db, client_doc["id"])

    assert db["order"].count_documents({}) == 0
    assert db["cart"].find_one({"client_id": client_doc["id"]})["items"] == before


def test_checkout_aborts_on_removed_size(db, client_doc, make_product):
    product = make_product()
    carts.add_item(db, client_doc["id"], product["id"], "medium")
    catalog.update_product(db, product["id"], {"pricing": [{"size": "small", "price": 5}]})

    with pytest.raises(BadRequestError, match="Size 'medium' not available for Dragon"):
        orders.checkout(db, client_doc["id"])

    assert db["order"].count_documents({}) == 0
    assert len(db["cart"].find_one({"client_id": client_doc["id"]})["items"]) == 1


def test_failed_cart_clear_rolls_back_order(db, client_doc, make_product):
    product = make_product()
    carts.add_item(db, client_doc["id"], product["id"], "small")

    def fail(collection, *args, **kwargs):
        raise PyMongoError("write failed")

    with pytest.raises(PyMongoError):
        orders.checkout(_Database(db, fail), client_doc["id"])

    assert db["order"].count_documents({}) == 0
    assert len(db["cart"].find_one({"client_id": client_doc["id"]})["items"]) == 1


def test_cart_changed_during_checkout_is_repriced(db, client_doc, make_product):
    product = make_product()
    carts.add_item(db, client_doc["id"], product["id"], "small")
    attempts = []

    def concurrent_add(collection, *args, **kwargs):
        if not attempts:
            # another request adds to the cart after it was priced
            collection.update_one(
                {"client_id": client_doc["id"]},
                {"$set": {"items.0.quantity": 3}, "$inc": {"revision": 1}},
            )
        attempts.append(1)
        return collection.update_one(*args, **kwargs)

    order = orders.checkout(_Database(db, concurrent_add), client_doc["id"])

    assert len(attempts) == 2
    assert db["order"].count_documents({}) == 1
    assert order["items"][0]["quantity"] == 3
    assert order["total_price"] == 15
    assert db["cart"].find_one({"client_id": client_doc["id"]})["items"] == []
