"""
Checkout pipeline and order store.

Checkout turns the client's cart into an order whose items carry the unit
price resolved at checkout time. Unlike the cart view, any line whose product
or size no longer resolves aborts the whole checkout: no order is written and
the cart is untouched.

Writing the order and emptying the cart are committed together. The cart is
cleared with a compare-and-swap against the revision that was priced; if that
fails the new order is deleted again, so either both writes stand or neither.
"""
from typing import List

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
import structlog

from accounts import get_client_doc
from catalog import price_for_size
from database import create_document, find_by_id, get_documents, now, oid, to_str_id
from errors import BadRequestError, ConflictError, NotFoundError
from schemas import ORDER_STATUSES, Order, OrderItem

logger = structlog.get_logger(__name__)

MAX_CHECKOUT_ATTEMPTS = 5

# Documented lifecycle. Status updates are not restricted to it: any legal
# status may be set from any state, off-lifecycle moves are only logged.
ORDER_LIFECYCLE = {
    "pending": ("processing", "cancelled"),
    "processing": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}


def price_cart(db, client_id: str, cart_items: List[dict]) -> Order:
    """Build the order snapshot for `cart_items` from live catalog prices."""
    items = []
    total_price = 0
    for item in cart_items:
        product = find_by_id(db, "product", item["product_id"])
        if not product:
            raise NotFoundError(f"Product {item['product_id']} not found")
        unit_price = price_for_size(product, item["size"])
        if unit_price is None:
            raise BadRequestError(f"Size '{item['size']}' not available for {product.get('product_name')}")
        total_price += unit_price * item["quantity"]
        items.append(OrderItem(
            product_id=item["product_id"],
            size=item["size"],
            quantity=item["quantity"],
            price=unit_price,
        ))
    return Order(client_id=client_id, items=items, total_price=total_price, status="pending")


def _discard_order(db, order_id: str) -> None:
    db["order"].delete_one({"_id": oid(order_id)})


def checkout(db, client_id: str) -> dict:
    client = get_client_doc(db, client_id)
    client_id = str(client["_id"])

    for attempt in range(1, MAX_CHECKOUT_ATTEMPTS + 1):
        cart = db["cart"].find_one({"client_id": client_id})
        if not cart or not cart.get("items"):
            raise BadRequestError("Cart is empty. Cannot create order.")

        order = price_cart(db, client_id, cart["items"])
        order_id = create_document(db, "order", order)

        try:
            result = db["cart"].update_one(
                {"_id": cart["_id"], "revision": cart.get("revision")},
                {"$set": {"items": [], "updated_at": now()}, "$inc": {"revision": 1}},
            )
        except PyMongoError:
            logger.warning("checkout.rolled_back", client_id=client_id, order_id=order_id)
            _discard_order(db, order_id)
            raise

        if result.matched_count == 1:
            logger.info("order.created", order_id=order_id, client_id=client_id,
                        items=len(order.items), total_price=order.total_price)
            return to_str_id(db["order"].find_one({"_id": oid(order_id)}))

        # cart changed after it was priced; undo and price it again
        _discard_order(db, order_id)
        logger.warning("checkout.cart_changed", client_id=client_id, attempt=attempt)

    raise ConflictError("Cart was modified during checkout, please retry")


def list_orders(db) -> List[dict]:
    return [to_str_id(d) for d in get_documents(db, "order", newest_first=True)]


def get_order(db, order_id: str) -> dict:
    doc = find_by_id(db, "order", order_id)
    if not doc:
        raise NotFoundError("Order not found")
    return to_str_id(doc)


def list_client_orders(db, client_id: str) -> List[dict]:
    client = get_client_doc(db, client_id)
    docs = get_documents(db, "order", {"client_id": str(client["_id"])}, newest_first=True)
    return [to_str_id(d) for d in docs]


def update_order_status(db, order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise BadRequestError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")

    current = find_by_id(db, "order", order_id)
    if not current:
        raise NotFoundError("Order not found")

    previous = current.get("status")
    if status != previous and status not in ORDER_LIFECYCLE.get(previous, ()):
        logger.warning("order.status_off_lifecycle", order_id=order_id, previous=previous, status=status)

    doc = db["order"].find_one_and_update(
        {"_id": current["_id"]},
        {"$set": {"status": status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Order not found")
    logger.info("order.status_changed", order_id=order_id, previous=previous, status=status)
    return to_str_id(doc)


def delete_order(db, order_id: str) -> dict:
    _id = oid(order_id)
    doc = db["order"].find_one_and_delete({"_id": _id}) if _id else None
    if not doc:
        raise NotFoundError("Order not found")
    logger.info("order.deleted", order_id=order_id)
    return to_str_id(doc)
