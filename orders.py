"""
Checkout and the order status workflow.

An order and its line items are written as one document, so placement either
fully succeeds or leaves nothing behind. Line prices are snapshotted from the
catalog at checkout and never recomputed.
"""
import logging
import os
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from bson.objectid import ObjectId
from fastapi import HTTPException
from pymongo import DESCENDING, ReturnDocument

from auth import is_admin
from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from notifications import send_order_dispatch_email
from schemas import MAX_MONEY, Order, OrderItem, format_money, parse_money

logger = logging.getLogger(__name__)

# reject the whole order instead of dropping lines whose product is gone
STRICT_CHECKOUT = os.getenv("STRICT_CHECKOUT", "false").lower() in ("1", "true", "yes")

STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered"]
TERMINAL_STATUSES = {"delivered", "cancelled"}


def allowed_transitions(current: str) -> List[str]:
    if current in TERMINAL_STATUSES or current not in STATUS_FLOW:
        return []
    return STATUS_FLOW[STATUS_FLOW.index(current) + 1:] + ["cancelled"]


def check_transition(current: str, new: str) -> None:
    if new == current:
        raise HTTPException(status_code=400, detail=f"Order is already {current}")
    if new not in allowed_transitions(current):
        raise HTTPException(status_code=400, detail=f"Cannot change order status from {current} to {new}")


# ----------------------- Checkout -----------------------
def price_order_lines(lines: Iterable[dict]) -> Tuple[List[OrderItem], Decimal, List[str]]:
    """Price each {product_id, quantity} line at the current catalog price.

    Returns the priced items, their exact total and the ids that did not resolve.
    """
    products = get_db()["product"]
    items: List[OrderItem] = []
    missing: List[str] = []
    total = Decimal("0")
    for line in lines:
        oid = to_object_id(line["product_id"])
        product = products.find_one({"_id": oid}) if oid else None
        if not product:
            missing.append(line["product_id"])
            continue
        price = parse_money(product["price"])
        total += price * line["quantity"]
        items.append(
            OrderItem(
                id=str(ObjectId()),
                product_id=str(product["_id"]),
                quantity=line["quantity"],
                price_at_time=format_money(price),
            )
        )
    return items, total, missing


def place_order(user: dict, lines: List[dict], shipping_address: str, phone: str, notes=None) -> dict:
    if not lines:
        raise HTTPException(status_code=400, detail="Order must contain at least one item")
    if not shipping_address.strip() or not phone.strip():
        raise HTTPException(status_code=400, detail="Shipping address and phone are required")

    items, total, missing = price_order_lines(lines)
    if missing:
        if STRICT_CHECKOUT:
            raise HTTPException(status_code=400, detail=f"Products not found: {', '.join(missing)}")
        logger.warning("Dropping order lines for unknown products %s (user %s)", missing, user["id"])
    if not items:
        raise HTTPException(status_code=400, detail="No valid items in order")
    if total > MAX_MONEY:
        raise HTTPException(status_code=400, detail="Order total too large")

    order = Order(
        user_id=user["id"],
        total=format_money(total),
        shipping_address=shipping_address.strip(),
        phone=phone.strip(),
        notes=notes,
        items=items,
    )
    oid = create_document("order", order)
    logger.info("Order %s placed by %s, total %s, %d item(s)", oid, user["id"], order.total, len(items))

    created = serialize_doc(get_db()["order"].find_one({"_id": to_object_id(oid)}))
    created.pop("items", None)
    return created


# ----------------------- Reads -----------------------
def _user_summary(user) -> dict:
    if not user:
        return None
    return {
        "id": str(user["_id"]),
        "email": user.get("email"),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
    }


def orders_with_details(filter_dict: dict = None) -> List[dict]:
    """Orders newest first, each with its purchaser and item/product detail."""
    database = get_db()
    orders = list(database["order"].find(filter_dict or {}).sort("created_at", DESCENDING))

    user_ids = {to_object_id(o["user_id"]) for o in orders} - {None}
    product_ids = {to_object_id(i["product_id"]) for o in orders for i in o.get("items", [])} - {None}
    users: Dict[str, dict] = {
        str(u["_id"]): u for u in database["user"].find({"_id": {"$in": list(user_ids)}})
    }
    products: Dict[str, dict] = {
        str(p["_id"]): p for p in database["product"].find({"_id": {"$in": list(product_ids)}})
    }

    result = []
    for order in orders:
        doc = serialize_doc(order)
        doc["user"] = _user_summary(users.get(order["user_id"]))
        for item in doc.get("items", []):
            product = products.get(item["product_id"])
            item["order_id"] = doc["id"]
            item["product"] = (
                {"id": item["product_id"], "name": product.get("name"), "images": product.get("images", [])}
                if product
                else None
            )
        result.append(doc)
    return result


def list_orders(user: dict) -> List[dict]:
    if is_admin(user):
        return orders_with_details()
    orders = get_db()["order"].find({"user_id": user["id"]}).sort("created_at", DESCENDING)
    return [serialize_doc(o) for o in orders]


def get_order(order_id: str, user: dict) -> dict:
    oid = to_object_id(order_id)
    order = get_db()["order"].find_one({"_id": oid}) if oid else None
    if not order or (order["user_id"] != user["id"] and not is_admin(user)):
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(order)


def get_order_with_user(order_id: str):
    database = get_db()
    order = database["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        return None
    owner_id = to_object_id(order["user_id"])
    doc = serialize_doc(order)
    doc["user"] = _user_summary(database["user"].find_one({"_id": owner_id}) if owner_id else None)
    return doc


# ----------------------- Status workflow -----------------------
def notify_dispatch(order_id: str) -> None:
    """Best effort: a failed dispatch email never undoes the status change."""
    try:
        order = get_order_with_user(order_id)
        if not order or not order.get("user"):
            logger.warning("Order %s has no reachable customer, dispatch email skipped", order_id)
            return
        send_order_dispatch_email(
            order["user"]["email"],
            order["user"].get("first_name") or "Customer",
            order["id"],
            order["shipping_address"],
        )
    except Exception:
        logger.exception("Dispatch email for order %s failed", order_id)


def set_order_status(order_id: str, status: str) -> dict:
    oid = to_object_id(order_id)
    collection = get_db()["order"]
    order = collection.find_one({"_id": oid}) if oid else None
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    check_transition(order["status"], status)

    # the status filter keeps a concurrent update from being overwritten
    updated = collection.find_one_and_update(
        {"_id": oid, "status": order["status"]},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=400, detail="Order status changed concurrently, retry")
    logger.info("Order %s: %s -> %s", order_id, order["status"], status)

    if status == "shipped":
        notify_dispatch(order_id)
    return serialize_doc(updated)
