"""Product reviews and the product rating aggregate they drive."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from fastapi import HTTPException
from pymongo import DESCENDING, ReturnDocument

from auth import is_admin
from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from schemas import Review

logger = logging.getLogger(__name__)


def average_rating(ratings: List[int]) -> Optional[str]:
    if not ratings:
        return None
    avg = Decimal(sum(ratings)) / Decimal(len(ratings))
    return str(avg.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def update_product_rating(product_id: str) -> None:
    """Recompute rating and review_count from every review of the product."""
    database = get_db()
    ratings = [r["rating"] for r in database["review"].find({"product_id": product_id}, {"rating": 1})]
    database["product"].update_one(
        {"_id": to_object_id(product_id)},
        {"$set": {"rating": average_rating(ratings), "review_count": len(ratings)}},
    )


def _find_product(product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = get_db()["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _find_review(review_id: str) -> dict:
    oid = to_object_id(review_id)
    review = get_db()["review"].find_one({"_id": oid}) if oid else None
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


def _check_author(review: dict, user: dict) -> None:
    if review["user_id"] != user["id"] and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not allowed")


def has_purchased(user_id: str, product_id: str) -> bool:
    return (
        get_db()["order"].find_one(
            {"user_id": user_id, "status": "delivered", "items.product_id": product_id}
        )
        is not None
    )


def list_product_reviews(product_id: str) -> List[dict]:
    database = get_db()
    reviews = list(database["review"].find({"product_id": product_id}).sort("created_at", DESCENDING))
    author_ids = [to_object_id(r["user_id"]) for r in reviews]
    authors = {str(u["_id"]): u for u in database["user"].find({"_id": {"$in": author_ids}})}

    result = []
    for review in reviews:
        doc = serialize_doc(review)
        author = authors.get(review["user_id"], {})
        first, last = author.get("first_name") or "", author.get("last_name") or ""
        doc["user_name"] = f"{first} {last}".strip()
        doc["user_initials"] = f"{first[:1]}{last[:1]}".upper()
        result.append(doc)
    return result


def create_review(product_id: str, user: dict, rating: int, title=None, comment=None) -> dict:
    product = _find_product(product_id)
    pid = str(product["_id"])
    review = Review(
        product_id=pid,
        user_id=user["id"],
        rating=rating,
        title=title,
        comment=comment,
        verified=has_purchased(user["id"], pid),
    )
    rid = create_document("review", review)
    update_product_rating(pid)
    logger.info("Review %s added to product %s", rid, pid)
    return serialize_doc(get_db()["review"].find_one({"_id": to_object_id(rid)}))


def update_review(review_id: str, user: dict, changes: dict) -> dict:
    review = _find_review(review_id)
    _check_author(review, user)
    changes = {k: v for k, v in changes.items() if v is not None}
    changes["updated_at"] = utcnow()
    updated = get_db()["review"].find_one_and_update(
        {"_id": review["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if "rating" in changes:
        update_product_rating(review["product_id"])
    return serialize_doc(updated)


def delete_review(review_id: str, user: dict) -> None:
    review = _find_review(review_id)
    _check_author(review, user)
    get_db()["review"].delete_one({"_id": review["_id"]})
    update_product_rating(review["product_id"])
    logger.info("Review %s removed from product %s", review_id, review["product_id"])


def mark_helpful(review_id: str) -> dict:
    oid = to_object_id(review_id)
    updated = None
    if oid:
        updated = get_db()["review"].find_one_and_update(
            {"_id": oid},
            {"$inc": {"helpful": 1}},
            return_document=ReturnDocument.AFTER,
        )
    if not updated:
        raise HTTPException(status_code=404, detail="Review not found")
    return serialize_doc(updated)
