import logging
import os
import re
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

import database
from auth import (
    ADMIN_EMAIL,
    authenticate,
    end_session,
    get_current_user,
    hash_password,
    public_user,
    register_user,
    require_admin,
    session_cookie,
    start_session,
)
from database import create_document, ensure_indexes, get_db, get_documents, serialize_doc, to_object_id, utcnow
from orders import get_order, list_orders, orders_with_details, place_order, set_order_status
from reviews import create_review, delete_review, list_product_reviews, mark_helpful, update_review
from schemas import (
    Category as CategorySchema,
    OrderStatus,
    Product as ProductSchema,
    MAX_MONEY,
    ProductStatus,
    User as UserSchema,
    format_money,
    parse_money,
)
from sitemap import generate_sitemap

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(), format=LOG_FORMAT)
logger = logging.getLogger(__name__)

CURRENCY = os.getenv("CURRENCY", "KSh")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes()
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, data endpoints will fail")
    yield


app = FastAPI(title="Electronics Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------- Models -----------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterBody(CamelModel):
    email: EmailStr
    password: str
    first_name: str
    last_name: Optional[str] = None


class LoginBody(CamelModel):
    email: EmailStr
    password: str


class CategoryBody(CategorySchema):
    pass


class CategoryUpdateBody(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None


class ProductCreateBody(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, le=MAX_MONEY)
    category_id: Optional[str] = None
    stock: int = Field(0, ge=0)
    images: List[str] = []
    sku: Optional[str] = None
    status: ProductStatus = "active"


class ProductUpdateBody(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, le=MAX_MONEY)
    category_id: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    sku: Optional[str] = None
    status: Optional[ProductStatus] = None

    @field_validator("name", "price", "stock", "images", "status")
    @classmethod
    def _not_null(cls, v, info: ValidationInfo):
        # only description, category_id and sku may be cleared
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class OrderLineBody(CamelModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderCreateBody(CamelModel):
    items: List[OrderLineBody] = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    notes: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: OrderStatus


class ReviewBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None


class ReviewUpdateBody(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None


class AdminUserBody(CamelModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1)
    last_name: Optional[str] = None


# ----------------------- Helpers -----------------------
def find_or_404(collection: str, doc_id: str, label: str) -> dict:
    oid = to_object_id(doc_id)
    doc = get_db()[collection].find_one({"_id": oid}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def check_category(category_id: Optional[str]) -> None:
    if category_id is None:
        return
    oid = to_object_id(category_id)
    if not oid or not get_db()["category"].find_one({"_id": oid}):
        raise HTTPException(status_code=400, detail="Unknown category")


def format_revenue(amount: Decimal) -> str:
    """Grouped thousands, trailing zero decimals dropped: 1000 -> "1,000", 1000.5 -> "1,000.5"."""
    return f"{amount:,.2f}".rstrip("0").rstrip(".")


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Electronics Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/register")
def register(body: RegisterBody, response: Response):
    user = register_user(body.email, body.first_name, body.password, body.last_name)
    start_session(response, user["id"])
    return user


@app.post("/api/auth/login")
def login(body: LoginBody, response: Response):
    user = authenticate(body.email, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    start_session(response, user["id"])
    return user


@app.post("/api/auth/logout")
def logout(response: Response, token: Optional[str] = Depends(session_cookie)):
    end_session(response, token)
    return {"message": "Logged out"}


@app.get("/api/auth/user")
def current_user(user=Depends(get_current_user)):
    return user


# ----------------------- Categories -----------------------
@app.get("/api/categories")
def list_categories():
    return [serialize_doc(c) for c in get_db()["category"].find().sort("name")]


@app.get("/api/categories/{slug}")
def get_category(slug: str):
    category = get_db()["category"].find_one({"slug": slug})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return serialize_doc(category)


@app.post("/api/categories")
def create_category(body: CategoryBody, user=Depends(require_admin)):
    if get_db()["category"].find_one({"slug": body.slug}):
        raise HTTPException(status_code=400, detail="Category slug already exists")
    try:
        cid = create_document("category", CategorySchema(**body.model_dump()))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Category slug already exists")
    return serialize_doc(get_db()["category"].find_one({"_id": to_object_id(cid)}))


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdateBody, user=Depends(require_admin)):
    category = find_or_404("category", category_id, "Category")
    update = body.model_dump(exclude_unset=True, exclude_none=True)
    if update.get("slug") and get_db()["category"].find_one({"slug": update["slug"], "_id": {"$ne": category["_id"]}}):
        raise HTTPException(status_code=400, detail="Category slug already exists")
    update["updated_at"] = utcnow()
    get_db()["category"].update_one({"_id": category["_id"]}, {"$set": update})
    return serialize_doc(get_db()["category"].find_one({"_id": category["_id"]}))


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, user=Depends(require_admin)):
    category = find_or_404("category", category_id, "Category")
    get_db()["category"].delete_one({"_id": category["_id"]})
    get_db()["product"].update_many(
        {"category_id": str(category["_id"])},
        {"$set": {"category_id": None, "updated_at": utcnow()}},
    )
    return {"message": "Category deleted successfully"}


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(
    category_id: Optional[str] = Query(None, alias="categoryId"),
    search: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: Optional[int] = Query(None, ge=0),
):
    filt = {"status": "active"}
    if category_id:
        filt["category_id"] = category_id
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}]
    cursor = get_db()["product"].find(filt).sort("created_at", DESCENDING)
    if offset:
        cursor = cursor.skip(offset)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(p) for p in cursor]


@app.get("/api/products/featured")
def featured_products(limit: int = Query(8, ge=1, le=100)):
    items = get_db()["product"].find({"status": "active"}).sort("rating", DESCENDING).limit(limit)
    return [serialize_doc(p) for p in items]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return serialize_doc(find_or_404("product", product_id, "Product"))


@app.post("/api/products")
def create_product(body: ProductCreateBody, user=Depends(require_admin)):
    check_category(body.category_id)
    product = ProductSchema(**body.model_dump())
    pid = create_document("product", product)
    return serialize_doc(get_db()["product"].find_one({"_id": to_object_id(pid)}))


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(require_admin)):
    product = find_or_404("product", product_id, "Product")
    update = body.model_dump(exclude_unset=True)
    if "category_id" in update:
        check_category(update["category_id"])
    if update.get("price") is not None:
        update["price"] = format_money(parse_money(update["price"]))
    update["updated_at"] = utcnow()
    get_db()["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return serialize_doc(get_db()["product"].find_one({"_id": product["_id"]}))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin)):
    product = find_or_404("product", product_id, "Product")
    get_db()["product"].delete_one({"_id": product["_id"]})
    get_db()["review"].delete_many({"product_id": str(product["_id"])})
    return {"message": "Product deleted successfully"}


# ----------------------- Reviews -----------------------
@app.get("/api/products/{product_id}/reviews")
def product_reviews(product_id: str):
    return list_product_reviews(product_id)


@app.post("/api/products/{product_id}/reviews")
def add_review(product_id: str, body: ReviewBody, user=Depends(get_current_user)):
    return create_review(product_id, user, body.rating, body.title, body.comment)


@app.put("/api/reviews/{review_id}")
def edit_review(review_id: str, body: ReviewUpdateBody, user=Depends(get_current_user)):
    return update_review(review_id, user, body.model_dump(exclude_unset=True))


@app.delete("/api/reviews/{review_id}")
def remove_review(review_id: str, user=Depends(get_current_user)):
    delete_review(review_id, user)
    return {"message": "Review deleted successfully"}


@app.post("/api/reviews/{review_id}/helpful")
def helpful_review(review_id: str, user=Depends(get_current_user)):
    return mark_helpful(review_id)


# ----------------------- Orders -----------------------
@app.get("/api/orders")
def my_orders(user=Depends(get_current_user)):
    return list_orders(user)


@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, user=Depends(get_current_user)):
    return get_order(order_id, user)


@app.post("/api/orders")
def create_order(body: OrderCreateBody, user=Depends(get_current_user)):
    lines = [line.model_dump() for line in body.items]
    return place_order(user, lines, body.shipping_address, body.phone, body.notes)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusBody, user=Depends(require_admin)):
    return set_order_status(order_id, body.status)


# ----------------------- Admin -----------------------
@app.get("/api/admin/stats")
def admin_stats(user=Depends(require_admin)):
    db = get_db()
    revenue = sum(
        (parse_money(o["total"]) for o in get_documents("order", {"status": "delivered"})),
        Decimal("0"),
    )
    return {
        "totalProducts": db["product"].count_documents({}),
        "totalUsers": db["user"].count_documents({}),
        "pendingOrders": db["order"].count_documents({"status": "pending"}),
        "revenue": f"{CURRENCY} {format_revenue(revenue)}",
    }


@app.get("/api/admin/users")
def admin_list_users(user=Depends(require_admin)):
    return [public_user(u) for u in get_db()["user"].find().sort("created_at", DESCENDING)]


@app.post("/api/admin/users")
def admin_create_user(body: AdminUserBody, user=Depends(require_admin)):
    email = body.email.strip().lower()
    if get_db()["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    new_user = UserSchema(email=email, first_name=body.first_name, last_name=body.last_name, role="user")
    try:
        uid = create_document("user", new_user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Admin %s created user %s", user["id"], uid)
    return public_user(get_db()["user"].find_one({"_id": to_object_id(uid)}))


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, user=Depends(require_admin)):
    target = find_or_404("user", user_id, "User")
    if target.get("role") == "admin":
        raise HTTPException(status_code=403, detail="Cannot delete an admin user")
    get_db()["user"].delete_one({"_id": target["_id"]})
    get_db()["session"].delete_many({"user_id": str(target["_id"])})
    logger.info("Admin %s deleted user %s", user["id"], user_id)
    return {"message": "User deleted successfully"}


@app.get("/api/admin/orders")
def admin_orders(user=Depends(require_admin)):
    return orders_with_details()


# ----------------------- SEO -----------------------
@app.get("/sitemap.xml")
def sitemap():
    return Response(content=generate_sitemap(), media_type="text/xml")


# ----------------------- Seed Demo Data -----------------------
DEMO_CATEGORIES = [
    {"name": "Smartphones", "slug": "smartphones", "description": "Latest Android and iOS phones."},
    {"name": "Laptops", "slug": "laptops", "description": "Work, study and gaming laptops."},
    {"name": "Audio", "slug": "audio", "description": "Headphones, earbuds and speakers."},
    {"name": "Accessories", "slug": "accessories", "description": "Chargers, cables and more."},
]

DEMO_PRODUCTS = [
    {
        "name": "Samsung Galaxy A54",
        "description": "6.4\" Super AMOLED display with a 50MP camera.",
        "price": "42999.00",
        "category": "smartphones",
        "stock": 25,
        "sku": "SM-A546E",
        "images": ["https://images.unsplash.com/photo-1511707171634-5f897ff02aa9"],
    },
    {
        "name": "Tecno Camon 20",
        "description": "Big battery and a bright display at a friendly price.",
        "price": "24500.00",
        "category": "smartphones",
        "stock": 40,
        "sku": "TC-CK6",
        "images": ["https://images.unsplash.com/photo-1603899123335-4a9d94dfbd89"],
    },
    {
        "name": "HP EliteBook 840 G6",
        "description": "Business laptop, Core i5, 8GB RAM, 256GB SSD.",
        "price": "54000.00",
        "category": "laptops",
        "stock": 10,
        "sku": "HP-840G6",
        "images": ["https://images.unsplash.com/photo-1517336714731-489689fd1ca8"],
    },
    {
        "name": "Oraimo FreePods 4",
        "description": "Wireless earbuds with active noise cancellation.",
        "price": "3999.00",
        "category": "audio",
        "stock": 60,
        "sku": "OEB-E06D",
        "images": ["https://images.unsplash.com/photo-1518443248587-30bdc8f94f04"],
    },
    {
        "name": "Anker 20W USB-C Charger",
        "description": "Fast charger for phones and tablets.",
        "price": "1850.00",
        "category": "accessories",
        "stock": 100,
        "sku": "A2633",
        "images": ["https://images.unsplash.com/photo-1516382799247-87df95d790b5"],
    },
]


@app.post("/seed")
def seed():
    db = get_db()
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    category_ids = {}
    for c in DEMO_CATEGORIES:
        existing = db["category"].find_one({"slug": c["slug"]})
        category_ids[c["slug"]] = str(existing["_id"]) if existing else create_document("category", CategorySchema(**c))
    for p in DEMO_PRODUCTS:
        data = {k: v for k, v in p.items() if k != "category"}
        create_document("product", ProductSchema(**data, category_id=category_ids[p["category"]]))
    admin_password = os.getenv("ADMIN_PASSWORD")
    if ADMIN_EMAIL and admin_password and not db["user"].find_one({"email": ADMIN_EMAIL}):
        admin = UserSchema(
            email=ADMIN_EMAIL,
            first_name="Admin",
            password_hash=hash_password(admin_password),
            role="admin",
        )
        create_document("user", admin)
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
