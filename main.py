import os
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

import database
from database import get_db, create_document, serialize_doc, to_object_id, ensure_indexes, utcnow
from settings import Settings, get_settings, settings
from errors import AppError, AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import (
    CartItem, CartItemIn, CartItemUpdate, Category, CategoryIn, CategoryUpdate, LoginRequest, OrderCreate,
    OrderStatusUpdate, PaymentIntentRequest, Product, ProductIn, ProductUpdate, ProfileUpdate, PromoCode,
    PromoCodeUpdate, PromoValidateRequest, RegisterRequest, Review, ReviewIn, ReviewUpdate, RoleUpdate, User,
)
from auth import (
    create_token, ensure_admin, get_current_user, hash_password, public_user, require_admin, verify_password,
)
from catalog import SORT_FIELDS, build_product_query, slugify, update_product_rating
from orders import OrderAssembler, pagination
from payments import PaymentConfirmationListener, PaymentGateway
from promo import preview_discount
from reporting import dashboard_stats

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
        ensure_admin(database.db, settings)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield


# App setup
app = FastAPI(title="Thrifty Steps API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url] if settings.frontend_url else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Responses & error handling
def send_success(message: str, data: Optional[dict] = None, status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def send_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return send_error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return send_error(404, f"Route {request.url.path} not found")
    return send_error(exc.status_code, exc.detail if isinstance(exc.detail, str) else "Request failed")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    msg = first.get("msg", "Invalid request")
    return send_error(400, f"{loc}: {msg}" if loc else msg)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return send_error(ConflictError.status_code, ConflictError.default_message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = str(exc) if settings.debug else "Internal server error"
    return send_error(500, message)


# Dependencies
def get_order_assembler(db=Depends(get_db), settings: Settings = Depends(get_settings)) -> OrderAssembler:
    return OrderAssembler(db, settings)


def get_payment_gateway(settings: Settings = Depends(get_settings)) -> PaymentGateway:
    return PaymentGateway(settings)


def get_payment_listener(db=Depends(get_db), settings: Settings = Depends(get_settings)) -> PaymentConfirmationListener:
    return PaymentConfirmationListener(db, settings)


# Health and helpers
@app.get("/")
def root():
    return {"message": "Thrifty Steps API running"}


@app.get("/health")
def health():
    return {
        "success": True,
        "message": "Thrifty Steps API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Auth
@app.post("/api/auth/register")
def register(payload: RegisterRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("User already exists with this email")
    inserted_id = create_document(db, "user", User(
        name=payload.name,
        email=email,
        hashed_password=hash_password(payload.password),
    ))
    user = db["user"].find_one({"_id": ObjectId(inserted_id)})
    return send_success("User registered successfully", {
        "token": create_token(user, settings),
        "user": public_user(user),
    }, status_code=201)


@app.post("/api/auth/login")
def login(payload: LoginRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("hashed_password", "")):
        raise AuthenticationError("Invalid credentials")
    if not user.get("is_active", True):
        raise AuthorizationError("Account is disabled")
    return send_success("Login successful", {"token": create_token(user, settings), "user": public_user(user)})


@app.get("/api/auth/me")
async def me(current_user: dict = Depends(get_current_user)):
    return send_success("User profile retrieved", {"user": public_user(current_user)})


@app.put("/api/auth/profile")
async def update_profile(update: ProfileUpdate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    changes = update.model_dump(exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if db["user"].find_one({"email": changes["email"], "_id": {"$ne": current_user["_id"]}}):
            raise ConflictError("Email already in use")
    changes["updated_at"] = utcnow()
    db["user"].update_one({"_id": current_user["_id"]}, {"$set": changes})
    user = db["user"].find_one({"_id": current_user["_id"]})
    return send_success("Profile updated successfully", {"user": public_user(user)})


# Cart
def _cart_response(db, user_id, message: str) -> JSONResponse:
    user = db["user"].find_one({"_id": user_id}, {"cart": 1})
    cart = user.get("cart", []) if user else []
    ids = [ObjectId(i["product_id"]) for i in cart if ObjectId.is_valid(i["product_id"])]
    products = {str(p["_id"]): serialize_doc(p) for p in db["product"].find({"_id": {"$in": ids}})}
    items = [dict(i, product=products.get(i["product_id"])) for i in cart]
    return send_success(message, {"cart": items})


@app.get("/api/auth/cart")
async def get_cart(user: dict = Depends(get_current_user), db=Depends(get_db)):
    return _cart_response(db, user["_id"], "Cart retrieved")


@app.post("/api/auth/cart")
async def cart_add(item: CartItemIn, user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = db["product"].find_one({"_id": to_object_id(item.product_id, "product ID")})
    if not product or not product.get("is_active", True):
        raise NotFoundError("Product not found")
    cart = user.get("cart", [])
    for entry in cart:
        if entry["product_id"] == item.product_id and entry["size"] == item.size and entry["color"] == item.color:
            entry["quantity"] += item.quantity
            break
    else:
        cart.append(CartItem(item_id=str(ObjectId()), **item.model_dump()).model_dump())
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": cart}})
    return _cart_response(db, user["_id"], "Item added to cart")


@app.put("/api/auth/cart/{item_id}")
async def cart_update(item_id: str, body: CartItemUpdate, user: dict = Depends(get_current_user), db=Depends(get_db)):
    cart = user.get("cart", [])
    index = next((i for i, entry in enumerate(cart) if entry["item_id"] == item_id), None)
    if index is None:
        raise NotFoundError("Cart item not found")
    if body.quantity <= 0:
        cart.pop(index)
    else:
        cart[index]["quantity"] = body.quantity
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": cart}})
    return _cart_response(db, user["_id"], "Cart updated")


@app.delete("/api/auth/cart/{item_id}")
async def cart_remove(item_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    cart = [entry for entry in user.get("cart", []) if entry["item_id"] != item_id]
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": cart}})
    return _cart_response(db, user["_id"], "Item removed from cart")


# Products
def _with_category(db, product: dict) -> dict:
    out = serialize_doc(product)
    category = None
    if ObjectId.is_valid(product.get("category_id", "")):
        category = db["category"].find_one({"_id": ObjectId(product["category_id"])}, {"name": 1, "slug": 1})
    out["category"] = serialize_doc(category) if category else None
    return out


@app.get("/api/products")
def list_products(category: Optional[str] = None, brand: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  size: Optional[str] = None, color: Optional[str] = None, search: Optional[str] = None,
                  featured: Optional[bool] = None, sort_by: str = "created_at", sort_order: str = "desc",
                  page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100), db=Depends(get_db)):
    filt = build_product_query(db, category=category, brand=brand, min_price=min_price, max_price=max_price,
                               size=size, color=color, search=search, featured=featured)
    if sort_by not in SORT_FIELDS:
        sort_by = "created_at"
    direction = ASCENDING if sort_order == "asc" else DESCENDING
    cursor = db["product"].find(filt).sort(sort_by, direction).skip((page - 1) * limit).limit(limit)
    total = db["product"].count_documents(filt)
    return send_success("Products retrieved successfully", {
        "products": [_with_category(db, p) for p in cursor],
        "pagination": pagination(page, limit, total),
    })


@app.get("/api/products/brands")
def list_brands(db=Depends(get_db)):
    brands = sorted(b for b in db["product"].distinct("brand", {"is_active": True}) if b)
    return send_success("Brands retrieved successfully", {"brands": brands})


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    p = db["product"].find_one({"_id": to_object_id(product_id, "product ID")})
    if not p or not p.get("is_active", True):
        raise NotFoundError("Product not found")
    return send_success("Product retrieved successfully", {"product": _with_category(db, p)})


def _check_category(db, category_id: str):
    category = db["category"].find_one({"_id": to_object_id(category_id, "category ID")})
    if not category or not category.get("is_active", True):
        raise NotFoundError("Category not found")


@app.post("/api/products")
async def create_product(payload: ProductIn, user: dict = Depends(require_admin), db=Depends(get_db)):
    _check_category(db, payload.category_id)
    doc = Product(**payload.model_dump()).model_dump()
    inserted = create_document(db, "product", doc)
    logger.info("Product %s created by %s", inserted, user["email"])
    p = db["product"].find_one({"_id": ObjectId(inserted)})
    return send_success("Product created successfully", {"product": _with_category(db, p)}, status_code=201)


@app.put("/api/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, user: dict = Depends(require_admin),
                         db=Depends(get_db)):
    oid = to_object_id(product_id, "product ID")
    existing = db["product"].find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Product not found")
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("category_id"):
        _check_category(db, changes["category_id"])
    try:
        merged = Product(**{**existing, **changes}).model_dump()
    except ValueError as e:
        raise ValidationError(str(e))
    merged.pop("rating", None)
    merged.pop("num_reviews", None)
    merged["updated_at"] = utcnow()
    db["product"].update_one({"_id": oid}, {"$set": merged})
    p = db["product"].find_one({"_id": oid})
    return send_success("Product updated successfully", {"product": _with_category(db, p)})


@app.delete("/api/products/{product_id}")
async def delete_product(product_id: str, user: dict = Depends(require_admin), db=Depends(get_db)):
    result = db["product"].update_one(
        {"_id": to_object_id(product_id, "product ID")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Product not found")
    return send_success("Product deleted successfully")


# Categories
@app.get("/api/categories")
def list_categories(db=Depends(get_db)):
    categories = db["category"].find({"is_active": True}).sort("name", ASCENDING)
    return send_success("Categories retrieved successfully", {"categories": [serialize_doc(c) for c in categories]})


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, db=Depends(get_db)):
    c = db["category"].find_one({"_id": to_object_id(category_id, "category ID")})
    if not c or not c.get("is_active", True):
        raise NotFoundError("Category not found")
    return send_success("Category retrieved successfully", {"category": serialize_doc(c)})


@app.post("/api/categories")
async def create_category(payload: CategoryIn, user: dict = Depends(require_admin), db=Depends(get_db)):
    slug = slugify(payload.name)
    name_pattern = {"$regex": f"^{re.escape(payload.name.strip())}$", "$options": "i"}
    if db["category"].find_one({"$or": [{"slug": slug}, {"name": name_pattern}]}):
        raise ConflictError("Category already exists")
    inserted = create_document(db, "category", Category(name=payload.name.strip(), slug=slug, description=payload.description))
    c = db["category"].find_one({"_id": ObjectId(inserted)})
    return send_success("Category created successfully", {"category": serialize_doc(c)}, status_code=201)


@app.put("/api/categories/{category_id}")
async def update_category(category_id: str, payload: CategoryUpdate, user: dict = Depends(require_admin),
                          db=Depends(get_db)):
    oid = to_object_id(category_id, "category ID")
    changes = payload.model_dump(exclude_none=True)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        changes["slug"] = slugify(changes["name"])
        if db["category"].find_one({"slug": changes["slug"], "_id": {"$ne": oid}}):
            raise ConflictError("Category already exists")
    changes["updated_at"] = utcnow()
    result = db["category"].update_one({"_id": oid}, {"$set": changes})
    if result.matched_count == 0:
        raise NotFoundError("Category not found")
    return send_success("Category updated successfully", {"category": serialize_doc(db["category"].find_one({"_id": oid}))})


@app.delete("/api/categories/{category_id}")
async def delete_category(category_id: str, user: dict = Depends(require_admin), db=Depends(get_db)):
    result = db["category"].update_one(
        {"_id": to_object_id(category_id, "category ID")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Category not found")
    return send_success("Category deleted successfully")


# Checkout & Orders
@app.post("/api/orders")
async def create_order(payload: OrderCreate, user: dict = Depends(get_current_user),
                       assembler: OrderAssembler = Depends(get_order_assembler)):
    order = assembler.create_order(str(user["_id"]), payload)
    return send_success("Order created successfully. Awaiting payment confirmation.", {"order": order},
                        status_code=201)


@app.get("/api/orders/my")
async def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    user: dict = Depends(get_current_user),
                    assembler: OrderAssembler = Depends(get_order_assembler)):
    return send_success("Orders retrieved successfully", assembler.list_for_user(str(user["_id"]), page, limit))


@app.get("/api/orders")
async def all_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     order_status: Optional[str] = None, payment_status: Optional[str] = None,
                     user_id: Optional[str] = None, user: dict = Depends(require_admin),
                     assembler: OrderAssembler = Depends(get_order_assembler)):
    data = assembler.list_all(page, limit, order_status=order_status, payment_status=payment_status, user_id=user_id)
    return send_success("Orders retrieved successfully", data)


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, user: dict = Depends(get_current_user),
                    assembler: OrderAssembler = Depends(get_order_assembler)):
    return send_success("Order retrieved successfully", {"order": assembler.get_for_user(order_id, user)})


@app.post("/api/orders/{order_id}/cancel")
async def cancel_order(order_id: str, user: dict = Depends(get_current_user),
                       assembler: OrderAssembler = Depends(get_order_assembler)):
    return send_success("Order cancelled successfully", {"order": assembler.cancel_order(order_id, user)})


@app.put("/api/orders/{order_id}/status")
async def update_order_status(order_id: str, payload: OrderStatusUpdate, user: dict = Depends(require_admin),
                              assembler: OrderAssembler = Depends(get_order_assembler)):
    order = assembler.update_status(order_id, payload.order_status, payload.payment_status)
    return send_success("Order status updated successfully", {"order": order})


# Payments
@app.post("/api/payments/create-intent")
async def create_payment_intent(payload: PaymentIntentRequest, user: dict = Depends(get_current_user),
                                gateway: PaymentGateway = Depends(get_payment_gateway)):
    intent = gateway.create_payment_intent(payload.amount, payload.currency,
                                           payload.description or "Thrifty Steps Order")
    return send_success("Payment intent created", intent)


@app.post("/api/webhook")
async def payment_webhook(request: Request, stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
                          listener: PaymentConfirmationListener = Depends(get_payment_listener)):
    payload = await request.body()
    return listener.handle_payment_confirmed(payload, stripe_signature)


# Promo codes
@app.post("/api/promo-codes/validate")
def validate_promo_code(payload: PromoValidateRequest, db=Depends(get_db)):
    return send_success("Promo code is valid", preview_discount(db, payload.code, payload.subtotal))


@app.get("/api/promo-codes")
async def list_promo_codes(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                           is_active: Optional[bool] = None, user: dict = Depends(require_admin), db=Depends(get_db)):
    filt = {} if is_active is None else {"is_active": is_active}
    cursor = db["promocode"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    total = db["promocode"].count_documents(filt)
    return send_success("Promo codes retrieved successfully", {
        "promo_codes": [serialize_doc(p) for p in cursor],
        "pagination": pagination(page, limit, total),
    })


@app.get("/api/promo-codes/{promo_id}")
async def get_promo_code(promo_id: str, user: dict = Depends(require_admin), db=Depends(get_db)):
    promo = db["promocode"].find_one({"_id": to_object_id(promo_id, "promo code ID")})
    if not promo:
        raise NotFoundError("Promo code not found")
    return send_success("Promo code retrieved successfully", {"promo_code": serialize_doc(promo)})


@app.post("/api/promo-codes")
async def create_promo_code(payload: PromoCode, user: dict = Depends(require_admin), db=Depends(get_db)):
    if db["promocode"].find_one({"code": payload.code}):
        raise ConflictError("Promo code already exists")
    doc = payload.model_dump()
    doc["used_count"] = 0
    inserted = create_document(db, "promocode", doc)
    logger.info("Promo code %s created by %s", payload.code, user["email"])
    promo = db["promocode"].find_one({"_id": ObjectId(inserted)})
    return send_success("Promo code created successfully", {"promo_code": serialize_doc(promo)}, status_code=201)


@app.put("/api/promo-codes/{promo_id}")
async def update_promo_code(promo_id: str, payload: PromoCodeUpdate, user: dict = Depends(require_admin),
                            db=Depends(get_db)):
    oid = to_object_id(promo_id, "promo code ID")
    existing = db["promocode"].find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Promo code not found")
    changes = payload.model_dump(exclude_unset=True)
    try:
        merged = PromoCode(**{**existing, **changes}).model_dump()
    except ValueError as e:
        raise ValidationError(str(e))
    if db["promocode"].find_one({"code": merged["code"], "_id": {"$ne": oid}}):
        raise ConflictError("Promo code already exists")
    merged.pop("used_count", None)
    merged["updated_at"] = utcnow()
    db["promocode"].update_one({"_id": oid}, {"$set": merged})
    return send_success("Promo code updated successfully",
                        {"promo_code": serialize_doc(db["promocode"].find_one({"_id": oid}))})


@app.delete("/api/promo-codes/{promo_id}")
async def delete_promo_code(promo_id: str, user: dict = Depends(require_admin), db=Depends(get_db)):
    result = db["promocode"].update_one(
        {"_id": to_object_id(promo_id, "promo code ID")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Promo code not found")
    return send_success("Promo code deleted successfully")


# Reviews
def _review_out(db, review: dict) -> dict:
    out = serialize_doc(review)
    u = db["user"].find_one({"_id": ObjectId(review["user_id"])}, {"name": 1}) if ObjectId.is_valid(review["user_id"]) else None
    out["user"] = {"id": review["user_id"], "name": u.get("name")} if u else None
    return out


@app.get("/api/reviews/{product_id}")
def product_reviews(product_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    db=Depends(get_db)):
    if not db["product"].find_one({"_id": to_object_id(product_id, "product ID")}):
        raise NotFoundError("Product not found")
    filt = {"product_id": product_id}
    cursor = db["review"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    reviews = [_review_out(db, r) for r in cursor]
    total = db["review"].count_documents(filt)
    avg = list(db["review"].aggregate([
        {"$match": filt},
        {"$group": {"_id": None, "avg_rating": {"$avg": "$rating"}}},
    ]))
    return send_success("Reviews retrieved successfully", {
        "reviews": reviews,
        "average_rating": round(avg[0]["avg_rating"], 1) if avg else 0,
        "total_reviews": total,
        "pagination": pagination(page, limit, total),
    })


@app.post("/api/reviews")
async def create_review(payload: ReviewIn, user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = db["product"].find_one({"_id": to_object_id(payload.product_id, "product ID")})
    if not product or not product.get("is_active", True):
        raise NotFoundError("Product not found")
    uid = str(user["_id"])
    if db["review"].find_one({"user_id": uid, "product_id": payload.product_id}):
        raise ConflictError("You have already reviewed this product")
    inserted = create_document(db, "review", Review(
        user_id=uid,
        product_id=payload.product_id,
        rating=payload.rating,
        comment=payload.comment.strip(),
    ))
    update_product_rating(db, payload.product_id)
    review = db["review"].find_one({"_id": ObjectId(inserted)})
    return send_success("Review created successfully", {"review": _review_out(db, review)}, status_code=201)


@app.put("/api/reviews/{review_id}")
async def update_review(review_id: str, payload: ReviewUpdate, user: dict = Depends(get_current_user),
                        db=Depends(get_db)):
    oid = to_object_id(review_id, "review ID")
    review = db["review"].find_one({"_id": oid})
    if not review:
        raise NotFoundError("Review not found")
    if review["user_id"] != str(user["_id"]):
        raise AuthorizationError("Not authorized to update this review")
    changes = payload.model_dump(exclude_none=True)
    if changes:
        changes["updated_at"] = utcnow()
        db["review"].update_one({"_id": oid}, {"$set": changes})
        update_product_rating(db, review["product_id"])
    return send_success("Review updated successfully", {"review": _review_out(db, db["review"].find_one({"_id": oid}))})


@app.delete("/api/reviews/{review_id}")
async def delete_review(review_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    oid = to_object_id(review_id, "review ID")
    review = db["review"].find_one({"_id": oid})
    if not review:
        raise NotFoundError("Review not found")
    if review["user_id"] != str(user["_id"]) and not user.get("is_admin"):
        raise AuthorizationError("Not authorized to delete this review")
    db["review"].delete_one({"_id": oid})
    update_product_rating(db, review["product_id"])
    return send_success("Review deleted successfully")


# Admin
@app.get("/api/admin/stats")
async def admin_stats(user: dict = Depends(require_admin), db=Depends(get_db),
                      settings: Settings = Depends(get_settings)):
    stats = dashboard_stats(db, low_stock_threshold=settings.low_stock_threshold)
    return send_success("Statistics retrieved successfully", {"stats": stats})


@app.get("/api/admin/users")
async def admin_users(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      is_admin: Optional[bool] = None, user: dict = Depends(require_admin), db=Depends(get_db)):
    filt = {} if is_admin is None else {"is_admin": is_admin}
    cursor = db["user"].find(filt, {"hashed_password": 0}).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    total = db["user"].count_documents(filt)
    return send_success("Users retrieved successfully", {
        "users": [serialize_doc(u) for u in cursor],
        "pagination": pagination(page, limit, total),
    })


@app.put("/api/admin/users/{user_id}/role")
async def admin_set_role(user_id: str, payload: RoleUpdate, user: dict = Depends(require_admin), db=Depends(get_db)):
    oid = to_object_id(user_id, "user ID")
    result = db["user"].update_one({"_id": oid}, {"$set": {"is_admin": payload.is_admin, "updated_at": utcnow()}})
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    updated = db["user"].find_one({"_id": oid}, {"hashed_password": 0})
    return send_success("User role updated successfully", {"user": serialize_doc(updated)})


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
