import logging
import math
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import (
    ALLOWED_ORIGINS,
    DATABASE_URL,
    DEBUG,
    LOG_LEVEL,
    PORT,
    PRIMARY_CURRENCY,
    RAZORPAY_KEY_ID,
    STORE_NAME,
)
from database import connect, ensure_indexes
from errors import (
    ApiError,
    Forbidden,
    InvalidInput,
    InvalidTransition,
    NotFound,
    Unauthorized,
    UpstreamFailure,
    UpstreamTimeout,
)
from memory import memory_store
from notifications import SmtpMailer
from orders import OrderLifecycle
from payments import RazorpayGateway
from pricing import DiscountEvaluator, OrderPricingEngine, subtotal_of
from repositories import Store, mongo_store
from schemas import (
    Address,
    Cart,
    CartItem,
    DiscountType,
    LineItem,
    Order,
    PaymentStatus,
    Product,
    Review,
    User,
    Wishlist,
    WishlistItem,
    as_utc,
    utcnow,
)
from security import (
    create_token,
    get_current_user,
    get_store,
    hash_password,
    require_admin,
    require_self_or_admin,
    verify_password,
)

# Logging
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "store", None) is None:
        if DATABASE_URL:
            db = connect()
            await ensure_indexes(db)
            app.state.store = mongo_store(db)
            app.state.mongo_client = db.client
            logger.info("connected to MongoDB database %s", db.name)
        else:
            logger.warning("DATABASE_URL not set; using the in-memory store")
            app.state.store = memory_store()
    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = RazorpayGateway()
    if getattr(app.state, "mailer", None) is None:
        app.state.mailer = SmtpMailer()
    yield
    client = getattr(app.state, "mongo_client", None)
    if client is not None:
        await client.close()


app = FastAPI(title=f"{STORE_NAME} API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS] if ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code,
                (time.perf_counter() - start) * 1000)
    return response


# Responses
def api_response(data: Any, message: str = "Success", status_code: int = 200) -> JSONResponse:
    body = {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": 200 <= status_code < 300,
        "metadata": {"timestamp": datetime.now(timezone.utc).isoformat(), "requestId": str(uuid.uuid4())},
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_response(exc: ApiError, request: Request) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.error_code)
    content = exc.to_dict()
    if DEBUG and exc.__traceback__ is not None:
        content["stack"] = "".join(traceback.format_exception(exc))
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


# Error handlers
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return error_response(exc, request)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(InvalidInput("Invalid request body", "VALIDATION_ERROR", errors=exc.errors()), request)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error: %s", exc)
    if exc.timeout:
        return error_response(UpstreamTimeout("Database timed out"), request)
    return error_response(UpstreamFailure("Database request failed", "DATABASE_ERROR"), request)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"statusCode": exc.status_code, "message": exc.detail, "success": False, "errors": []},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"statusCode": 500, "message": "Internal server error",
                                                  "success": False, "errors": []})


# Services
def get_evaluator(store: Store = Depends(get_store)) -> DiscountEvaluator:
    return DiscountEvaluator(store.discounts, store.products)


def get_lifecycle(request: Request, evaluator: DiscountEvaluator = Depends(get_evaluator),
                  store: Store = Depends(get_store)) -> OrderLifecycle:
    return OrderLifecycle(
        orders=store.orders,
        pricing=OrderPricingEngine(evaluator),
        gateway=request.app.state.gateway,
        mailer=request.app.state.mailer,
        users=store.users,
        products=store.products,
    )


# Presentation helpers
def product_summary(product: Optional[Product]) -> Optional[Dict[str, Any]]:
    if product is None:
        return None
    return {"id": product.id, "name": product.name, "price": product.price, "image": product.image}


async def populate_orders(store: Store, orders: List[Order]) -> List[Dict[str, Any]]:
    users: Dict[str, Optional[User]] = {}
    for user_id in {o.user_id for o in orders}:
        users[user_id] = await store.users.get(user_id)
    products = {p.id: p for p in await store.products.find_by_ids({i.product_id for o in orders for i in o.items})}
    result = []
    for order in orders:
        doc = order.model_dump(mode="json")
        user = users.get(order.user_id)
        doc["user"] = {"id": user.id, "email": user.email, "username": user.username} if user else None
        for item in doc["items"]:
            item["product"] = product_summary(products.get(item["product_id"]))
        result.append(doc)
    return result


async def populate_cart(store: Store, cart: Cart) -> Dict[str, Any]:
    products = {p.id: p for p in await store.products.find_by_ids(i.product_id for i in cart.items)}
    return {
        "user_id": cart.user_id,
        "items": [
            {"product_id": i.product_id, "quantity": i.quantity, "product": product_summary(products.get(i.product_id))}
            for i in cart.items
        ],
    }


async def valid_wishlist_items(store: Store, wishlist: Optional[Wishlist]) -> List[Dict[str, Any]]:
    if wishlist is None or not wishlist.items:
        return []
    products = {p.id: p for p in await store.products.find_by_ids(i.product_id for i in wishlist.items)}
    return [
        {"product": product_summary(products[i.product_id]), "added_at": i.added_at}
        for i in wishlist.items
        if i.product_id in products
    ]


def page_body(key: str, items: List[Any], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {key: items, "total": total, "current_page": page, "total_pages": math.ceil(total / limit)}


# Health and config
@app.get("/")
def root():
    return {"name": STORE_NAME, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/config")
def get_config():
    return {
        "storeName": STORE_NAME,
        "currency": PRIMARY_CURRENCY,
        "payments": {"razorpay": bool(RAZORPAY_KEY_ID)},
        "razorpayKey": RAZORPAY_KEY_ID or None,
    }


# Users
class RegisterDTO(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


class PartialUpdate(BaseModel):
    """Update body: every field may be omitted, only those in ``nullable`` may be sent as null."""
    nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_nulls(self):
        nulls = sorted(f for f in self.model_fields_set if getattr(self, f) is None and f not in self.nullable)
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


class UserUpdateDTO(PartialUpdate):
    nullable: ClassVar[FrozenSet[str]] = frozenset({"address"})

    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=1)
    password: Optional[str] = Field(None, min_length=1)
    address: Optional[Address] = None


async def ensure_unique_identity(store: Store, email: Optional[str], username: Optional[str],
                                 user_id: Optional[str] = None) -> None:
    if email:
        existing = await store.users.find_by_email(email)
        if existing and existing.id != user_id:
            raise InvalidInput("User already exists", "USER_EXISTS")
    if username:
        existing = await store.users.find_by_username(username)
        if existing and existing.id != user_id:
            raise InvalidInput("Username already taken", "USER_EXISTS")


@app.post("/api/users/register")
async def register(data: RegisterDTO, store: Store = Depends(get_store)):
    await ensure_unique_identity(store, data.email, data.username)
    user = await store.users.create({
        "email": data.email,
        "username": data.username,
        "password_hash": hash_password(data.password),
        "role": "user",
    })
    logger.info("registered user %s", user.id)
    return api_response({"token": create_token(user)}, "User registered successfully", 201)


@app.post("/api/users/login")
async def login(data: LoginDTO, store: Store = Depends(get_store)):
    user = await store.users.find_by_email(data.email)
    if user is None or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Invalid credentials", "INVALID_CREDENTIALS")
    if user.is_banned:
        raise Forbidden("Account is banned", "ACCOUNT_BANNED")
    return api_response({"token": create_token(user)}, "User logged in successfully")


@app.get("/api/users/{user_id}")
async def get_user(user_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    require_self_or_admin(user, user_id)
    found = await store.users.get(user_id)
    if found is None:
        raise NotFound("User not found", "USER_NOT_FOUND")
    return api_response(found.public(), "User retrieved successfully")


@app.put("/api/users/{user_id}")
async def update_user(user_id: str, data: UserUpdateDTO, user: User = Depends(get_current_user),
                      store: Store = Depends(get_store)):
    require_self_or_admin(user, user_id)
    changes = data.model_dump(exclude_unset=True, exclude={"password"})
    if data.password:
        changes["password_hash"] = hash_password(data.password)
    await ensure_unique_identity(store, data.email, data.username, user_id)
    updated = await store.users.update(user_id, changes)
    if updated is None:
        raise NotFound("User not found", "USER_NOT_FOUND")
    return api_response(updated.public(), "User updated successfully")


# Products
class ReviewDTO(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class ValidateDiscountDTO(BaseModel):
    code: str = Field(..., min_length=1)
    items: List[LineItem] = Field(..., min_length=1)
    product_ids: Optional[List[str]] = None
    subtotal: Optional[float] = Field(None, ge=0)


@app.get("/api/products")
async def list_products(user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    products = await store.products.list_active()
    discounts = await store.discounts.list_usable(utcnow())
    items = []
    for p in products:
        doc = p.model_dump(mode="json", exclude={"reviews"})
        doc["avg_rating"] = p.avg_rating
        applicable = next(
            (d for d in discounts if not d.applicable_products or p.id in d.applicable_products),
            None,
        )
        if applicable is not None:
            doc["discount"] = {
                "code": applicable.code,
                "discount_type": applicable.discount_type,
                "discount_value": applicable.discount_value,
            }
        items.append(doc)
    body = {"products": items, "total_products": len(items), "current_page": 1, "total_pages": 1}
    return api_response(body, "Products retrieved successfully")


@app.get("/api/products/search")
async def search_products(q: Optional[str] = None, user: User = Depends(get_current_user),
                          store: Store = Depends(get_store)):
    if not q or not q.strip():
        raise InvalidInput("Search query (q) is required and must be a string", "INVALID_QUERY")
    products = await store.products.search(q.strip())
    return api_response([p.model_dump(mode="json") for p in products], "Products search completed successfully")


@app.get("/api/products/categories")
async def product_categories(user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    return api_response(await store.products.categories(), "Categories retrieved successfully")


@app.get("/api/products/{product_id}/reviews")
async def get_reviews(product_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    product = await store.products.get(product_id)
    if product is None:
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
    return api_response(list(product.reviews), "Reviews retrieved successfully")


@app.post("/api/products/{product_id}/reviews")
async def add_review(product_id: str, data: ReviewDTO, user: User = Depends(get_current_user),
                     store: Store = Depends(get_store)):
    review = Review(user_id=user.id, rating=data.rating, comment=data.comment)
    product = await store.products.add_review(product_id, review)
    if product is None:
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
    return api_response(list(product.reviews), "Review added successfully", 201)


@app.post("/api/products/validate")
async def validate_discount(data: ValidateDiscountDTO, user: User = Depends(get_current_user),
                            evaluator: DiscountEvaluator = Depends(get_evaluator)):
    product_ids = data.product_ids or [i.product_id for i in data.items]
    subtotal = data.subtotal if data.subtotal is not None else subtotal_of(data.items)
    outcome = await evaluator.evaluate(data.code, product_ids, subtotal, data.items, include_totals=True)
    return api_response({"success": True, "discount": outcome}, "Discount validated successfully")


# Cart
class AddToCartDTO(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)
    user_id: Optional[str] = None


@app.post("/api/cart")
async def add_to_cart(data: AddToCartDTO, user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    owner = data.user_id or user.id
    require_self_or_admin(user, owner)
    cart = await store.carts.get(owner) or Cart(user_id=owner)
    items = list(cart.items)
    for idx, item in enumerate(items):
        if item.product_id == data.product_id:
            items[idx] = CartItem(product_id=item.product_id, quantity=item.quantity + data.quantity)
            break
    else:
        items.append(CartItem(product_id=data.product_id, quantity=data.quantity))
    cart = await store.carts.save(Cart(user_id=owner, items=tuple(items)))
    return api_response(await populate_cart(store, cart), "Item added to cart successfully")


@app.get("/api/cart/{user_id}")
async def get_cart(user_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    require_self_or_admin(user, user_id)
    cart = await store.carts.get(user_id)
    if cart is None:
        raise NotFound("Cart not found for this user", "CART_NOT_FOUND")
    return api_response(await populate_cart(store, cart), "Cart retrieved successfully")


# Wishlist
class WishlistDTO(BaseModel):
    product_id: str
    user_id: Optional[str] = None


@app.get("/api/wishlist/{user_id}")
async def get_wishlist(user_id: str, user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    require_self_or_admin(user, user_id)
    items = await valid_wishlist_items(store, await store.wishlists.get(user_id))
    return api_response(items, "Wishlist retrieved successfully")


@app.post("/api/wishlist/add")
async def add_to_wishlist(data: WishlistDTO, user: User = Depends(get_current_user),
                          store: Store = Depends(get_store)):
    owner = data.user_id or user.id
    require_self_or_admin(user, owner)
    if await store.products.get(data.product_id) is None:
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
    wishlist = await store.wishlists.get(owner) or Wishlist(user_id=owner)
    if not any(i.product_id == data.product_id for i in wishlist.items):
        wishlist = await store.wishlists.save(
            Wishlist(user_id=owner, items=wishlist.items + (WishlistItem(product_id=data.product_id),))
        )
    return api_response(await valid_wishlist_items(store, wishlist), "Item added to wishlist")


@app.post("/api/wishlist/remove")
async def remove_from_wishlist(data: WishlistDTO, user: User = Depends(get_current_user),
                               store: Store = Depends(get_store)):
    owner = data.user_id or user.id
    require_self_or_admin(user, owner)
    wishlist = await store.wishlists.get(owner)
    if wishlist is None:
        raise NotFound("Wishlist not found", "WISHLIST_NOT_FOUND")
    wishlist = await store.wishlists.save(
        Wishlist(user_id=owner, items=tuple(i for i in wishlist.items if i.product_id != data.product_id))
    )
    return api_response(await valid_wishlist_items(store, wishlist), "Item removed from wishlist")


# Orders
class CreateOrderDTO(BaseModel):
    items: List[LineItem] = []
    shipping_address: Optional[Dict[str, Any]] = None
    discount_codes: List[str] = []

    @field_validator("discount_codes", mode="before")
    @classmethod
    def _single_code(cls, v: Union[None, str, List[str]]):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class VerifyPaymentDTO(BaseModel):
    order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


@app.post("/api/orders/create")
async def create_order(data: CreateOrderDTO, user: User = Depends(get_current_user),
                       lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    session = await lifecycle.create(user.id, data.items, data.shipping_address, data.discount_codes)
    return api_response(session, "Order created successfully", 201)


@app.post("/api/orders/verify")
async def verify_payment(data: VerifyPaymentDTO, user: User = Depends(get_current_user),
                         lifecycle: OrderLifecycle = Depends(get_lifecycle), store: Store = Depends(get_store)):
    if not all([data.order_id, data.razorpay_payment_id, data.razorpay_order_id, data.razorpay_signature]):
        raise InvalidInput("Missing required payment verification fields", "MISSING_PAYMENT_FIELDS")
    existing = await store.orders.find_by_id(data.order_id)
    if existing is None or (existing.user_id != user.id and user.role != "admin"):
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    order = await lifecycle.confirm(data.order_id, data.razorpay_payment_id, data.razorpay_order_id,
                                    data.razorpay_signature)
    populated = (await populate_orders(store, [order]))[0]
    return api_response({"success": True, "order": populated}, "Payment verified and order confirmed")


@app.get("/api/orders/user")
async def user_orders(user: User = Depends(get_current_user), lifecycle: OrderLifecycle = Depends(get_lifecycle),
                      store: Store = Depends(get_store)):
    orders = await lifecycle.list_for_user(user.id)
    return api_response(await populate_orders(store, list(orders)), "User orders retrieved successfully")


# Admin: dashboard and users
class AdminUserUpdateDTO(PartialUpdate):
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=1)
    role: Optional[str] = Field(None, pattern="^(user|admin)$")
    is_banned: Optional[bool] = None


@app.get("/api/admin/dashboard")
async def admin_dashboard(admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    summary = await store.dashboard.summary()
    summary["recent_orders"] = await populate_orders(store, list(summary["recent_orders"]))
    return summary


@app.get("/api/admin/users")
async def admin_list_users(admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    return [u.public() for u in await store.users.list_all()]


@app.put("/api/admin/users/{user_id}")
async def admin_update_user(user_id: str, data: AdminUserUpdateDTO, admin: User = Depends(require_admin),
                            store: Store = Depends(get_store)):
    await ensure_unique_identity(store, data.email, data.username, user_id)
    updated = await store.users.update(user_id, data.model_dump(exclude_unset=True))
    if updated is None:
        raise NotFound("User not found", "USER_NOT_FOUND")
    return updated.public()


@app.delete("/api/admin/users/{user_id}")
async def admin_delete_user(user_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    if not await store.users.delete(user_id):
        raise NotFound("User not found", "USER_NOT_FOUND")
    return {"message": "User deleted successfully"}


# Admin: products
class ProductDTO(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: str = ""
    image: str = ""
    category: Optional[str] = None
    stock: int = Field(0, ge=0)


class ProductUpdateDTO(PartialUpdate):
    nullable: ClassVar[FrozenSet[str]] = frozenset({"category"})

    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_deleted: Optional[bool] = None


class BulkProductsDTO(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    update: ProductUpdateDTO


@app.get("/api/admin/products")
async def admin_list_products(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                              admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    products, total = await store.products.page(page, limit)
    return page_body("products", products, total, page, limit)


@app.post("/api/admin/products", status_code=201)
async def admin_create_product(data: ProductDTO, admin: User = Depends(require_admin),
                               store: Store = Depends(get_store)):
    product = await store.products.create(data.model_dump())
    logger.info("admin %s created product %s", admin.id, product.id)
    return product


@app.put("/api/admin/products/{product_id}")
async def admin_update_product(product_id: str, data: ProductUpdateDTO, admin: User = Depends(require_admin),
                               store: Store = Depends(get_store)):
    product = await store.products.update(product_id, data.model_dump(exclude_unset=True))
    if product is None:
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
    return product


@app.delete("/api/admin/products/{product_id}")
async def admin_delete_product(product_id: str, admin: User = Depends(require_admin),
                               store: Store = Depends(get_store)):
    if not await store.products.delete(product_id):
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
    return {"message": "Product deleted successfully"}


@app.post("/api/admin/products/bulk")
async def admin_bulk_products(data: BulkProductsDTO, admin: User = Depends(require_admin),
                              store: Store = Depends(get_store)):
    changes = data.update.model_dump(exclude_unset=True)
    if not changes:
        raise InvalidInput("Nothing to update", "EMPTY_UPDATE")
    return {"modified": await store.products.bulk_update(data.ids, changes)}


@app.get("/api/admin/categories")
async def admin_categories(admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    return await store.products.categories()


# Admin: orders
class OrderStatusDTO(BaseModel):
    payment_status: PaymentStatus


class BulkOrdersDTO(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    payment_status: PaymentStatus


@app.get("/api/admin/orders")
async def admin_list_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                            admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    orders, total = await store.orders.page(page, limit)
    return page_body("orders", await populate_orders(store, orders), total, page, limit)


@app.put("/api/admin/orders/{order_id}")
async def admin_update_order(order_id: str, data: OrderStatusDTO, admin: User = Depends(require_admin),
                             lifecycle: OrderLifecycle = Depends(get_lifecycle), store: Store = Depends(get_store)):
    order = await store.orders.find_by_id(order_id)
    if order is None:
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    order = await lifecycle.transition(order, data.payment_status)
    logger.info("admin %s moved order %s to %s", admin.id, order.id, order.payment_status.value)
    return (await populate_orders(store, [order]))[0]


@app.delete("/api/admin/orders/{order_id}")
async def admin_delete_order(order_id: str, admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    if not await store.orders.delete(order_id):
        raise NotFound("Order not found", "ORDER_NOT_FOUND")
    return {"message": "Order deleted successfully"}


@app.post("/api/admin/orders/bulk")
async def admin_bulk_orders(data: BulkOrdersDTO, admin: User = Depends(require_admin),
                            lifecycle: OrderLifecycle = Depends(get_lifecycle), store: Store = Depends(get_store)):
    updated, skipped = [], []
    for order_id in dict.fromkeys(data.ids):
        order = await store.orders.find_by_id(order_id)
        if order is None:
            skipped.append({"id": order_id, "reason": "Order not found"})
            continue
        try:
            await lifecycle.transition(order, data.payment_status)
        except (InvalidTransition, NotFound, UpstreamFailure) as exc:
            skipped.append({"id": order_id, "reason": exc.message})
        else:
            updated.append(order_id)
    return {"updated": updated, "skipped": skipped}


# Admin: discounts
class DiscountDTO(BaseModel):
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    is_active: bool = True
    applicable_products: List[str] = []

    @field_validator("code")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def _window(self):
        if self.end_date is not None and as_utc(self.end_date) < as_utc(self.start_date):
            raise ValueError("end_date must not be before start_date")
        return self


class DiscountUpdateDTO(PartialUpdate):
    nullable: ClassVar[FrozenSet[str]] = frozenset(
        {"description", "min_order_value", "max_discount_amount", "end_date"}
    )

    code: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_products: Optional[List[str]] = None

    @field_validator("code")
    @classmethod
    def _upper(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class BulkDiscountsDTO(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    is_active: bool


async def ensure_unique_code(store: Store, code: Optional[str], discount_id: Optional[str] = None) -> None:
    if not code:
        return
    existing = await store.discounts.find_by_code(code)
    if existing is not None and existing.id != discount_id:
        raise InvalidInput(f"Discount code {code} already exists", "DISCOUNT_EXISTS")


@app.get("/api/admin/discounts")
async def admin_list_discounts(admin: User = Depends(require_admin), store: Store = Depends(get_store)):
    return await store.discounts.list_all()


@app.post("/api/admin/discounts", status_code=201)
async def admin_create_discount(data: DiscountDTO, admin: User = Depends(require_admin),
                                store: Store = Depends(get_store)):
    await ensure_unique_code(store, data.code)
    discount = await store.discounts.create(data.model_dump())
    logger.info("admin %s created discount %s", admin.id, discount.code)
    return discount


@app.put("/api/admin/discounts/{discount_id}")
async def admin_update_discount(discount_id: str, data: DiscountUpdateDTO, admin: User = Depends(require_admin),
                                store: Store = Depends(get_store)):
    await ensure_unique_code(store, data.code, discount_id)
    current = await store.discounts.get(discount_id)
    if current is None:
        raise NotFound("Discount not found", "DISCOUNT_NOT_FOUND")
    changes = data.model_dump(exclude_unset=True)
    start = as_utc(changes.get("start_date", current.start_date))
    end = as_utc(changes.get("end_date", current.end_date))
    if start is not None and end is not None and end < start:
        raise InvalidInput("end_date must not be before start_date", "INVALID_DISCOUNT_WINDOW")
    return await store.discounts.update(discount_id, changes)


@app.delete("/api/admin/discounts/{discount_id}")
async def admin_delete_discount(discount_id: str, admin: User = Depends(require_admin),
                                store: Store = Depends(get_store)):
    if not await store.discounts.delete(discount_id):
        raise NotFound("Discount not found", "DISCOUNT_NOT_FOUND")
    return {"message": "Discount deleted successfully"}


@app.post("/api/admin/discounts/bulk")
async def admin_bulk_discounts(data: BulkDiscountsDTO, admin: User = Depends(require_admin),
                               store: Store = Depends(get_store)):
    return {"modified": await store.discounts.bulk_update(data.ids, {"is_active": data.is_active})}


# Sample seed endpoint (dev only)
@app.post("/dev/seed")
async def seed(store: Store = Depends(get_store)):
    if not DEBUG:
        raise NotFound()
    if await store.users.find_by_email("admin@storefront.dev") is None:
        await store.users.create({
            "email": "admin@storefront.dev",
            "username": "admin",
            "password_hash": hash_password("admin123"),
            "role": "admin",
        })
    if await store.products.count() == 0:
        await store.products.create({"name": "Wireless Mouse", "price": 2499, "category": "Electronics",
                                     "description": "Ergonomic wireless mouse with adjustable DPI.", "stock": 50})
        await store.products.create({"name": "Cotton Hoodie", "price": 1899, "category": "Apparel",
                                     "description": "Brushed fleece hoodie.", "stock": 80})
    if await store.discounts.find_by_code("WELCOME10") is None:
        await store.discounts.create({"code": "WELCOME10", "discount_type": "percentage", "discount_value": 10,
                                      "start_date": utcnow() - timedelta(days=1)})
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
