import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import Principal, create_access_token, require_customer, require_staff
from config import get_config
from database import ensure_indexes, get_db
from errors import AppError, Conflict, NotFound
from logger import configure_logging, get_logger
from notifications import DeferredNotifier, NotificationService
from orders import OrderService
from schemas import MenuItem, Order
from sequences import SequenceAllocator
from stores import CustomerStore, MenuCatalog, StaffStore

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    database = get_db()
    if database is not None:
        ensure_indexes(database)
        log.info(f"Connected to database '{database.name}'")
    else:
        log.warning("DATABASE_URL / DATABASE_NAME not set; data routes are disabled")
    yield


app = FastAPI(title=get_config().app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers

@app.exception_handler(AppError)
async def handle_app_error(_request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def handle_duplicate_key(_request: Request, exc: DuplicateKeyError):
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    field = next(iter(key_pattern), "value")
    return JSONResponse(status_code=400, content=Conflict(f"{field} already exists", field=field).to_dict())


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    log.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    body = {"message": "Internal Server Error"}
    if get_config().app_env == "development":
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)


# Dependencies

def require_db():
    database = get_db()
    if database is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database


def get_order_service(background_tasks: BackgroundTasks, database=Depends(require_db)) -> OrderService:
    notifier = DeferredNotifier(background_tasks, NotificationService(database))
    return OrderService(database, notifier)


def get_notification_service(database=Depends(require_db)) -> NotificationService:
    return NotificationService(database)


@app.get("/")
def read_root():
    return {"name": get_config().app_name, "status": "ok"}


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/test")
def test_database():
    """Test endpoint to check if database is available and accessible"""
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        db = get_db()
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = getattr(db, 'name', '✅ Connected')
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"

    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    # Check environment variables
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


# API models to control inputs

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderLineIn(CamelModel):
    menu_item_id: Optional[str] = None
    quantity: Optional[int] = None


class OrderIn(CamelModel):
    items: Optional[List[OrderLineIn]] = None
    order_type: Optional[str] = None
    payment_method: Optional[str] = None
    delivery_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    mpesa_checkout_id: Optional[str] = None


class OrderStatusIn(BaseModel):
    status: Optional[str] = None
    override: bool = False


class PaymentStatusIn(CamelModel):
    payment_status: Optional[str] = None
    mpesa_receipt: Optional[str] = None
    override: bool = False


class RegisterIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = ""


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class NotificationIn(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None


DEMO_MENU = [
    {"name": "Chicken Pilau", "category": "Main Course", "price": 650, "preparation_time": 25},
    {"name": "Beef Samosa", "category": "Appetizer", "price": 120, "preparation_time": 10},
    {"name": "Ugali & Sukuma", "category": "Side Dish", "price": 200, "preparation_time": 15},
    {"name": "Mango Juice", "category": "Beverage", "price": 250, "preparation_time": 5},
    {"name": "Mandazi", "category": "Dessert", "price": 50, "preparation_time": 5},
]


@app.post("/api/seed")
def seed_demo(database=Depends(require_db)):
    """Seed database with the admin account and a demo menu."""
    config = get_config()
    ensure_indexes(database)

    admin = StaffStore(database).ensure_admin(
        config.seed_admin_email, config.seed_admin_password, config.seed_admin_name
    )

    created_items = 0
    if database["menuitem"].count_documents({}) == 0:
        catalog = MenuCatalog(database)
        allocator = SequenceAllocator(database)
        for item in DEMO_MENU:
            catalog.create(MenuItem(**item), allocator)
            created_items += 1

    return {
        "status": "ok",
        "admin": admin,
        "menu_items_created": created_items,
        "menu_items": database["menuitem"].count_documents({}),
    }


# Auth

def _customer_payload(customer) -> Dict[str, Any]:
    return {
        "_id": customer.id,
        "customerId": customer.customer_id,
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "address": customer.address,
        "memberSince": customer.member_since.isoformat() if customer.member_since else None,
    }


@app.post("/api/customer/auth/register", status_code=201)
def register_customer(body: RegisterIn, database=Depends(require_db)):
    customer = CustomerStore(database).register(
        body.name, body.email, body.password, body.phone,
        allocator=SequenceAllocator(database), address=body.address or "",
    )
    token = create_access_token(customer.id, "customer", customer.email)
    return {"message": "Registration successful", "token": token, "customer": _customer_payload(customer)}


@app.post("/api/customer/auth/login")
def login_customer(body: LoginIn, database=Depends(require_db)):
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Please provide email and password")
    customer = CustomerStore(database).authenticate(body.email, body.password)
    token = create_access_token(customer.id, "customer", customer.email)
    return {"message": "Login successful", "token": token, "customer": _customer_payload(customer)}


@app.get("/api/customer/auth/me")
def current_customer(principal: Principal = Depends(require_customer), database=Depends(require_db)):
    customer = CustomerStore(database).find_by_id(principal.id)
    if customer is None:
        raise NotFound("Customer not found")
    payload = _customer_payload(customer)
    payload.update(totalOrders=customer.total_orders, totalSpent=customer.total_spent)
    return payload


@app.post("/api/auth/login")
def login_staff(body: LoginIn, database=Depends(require_db)):
    user = StaffStore(database).authenticate(body.email, body.password)
    token = create_access_token(user.id, user.role, user.email)
    return {"token": token, "user": {"_id": user.id, "name": user.name, "email": user.email, "role": user.role}}


# Menu

@app.get("/api/menu/available")
def list_available_menu(database=Depends(require_db)):
    return [item.to_response() for item in MenuCatalog(database).list_available()]


@app.post("/api/menu", status_code=201)
def create_menu_item(item: MenuItem, _staff: Principal = Depends(require_staff), database=Depends(require_db)):
    created = MenuCatalog(database).create(item, SequenceAllocator(database))
    return created.to_response()


# Orders

def _intake_summary(order: Order) -> Dict[str, Any]:
    data = order.to_response()
    return {
        "_id": data["_id"],
        "orderNumber": data["orderNumber"],
        "total": data["total"],
        "status": data["orderStatus"],
        "items": data["items"],
        "createdAt": data["createdAt"],
        "orderType": data["orderType"],
        "deliveryAddress": data["deliveryAddress"],
    }


@app.post("/api/orders", status_code=201)
def create_order(
    body: OrderIn,
    principal: Principal = Depends(require_customer),
    service: OrderService = Depends(get_order_service),
):
    order = service.create_order(
        principal.id,
        [line.model_dump(by_alias=True) for line in body.items or []],
        order_type=body.order_type,
        payment_method=body.payment_method,
        delivery_address=body.delivery_address,
        notes=body.notes,
        mpesa_checkout_id=body.mpesa_checkout_id,
    )
    return {"message": "Order created successfully", "order": _intake_summary(order)}


@app.get("/api/orders/my-orders")
def my_orders(principal: Principal = Depends(require_customer), service: OrderService = Depends(get_order_service)):
    return [order.to_response() for order in service.orders_for_customer(principal.id)]


@app.get("/api/orders/track/{order_number}")
def track_order(order_number: str, phone: Optional[str] = None, service: OrderService = Depends(get_order_service)):
    order = service.track_order(order_number, phone)
    data = order.to_response()
    return {
        "orderNumber": data["orderNumber"],
        "customerName": data["customerName"],
        "orderStatus": data["orderStatus"],
        "createdAt": data["createdAt"],
        "total": data["total"],
        "items": data["items"],
        "orderType": data["orderType"],
        "deliveryAddress": data["deliveryAddress"],
    }


@app.get("/api/orders")
def list_orders(
    status: Optional[str] = None,
    limit: int = Query(100, ge=0),
    _staff: Principal = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    return [order.to_response() for order in service.list_orders(status=status, limit=limit)]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, _staff: Principal = Depends(require_staff), service: OrderService = Depends(get_order_service)):
    return service.get_order(order_id).to_response()


@app.patch("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: OrderStatusIn,
    _staff: Principal = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    order = service.set_order_status(order_id, body.status, override=body.override)
    return {"message": "Order status updated", "order": order.to_response()}


@app.patch("/api/orders/{order_id}/payment")
def update_payment_status(
    order_id: str,
    body: PaymentStatusIn,
    _staff: Principal = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    order = service.set_payment_status(
        order_id, body.payment_status, mpesa_receipt=body.mpesa_receipt, override=body.override
    )
    return {"message": "Payment status updated", "order": order.to_response()}


# Notifications

@app.get("/api/notifications")
def list_notifications(
    _principal: Principal = Depends(require_staff),
    service: NotificationService = Depends(get_notification_service),
):
    return [n.to_response() for n in service.list()]


@app.get("/api/notifications/unread")
def unread_notifications(
    _principal: Principal = Depends(require_staff),
    service: NotificationService = Depends(get_notification_service),
):
    return [n.to_response() for n in service.unread()]


@app.post("/api/notifications", status_code=201)
def create_notification(
    body: NotificationIn,
    _principal: Principal = Depends(require_staff),
    service: NotificationService = Depends(get_notification_service),
):
    return service.create(body.title, body.message, body.type).to_response()


@app.patch("/api/notifications/read-all")
def mark_all_notifications_read(
    _principal: Principal = Depends(require_staff),
    service: NotificationService = Depends(get_notification_service),
):
    service.mark_all_read()
    return {"message": "All notifications marked as read"}


@app.patch("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    _principal: Principal = Depends(require_staff),
    service: NotificationService = Depends(get_notification_service),
):
    service.mark_read(notification_id)
    return {"message": "Notification marked as read"}


@app.delete("/api/notifications/{notification_id}")
def delete_notification(
    notification_id: str,
    _principal: Principal = Depends(require_staff),
    service: NotificationService = Depends(get_notification_service),
):
    service.delete(notification_id)
    return {"message": "Notification deleted"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
