"""
Database Schemas for RestoManager POS

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase of the class name (e.g., MenuItem -> "menuitem").

Documents are stored with snake_case fields; API payloads use camelCase keys
(``model_dump(by_alias=True)``) and expose the storage id as ``_id``.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

OrderType = Literal["takeaway", "dine-in", "delivery"]
PaymentMethod = Literal["M-PESA", "Cash", "Card"]
PaymentStatus = Literal["Pending", "Paid", "Failed", "Refunded"]
OrderStatus = Literal[
    "Pending", "Confirmed", "Preparing", "Ready",
    "Out for Delivery", "Delivered", "Completed", "Cancelled",
]
NotificationType = Literal["info", "success", "warning", "error"]
MenuCategory = Literal["Appetizer", "Main Course", "Dessert", "Beverage", "Side Dish"]

ORDER_TYPES = get_args(OrderType)
PAYMENT_METHODS = get_args(PaymentMethod)
PAYMENT_STATUSES = get_args(PaymentStatus)
ORDER_STATUSES = get_args(OrderStatus)
NOTIFICATION_TYPES = get_args(NotificationType)


class Document(BaseModel):
    """Base for stored models: camelCase on the wire, snake_case in MongoDB."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        if isinstance(value, ObjectId):
            return str(value)
        return value

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# Core domain models

class MenuItem(Document):
    menu_id: Optional[str] = Field(None, description="Human-readable code e.g. MENU0001")
    name: str = Field(..., min_length=1, description="Dish name")
    category: MenuCategory = Field(..., description="Menu section")
    price: float = Field(..., ge=0, description="Price in KES")
    description: str = ""
    preparation_time: int = Field(15, ge=0, description="Minutes")
    available: bool = Field(True, description="Whether the item can be ordered")
    image: str = "fa-utensils"


class Customer(Document):
    customer_id: Optional[str] = Field(None, description="Human-readable code e.g. CUST00001")
    name: str
    email: Optional[str] = None
    phone: str
    address: str = ""
    password_hash: Optional[str] = Field(None, exclude=True)
    total_orders: int = 0
    total_spent: float = 0
    last_order_date: Optional[datetime] = None
    is_active: bool = True
    member_since: Optional[datetime] = None


class User(Document):
    """Staff accounts (admin, manager, cashier...)"""
    name: str
    email: str
    password_hash: Optional[str] = Field(None, exclude=True)
    role: str = "manager"
    is_active: bool = True


class OrderItem(BaseModel):
    """Line item snapshot embedded in an Order; not a collection by itself."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    menu_item_id: str = Field(..., description="MenuItem ObjectId as string")
    name: str = Field(..., description="Name at the time of order")
    price: float = Field(..., ge=0, description="Unit price at the time of order")
    quantity: int = Field(..., ge=1)
    subtotal: float = Field(0, ge=0)


class DeliveryAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    landmark: Optional[str] = None
    instructions: Optional[str] = None

    def is_complete(self) -> bool:
        return bool((self.street or "").strip()) and bool((self.city or "").strip())


class Order(Document):
    order_number: Optional[str] = None
    user_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: str
    customer_phone: str
    customer_email: str = ""
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float = 0
    total: float = 0
    order_type: OrderType = "takeaway"
    delivery_address: Optional[DeliveryAddress] = None
    payment_method: PaymentMethod = "M-PESA"
    payment_status: PaymentStatus = "Pending"
    mpesa_checkout_id: Optional[str] = None
    mpesa_receipt: Optional[str] = None
    order_status: OrderStatus = "Pending"
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _recalculate(self):
        # Totals always follow the line items; no tax line is applied.
        for item in self.items:
            item.subtotal = item.price * item.quantity
        self.subtotal = sum(item.subtotal for item in self.items)
        self.total = self.subtotal
        return self

    def items_summary(self) -> str:
        return ", ".join(f"{item.quantity}x {item.name}" for item in self.items)


class Notification(Document):
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: NotificationType = "info"
    read: bool = False
    created_at: Optional[datetime] = None
