"""Order intake and lifecycle. Line items keep the catalog name and price from intake time."""
from typing import Any, Dict, FrozenSet, List, Optional, Protocol

from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import get_config
from database import get_document, now_utc, to_object_id
from errors import Conflict, Forbidden, InvalidInput, NotFound, Unavailable
from logger import get_logger
from schemas import (
    ORDER_STATUSES,
    ORDER_TYPES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    DeliveryAddress,
    Order,
    OrderItem,
)
from sequences import SequenceAllocator
from stores import CustomerStore, MenuCatalog

log = get_logger(__name__)

COLLECTION = "order"

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Pending": frozenset({"Confirmed", "Preparing", "Ready", "Out for Delivery", "Delivered", "Completed", "Cancelled"}),
    "Confirmed": frozenset({"Preparing", "Ready", "Out for Delivery", "Delivered", "Completed", "Cancelled"}),
    "Preparing": frozenset({"Ready", "Out for Delivery", "Delivered", "Completed", "Cancelled"}),
    "Ready": frozenset({"Out for Delivery", "Delivered", "Completed", "Cancelled"}),
    "Out for Delivery": frozenset({"Delivered", "Completed", "Cancelled"}),
    "Delivered": frozenset({"Completed", "Cancelled"}),
    "Completed": frozenset(),
    "Cancelled": frozenset(),
}

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Pending": frozenset({"Paid", "Failed"}),
    "Failed": frozenset({"Pending", "Paid"}),
    "Paid": frozenset({"Refunded"}),
    "Refunded": frozenset(),
}


class Notifier(Protocol):
    def emit(self, title: str, message: str, type: str = "info") -> None:
        ...


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def can_transition(table: Dict[str, FrozenSet[str]], current: str, new: str) -> bool:
    return current == new or new in table.get(current, frozenset())


class OrderService:
    def __init__(
        self,
        database: Database,
        notifier: Notifier,
        allocator: Optional[SequenceAllocator] = None,
        catalog: Optional[MenuCatalog] = None,
        customers: Optional[CustomerStore] = None,
    ):
        self.db = database
        self.notifier = notifier
        self.allocator = allocator or SequenceAllocator(database)
        self.catalog = catalog or MenuCatalog(database)
        self.customers = customers or CustomerStore(database)

    # Intake

    def create_order(
        self,
        customer_id: str,
        items: Optional[List[Dict[str, Any]]],
        order_type: Optional[str] = None,
        payment_method: Optional[str] = None,
        delivery_address: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
        mpesa_checkout_id: Optional[str] = None,
    ) -> Order:
        if not items:
            raise InvalidInput("Order must contain at least one item")

        order_type = order_type or "takeaway"
        payment_method = payment_method or "M-PESA"
        if order_type not in ORDER_TYPES:
            raise InvalidInput(f"Invalid order type. Must be one of: {', '.join(ORDER_TYPES)}")
        if payment_method not in PAYMENT_METHODS:
            raise InvalidInput(f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}")

        customer = self.customers.find_by_id(customer_id)
        if customer is None:
            raise NotFound("Customer not found")

        order_items = [self._snapshot_line(line) for line in items]

        address = None
        if order_type == "delivery":
            try:
                address = DeliveryAddress.model_validate(delivery_address or {})
            except ValidationError as exc:
                errors = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors()]
                raise InvalidInput("Invalid delivery address", errors=errors) from None
            if not address.is_complete():
                raise InvalidInput("Delivery address (street and city) is required for delivery orders")

        stamp = now_utc()
        order = Order(
            user_id=customer.id,
            customer_id=customer.id,
            customer_name=customer.name,
            customer_phone=customer.phone,
            customer_email=customer.email or "",
            items=order_items,
            order_type=order_type,
            delivery_address=address,
            payment_method=payment_method,
            payment_status="Pending",
            order_status="Pending",
            mpesa_checkout_id=mpesa_checkout_id,
            notes=notes or "",
            created_at=stamp,
            updated_at=stamp,
        )
        self._insert(order)
        log.info(f"Order {order.order_number} saved for customer {customer.id}: total {order.total}")

        self.customers.record_order(customer.id, order.total)
        self.notifier.emit(
            "New Order",
            f"Order #{order.order_number} from {order.customer_name}\n"
            f"Items: {order.items_summary()}\n"
            f"Total: KES {format_amount(order.total)}",
            "success",
        )
        return order

    def _snapshot_line(self, line: Dict[str, Any]) -> OrderItem:
        menu_item_id = line.get("menuItemId") or line.get("menu_item_id")
        quantity = line.get("quantity")
        if not menu_item_id or quantity is None:
            raise InvalidInput("Each item must have menuItemId and quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidInput("Quantity must be a whole number of at least 1")

        menu_item = self.catalog.find_by_id(menu_item_id)
        if menu_item is None:
            raise NotFound(f"Item with ID {menu_item_id} not found")
        if not menu_item.available:
            raise Unavailable(f"{menu_item.name} is not available")

        return OrderItem(
            menu_item_id=menu_item.id,
            name=menu_item.name,
            price=menu_item.price,
            quantity=quantity,
        )

    def _insert(self, order: Order) -> None:
        # The only unique index on the collection besides _id is order_number.
        attempts = max(1, get_config().order_number_retries)
        for attempt in range(1, attempts + 1):
            order.order_number = self.allocator.allocate("Order")
            try:
                result = self.db[COLLECTION].insert_one(order.to_document())
            except DuplicateKeyError:
                log.warning(f"Order number {order.order_number} already taken (attempt {attempt}/{attempts})")
                continue
            order.id = str(result.inserted_id)
            return
        raise Conflict("orderNumber already exists", field="orderNumber")

    # Queries

    def get_order(self, order_id: str) -> Order:
        doc = get_document(COLLECTION, order_id, database=self.db)
        if doc is None:
            raise NotFound("Order not found")
        return Order.from_document(doc)

    def list_orders(self, status: Optional[str] = None, limit: int = 100) -> List[Order]:
        query = {}
        if status and status != "all":
            query["order_status"] = status
        cursor = self.db[COLLECTION].find(query).sort([("created_at", -1), ("_id", -1)])
        if limit and limit > 0:
            cursor = cursor.limit(limit)
        return [Order.from_document(doc) for doc in cursor]

    def orders_for_customer(self, customer_id: str) -> List[Order]:
        query = {"$or": [{"user_id": customer_id}, {"customer_id": customer_id}]}
        cursor = self.db[COLLECTION].find(query).sort([("created_at", -1), ("_id", -1)])
        return [Order.from_document(doc) for doc in cursor]

    def track_order(self, order_number: str, phone: Optional[str] = None) -> Order:
        doc = self.db[COLLECTION].find_one({"order_number": order_number})
        if doc is None:
            raise NotFound("Order not found")
        if phone and doc.get("customer_phone") != phone:
            raise Forbidden("Invalid phone number for this order")
        return Order.from_document(doc)

    # Transitions

    def set_order_status(self, order_id: str, status: Optional[str], override: bool = False) -> Order:
        if status not in ORDER_STATUSES:
            raise InvalidInput("Invalid status")
        order = self.get_order(order_id)
        self._check_transition(ORDER_TRANSITIONS, order.order_status, status, override, "order status")

        previous = order.order_status
        order.order_status = status
        self._save(order, {"order_status": status})
        log.info(f"Order {order.order_number} status {previous} -> {status}")

        self.notifier.emit(
            "Order Status Updated",
            f"Order #{order.order_number} is now {status}\nItems: {order.items_summary()}",
            "info",
        )
        return order

    def set_payment_status(
        self,
        order_id: str,
        payment_status: Optional[str],
        mpesa_receipt: Optional[str] = None,
        override: bool = False,
    ) -> Order:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidInput("Invalid payment status")
        order = self.get_order(order_id)
        self._check_transition(PAYMENT_TRANSITIONS, order.payment_status, payment_status, override, "payment status")

        changes = {"payment_status": payment_status}
        order.payment_status = payment_status
        if mpesa_receipt:
            order.mpesa_receipt = mpesa_receipt
            changes["mpesa_receipt"] = mpesa_receipt
        self._save(order, changes)
        log.info(f"Order {order.order_number} payment -> {payment_status}")

        paid = payment_status == "Paid"
        self.notifier.emit(
            "Payment Received" if paid else "Payment Update",
            f"Payment for order #{order.order_number} is now {payment_status}\n"
            f"Total: KES {format_amount(order.total)}",
            "success" if paid else "warning",
        )
        return order

    def _check_transition(self, table, current: str, new: str, override: bool, label: str) -> None:
        if override or not get_config().strict_status_transitions:
            return
        if not can_transition(table, current, new):
            raise InvalidInput(f"Cannot change {label} from {current} to {new}")

    def _save(self, order: Order, changes: Dict[str, Any]) -> None:
        order.updated_at = now_utc()
        changes = dict(changes, updated_at=order.updated_at)
        self.db[COLLECTION].update_one({"_id": to_object_id(order.id)}, {"$set": changes})
