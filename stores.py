from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from werkzeug.security import check_password_hash, generate_password_hash

from database import create_document, get_document, now_utc, to_object_id
from errors import Conflict, InvalidInput, Unauthorized
from logger import get_logger
from schemas import Customer, MenuItem, User
from sequences import SequenceAllocator

log = get_logger(__name__)


class MenuCatalog:
    collection = "menuitem"

    def __init__(self, database: Database):
        self.db = database

    def find_by_id(self, menu_item_id: Any) -> Optional[MenuItem]:
        doc = get_document(self.collection, menu_item_id, database=self.db)
        return MenuItem.from_document(doc) if doc else None

    def list_available(self) -> List[MenuItem]:
        docs = self.db[self.collection].find({"available": True}).sort([("category", 1), ("name", 1)])
        return [MenuItem.from_document(doc) for doc in docs]

    def create(self, item: MenuItem, allocator: SequenceAllocator) -> MenuItem:
        if not item.menu_id:
            item.menu_id = allocator.allocate("MenuItem")
        try:
            item.id = create_document(self.collection, item.to_document(), database=self.db)
        except DuplicateKeyError:
            raise Conflict("menuId already exists", field="menuId") from None
        log.info(f"Menu item {item.menu_id} created: {item.name}")
        return item


class CustomerStore:
    collection = "customer"

    def __init__(self, database: Database):
        self.db = database

    def find_by_id(self, customer_id: Any) -> Optional[Customer]:
        doc = get_document(self.collection, customer_id, database=self.db)
        return Customer.from_document(doc) if doc else None

    def register(
        self,
        name: str,
        email: str,
        password: str,
        phone: str,
        allocator: SequenceAllocator,
        address: str = "",
    ) -> Customer:
        if not name or not email or not password or not phone:
            raise InvalidInput("Please provide name, email, password, and phone")
        if len(password) < 6:
            raise InvalidInput("Password must be at least 6 characters")

        email = email.lower()
        if self.db[self.collection].find_one({"$or": [{"email": email}, {"phone": phone}]}):
            raise Conflict("Customer with this email or phone already exists", field="email")

        stamp = now_utc()
        record = {
            "customer_id": allocator.allocate("Customer"),
            "name": name.strip(),
            "email": email,
            "phone": phone,
            "address": address or "",
            "password_hash": generate_password_hash(password),
            "total_orders": 0,
            "total_spent": 0,
            "is_active": True,
            "member_since": stamp,
        }
        try:
            customer_id = create_document(self.collection, record, database=self.db)
        except DuplicateKeyError:
            raise Conflict("Customer with this email or phone already exists", field="email") from None
        log.info(f"Customer {record['customer_id']} registered")
        return self.find_by_id(customer_id)

    def authenticate(self, email: str, password: str) -> Customer:
        doc = self.db[self.collection].find_one({"email": (email or "").lower(), "is_active": True})
        if not doc or not doc.get("password_hash") or not check_password_hash(doc["password_hash"], password or ""):
            raise Unauthorized("Invalid email or password")
        self.db[self.collection].update_one({"_id": doc["_id"]}, {"$set": {"last_login": now_utc()}})
        return Customer.from_document(doc)

    def record_order(self, customer_id: Any, total: float) -> None:
        """Bump running order stats in a single atomic update."""
        self.db[self.collection].update_one(
            {"_id": to_object_id(customer_id)},
            {
                "$inc": {"total_orders": 1, "total_spent": total},
                "$set": {"last_order_date": now_utc()},
            },
        )


class StaffStore:
    collection = "user"

    def __init__(self, database: Database):
        self.db = database

    def authenticate(self, email: str, password: str) -> User:
        if not email or not password:
            raise InvalidInput("Please provide email and password")
        doc = self.db[self.collection].find_one({"email": email.lower(), "is_active": True})
        if not doc or not check_password_hash(doc.get("password_hash") or "", password):
            raise Unauthorized("Invalid credentials")
        self.db[self.collection].update_one({"_id": doc["_id"]}, {"$set": {"last_login": now_utc()}})
        return User.from_document(doc)

    def ensure_admin(self, email: str, password: str, name: str) -> Dict[str, Any]:
        """Create the admin account, or reset its password and role if it exists."""
        email = email.lower()
        update = {
            "name": name,
            "password_hash": generate_password_hash(password),
            "role": "admin",
            "is_active": True,
            "updated_at": now_utc(),
        }
        result = self.db[self.collection].update_one(
            {"email": email},
            {"$set": update, "$setOnInsert": {"email": email, "created_at": now_utc()}},
            upsert=True,
        )
        return {"email": email, "created": result.upserted_id is not None}
