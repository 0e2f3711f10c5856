"""Dashboard notification feed."""
from typing import List

from fastapi import BackgroundTasks
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, get_documents, now_utc, to_object_id
from errors import InvalidInput, NotFound
from logger import get_logger
from schemas import NOTIFICATION_TYPES, Notification

log = get_logger(__name__)

COLLECTION = "notification"


class NotificationService:
    def __init__(self, database: Database):
        self.db = database

    def emit(self, title: str, message: str, type: str = "info") -> None:
        """Best effort: storage failures are logged, never raised."""
        try:
            notification = Notification(title=title, message=message, type=type, created_at=now_utc())
            create_document(COLLECTION, notification.to_document(), database=self.db)
        except (PyMongoError, ValidationError):
            log.exception(f"Failed to record notification '{title}'")

    def create(self, title: str, message: str, type: str = "info") -> Notification:
        if not title or not message:
            raise InvalidInput("Title and message are required")
        type = type or "info"
        if type not in NOTIFICATION_TYPES:
            raise InvalidInput("Invalid notification type")
        notification = Notification(title=title, message=message, type=type, created_at=now_utc())
        notification.id = create_document(COLLECTION, notification.to_document(), database=self.db)
        return notification

    def list(self, limit: int = 50) -> List[Notification]:
        docs = self.db[COLLECTION].find().sort([("created_at", -1), ("_id", -1)]).limit(limit)
        return [Notification.from_document(doc) for doc in docs]

    def unread(self, limit: int = 20) -> List[Notification]:
        docs = get_documents(
            COLLECTION, {"read": False}, limit=limit,
            sort=[("created_at", -1), ("_id", -1)], database=self.db,
        )
        return [Notification.from_document(doc) for doc in docs]

    def mark_read(self, notification_id: str) -> None:
        oid = to_object_id(notification_id)
        result = self.db[COLLECTION].update_one({"_id": oid}, {"$set": {"read": True}}) if oid else None
        if result is None or result.matched_count == 0:
            raise NotFound("Notification not found")

    def mark_all_read(self) -> int:
        result = self.db[COLLECTION].update_many({"read": False}, {"$set": {"read": True}})
        return result.modified_count

    def delete(self, notification_id: str) -> None:
        oid = to_object_id(notification_id)
        result = self.db[COLLECTION].delete_one({"_id": oid}) if oid else None
        if result is None or result.deleted_count == 0:
            raise NotFound("Notification not found")


class DeferredNotifier:
    """Schedules emits as background tasks that run after the response is sent."""

    def __init__(self, background_tasks: BackgroundTasks, service: NotificationService):
        self.background_tasks = background_tasks
        self.service = service

    def emit(self, title: str, message: str, type: str = "info") -> None:
        self.background_tasks.add_task(self.service.emit, title, message, type)
