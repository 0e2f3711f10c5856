import pytest
from bson import ObjectId
from fastapi import BackgroundTasks

from conftest import BrokenDatabase
from errors import InvalidInput, NotFound
from notifications import DeferredNotifier, NotificationService


@pytest.fixture
def service(mongo_db):
    return NotificationService(mongo_db)


class TestEmit:
    def test_emit_records_unread_notification(self, mongo_db, service):
        service.emit("New Order", "Order #ORD2610180001 from Jane", "success")

        doc = mongo_db["notification"].find_one()
        assert doc["title"] == "New Order"
        assert doc["type"] == "success"
        assert doc["read"] is False
        assert doc["created_at"] is not None

    def test_emit_swallows_storage_outage(self):
        NotificationService(BrokenDatabase()).emit("New Order", "message", "success")

    def test_emit_swallows_bad_type(self, mongo_db, service):
        service.emit("New Order", "message", "urgent")

        assert mongo_db["notification"].count_documents({}) == 0


class TestFeed:
    def test_create_validates(self, service):
        with pytest.raises(InvalidInput, match="Title and message are required"):
            service.create("", "body")
        with pytest.raises(InvalidInput):
            service.create("Title", "body", "urgent")

    def test_create_defaults_to_info(self, service):
        created = service.create("Stock low", "Rice below 5kg", None)

        assert created.type == "info"
        assert created.id is not None

    def test_list_and_unread(self, service):
        first = service.create("One", "first")
        service.create("Two", "second")
        service.mark_read(first.id)

        assert [n.title for n in service.list()] == ["Two", "One"]
        assert [n.title for n in service.unread()] == ["Two"]

    def test_mark_all_read(self, service):
        service.create("One", "first")
        service.create("Two", "second")

        assert service.mark_all_read() == 2
        assert service.unread() == []

    @pytest.mark.parametrize("notification_id", [str(ObjectId()), "bogus"])
    def test_missing_notification(self, service, notification_id):
        with pytest.raises(NotFound):
            service.mark_read(notification_id)
        with pytest.raises(NotFound):
            service.delete(notification_id)

    def test_delete(self, mongo_db, service):
        created = service.create("One", "first")

        service.delete(created.id)

        assert mongo_db["notification"].count_documents({}) == 0


def test_deferred_notifier_schedules_background_task(service):
    tasks = BackgroundTasks()

    DeferredNotifier(tasks, service).emit("Order Status Updated", "now Ready", "info")

    assert len(tasks.tasks) == 1
    assert tasks.tasks[0].func == service.emit
    assert tasks.tasks[0].args == ("Order Status Updated", "now Ready", "info")
