"""
Human-readable sequence codes (ORD2510180001, CUST00012, ...).

Each (kind, stem) pair owns one document in the ``counter`` collection. The
stem is the kind's prefix, followed by ``YYMMDD`` for date-scoped kinds. A
counter is seeded from the number of documents already carrying the stem,
then every allocation is one atomic ``$inc``, so concurrent writers never
draw the same number.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Pattern
from zoneinfo import ZoneInfo

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import get_config
from errors import InvalidInput
from logger import get_logger

log = get_logger(__name__)

COUNTER_COLLECTION = "counter"


@dataclass(frozen=True)
class SequenceKind:
    name: str
    prefix: str
    width: int
    date_scoped: bool
    collection: str
    field: str


KINDS: Dict[str, SequenceKind] = {
    kind.name: kind
    for kind in (
        SequenceKind("Order", "ORD", 4, True, "order", "order_number"),
        SequenceKind("Transaction", "TRX", 4, True, "transaction", "transaction_id"),
        SequenceKind("Employee", "EMP", 4, False, "employee", "employee_id"),
        SequenceKind("MenuItem", "MENU", 4, False, "menuitem", "menu_id"),
        SequenceKind("Customer", "CUST", 5, False, "customer", "customer_id"),
        SequenceKind("Expense", "EXP", 4, False, "expense", "expense_id"),
    )
}


def get_kind(kind: str) -> SequenceKind:
    try:
        return KINDS[kind]
    except KeyError:
        raise InvalidInput(f"Unknown sequence kind: {kind}") from None


def format_code(stem: str, sequence: int, width: int) -> str:
    return f"{stem}{str(sequence).zfill(width)}"


def pattern(kind: str, date_scoped: Optional[bool] = None) -> Pattern:
    seq_kind = get_kind(kind)
    scoped = seq_kind.date_scoped if date_scoped is None else date_scoped
    date_part = r"\d{6}" if scoped else ""
    return re.compile(rf"^{seq_kind.prefix}{date_part}\d{{{seq_kind.width},}}$")


def local_now() -> datetime:
    tz_name = get_config().timezone
    tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    return datetime.now(tz)


class SequenceAllocator:
    def __init__(self, database: Database, clock: Optional[Callable[[], datetime]] = None):
        self.db = database
        self.clock = clock or local_now

    def stem(self, kind: str, date_scoped: Optional[bool] = None) -> str:
        seq_kind = get_kind(kind)
        scoped = seq_kind.date_scoped if date_scoped is None else date_scoped
        if not scoped:
            return seq_kind.prefix
        return seq_kind.prefix + self.clock().strftime("%y%m%d")

    def allocate(self, kind: str, date_scoped: Optional[bool] = None) -> str:
        """Return the next code for ``kind``; never returns the same code twice."""
        seq_kind = get_kind(kind)
        stem = self.stem(kind, date_scoped)
        key = f"{seq_kind.name}:{stem}"
        counters = self.db[COUNTER_COLLECTION]

        if counters.find_one({"_id": key}) is None:
            self._seed(counters, key, seq_kind, stem)

        counter = counters.find_one_and_update(
            {"_id": key},
            {"$inc": {"seq": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return format_code(stem, counter["seq"], seq_kind.width)

    def _seed(self, counters, key: str, seq_kind: SequenceKind, stem: str) -> None:
        existing = self.db[seq_kind.collection].count_documents(
            {seq_kind.field: {"$regex": f"^{re.escape(stem)}"}}
        )
        try:
            counters.update_one(
                {"_id": key},
                {"$setOnInsert": {"seq": existing, "kind": seq_kind.name, "stem": stem}},
                upsert=True,
            )
        except DuplicateKeyError:
            # A concurrent allocation created the counter first.
            log.debug(f"Counter {key} seeded concurrently")
            return
        log.debug(f"Counter {key} seeded at {existing}")
