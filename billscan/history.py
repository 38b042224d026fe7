"""Bill history persistence.

Two interchangeable stores share the ``HistoryStore`` interface:

- ``LocalHistoryStore`` keeps the whole list under one versioned key of a
  key/value store, newest first, and caps it at ``MAX_BILLS`` by evicting
  the oldest record. Saves at or above ``WARN_THRESHOLD`` records come
  back with ``warning=True``.
- ``DuckDBHistoryStore`` keeps one row per record scoped by owner, with no
  cap and no warning. Every read and write needs the owner and only
  touches that owner's rows.

Store failures never raise out of these classes: writes return a failed
``SaveResult`` or ``False`` and reads return an empty ``HistoryListing``
carrying an error message. Records that no longer validate are skipped
with a warning.
"""
import logging
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import duckdb
from pydantic import ValidationError

from .database import delete_bill, get_bill, init_database, insert_bill, list_bills, update_bill
from .models import Bill, HistoryListing, HistoryRecord, RecordSummary, SaveResult
from .settings import settings
from .storage import FileKeyValueStore, KeyValueStore


logger = logging.getLogger(__name__)

STORAGE_KEY = "@bill_history_v1"
MAX_BILLS = 20
WARN_THRESHOLD = 10


def build_record(bill: Bill, bill_id: str, image_ref: Optional[str] = None) -> HistoryRecord:
    """Project a bill into the persisted record shape, stamping its id"""
    full = bill.model_copy(deep=True)
    full.id = bill_id
    if image_ref:
        full.imageRef = image_ref
    return HistoryRecord(
        id=bill_id,
        date=full.date,
        summary=RecordSummary(totalAmount=full.summary.totalAmount, currency=full.summary.currency),
        category=full.category,
        fullData=full,
        imageRef=full.imageRef,
    )


class HistoryStore(ABC):
    retention_limit: Optional[int] = None

    @abstractmethod
    def list(self, owner: Optional[str] = None) -> HistoryListing:
        """Return saved records, most recent first."""
        ...

    @abstractmethod
    def save(self, bill: Bill, image_ref: Optional[str] = None, owner: Optional[str] = None) -> SaveResult:
        """Create a new record for ``bill`` and assign it an id."""
        ...

    @abstractmethod
    def update(self, bill_id: str, bill: Bill, owner: Optional[str] = None) -> bool:
        """Replace an existing record. False if ``bill_id`` is unknown to ``owner`` or the write fails."""
        ...

    @abstractmethod
    def delete(self, bill_id: str, owner: Optional[str] = None) -> bool:
        ...

    def get(self, bill_id: str, owner: Optional[str] = None) -> Optional[HistoryRecord]:
        for record in self.list(owner).records:
            if record.id == bill_id:
                return record
        return None


class LocalHistoryStore(HistoryStore):
    """Device-local history with a retention cap"""

    def __init__(
        self,
        store: KeyValueStore,
        max_bills: int = MAX_BILLS,
        warn_threshold: int = WARN_THRESHOLD,
    ) -> None:
        self.store = store
        self.retention_limit = max_bills
        self.warn_threshold = warn_threshold

    def _load(self) -> List[Dict[str, Any]]:
        raw = self.store.get(STORAGE_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ValueError(f"Unexpected history payload: {type(raw).__name__}")
        return raw

    def _new_id(self, existing: List[Dict[str, Any]]) -> str:
        taken = {entry.get("id") for entry in existing if isinstance(entry, dict)}
        stamp = time.time_ns() // 1_000_000
        while str(stamp) in taken:
            stamp += 1
        return str(stamp)

    def list(self, owner: Optional[str] = None) -> HistoryListing:
        try:
            raw = self._load()
        except Exception as e:
            logger.error("Failed to load bills: %s", e, exc_info=True)
            return HistoryListing(records=[], error="Failed to load bill history")

        records = []
        for entry in raw:
            try:
                records.append(HistoryRecord.model_validate(entry))
            except ValidationError as e:
                logger.warning("Skipping unreadable history record: %s", e)
        return HistoryListing(records=records)

    def save(self, bill: Bill, image_ref: Optional[str] = None, owner: Optional[str] = None) -> SaveResult:
        try:
            bills = self._load()
            bill_id = self._new_id(bills)
            record = build_record(bill, bill_id, image_ref)

            bills.insert(0, record.model_dump(mode="json"))
            while len(bills) > self.retention_limit:
                evicted = bills.pop()
                evicted_id = evicted.get("id") if isinstance(evicted, dict) else None
                logger.info("History full, evicted oldest bill %s", evicted_id)

            self.store.set(STORAGE_KEY, bills)
        except Exception as e:
            logger.error("Failed to save bill: %s", e, exc_info=True)
            return SaveResult(success=False, error="Failed to save bill")

        warning = len(bills) >= self.warn_threshold
        logger.info("Saved bill %s (%d in history)", bill_id, len(bills))
        return SaveResult(success=True, id=bill_id, warning=warning)

    def update(self, bill_id: str, bill: Bill, owner: Optional[str] = None) -> bool:
        try:
            bills = self._load()
            for index, entry in enumerate(bills):
                if isinstance(entry, dict) and entry.get("id") == bill_id:
                    image_ref = bill.imageRef or entry.get("imageRef")
                    bills[index] = build_record(bill, bill_id, image_ref).model_dump(mode="json")
                    self.store.set(STORAGE_KEY, bills)
                    return True
        except Exception as e:
            logger.error("Failed to update bill %s: %s", bill_id, e, exc_info=True)
            return False
        logger.warning("Cannot update unknown bill %s", bill_id)
        return False

    def delete(self, bill_id: str, owner: Optional[str] = None) -> bool:
        try:
            bills = self._load()
            remaining = [b for b in bills if not (isinstance(b, dict) and b.get("id") == bill_id)]
            self.store.set(STORAGE_KEY, remaining)
        except Exception as e:
            logger.error("Failed to delete bill %s: %s", bill_id, e, exc_info=True)
            return False
        return True

    def clear_all(self) -> None:
        try:
            self.store.remove(STORAGE_KEY)
        except Exception as e:
            logger.error("Failed to clear bills: %s", e, exc_info=True)


class DuckDBHistoryStore(HistoryStore):
    """Unbounded per-owner history, one row per bill"""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    def list(self, owner: Optional[str] = None) -> HistoryListing:
        if not owner:
            return HistoryListing(records=[], error="Sign in to see your bill history")
        try:
            rows = list_bills(self.conn, owner)
        except Exception as e:
            logger.error("Failed to list bills for %s: %s", owner, e, exc_info=True)
            return HistoryListing(records=[], error="Failed to load bill history")

        records = []
        for row in rows:
            try:
                records.append(HistoryRecord.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping unreadable history record %s: %s", row.get("id"), e)
        return HistoryListing(records=records)

    def get(self, bill_id: str, owner: Optional[str] = None) -> Optional[HistoryRecord]:
        if not owner:
            return None
        try:
            row = get_bill(self.conn, bill_id)
        except Exception as e:
            logger.error("Failed to load bill %s: %s", bill_id, e, exc_info=True)
            return None
        if not row or row["owner"] != owner:
            return None
        try:
            return HistoryRecord.model_validate(row)
        except ValidationError as e:
            logger.warning("Unreadable history record %s: %s", bill_id, e)
            return None

    def save(self, bill: Bill, image_ref: Optional[str] = None, owner: Optional[str] = None) -> SaveResult:
        if not owner:
            return SaveResult(success=False, error="Cannot save a bill without a signed-in user")
        bill_id = str(uuid.uuid4())
        try:
            record = build_record(bill, bill_id, image_ref)
            insert_bill(self.conn, record.model_dump(mode="json"), owner)
        except Exception as e:
            logger.error("Failed to save bill: %s", e, exc_info=True)
            return SaveResult(success=False, error="Failed to save bill")
        logger.info("Saved bill %s for %s", bill_id, owner)
        return SaveResult(success=True, id=bill_id)

    def update(self, bill_id: str, bill: Bill, owner: Optional[str] = None) -> bool:
        if not owner:
            return False
        try:
            existing = get_bill(self.conn, bill_id)
            if not existing or existing["owner"] != owner:
                logger.warning("Cannot update unknown bill %s for %s", bill_id, owner)
                return False
            image_ref = bill.imageRef or existing.get("imageRef")
            record = build_record(bill, bill_id, image_ref).model_dump(mode="json")
            return update_bill(self.conn, record, owner)
        except Exception as e:
            logger.error("Failed to update bill %s: %s", bill_id, e, exc_info=True)
            return False

    def delete(self, bill_id: str, owner: Optional[str] = None) -> bool:
        if not owner:
            return False
        try:
            return delete_bill(self.conn, bill_id, owner)
        except Exception as e:
            logger.error("Failed to delete bill %s: %s", bill_id, e, exc_info=True)
            return False


def get_history_store() -> HistoryStore:
    backend = settings.history_backend

    if backend == "local":
        logger.info("Using history backend: local (%s)", settings.data_dir)
        return LocalHistoryStore(
            FileKeyValueStore(settings.data_dir),
            max_bills=settings.max_bills,
            warn_threshold=settings.warn_threshold,
        )

    if backend == "duckdb":
        logger.info("Using history backend: duckdb (%s)", settings.db_path)
        return DuckDBHistoryStore(init_database(Path(settings.db_path)))

    raise ValueError(f"Unsupported history backend: {backend}")
