"""
MongoDB access for the registrar.

Collections (singular names, one per document type):
- user   -> registrar.schemas.User
- course -> registrar.schemas.Course
- grade  -> registrar.schemas.Grade
- exam   -> registrar.schemas.Exam

Every multi-document mutation goes through a ``UnitOfWork``: reads happen
against the live collections (inside the client session when transactions are
enabled) and writes are buffered until ``commit``. Saves are version checked so
a concurrent writer is detected instead of silently overwritten.
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import OperationFailure

from registrar import config
from registrar.app_logger import get_logger
from registrar.errors import StaleDocumentError

logger = get_logger("database")

COLLECTIONS = ["user", "course", "grade", "exam"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_document(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


class Store:
    """Wraps a client and the registrar database."""

    def __init__(self, client: MongoClient, name: str, transactions: bool = True):
        self.client = client
        self.db = client[name]
        self.transactions = transactions

    def __getitem__(self, collection: str):
        return self.db[collection]

    def ensure_indexes(self) -> None:
        self.db["user"].create_index([("id", ASCENDING)], unique=True)
        self.db["user"].create_index([("email", ASCENDING)], unique=True)
        self.db["course"].create_index([("code", ASCENDING)], unique=True)
        self.db["grade"].create_index(
            [("student_id", ASCENDING), ("course_code", ASCENDING), ("term", ASCENDING)],
            unique=True,
        )
        self.db["exam"].create_index([("exam_id", ASCENDING)], unique=True)

    # ---------- plain helpers for single-document writes ----------
    def create_document(self, collection_name: str, data: Any) -> str:
        """Insert a single document, stamping timestamps and version 0."""
        doc = _as_document(data)
        now = _now()
        doc.setdefault("version", 0)
        doc["created_at"] = now
        doc["updated_at"] = now
        result = self.db[collection_name].insert_one(doc)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None,
                      limit: Optional[int] = None, sort: Optional[List[Tuple[str, int]]] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self)


class UnitOfWork:
    """
    All reads and writes for one operation, committed or aborted together.

    With transactions enabled the buffered writes are applied inside a client
    session transaction. Without them, writes already applied are compensated
    (restored from the snapshot taken at read time) when a later write fails.
    """

    def __init__(self, store: Store):
        self.store = store
        self.session = None
        self._saves: List[Tuple[str, str, Dict[str, Any]]] = []
        self._inserts: List[Tuple[str, Dict[str, Any]]] = []
        self._updates: List[Tuple[str, Dict[str, Any], Dict[str, Any]]] = []
        self._deletes: List[Tuple[str, Dict[str, Any]]] = []

    def __enter__(self) -> "UnitOfWork":
        if self.store.transactions:
            self.session = self.store.client.start_session()
            self.session.start_transaction()
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self.session is not None:
                self.session.end_session()
        return False

    def _kw(self) -> Dict[str, Any]:
        return {"session": self.session} if self.session is not None else {}

    # ---------- reads ----------
    def find_one(self, collection: str, filt: dict) -> Optional[dict]:
        return self.store[collection].find_one(filt, **self._kw())

    def find(self, collection: str, filt: Optional[dict] = None,
             sort: Optional[List[Tuple[str, int]]] = None) -> List[dict]:
        cursor = self.store[collection].find(filt or {}, **self._kw())
        if sort:
            cursor = cursor.sort(sort)
        return list(cursor)

    # ---------- buffered writes ----------
    def save(self, collection: str, key: str, model: Any) -> None:
        """Replace the document identified by ``key`` if its version is unchanged."""
        doc = _as_document(model)
        # A document saved twice in one unit keeps only its last state.
        self._saves = [
            entry for entry in self._saves
            if not (entry[0] == collection and entry[1] == key and entry[2][key] == doc[key])
        ]
        self._saves.append((collection, key, doc))

    def insert(self, collection: str, model: Any) -> None:
        self._inserts.append((collection, _as_document(model)))

    def update(self, collection: str, filt: dict, fields: Dict[str, Any]) -> None:
        """``$set`` fields on one unversioned document (grade records)."""
        self._updates.append((collection, filt, dict(fields)))

    def delete(self, collection: str, filt: dict) -> None:
        self._deletes.append((collection, filt))

    # ---------- commit / rollback ----------
    def commit(self) -> None:
        undo: List[Callable[[], None]] = []
        try:
            for collection, key, doc in self._saves:
                undo.append(self._apply_save(collection, key, doc))
            for collection, doc in self._inserts:
                undo.append(self._apply_insert(collection, doc))
            for collection, filt, fields in self._updates:
                undo.append(self._apply_update(collection, filt, fields))
            for collection, filt in self._deletes:
                undo.append(self._apply_delete(collection, filt))
            if self.session is not None:
                self.session.commit_transaction()
        except OperationFailure as exc:
            self._abort(undo)
            if exc.has_error_label("TransientTransactionError"):
                raise StaleDocumentError("transaction", str(exc)) from exc
            raise
        except Exception:
            self._abort(undo)
            raise

    def rollback(self) -> None:
        self._saves.clear()
        self._inserts.clear()
        self._updates.clear()
        self._deletes.clear()
        if self.session is not None and self.session.in_transaction:
            self.session.abort_transaction()

    def _abort(self, undo: List[Callable[[], None]]) -> None:
        if self.session is not None:
            if self.session.in_transaction:
                self.session.abort_transaction()
            return
        for step in reversed(undo):
            try:
                step()
            except Exception:
                logger.exception("Failed to compensate a partially applied write")

    def _apply_save(self, collection: str, key: str, doc: Dict[str, Any]) -> Callable[[], None]:
        coll = self.store[collection]
        version = doc.get("version", 0)
        previous = coll.find_one({key: doc[key]}, **self._kw())
        filt = {key: doc[key], "version": version}
        new_doc = {k: v for k, v in doc.items() if k != "_id"}
        new_doc["version"] = version + 1
        new_doc["updated_at"] = _now()
        if previous is not None and "created_at" in previous:
            new_doc["created_at"] = previous["created_at"]
        result = coll.replace_one(filt, new_doc, **self._kw())
        if result.matched_count == 0:
            raise StaleDocumentError(collection, doc[key])

        def restore():
            if previous is not None:
                original = {k: v for k, v in previous.items() if k != "_id"}
                coll.replace_one({key: doc[key], "version": version + 1}, original)
        return restore

    def _apply_insert(self, collection: str, doc: Dict[str, Any]) -> Callable[[], None]:
        coll = self.store[collection]
        doc = dict(doc)
        doc.setdefault("version", 0)
        doc.setdefault("created_at", _now())
        doc["updated_at"] = _now()
        result = coll.insert_one(doc, **self._kw())
        inserted_id = result.inserted_id
        return lambda: coll.delete_one({"_id": inserted_id})

    def _apply_update(self, collection: str, filt: dict, fields: Dict[str, Any]) -> Callable[[], None]:
        coll = self.store[collection]
        previous = coll.find_one(filt, **self._kw())
        coll.update_one(filt, {"$set": {**fields, "updated_at": _now()}}, **self._kw())

        def restore():
            if previous is not None:
                coll.replace_one({"_id": previous["_id"]}, previous)
        return restore

    def _apply_delete(self, collection: str, filt: dict) -> Callable[[], None]:
        coll = self.store[collection]
        removed = coll.find_one(filt, **self._kw())
        coll.delete_one(filt, **self._kw())
        return lambda: coll.insert_one(removed) if removed is not None else None


@lru_cache(maxsize=1)
def get_store() -> Store:
    client = MongoClient(config.DATABASE_URL)
    logger.info("Using MongoDB database %s (transactions=%s)", config.DATABASE_NAME, config.MONGO_TRANSACTIONS)
    return Store(client, config.DATABASE_NAME, transactions=config.MONGO_TRANSACTIONS)
