"""
Document store access for donations, campaigns and admin accounts.

Every driver failure surfaces as ``PersistenceError``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from exceptions import NotFoundError, PersistenceError
from models import ADMINS, CAMPAIGNS, DONATIONS, DonationStatus

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("createdAt", DESCENDING)]


@contextmanager
def store_errors(action: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Store failure while trying to {action}: {e}")
        raise PersistenceError(f"Could not {action}: {e}") from e


def to_object_id(value: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise NotFoundError("Not found")
    return ObjectId(value)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Replace the ObjectId ``_id`` with a string ``id``."""
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


class DocumentStore:
    collection_name: str = ""

    def __init__(self, db: Database):
        self.collection = db[self.collection_name]

    def insert(self, document: dict) -> str:
        with store_errors(f"insert into {self.collection_name}"):
            result = self.collection.insert_one(document)
        return str(result.inserted_id)

    def find_many(
        self,
        filter: Optional[dict] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: int = 0,
        skip: int = 0,
    ) -> List[dict]:
        with store_errors(f"read {self.collection_name}"):
            cursor = self.collection.find(filter or {})
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def find_by_id(self, id: str) -> Optional[dict]:
        oid = to_object_id(id)
        with store_errors(f"read {self.collection_name}"):
            return self.collection.find_one({"_id": oid})

    def update_one(self, id: str, partial: dict) -> int:
        """Apply ``partial`` with ``$set``, stamping ``updatedAt``. Returns the matched count."""
        oid = to_object_id(id)
        changes = dict(partial, updatedAt=datetime.utcnow())
        with store_errors(f"update {self.collection_name}"):
            result = self.collection.update_one({"_id": oid}, {"$set": changes})
        return result.matched_count

    def count(self, filter: Optional[dict] = None) -> int:
        with store_errors(f"count {self.collection_name}"):
            return self.collection.count_documents(filter or {})


class DonationStore(DocumentStore):
    collection_name = DONATIONS

    def ensure_indexes(self):
        with store_errors("create donation indexes"):
            self.collection.create_index("transactionId", unique=True, sparse=True)
            self.collection.create_index([("campaign", ASCENDING), ("status", ASCENDING), ("approved", ASCENDING)])
            self.collection.create_index(NEWEST_FIRST)

    def find_by_transaction_id(self, transaction_id: str) -> Optional[dict]:
        with store_errors("read donations"):
            return self.collection.find_one({"transactionId": transaction_id})

    def mark_approved(self, id: str, admin: str) -> Optional[dict]:
        """Approve a donation that does not count yet, in a single atomic update.

        Returns the approved document, or None when nothing matched because the
        donation is missing or already counts.
        """
        oid = to_object_id(id)
        now = datetime.utcnow()
        not_counted = {"$or": [{"approved": {"$ne": True}}, {"status": {"$ne": DonationStatus.COMPLETED.value}}]}
        changes = {
            "approved": True,
            "status": DonationStatus.COMPLETED.value,
            "approvedBy": admin,
            "approvedAt": now,
            "updatedAt": now,
        }
        with store_errors("approve donation"):
            return self.collection.find_one_and_update(
                dict(not_counted, _id=oid),
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )

    def upsert_by_transaction_id(self, transaction_id: str, set_fields: dict, insert_fields: dict) -> dict:
        """Create or update the single donation carrying ``transaction_id``.

        ``insert_fields`` only apply when the document is created. A concurrent
        insert that loses the unique-index race is retried as an update.
        """
        update = {
            "$set": dict(set_fields, updatedAt=datetime.utcnow()),
            "$setOnInsert": insert_fields,
        }
        with store_errors("save donation"):
            try:
                return self._upsert(transaction_id, update)
            except DuplicateKeyError:
                logger.info(f"Concurrent upsert for transaction {transaction_id}, retrying as update")
                return self._upsert(transaction_id, update)

    def _upsert(self, transaction_id: str, update: dict) -> dict:
        return self.collection.find_one_and_update(
            {"transactionId": transaction_id},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )


class CampaignStore(DocumentStore):
    collection_name = CAMPAIGNS

    def ensure_indexes(self):
        with store_errors("create campaign indexes"):
            self.collection.create_index("title", unique=True)

    def find_by_title(self, title: str) -> Optional[dict]:
        with store_errors("read campaigns"):
            return self.collection.find_one({"title": title})


class AdminStore(DocumentStore):
    collection_name = ADMINS

    def ensure_indexes(self):
        with store_errors("create admin indexes"):
            self.collection.create_index("username", unique=True)

    def find_by_username(self, username: str) -> Optional[dict]:
        with store_errors("read admins"):
            return self.collection.find_one({"username": username})
