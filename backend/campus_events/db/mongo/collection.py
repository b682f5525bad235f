from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from bson import ObjectId
from pymongo import ReturnDocument

from .client import collection as _collection
from .errors import StoreNotFound
from .pagination import PageRequest, pagination_meta
from .retry import RetryPolicy, store_call

# Writes are not idempotent ($inc, $push), so they are attempted once.
_WRITE_ONCE = RetryPolicy(max_attempts=1)


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int

    def meta(self) -> dict[str, Any]:
        return pagination_meta(total=self.total, page=self.page, limit=self.limit)


class MongoCollection:
    def __init__(self, name: str):
        self.name = str(name)
        self._coll = _collection(self.name)

    # --- basic operations ---

    def get(self, _id: ObjectId, *, projection: dict[str, Any] | None = None) -> dict[str, Any] | None:
        key = {"_id": _id}
        return store_call(
            "FindOne", lambda: self._coll.find_one(key, projection), collection=self.name, key=key
        )

    def get_required(self, _id: ObjectId, *, message: str = "Document not found") -> dict[str, Any]:
        doc = self.get(_id)
        if not doc:
            raise StoreNotFound(message=message, operation="FindOne", collection=self.name, key={"_id": str(_id)})
        return doc

    def find_one(self, query: dict[str, Any], *, projection: dict[str, Any] | None = None) -> dict[str, Any] | None:
        return store_call("FindOne", lambda: self._coll.find_one(query, projection), collection=self.name)

    def find(
        self,
        query: dict[str, Any],
        *,
        sort: Sequence[tuple[str, int]] | None = None,
        limit: int = 0,
        projection: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        def _op():
            cursor = self._coll.find(query, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(int(limit))
            return list(cursor)

        return store_call("Find", _op, collection=self.name)

    def insert(self, doc: dict[str, Any]) -> dict[str, Any]:
        def _op():
            res = self._coll.insert_one(doc)
            doc["_id"] = res.inserted_id
            return doc

        return store_call("InsertOne", _op, collection=self.name, retry_policy=_WRITE_ONCE)

    def update(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        *,
        return_new: bool = True,
    ) -> dict[str, Any] | None:
        """Atomic find-and-modify. Returns None when nothing matched."""
        return store_call(
            "FindOneAndUpdate",
            lambda: self._coll.find_one_and_update(
                query,
                update,
                return_document=ReturnDocument.AFTER if return_new else ReturnDocument.BEFORE,
            ),
            collection=self.name,
            retry_policy=_WRITE_ONCE,
        )

    def update_many(self, query: dict[str, Any], update: dict[str, Any]) -> int:
        res = store_call(
            "UpdateMany", lambda: self._coll.update_many(query, update), collection=self.name, retry_policy=_WRITE_ONCE
        )
        return int(res.modified_count)

    def delete(self, _id: ObjectId) -> bool:
        key = {"_id": _id}
        res = store_call("DeleteOne", lambda: self._coll.delete_one(key), collection=self.name, key=key)
        return res.deleted_count > 0

    def delete_many(self, query: dict[str, Any]) -> int:
        res = store_call("DeleteMany", lambda: self._coll.delete_many(query), collection=self.name)
        return int(res.deleted_count)

    def count(self, query: dict[str, Any]) -> int:
        return int(store_call("CountDocuments", lambda: self._coll.count_documents(query), collection=self.name))

    def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return store_call("Aggregate", lambda: list(self._coll.aggregate(pipeline)), collection=self.name)

    # --- query/pagination ---

    def find_page(
        self,
        query: dict[str, Any],
        *,
        page: PageRequest,
        sort: Sequence[tuple[str, int]] | None = None,
        projection: dict[str, Any] | None = None,
    ) -> Page:
        def _op():
            cursor = self._coll.find(query, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            return list(cursor.skip(page.skip).limit(page.limit))

        items = store_call("Find", _op, collection=self.name)
        total = self.count(query)
        return Page(items=items, total=total, page=page.page, limit=page.limit)
