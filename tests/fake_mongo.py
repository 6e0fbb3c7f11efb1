"""In-memory stand-in for the part of the async pymongo API the services use.

Every operation yields to the event loop once before it runs and then runs
without further awaits, which matches how a single server-side operation is
atomic while concurrent callers interleave between operations.

Failure injection:
    collection.fail_with = AutoReconnect("down")  # every operation raises
    collection.delay = 0.05                        # every operation sleeps first
"""

import asyncio
import copy
import re
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

_MISSING = object()


@dataclass
class InsertOneResult:
    inserted_id: Any


@dataclass
class UpdateResult:
    matched_count: int
    modified_count: int
    upserted_id: Any = None


@dataclass
class DeleteResult:
    deleted_count: int


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = doc.get(key, _MISSING)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, arg in condition.items():
                if op == "$in":
                    ok = value in arg
                elif op == "$regex":
                    flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                    ok = isinstance(value, str) and re.search(arg, value, flags) is not None
                elif op == "$options":
                    ok = True
                else:
                    raise NotImplementedError(f"Query operator {op}")
                if not ok:
                    return False
        elif value is _MISSING or value != condition:
            return False
    return True


def _apply_update(doc: dict[str, Any], update: dict[str, Any]) -> None:
    for op, fields in update.items():
        for key, arg in fields.items():
            if op == "$set":
                doc[key] = copy.deepcopy(arg)
            elif op == "$inc":
                doc[key] = doc.get(key, 0) + arg
            elif op == "$max":
                doc[key] = arg if key not in doc else max(doc[key], arg)
            else:
                raise NotImplementedError(f"Update operator {op}")


def _sort_key(value: Any) -> tuple[int, Any]:
    # Missing values sort first, like null in MongoDB
    return (0, 0) if value is _MISSING or value is None else (1, value)


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs
        self._sort: list[tuple[str, int]] = []
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list: str | list[tuple[str, int]], direction: int = 1) -> "FakeCursor":
        if isinstance(key_or_list, str):
            self._sort.append((key_or_list, direction))
        else:
            self._sort.extend(key_or_list)
        return self

    def skip(self, count: int) -> "FakeCursor":
        self._skip = count
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count
        return self

    def _result(self) -> list[dict[str, Any]]:
        docs = list(self._docs)
        for key, direction in reversed(self._sort):
            docs.sort(key=lambda d: _sort_key(d.get(key, _MISSING)), reverse=direction < 0)
        docs = docs[self._skip :]
        if self._limit:
            docs = docs[: self._limit]
        return docs

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        docs = self._result()
        return docs if length is None else docs[:length]

    def __aiter__(self) -> "FakeCursor":
        self._iter = iter(self._result())
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.unique_indexes: list[tuple[str, ...]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0

    async def _checkpoint(self) -> None:
        await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def _check_unique(self, candidate: dict[str, Any], ignore: dict[str, Any] | None = None) -> None:
        for fields in [("_id",), *self.unique_indexes]:
            key = tuple(candidate.get(f) for f in fields)
            for doc in self.docs:
                if doc is ignore:
                    continue
                if tuple(doc.get(f) for f in fields) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {fields}")

    def _find_first(self, query: dict[str, Any], sort: list[tuple[str, int]] | None = None) -> dict[str, Any] | None:
        cursor = FakeCursor([d for d in self.docs if _matches(d, query)])
        if sort:
            cursor.sort(sort)
        docs = cursor._result()
        return docs[0] if docs else None

    def _upsert_doc(self, query: dict[str, Any]) -> dict[str, Any]:
        doc = {k: copy.deepcopy(v) for k, v in query.items() if not (isinstance(v, dict) and any(str(x).startswith("$") for x in v))}
        doc.setdefault("_id", uuid4())
        return doc

    async def create_index(self, keys: str | list[tuple[str, int]], unique: bool = False, **_: Any) -> str:
        await self._checkpoint()
        fields = (keys,) if isinstance(keys, str) else tuple(k for k, _ in keys)
        if unique and fields not in self.unique_indexes:
            self.unique_indexes.append(fields)
        return "_".join(fields)

    async def insert_one(self, document: dict[str, Any]) -> InsertOneResult:
        await self._checkpoint()
        doc = copy.deepcopy(document)
        doc.setdefault("_id", uuid4())
        self._check_unique(doc)
        self.docs.append(doc)
        return InsertOneResult(inserted_id=doc["_id"])

    async def find_one(
        self, filter: dict[str, Any] | None = None, projection: Any = None, sort: list[tuple[str, int]] | None = None
    ) -> dict[str, Any] | None:
        await self._checkpoint()
        doc = self._find_first(filter or {}, sort)
        return copy.deepcopy(doc)

    def find(self, filter: dict[str, Any] | None = None, projection: Any = None) -> FakeCursor:
        if self.fail_with is not None:
            raise self.fail_with
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, filter or {})])

    async def count_documents(self, filter: dict[str, Any]) -> int:
        await self._checkpoint()
        return sum(1 for d in self.docs if _matches(d, filter))

    async def find_one_and_update(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
        return_document: ReturnDocument = ReturnDocument.BEFORE,
        **_: Any,
    ) -> dict[str, Any] | None:
        await self._checkpoint()
        doc = self._find_first(filter)
        if doc is None:
            if not upsert:
                return None
            doc = self._upsert_doc(filter)
            _apply_update(doc, update)
            self._check_unique(doc)
            self.docs.append(doc)
            return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else None
        before = copy.deepcopy(doc)
        _apply_update(doc, update)
        return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before

    async def update_one(self, filter: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> UpdateResult:
        await self._checkpoint()
        doc = self._find_first(filter)
        if doc is None:
            if not upsert:
                return UpdateResult(matched_count=0, modified_count=0)
            doc = self._upsert_doc(filter)
            _apply_update(doc, update)
            self._check_unique(doc)
            self.docs.append(doc)
            return UpdateResult(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        before = copy.deepcopy(doc)
        _apply_update(doc, update)
        return UpdateResult(matched_count=1, modified_count=int(doc != before))

    async def replace_one(self, filter: dict[str, Any], replacement: dict[str, Any], upsert: bool = False) -> UpdateResult:
        await self._checkpoint()
        doc = self._find_first(filter)
        new_doc = copy.deepcopy(replacement)
        if doc is None:
            if not upsert:
                return UpdateResult(matched_count=0, modified_count=0)
            new_doc.setdefault("_id", self._upsert_doc(filter)["_id"])
            self._check_unique(new_doc)
            self.docs.append(new_doc)
            return UpdateResult(matched_count=0, modified_count=0, upserted_id=new_doc["_id"])
        new_doc["_id"] = doc["_id"]
        self._check_unique(new_doc, ignore=doc)
        self.docs[self.docs.index(doc)] = new_doc
        return UpdateResult(matched_count=1, modified_count=int(new_doc != doc))

    async def delete_one(self, filter: dict[str, Any]) -> DeleteResult:
        await self._checkpoint()
        doc = self._find_first(filter)
        if doc is None:
            return DeleteResult(deleted_count=0)
        self.docs.remove(doc)
        return DeleteResult(deleted_count=1)

    async def delete_many(self, filter: dict[str, Any]) -> DeleteResult:
        await self._checkpoint()
        kept = [d for d in self.docs if not _matches(d, filter)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return DeleteResult(deleted_count=deleted)


class FakeDatabase:
    def __init__(self, name: str) -> None:
        self.name = name
        self._collections: dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getitem__(self, name: str) -> FakeCollection:
        return self.get_collection(name)


class FakeMongoClient:
    def __init__(self) -> None:
        self._databases: dict[str, FakeDatabase] = {}
        self.closed = False

    def get_database(self, name: str) -> FakeDatabase:
        if name not in self._databases:
            self._databases[name] = FakeDatabase(name)
        return self._databases[name]

    async def aclose(self) -> None:
        self.closed = True
