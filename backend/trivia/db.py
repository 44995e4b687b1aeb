from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None

    # Game defaults
    DEFAULT_QUESTION_DURATION: int = 30
    MAX_PLAYERS_LIMIT: int = 100

    EVENTS_PAGE_LIMIT: int = 200

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


class InMemoryCursor:
    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query or {}
        self._sort_key: Optional[str] = None
        self._sort_direction: int = 1
        self._limit: Optional[int] = None
        self._materialised: Optional[Iterator[Dict[str, Any]]] = None

    def sort(self, key: str, direction: int):
        self._sort_key = key
        self._sort_direction = direction
        return self

    def limit(self, limit: int):
        self._limit = limit
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = [doc async for doc in self]
        return docs if length is None else docs[:length]

    async def _ensure_materialised(self):
        if self._materialised is not None:
            return

        docs = await self._collection._find_all(self._query)

        if self._sort_key is not None:
            # Python's sort is stable, so equal keys keep insertion order.
            reverse = self._sort_direction < 0
            docs.sort(key=lambda d: d.get(self._sort_key), reverse=reverse)

        if self._limit is not None:
            docs = docs[: self._limit]

        self._materialised = iter(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        await self._ensure_materialised()
        assert self._materialised is not None
        try:
            return next(self._materialised)
        except StopIteration as exc:
            raise StopAsyncIteration from exc


class InMemoryCollection:
    """A tiny async stand-in for a Mongo collection.

    Documents are deep-copied on the way in and out so callers never hold a
    live reference into the store.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._docs: List[Dict[str, Any]] = []
        self._unique_keys: List[Tuple[str, ...]] = []
        self._lock = asyncio.Lock()

    def create_index(self, keys: Sequence[str], unique: bool = False) -> str:
        keys = tuple(keys)
        if unique and keys not in self._unique_keys:
            self._unique_keys.append(keys)
        return "_".join(f"{k}_1" for k in keys)

    async def _find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if self._matches(doc, query)]

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for doc in self._docs:
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        return InMemoryCursor(self, query or {})

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._check_unique(updated, skip=idx)
                    self._docs[idx] = updated
                    return

            if upsert:
                new_doc = self._apply_update(self._seed_from_query(query), update)
                self._check_unique(new_doc)
                self._docs.append(new_doc)

    async def insert_one(self, document: Dict[str, Any]):
        async with self._lock:
            self._check_unique(document)
            self._docs.append(copy.deepcopy(document))

    async def delete_many(self, query: Dict[str, Any]):
        async with self._lock:
            self._docs = [doc for doc in self._docs if not self._matches(doc, query)]

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: ReturnDocument = ReturnDocument.BEFORE,
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    original = copy.deepcopy(doc)
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._docs[idx] = updated
                    return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else original)

            if upsert:
                new_doc = self._apply_update(self._seed_from_query(query), update)
                self._docs.append(new_doc)
                if return_document == ReturnDocument.AFTER:
                    return copy.deepcopy(new_doc)
                return None

        return None

    def _check_unique(self, candidate: Dict[str, Any], skip: Optional[int] = None) -> None:
        for keys in self._unique_keys:
            if any(k not in candidate for k in keys):
                continue
            values = tuple(candidate[k] for k in keys)
            for idx, doc in enumerate(self._docs):
                if idx == skip:
                    continue
                if tuple(doc.get(k) for k in keys) == values:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.name} dup key: {dict(zip(keys, values))}"
                    )

    @staticmethod
    def _seed_from_query(query: Dict[str, Any]) -> Dict[str, Any]:
        return {k: copy.deepcopy(v) for k, v in (query or {}).items() if not isinstance(v, dict)}

    def _apply_update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    doc[key] = copy.deepcopy(value)
            elif op == "$inc":
                for key, value in payload.items():
                    current = doc.get(key, 0)
                    doc[key] = current + value
            else:  # pragma: no cover - only the above operators are used today
                raise ValueError(f"Unsupported update operator: {op}")
        return doc

    def _matches(self, doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in (query or {}).items():
            actual = doc.get(key)
            if isinstance(expected, dict):
                for op, operand in expected.items():
                    if op == "$gt":
                        if actual is None or actual <= operand:
                            return False
                    elif op == "$in":
                        if actual not in operand:
                            return False
                    else:  # pragma: no cover - extend as new operators are required
                        raise ValueError(f"Unsupported query operator: {op}")
            else:
                if actual != expected:
                    return False
        return True


class InMemoryDatabase:
    def __init__(self):
        self.sessions = InMemoryCollection("sessions")
        self.answers = InMemoryCollection("answers")
        self.player_stats = InMemoryCollection("player_stats")
        self.counters = InMemoryCollection("counters")
        self.session_event_counters = InMemoryCollection("session_event_counters")
        self.session_events = InMemoryCollection("session_events")

        self.sessions.create_index(["id"], unique=True)
        self.answers.create_index(["session_id", "question_index", "account"], unique=True)
        self.player_stats.create_index(["account"], unique=True)


db: Any = InMemoryDatabase()
