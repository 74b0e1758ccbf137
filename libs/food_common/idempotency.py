from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import orjson
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IdempotencyGuard:
    """
    "Have I already applied this effect?" markers, one collection per service.

    Marker document: {_id: "<namespace>:<key>", namespace, eventId, createdAt}.
    A marker is written after the side effect commits and never updated. The
    namespace is usually the consuming queue name, so two trigger paths into the
    same outcome keep independent keys.
    """

    def __init__(self, col: AsyncIOMotorCollection):
        self.col = col

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("namespace", ASCENDING), ("eventId", ASCENDING)], unique=True)

    @staticmethod
    def _id(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    async def seen(self, namespace: str, key: str) -> bool:
        doc = await self.col.find_one({"_id": self._id(namespace, key)}, projection={"_id": 1})
        return doc is not None

    async def mark_seen(self, namespace: str, key: str) -> None:
        # Upsert with $setOnInsert is a single conditional write; marking twice is a no-op.
        await self.col.update_one(
            {"_id": self._id(namespace, key)},
            {"$setOnInsert": {"namespace": namespace, "eventId": key, "createdAt": _now()}},
            upsert=True,
        )

    async def count(self, namespace: Optional[str] = None) -> int:
        query = {"namespace": namespace} if namespace else {}
        return await self.col.count_documents(query)


@dataclass
class CachedResponse:
    fingerprint: str
    status_code: int
    body: Dict[str, Any]
    expires_at: float


def fingerprint(payload: Any) -> str:
    return hashlib.sha256(orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)).hexdigest()


class ResponseCache:
    """
    Replay store for the HTTP `idempotency-key` header.

    Process-local, for a single-instance deployment. Entries expire after `ttl_seconds`
    and every `set` drops the expired ones, so the store stays bounded by the write rate.
    """

    def __init__(self, ttl_seconds: int = 24 * 3600, clock=time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: Dict[str, CachedResponse] = {}

    def get(self, key: str) -> Optional[CachedResponse]:
        rec = self._store.get(key)
        if not rec:
            return None
        if rec.expires_at < self._clock():
            self._store.pop(key, None)
            return None
        return rec

    def set(self, key: str, *, fingerprint: str, status_code: int, body: Dict[str, Any]) -> None:
        # Expired keys leave the store here or on read
        self.purge_expired()
        self._store[key] = CachedResponse(
            fingerprint=fingerprint,
            status_code=status_code,
            body=body,
            expires_at=self._clock() + self.ttl_seconds,
        )

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, rec in self._store.items() if rec.expires_at < now]
        for k in expired:
            self._store.pop(k, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)


def extract_idempotency_key(header_value: Optional[str]) -> Optional[str]:
    if not header_value or not header_value.strip():
        return None
    return header_value.strip()


__all__ = [
    "IdempotencyGuard",
    "CachedResponse",
    "ResponseCache",
    "fingerprint",
    "extract_idempotency_key",
]
