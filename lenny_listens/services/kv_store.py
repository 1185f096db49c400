"""Key-value store clients for status records and the outstanding index.

All backends speak the same small subset of Redis semantics: string get/set
with optional expiry, delete, and LPUSH/LREM/LRANGE on lists. Values are
stored JSON-encoded.
"""
import json
import logging
import os
from datetime import timedelta
from typing import Any, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, col, create_engine, select
from starlette.concurrency import run_in_threadpool

from lenny_listens.config import Settings
from lenny_listens.errors import StoreUnavailable
from lenny_listens.models import KVEntry, KVListItem, utcnow

logger = logging.getLogger(__name__)

class KVStore:
    async def get(self, key: str) -> Any:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def lpush(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def lrem(self, key: str, count: int, value: str) -> int:
        raise NotImplementedError

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        raise NotImplementedError

class NullKVStore(KVStore):
    """Stands in when no store is configured: writes vanish, reads find nothing."""

    async def get(self, key):
        return None

    async def set(self, key, value, ex=None):
        return None

    async def delete(self, key):
        return None

    async def lpush(self, key, value):
        return None

    async def lrem(self, key, count, value):
        return 0

    async def lrange(self, key, start, stop):
        return []

def _slice(items: list, start: int, stop: int) -> list:
    # Redis LRANGE: inclusive stop, negative indexes count from the tail
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if stop < 0:
        stop = n + stop
    return items[start:stop + 1]

class SqlKVStore(KVStore):
    def __init__(self, db_url: str):
        if db_url.startswith("sqlite:///"):
            path = db_url[len("sqlite:///"):]
            if path and path != ":memory:":
                os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        self.engine = create_engine(db_url, echo=False, connect_args=connect_args)

    def init_db(self):
        SQLModel.metadata.create_all(self.engine)

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc

    def _get(self, key):
        with Session(self.engine) as session:
            entry = session.get(KVEntry, key)
            if entry is None:
                return None
            expires = entry.expires_at
            if expires is not None and expires.tzinfo is None:
                expires = expires.replace(tzinfo=utcnow().tzinfo)
            if expires is not None and expires <= utcnow():
                session.delete(entry); session.commit()
                return None
            return json.loads(entry.value)

    def _set(self, key, value, ex):
        expires = utcnow() + timedelta(seconds=ex) if ex else None
        with Session(self.engine) as session:
            entry = session.get(KVEntry, key)
            if entry is None:
                entry = KVEntry(key=key, value=json.dumps(value), expires_at=expires)
            else:
                entry.value = json.dumps(value); entry.expires_at = expires
            session.add(entry); session.commit()

    def _delete(self, key):
        with Session(self.engine) as session:
            entry = session.get(KVEntry, key)
            if entry is not None:
                session.delete(entry); session.commit()

    def _list(self, session, key):
        # newest first, matching LPUSH order
        stmt = select(KVListItem).where(KVListItem.list_key == key).order_by(col(KVListItem.id).desc())
        return list(session.exec(stmt))

    def _lpush(self, key, value):
        with Session(self.engine) as session:
            session.add(KVListItem(list_key=key, value=value)); session.commit()

    def _lrem(self, key, count, value):
        with Session(self.engine) as session:
            items = [it for it in self._list(session, key) if it.value == value]
            if count > 0:
                items = items[:count]
            elif count < 0:
                items = items[count:]
            for it in items:
                session.delete(it)
            session.commit()
            return len(items)

    def _lrange(self, key, start, stop):
        with Session(self.engine) as session:
            return [it.value for it in _slice(self._list(session, key), start, stop)]

    async def get(self, key):
        return await self._run(self._get, key)

    async def set(self, key, value, ex=None):
        await self._run(self._set, key, value, ex)

    async def delete(self, key):
        await self._run(self._delete, key)

    async def lpush(self, key, value):
        await self._run(self._lpush, key, value)

    async def lrem(self, key, count, value):
        return await self._run(self._lrem, key, count, value)

    async def lrange(self, key, start, stop):
        return await self._run(self._lrange, key, start, stop)

class RestKVStore(KVStore):
    """Upstash / Vercel KV REST API: one JSON command array per POST."""

    def __init__(self, url: str, token: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.token = token
        self.client = client
        self.timeout = timeout

    async def command(self, *args) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"}
        body = [str(a) for a in args]
        try:
            if self.client is not None:
                resp = await self.client.post(self.url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"KV request failed: {exc}") from exc
        if not resp.is_success:
            raise StoreUnavailable(f"KV {args[0]} failed: {resp.status_code} {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise StoreUnavailable(f"KV {args[0]} returned a non-JSON body") from exc
        if isinstance(data, dict) and data.get("error"):
            raise StoreUnavailable(f"KV {args[0]} failed: {data['error']}")
        return data.get("result") if isinstance(data, dict) else None

    async def get(self, key):
        raw = await self.command("GET", key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    async def set(self, key, value, ex=None):
        args = ["SET", key, json.dumps(value)]
        if ex:
            args += ["EX", ex]
        await self.command(*args)

    async def delete(self, key):
        await self.command("DEL", key)

    async def lpush(self, key, value):
        await self.command("LPUSH", key, value)

    async def lrem(self, key, count, value):
        return int(await self.command("LREM", key, count, value) or 0)

    async def lrange(self, key, start, stop):
        return list(await self.command("LRANGE", key, start, stop) or [])

def build_store(settings: Settings) -> KVStore:
    backend = settings.KV_BACKEND
    if backend == "sql":
        store = SqlKVStore(settings.DB_URL)
        store.init_db()
        return store
    if backend == "rest":
        if settings.KV_REST_API_URL and settings.KV_REST_API_TOKEN:
            return RestKVStore(settings.KV_REST_API_URL, settings.KV_REST_API_TOKEN)
        logger.warning("KV_REST_API_URL/KV_REST_API_TOKEN not set; status records will not be stored")
        return NullKVStore()
    if backend != "none":
        logger.warning("Unknown KV_BACKEND %r; status records will not be stored", backend)
    return NullKVStore()
