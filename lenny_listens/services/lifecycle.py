"""Status records: pending -> generating -> ready | error.

The lifecycle is the only writer of `perspective:<id>` records. Terminal
records are never rewritten; every terminal write also prunes the id from
the `pending_perspectives` index.
"""
import logging
from typing import Any, Dict, Optional

from lenny_listens.config import Settings
from lenny_listens.errors import GenerationError, StoreUnavailable
from lenny_listens.models import GenerationResult, IntakeRecord, Status, StatusRecord, utcnow
from lenny_listens.services.dispatcher import Dispatcher
from lenny_listens.services.kv_store import KVStore

logger = logging.getLogger(__name__)

PENDING_INDEX = "pending_perspectives"

def record_key(conversation_id: str) -> str:
    return f"perspective:{conversation_id}"

def session_key(session_id: str) -> str:
    return f"session:{session_id}"

class StatusLifecycle:
    def __init__(self, store: KVStore, dispatcher: Dispatcher, settings: Settings):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings

    # ---------- reads (fail open) ----------
    async def _load(self, conversation_id: str) -> Optional[StatusRecord]:
        raw = await self.store.get(record_key(conversation_id))
        return StatusRecord.model_validate(raw) if raw else None

    async def get(self, conversation_id: str) -> Optional[StatusRecord]:
        try:
            return await self._load(conversation_id)
        except StoreUnavailable as exc:
            logger.warning("store read failed for %s: %s", conversation_id, exc)
            return None

    async def get_by_session(self, session_id: str) -> Optional[StatusRecord]:
        try:
            conversation_id = await self.store.get(session_key(session_id))
        except StoreUnavailable as exc:
            logger.warning("session lookup failed for %s: %s", session_id, exc)
            return None
        if not conversation_id:
            return None
        return await self.get(str(conversation_id))

    async def latest_pending(self, limit: Optional[int] = None) -> Optional[StatusRecord]:
        """Most recent non-terminal record; terminal or vanished ids met on the way are pruned."""
        limit = limit or self.settings.LATEST_SCAN_LIMIT
        try:
            ids = await self.store.lrange(PENDING_INDEX, 0, limit - 1)
            for conversation_id in ids:
                record = await self._load(conversation_id)
                if record is not None and not record.is_terminal:
                    return record
                await self.store.lrem(PENDING_INDEX, 0, conversation_id)
        except StoreUnavailable as exc:
            logger.warning("pending scan failed: %s", exc)
        return None

    # ---------- writes ----------
    async def _save(self, record: StatusRecord) -> StatusRecord:
        await self.store.set(record_key(record.conversation_id), record.model_dump(mode="json"))
        return record

    async def accept(self, intake: IntakeRecord, session_id: Optional[str] = None) -> StatusRecord:
        """Store the pending record and index it. Raises StoreUnavailable on write failure."""
        existing = await self.get(intake.conversation_id)
        if existing is not None and existing.is_terminal:
            logger.info("Conversation %s already %s; ignoring repeated delivery",
                        intake.conversation_id, existing.status.value)
            return existing
        record = StatusRecord(conversation_id=intake.conversation_id, intake=intake)
        await self._save(record)
        if existing is None:
            await self.store.lpush(PENDING_INDEX, intake.conversation_id)
        if session_id:
            await self.store.set(session_key(session_id), intake.conversation_id,
                                 ex=self.settings.SESSION_TTL_SECONDS)
            logger.info("Indexed session %s -> %s", session_id, intake.conversation_id)
        logger.info("Stored intake for conversation %s", intake.conversation_id)
        return record

    async def mark_generating(self, record: StatusRecord) -> StatusRecord:
        if record.status != Status.pending:
            return record
        return await self._save(record.model_copy(update={"status": Status.generating}))

    async def _finish(self, record: StatusRecord, **changes: Any) -> StatusRecord:
        current = await self._load(record.conversation_id)
        if current is not None and current.is_terminal:
            logger.warning("Conversation %s is already %s; keeping it",
                           record.conversation_id, current.status.value)
            return current
        done = record.model_copy(update={**changes, "generated_at": utcnow()})
        await self._save(done)
        await self.store.lrem(PENDING_INDEX, 0, record.conversation_id)
        return done

    async def mark_ready(self, record: StatusRecord, result: GenerationResult) -> StatusRecord:
        if not result.is_complete:
            return await self.mark_error(record, "Generation finished without a preview and share URL")
        logger.info("Perspective ready for %s: %s", record.conversation_id, result.perspective_id)
        return await self._finish(record, status=Status.ready, perspective_id=result.perspective_id,
                                  preview_url=result.preview_url, share_url=result.share_url)

    async def mark_error(self, record: StatusRecord, message: str) -> StatusRecord:
        logger.error("Generation failed for %s: %s", record.conversation_id, message)
        return await self._finish(record, status=Status.error, error_message=message or "unknown error")

    async def run(self, record: StatusRecord) -> StatusRecord:
        """Dispatch generation for an accepted record and persist the outcome."""
        if record.is_terminal:
            return record
        if self.settings.MARK_GENERATING:
            record = await self.mark_generating(record)
        try:
            result = await self.dispatcher.dispatch(record.intake)
        except GenerationError as exc:
            return await self.mark_error(record, str(exc))
        except Exception as exc:
            logger.exception("Unexpected generation failure for %s", record.conversation_id)
            return await self.mark_error(record, f"unexpected generation failure: {exc}")
        return await self.mark_ready(record, result)

    async def record_result(self, intake: IntakeRecord, result: GenerationResult) -> StatusRecord:
        """Persist a generator outcome computed outside run(), e.g. by /generate."""
        record = await self.get(intake.conversation_id)
        if record is None:
            record = StatusRecord(conversation_id=intake.conversation_id, intake=intake)
        return await self.mark_ready(record, result)

    async def clear_test_records(self, prefix: str = "test-") -> Dict[str, int]:
        ids = await self.store.lrange(PENDING_INDEX, 0, -1)
        cleared = 0
        for conversation_id in dict.fromkeys(ids):
            if conversation_id.startswith(prefix):
                await self.store.lrem(PENDING_INDEX, 0, conversation_id)
                await self.store.delete(record_key(conversation_id))
                cleared += 1
        remaining = await self.store.lrange(PENDING_INDEX, 0, -1)
        return {"cleared": cleared, "remaining": len(remaining)}
