import logging
import time
from typing import Any, Callable, Dict, Optional
import httpx
from lenny_listens.errors import PollTimeout

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("ready", "error")

class ResultPoller:
    """Polls the status endpoints until a record is ready or errored.

    A 404 and a pending/generating record are the same condition here: the
    intake may simply not have landed yet. Only running out of attempts is an
    error for the caller.
    """

    def __init__(self, base_url: str, interval: float = 2.0, max_attempts: int = 30,
                 client: Optional[httpx.Client] = None, sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip("/")
        self.interval = interval
        self.max_attempts = max_attempts
        self.client = client or httpx.Client(timeout=10.0)
        self.sleep = sleep

    def _path(self, conversation_id: Optional[str], session_id: Optional[str]) -> str:
        if conversation_id:
            return f"/perspective/{conversation_id}"
        if session_id:
            return f"/perspective/session/{session_id}"
        return "/perspective/latest"

    def fetch(self, conversation_id: Optional[str] = None, session_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        try:
            resp = self.client.get(self.base_url + self._path(conversation_id, session_id))
        except httpx.HTTPError as exc:
            logger.warning("status poll failed: %s", exc)
            return None
        if resp.status_code == 404 or not resp.is_success:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    def wait(self, conversation_id: Optional[str] = None, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Poll until terminal. Without ids, /latest only names the conversation to follow;
        it never returns finished records itself."""
        for attempt in range(1, self.max_attempts + 1):
            record = self.fetch(conversation_id, session_id)
            if record and record.get("status") in TERMINAL_STATUSES:
                return record
            if record and not (conversation_id or session_id) and record.get("conversation_id"):
                conversation_id = record["conversation_id"]
                logger.info("following latest pending conversation %s", conversation_id)
            if attempt < self.max_attempts:
                self.sleep(self.interval)
        raise PollTimeout(f"no finished perspective after {self.max_attempts} attempts")
