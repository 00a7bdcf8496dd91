import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Set
from uuid import uuid4

from homeserve.models import NotificationRecord
from homeserve.services.push_sender import PushSender, push_sender

logger = logging.getLogger(__name__)

MAX_LISTED = 100


class NotificationStore:
    """In-app inbox per user. Each new entry is also pushed to the user's devices."""

    def __init__(self, sender: PushSender):
        self._sender = sender
        self._lock = Lock()
        self._inbox: Dict[str, List[NotificationRecord]] = {}
        self._device_tokens: Dict[str, Set[str]] = {}

    def register_device_token(self, user_id: str, device_token: str) -> bool:
        token = device_token.strip()
        if not token:
            return False
        with self._lock:
            self._device_tokens.setdefault(user_id, set()).add(token)
        return True

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            created_at=datetime.now(timezone.utc).isoformat(),
            deep_link=deep_link,
        )
        with self._lock:
            self._inbox.setdefault(user_id, []).insert(0, record)
            tokens = sorted(self._device_tokens.get(user_id, set()))

        dead = self._sender.send(
            tokens,
            title=title,
            body=body,
            data={"notification_id": record.id, "category": category, "deep_link": deep_link or ""},
        )
        if dead:
            logger.info("Dropping %d stale device token(s) for %s", len(dead), user_id)
            with self._lock:
                self._device_tokens.get(user_id, set()).difference_update(dead)
        return record

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = list(self._inbox.get(user_id, []))
        if unread_only:
            rows = [row for row in rows if not row.read]
        return rows[:MAX_LISTED]

    def unread_count(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for row in self._inbox.get(user_id, []) if not row.read)

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            rows = self._inbox.get(user_id, [])
            for idx, row in enumerate(rows):
                if row.id == notification_id:
                    rows[idx] = row.model_copy(update={"read": True})
                    return rows[idx]
        return None


notification_store = NotificationStore(sender=push_sender)
