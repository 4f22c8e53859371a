import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4

from auditoryx.models import NotificationRecord
from auditoryx.services.push_sender import push_sender

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS_PER_LIST = 100
MAX_NOTIFICATIONS_PER_USER = 200


class NotificationStore:
    def __init__(self):
        self._lock = Lock()
        self._notifications: List[NotificationRecord] = []
        self._device_tokens: Dict[str, set[str]] = {}

    def register_device_token(self, user_id: str, device_token: str) -> None:
        if not device_token.strip():
            return
        with self._lock:
            self._device_tokens.setdefault(user_id, set()).add(device_token.strip())

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            read=False,
            created_at=datetime.now(timezone.utc).isoformat(),
            deep_link=deep_link,
            data=dict(data or {}),
        )
        with self._lock:
            self._notifications.insert(0, record)
            # Oldest entries past the per-user cap are dropped.
            owned = [idx for idx, row in enumerate(self._notifications) if row.user_id == user_id]
            for idx in reversed(owned[MAX_NOTIFICATIONS_PER_USER:]):
                del self._notifications[idx]
            tokens = list(self._device_tokens.get(user_id, set()))
        push_data = {"notification_id": record.id, "category": category, "deep_link": deep_link or ""}
        push_data.update({key: str(value) for key, value in record.data.items()})
        invalid_tokens = push_sender.send_notification(tokens=tokens, title=title, body=body, data=push_data)
        if invalid_tokens:
            logger.info("Dropping %s invalid device token(s) for %s", len(invalid_tokens), user_id)
            with self._lock:
                current = self._device_tokens.get(user_id, set())
                for token in invalid_tokens:
                    current.discard(token)
        return record

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = [n for n in self._notifications if n.user_id == user_id]
            if unread_only:
                rows = [n for n in rows if not n.read]
            return rows[:MAX_NOTIFICATIONS_PER_LIST]

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            for idx, row in enumerate(self._notifications):
                if row.id == notification_id and row.user_id == user_id:
                    updated = row.model_copy(update={"read": True})
                    self._notifications[idx] = updated
                    return updated
        return None


def notify_safely(
    user_id: str,
    title: str,
    body: str,
    category: str = "system",
    deep_link: Optional[str] = None,
    data: Optional[Dict[str, str]] = None,
) -> Optional[NotificationRecord]:
    """Best-effort notification; never fails the caller's operation."""
    try:
        return notification_store.create(
            user_id=user_id, title=title, body=body, category=category, deep_link=deep_link, data=data
        )
    except Exception:  # noqa: BLE001
        logger.warning("Notification for %s failed (%s)", user_id, title, exc_info=True)
        return None


notification_store = NotificationStore()
