import logging
import os
from threading import Lock
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

logger = logging.getLogger(__name__)

# FCM caps a multicast message at 500 tokens.
MULTICAST_LIMIT = 500


class PushSender:
    """Firebase Cloud Messaging delivery for booking and payment notifications.

    Stays disabled until FIREBASE_CREDENTIALS_PATH points at a service
    account file; initialization happens on first send.
    """

    def __init__(self, credentials_path: Optional[str] = None):
        self._lock = Lock()
        self._credentials_path = credentials_path
        self._initialized = False
        self._enabled = False

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            path = (self._credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
            if not path:
                self._initialized = True
                self._enabled = False
                logger.info("Push sender disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                cred = credentials.Certificate(path)
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(cred)
                self._enabled = True
                logger.info("Push sender initialized")
            except (OSError, ValueError):
                self._enabled = False
                logger.exception("Push sender disabled: Firebase init failed")
            finally:
                self._initialized = True

    def send_notification(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> List[str]:
        """Send to every token and return the ones FCM reports as dead."""
        self._ensure_initialized()
        if not self._enabled or not tokens:
            return []
        invalid: List[str] = []
        for start in range(0, len(tokens), MULTICAST_LIMIT):
            chunk = tokens[start : start + MULTICAST_LIMIT]
            message = messaging.MulticastMessage(
                notification=messaging.Notification(title=title, body=body),
                tokens=chunk,
                data=data,
            )
            try:
                batch = messaging.send_each_for_multicast(message)
            except exceptions.FirebaseError:
                logger.exception("Push send failed for %s token(s)", len(chunk))
                continue
            for idx, response in enumerate(batch.responses):
                if response.success:
                    continue
                if isinstance(response.exception, (messaging.UnregisteredError, exceptions.InvalidArgumentError)):
                    invalid.append(chunk[idx])
        return invalid


push_sender = PushSender()
