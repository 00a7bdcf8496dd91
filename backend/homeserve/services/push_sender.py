import logging
import os
from threading import Lock
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_INVALID_TOKEN_MARKERS = ("registration token", "invalid argument", "not registered")


def _is_invalid_token_error(exc: Optional[BaseException]) -> bool:
    text = str(exc).lower() if exc else ""
    return any(marker in text for marker in _INVALID_TOKEN_MARKERS)


class PushSender:
    """Firebase Cloud Messaging fan-out for booking and verification events.

    Push is optional: without FIREBASE_CREDENTIALS_PATH (or without the
    ``push`` extra installed) every send is a logged no-op.
    """

    def __init__(self, credentials_path: Optional[str] = None):
        self._credentials_path = credentials_path
        self._lock = Lock()
        self._messaging: Any = None
        self._ready = False

    @property
    def enabled(self) -> bool:
        self._ensure_ready()
        return self._messaging is not None

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        with self._lock:
            if self._ready:
                return
            try:
                self._messaging = self._load_messaging()
            finally:
                self._ready = True

    def _load_messaging(self) -> Any:
        path = (self._credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
        if not path:
            logger.info("Push notifications disabled: FIREBASE_CREDENTIALS_PATH not set")
            return None
        try:
            import firebase_admin
            from firebase_admin import credentials, messaging
        except ImportError:
            logger.warning("Push notifications disabled: install the 'push' extra for firebase-admin")
            return None
        try:
            if not firebase_admin._apps:  # pylint: disable=protected-access
                firebase_admin.initialize_app(credentials.Certificate(path))
        except (OSError, ValueError):
            logger.exception("Push notifications disabled: Firebase init failed")
            return None
        logger.info("Push notifications enabled")
        return messaging

    def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> List[str]:
        """Send to every device token and return the ones Firebase reports as dead."""
        if not tokens or not self.enabled:
            return []
        message = self._messaging.MulticastMessage(
            notification=self._messaging.Notification(title=title, body=body),
            tokens=tokens,
            data=data,
        )
        try:
            batch = self._messaging.send_each_for_multicast(message)
        except Exception:
            # Delivery is best effort; the in-app notification is already recorded.
            logger.exception("Push delivery failed for %d device(s)", len(tokens))
            return []
        return [
            token
            for token, response in zip(tokens, batch.responses)
            if not response.success and _is_invalid_token_error(response.exception)
        ]


push_sender = PushSender()
