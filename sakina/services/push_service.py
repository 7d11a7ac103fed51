"""
Push delivery over Firebase Cloud Messaging.

Configuration via environment variables:
- FIREBASE_CREDENTIALS_PATH: service account JSON. Push is disabled when unset.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import firebase_admin
from firebase_admin import credentials, messaging, exceptions as firebase_exceptions
from sakina.config import settings

logger = logging.getLogger(__name__)

# FCM caps a multicast message at 500 tokens
MULTICAST_LIMIT = 500


@dataclass
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: List[str] = field(default_factory=list)


class PushService:
    """Wraps the Firebase Admin SDK; a no-op when Firebase is not configured"""

    def __init__(self, credentials_path: Optional[str] = None):
        self.app = None
        path = credentials_path or settings.FIREBASE_CREDENTIALS_PATH

        if not path:
            logger.info("ℹ️ Firebase not configured - push notifications disabled")
            return

        if not Path(path).exists():
            logger.warning(f"⚠️ Firebase credentials file not found: {path}")
            return

        try:
            if firebase_admin._apps:
                self.app = firebase_admin.get_app()
            else:
                self.app = firebase_admin.initialize_app(credentials.Certificate(path))
            logger.info("✅ Firebase Admin SDK initialized for push")
        except (ValueError, OSError) as e:
            logger.error(f"❌ Failed to initialize Firebase: {e}")
            self.app = None

    @property
    def enabled(self) -> bool:
        return self.app is not None

    def send_to_tokens(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> PushResult:
        """
        Multicast to ``tokens``. Never raises; per-token failures are counted and
        tokens FCM reports as unregistered are returned for cleanup.
        """
        result = PushResult()
        if not self.enabled or not tokens:
            return result

        payload = {k: str(v) for k, v in (data or {}).items()}

        for start in range(0, len(tokens), MULTICAST_LIMIT):
            batch = tokens[start:start + MULTICAST_LIMIT]
            message = messaging.MulticastMessage(
                tokens=batch,
                notification=messaging.Notification(title=title, body=body),
                data=payload,
            )
            try:
                response = messaging.send_each_for_multicast(message, app=self.app)
            except firebase_exceptions.FirebaseError as e:
                logger.error(f"❌ FCM multicast failed: {e}")
                result.failure_count += len(batch)
                continue

            result.success_count += response.success_count
            result.failure_count += response.failure_count

            for token, send_response in zip(batch, response.responses):
                if send_response.success:
                    continue
                if isinstance(send_response.exception, (
                    messaging.UnregisteredError,
                    firebase_exceptions.InvalidArgumentError,
                )):
                    result.invalid_tokens.append(token)

        logger.info(
            f"📲 Push sent: {result.success_count} ok, {result.failure_count} failed, "
            f"{len(result.invalid_tokens)} dead tokens"
        )
        return result


_push_service: Optional[PushService] = None


def get_push_service() -> PushService:
    global _push_service
    if _push_service is None:
        _push_service = PushService()
    return _push_service
