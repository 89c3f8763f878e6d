# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Slack request signature verification.

    base      = "v0:{X-Slack-Request-Timestamp}:{raw body}"
    signature = "v0=" + hex(HMAC-SHA256(signing_secret, base))

Fails closed: a missing secret, missing header, stale timestamp or any
parsing error is treated as an invalid request.
"""
import hashlib
import hmac
import time
from typing import Callable, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.metrics.prometheus import SIGNATURE_FAILURES

logger = get_logger(__name__)

SIGNATURE_VERSION = "v0"


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


class SignatureVerifier:
    def __init__(
        self,
        signing_secret: str = settings.SLACK_SIGNING_SECRET,
        tolerance_seconds: int = settings.SIGNATURE_TOLERANCE_SECONDS,
        now: Callable[[], float] = time.time,
    ):
        self._secret = signing_secret
        self._tolerance = tolerance_seconds
        self._now = now

    def verify(self, body: bytes, timestamp: Optional[str], signature: Optional[str]) -> bool:
        try:
            ok = self._verify(body, timestamp, signature)
        except Exception as exc:
            logger.warning("Signature verification errored: %s", exc)
            ok = False
        if not ok:
            SIGNATURE_FAILURES.inc()
        return ok

    def _verify(self, body: bytes, timestamp: Optional[str], signature: Optional[str]) -> bool:
        if not self._secret:
            logger.error("SLACK_SIGNING_SECRET is not configured; rejecting webhook")
            return False
        if not timestamp or not signature:
            return False
        if abs(self._now() - int(timestamp)) > self._tolerance:
            logger.warning("Stale webhook timestamp=%s", timestamp)
            return False
        expected = compute_signature(self._secret, timestamp, body)
        return hmac.compare_digest(expected, signature)
