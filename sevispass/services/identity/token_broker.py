"""
One-Time Login Token Broker
Issues short-lived single-use tokens after a successful face login and
redeems them exactly once.
"""
import hashlib
import logging
import secrets
import threading
from datetime import timedelta
from typing import Optional

from sevispass.config import TOKEN_CONFIG
from sevispass.services.identity.models import LoginGrant, utcnow
from sevispass.services.storage.base import TokenStore

logger = logging.getLogger(__name__)

INVALID_TOKEN = "Invalid or expired login token"


def _token_key(token: str) -> str:
    # Only the hash is stored, so a leaked table cannot be replayed
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class LoginTokenBroker:

    def __init__(self, store: TokenStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else TOKEN_CONFIG["ttl_seconds"]
        if self.ttl_seconds < 0:
            raise ValueError("Token TTL cannot be negative")

    def issue(self, user_id: str, claimed_id: str) -> LoginGrant:
        """
        Create a token bound to (user_id, claimed_id).

        Args:
            user_id: Account that completed face login
            claimed_id: Identifier the face matched

        Returns:
            LoginGrant carrying the plaintext token (returned to the client once)
        """
        token = secrets.token_urlsafe(32)
        grant = LoginGrant(
            token=token,
            user_id=user_id,
            claimed_id=claimed_id,
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds),
        )
        self.store.put(_token_key(token), grant)
        logger.info(f"Issued login token for {claimed_id}, expires {grant.expires_at.isoformat()}")
        return grant

    def redeem(self, token: str) -> Optional[LoginGrant]:
        """
        Consume a token.

        Returns:
            The grant, or None for unknown, already used or expired tokens
        """
        if not token:
            return None
        grant = self.store.take(_token_key(token))
        if grant is None:
            return None
        if grant.is_expired():
            logger.info(f"Expired login token presented for {grant.claimed_id}")
            return None
        return LoginGrant(
            token=token,
            user_id=grant.user_id,
            claimed_id=grant.claimed_id,
            expires_at=grant.expires_at,
        )

    def purge_expired(self) -> int:
        return self.store.purge_expired(utcnow())


class TokenSweeper:
    """Background thread that purges expired tokens on a fixed interval."""

    def __init__(self, broker: LoginTokenBroker, interval_seconds: Optional[float] = None):
        self.broker = broker
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else TOKEN_CONFIG["sweep_interval_seconds"]
        )
        if self.interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="login-token-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Token sweeper started (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Token sweeper stopped")

    def sweep_once(self) -> int:
        removed = self.broker.purge_expired()
        if removed:
            logger.info(f"Purged {removed} expired login token(s)")
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.sweep_once()
            except Exception as e:
                # Keep sweeping; the next tick retries
                logger.error(f"Token sweep failed: {str(e)}", exc_info=True)
