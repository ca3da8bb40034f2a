"""Concurrent token-verification gauge.

The counter lives in Redis so every API instance sees the same number. With no
REDIS_URL configured the gauge is disabled and reports None. Redis trouble is
logged and never fails the request being measured.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import redis

from paper_nexus.config import Config

logger = logging.getLogger(__name__)

ACTIVE_VERIFICATIONS_KEY = "paper_nexus:auth:active_verifications"


class ActiveVerificationGauge:
    def __init__(self, client: Any = None, *, key: str = ACTIVE_VERIFICATIONS_KEY) -> None:
        self._client = client
        self.key = key

    @classmethod
    def from_config(cls, cfg: Config) -> "ActiveVerificationGauge":
        if not cfg.REDIS_URL:
            return cls(None)
        client = redis.Redis.from_url(cfg.REDIS_URL, decode_responses=True, socket_timeout=2)
        logger.info("verification gauge backed by redis")
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _incr(self) -> bool:
        if self._client is None:
            return False
        try:
            self._client.incr(self.key)
            return True
        except redis.RedisError as e:
            logger.warning("verification gauge incr failed: %s", e)
            return False

    def _decr(self) -> None:
        try:
            self._client.decr(self.key)
        except redis.RedisError as e:
            logger.warning("verification gauge decr failed: %s", e)

    @contextmanager
    def track(self) -> Iterator[None]:
        """Count the block as one in-flight verification."""
        counted = self._incr()
        try:
            yield
        finally:
            # Only undo increments that actually landed.
            if counted:
                self._decr()

    def value(self) -> Optional[int]:
        if self._client is None:
            return None
        try:
            raw = self._client.get(self.key)
        except redis.RedisError as e:
            logger.warning("verification gauge read failed: %s", e)
            return None
        return int(raw or 0)
