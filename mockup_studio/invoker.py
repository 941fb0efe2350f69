"""
invoker.py - run one Gemini operation with key rotation and bounded retry.

Retry strategy (pool size + 1 attempts, at least 1):
  ┌──────────────────────┬────────────────────────────────────────────────┐
  │ Outcome              │ Action                                         │
  ├──────────────────────┼────────────────────────────────────────────────┤
  │ Success              │ report success, return                         │
  │ No key available     │ raise NoCredentialsAvailable, no retry         │
  │ ContentBlocked       │ key served the call: report success, re-raise  │
  │ Quota / rate limit   │ report quota failure, retry at once on the     │
  │                      │ next key (the failed one is cooling down)      │
  │ Anything else        │ report failure, wait BACKOFF_SECONDS, retry    │
  │ Last attempt failed  │ re-raise the original error                    │
  └──────────────────────┴────────────────────────────────────────────────┘

ContentBlocked deliberately departs from "every failure is reported as a
failure": a safety block means the key worked and the prompt was refused, so
counting it against the key would open healthy circuits over user content.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from .errors import ContentBlocked, NoCredentialsAvailable, is_quota_error
from .key_pool import KeyPool
from .utils import key_suffix

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_SECONDS = 1.0


class ResilientInvoker:

    def __init__(
        self,
        pool: KeyPool,
        backoff: float = BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pool = pool
        self.backoff = backoff
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return max(1, self.pool.size + 1)

    def invoke(self, operation: Callable[[str], T]) -> T:
        """Call operation(api_key) until it succeeds or the attempt budget runs out."""
        max_attempts = self.max_attempts

        for attempt in range(max_attempts):
            key = self.pool.select()
            if not key:
                raise NoCredentialsAvailable()

            try:
                result = operation(key)
            except ContentBlocked:
                self.pool.report_success(key)
                raise
            except Exception as exc:
                is_quota = is_quota_error(exc)
                self.pool.report_failure(key, is_quota)
                logger.warning(
                    "Attempt %d/%d failed with key %s (%s): %s",
                    attempt + 1, max_attempts, key_suffix(key),
                    "quota" if is_quota else "error", exc,
                )

                if attempt == max_attempts - 1:
                    raise

                if not is_quota:
                    self._sleep(self.backoff)
                continue

            self.pool.report_success(key)
            return result

        # Unreachable: the loop either returns or raises on its last attempt.
        raise NoCredentialsAvailable("All API keys exhausted.")
