"""
key_pool.py - Gemini API key rotation with a per-key circuit breaker.

Selection order among healthy keys:
  1. fewest consecutive failures
  2. least recently used (load balancing)

Circuit per key:

  CLOSED --(5 consecutive failures, or any quota error)--> OPEN
  OPEN   --(retry deadline passes)--------------------------> HALF_OPEN
  HALF_OPEN --(success)--> CLOSED
  HALF_OPEN --(failure)--> OPEN (short deadline)

On top of the circuit, a key whose last failure is recent stays cooling down
(5 min after a quota error, 1 min otherwise).

State is written to the key-value store after every change and re-read before
every selection and report, so several processes sharing one store converge
on the same view (last writer wins). Keys are stored under a SHA-256
fingerprint; the secret itself never reaches the store or the logs.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .config import KeyPoolConfig
from .storage import KeyValueStore
from .utils import key_suffix

logger = logging.getLogger(__name__)

STORAGE_KEY = "api_rotation_state"


class CircuitState(str, Enum):
    CLOSED    = "CLOSED"
    OPEN      = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


@dataclass
class CredentialRecord:
    id: str = field(repr=False)
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None
    last_failure_was_quota: bool = False
    circuit_state: CircuitState = CircuitState.CLOSED
    last_used_at: float = 0.0
    success_count: int = 0
    total_requests: int = 0
    half_open_retry_at: Optional[float] = None

    @property
    def suffix(self) -> str:
        return key_suffix(self.id)

    def to_state(self) -> Dict[str, Any]:
        return {
            "consecutive_failures":   self.consecutive_failures,
            "last_failure_at":        self.last_failure_at,
            "last_failure_was_quota": self.last_failure_was_quota,
            "circuit_state":          self.circuit_state.value,
            "last_used_at":           self.last_used_at,
            "success_count":          self.success_count,
            "total_requests":         self.total_requests,
            "half_open_retry_at":     self.half_open_retry_at,
        }

    def merge_state(self, raw: Mapping[str, Any]) -> None:
        if "consecutive_failures" in raw:
            self.consecutive_failures = int(raw["consecutive_failures"])
        if "last_failure_at" in raw:
            self.last_failure_at = _opt_float(raw["last_failure_at"])
        if "last_failure_was_quota" in raw:
            self.last_failure_was_quota = bool(raw["last_failure_was_quota"])
        if "circuit_state" in raw:
            self.circuit_state = CircuitState(raw["circuit_state"])
        if "last_used_at" in raw:
            self.last_used_at = float(raw["last_used_at"] or 0.0)
        if "success_count" in raw:
            self.success_count = int(raw["success_count"])
        if "total_requests" in raw:
            self.total_requests = int(raw["total_requests"])
        if "half_open_retry_at" in raw:
            self.half_open_retry_at = _opt_float(raw["half_open_retry_at"])


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass(frozen=True)
class CredentialStatus:
    """Read-only view of one key for monitoring. `id` is the key suffix only."""
    id: str
    state: str
    failures: int
    total: int
    last_used: float
    cooling_down: bool


class KeyPool:

    def __init__(
        self,
        keys: Iterable[str],
        store: Optional[KeyValueStore] = None,
        config: Optional[KeyPoolConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        unique = list(dict.fromkeys(k for k in keys if k))
        self._records: List[CredentialRecord] = [CredentialRecord(id=k) for k in unique]
        self._by_key: Dict[str, CredentialRecord] = {r.id: r for r in self._records}
        self.store = store
        self.config = config or KeyPoolConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._load_state()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def size(self) -> int:
        return len(self._records)

    # ── Health check ──────────────────────────────────────────────────────────

    def _is_blocked(self, record: CredentialRecord, now: float, transition: bool = True) -> bool:
        cfg = self.config

        if record.circuit_state is CircuitState.OPEN:
            if record.half_open_retry_at is not None and now >= record.half_open_retry_at:
                if transition:
                    record.circuit_state = CircuitState.HALF_OPEN
                return False
            return True

        # HALF_OPEN with a live deadline means the single trial call is already out.
        if (record.circuit_state is CircuitState.HALF_OPEN
                and record.half_open_retry_at is not None
                and now < record.half_open_retry_at):
            return True

        if record.last_failure_at is not None:
            window = cfg.quota_cooldown if record.last_failure_was_quota else cfg.transient_cooldown
            if now - record.last_failure_at < window:
                return True

        return False

    # ── Rotation ──────────────────────────────────────────────────────────────

    def select(self) -> Optional[str]:
        """
        Return the best key to use next, or None only when no keys are configured.

        If every key is cooling down, the key whose last failure is oldest is
        returned anyway rather than failing the call outright.
        """
        with self._lock:
            self._load_state()
            if not self._records:
                return None

            now = self._clock()
            candidates = [r for r in self._records if not self._is_blocked(r, now)]

            if candidates:
                chosen = min(candidates, key=lambda r: (r.consecutive_failures, r.last_used_at))
                if chosen.circuit_state is CircuitState.HALF_OPEN:
                    chosen.half_open_retry_at = now + self.config.half_open_delay
                    logger.info("Key %s half-open: allowing one trial call", chosen.suffix)
            else:
                # TODO: make this fallback optional through KeyPoolConfig.
                chosen = min(self._records, key=lambda r: r.last_failure_at or 0.0)
                logger.warning(
                    "All %d keys cooling down; falling back to %s", len(self._records), chosen.suffix
                )

            # Stamp before the caller goes to the network so a concurrent
            # select() does not pick the same least-recently-used key.
            chosen.last_used_at = now
            self._save_state()
            return chosen.id

    # ── Feedback ──────────────────────────────────────────────────────────────

    def report_success(self, key: str) -> None:
        with self._lock:
            self._load_state()
            record = self._by_key.get(key)
            if record is None:
                return

            if record.circuit_state is not CircuitState.CLOSED:
                logger.info("Key recovered: %s", record.suffix)

            record.circuit_state = CircuitState.CLOSED
            record.consecutive_failures = 0
            record.last_failure_at = None
            record.last_failure_was_quota = False
            record.half_open_retry_at = None
            record.success_count += 1
            record.total_requests += 1
            self._save_state()

    def report_failure(self, key: str, is_quota: bool = False) -> None:
        with self._lock:
            self._load_state()
            record = self._by_key.get(key)
            if record is None:
                return

            cfg = self.config
            now = self._clock()
            record.last_failure_at = now
            record.consecutive_failures += 1
            record.total_requests += 1
            record.last_failure_was_quota = is_quota

            if record.circuit_state is CircuitState.HALF_OPEN:
                record.circuit_state = CircuitState.OPEN
                record.half_open_retry_at = now + cfg.half_open_delay
                logger.warning("Key %s failed its half-open trial; circuit re-opened", record.suffix)
            elif record.consecutive_failures >= cfg.max_consecutive_failures or is_quota:
                record.circuit_state = CircuitState.OPEN
                record.half_open_retry_at = now + (
                    cfg.quota_cooldown if is_quota else cfg.transient_cooldown
                )
                logger.warning(
                    "Key %s circuit opened (%s, %d consecutive failures)",
                    record.suffix, "quota" if is_quota else "errors", record.consecutive_failures,
                )

            self._save_state()

    # ── Monitoring ────────────────────────────────────────────────────────────

    def status(self) -> List[CredentialStatus]:
        with self._lock:
            self._load_state()
            now = self._clock()
            return [
                CredentialStatus(
                    id=r.id[-4:],
                    state=r.circuit_state.value,
                    failures=r.consecutive_failures,
                    total=r.total_requests,
                    last_used=r.last_used_at,
                    cooling_down=self._is_blocked(r, now, transition=False),
                )
                for r in self._records
            ]

    # ── Persistence ───────────────────────────────────────────────────────────

    def _save_state(self) -> None:
        if self.store is None:
            return
        state = {fingerprint(r.id): r.to_state() for r in self._records}
        self.store.set_object(STORAGE_KEY, state)

    def _load_state(self) -> None:
        if self.store is None:
            return
        data = self.store.get_object(STORAGE_KEY)
        if not isinstance(data, dict):
            return
        for record in self._records:
            raw = data.get(fingerprint(record.id))
            if not isinstance(raw, dict):
                continue
            try:
                record.merge_state(raw)
            except (TypeError, ValueError) as exc:
                logger.error("Failed to load key state for %s: %s", record.suffix, exc)
