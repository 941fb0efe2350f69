"""
credits.py - credit balance and transaction log.

Every AI operation debits one credit before the call and puts it back if the
call fails. The balance and the log share one store slot so a debit and its
log entry land in the same atomic update.

Stored shape under CREDITS_KEY:
    {"balance": 3, "transactions": [{id, amount, type, description, timestamp}, ...]}
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import InsufficientCredits
from .storage import KeyValueStore, MemoryStore
from .utils import generate_id

logger = logging.getLogger(__name__)

CREDITS_KEY      = "credits"
INITIAL_CREDITS  = 3
MAX_TRANSACTIONS = 100
TRANSACTION_TYPES = ("spend", "refund", "purchase", "reward")


class CreditLedger:

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        initial: int = INITIAL_CREDITS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else MemoryStore()
        self.initial = initial
        self._clock = clock

    def _current(self, raw: Optional[Any]) -> Dict[str, Any]:
        if not isinstance(raw, dict) or not isinstance(raw.get("balance"), int):
            return {"balance": self.initial, "transactions": []}
        return {"balance": raw["balance"], "transactions": list(raw.get("transactions") or [])}

    def _entry(self, amount: int, kind: str, description: str) -> Dict[str, Any]:
        return {
            "id":          generate_id(),
            "amount":      amount,
            "type":        kind,
            "description": description,
            "timestamp":   self._clock(),
        }

    @property
    def balance(self) -> int:
        return self._current(self.store.get_object(CREDITS_KEY))["balance"]

    def transactions(self) -> List[Dict[str, Any]]:
        """Newest first."""
        return self._current(self.store.get_object(CREDITS_KEY))["transactions"]

    def spend(self, amount: int = 1, description: str = "AI generation") -> bool:
        """Debit `amount` if the balance covers it. Returns False (and changes nothing) otherwise."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        outcome = {"ok": False}

        def debit(raw: Optional[Any]) -> Dict[str, Any]:
            state = self._current(raw)
            if state["balance"] < amount:
                return state
            outcome["ok"] = True
            state["balance"] -= amount
            state["transactions"].insert(0, self._entry(-amount, "spend", description))
            del state["transactions"][MAX_TRANSACTIONS:]
            return state

        state = self.store.read_modify_write(CREDITS_KEY, debit)
        if outcome["ok"]:
            logger.debug("Spent %d credit(s) for %s; balance %d", amount, description, state["balance"])
        return outcome["ok"]

    def add(self, amount: int, description: str = "", kind: str = "purchase") -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        if kind not in TRANSACTION_TYPES or kind == "spend":
            raise ValueError(f"invalid credit transaction type {kind!r}")

        def credit(raw: Optional[Any]) -> Dict[str, Any]:
            state = self._current(raw)
            state["balance"] += amount
            state["transactions"].insert(0, self._entry(amount, kind, description))
            del state["transactions"][MAX_TRANSACTIONS:]
            return state

        state = self.store.read_modify_write(CREDITS_KEY, credit)
        return state["balance"]

    @contextmanager
    def charge(self, amount: int = 1, description: str = "AI generation") -> Iterator[None]:
        """
        Debit up front; refund exactly once if the body raises.

            with ledger.charge(1, "mockup"):
                image = gateway_call()
        """
        if not self.spend(amount, description):
            raise InsufficientCredits(amount, self.balance)
        try:
            yield
        except BaseException:
            balance = self.add(amount, f"Refund: {description}", kind="refund")
            logger.info("Refunded %d credit(s) for failed %s; balance %d", amount, description, balance)
            raise
