"""
Flat-file persistence.

Two JSON files back the service: the shops file (shop domain -> ShopRecord)
and the OAuth state file (state token -> PendingAuthState). Every mutation
rewrites the whole file. Writes go through a temp file and os.replace, and
each read-modify-write cycle holds a lock shared by all stores pointing at
the same path.
"""
import json
import logging
import os
import tempfile
import threading
import time
from typing import Any, Dict, Optional

from schemas import PendingAuthState, ShopRecord

logger = logging.getLogger(__name__)

_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(path, threading.Lock())


class JsonFileStore:
    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        self.lock = _lock_for(self.path)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning("%s is not valid JSON, starting from an empty store", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class ShopStore(JsonFileStore):
    def get(self, shop: str) -> Optional[ShopRecord]:
        with self.lock:
            raw = self._load().get(shop)
        return ShopRecord.model_validate(raw) if raw else None

    def upsert(self, shop: str, **fields) -> ShopRecord:
        """
        Merge `fields` (snake_case ShopRecord names) into the record for `shop`,
        creating it if needed. Fields not passed keep their stored value.
        """
        with self.lock:
            db = self._load()
            current = ShopRecord.model_validate(db.get(shop) or {})
            merged = ShopRecord.model_validate({**current.model_dump(), **fields})
            db[shop] = merged.model_dump(by_alias=True)
            self._save(db)
        return merged

    def all(self) -> Dict[str, ShopRecord]:
        with self.lock:
            db = self._load()
        return {shop: ShopRecord.model_validate(raw) for shop, raw in db.items()}


class StateStore(JsonFileStore):
    def __init__(self, path: str, ttl_seconds: int = 600):
        super().__init__(path)
        self.ttl_seconds = ttl_seconds

    def _live(self, states: Dict[str, Any], now: float) -> Dict[str, Any]:
        live = {
            k: v for k, v in states.items()
            if isinstance(v, dict) and now - float(v.get("createdAt", 0)) <= self.ttl_seconds
        }
        if len(live) != len(states):
            logger.debug("swept %d expired OAuth states", len(states) - len(live))
        return live

    def add(self, state: str, shop: str, now: Optional[float] = None) -> PendingAuthState:
        now = time.time() if now is None else now
        pending = PendingAuthState(shop=shop, created_at=now)
        with self.lock:
            states = self._live(self._load(), now)
            states[state] = pending.model_dump(by_alias=True)
            self._save(states)
        return pending

    def consume(self, state: str, now: Optional[float] = None) -> Optional[PendingAuthState]:
        """Remove and return the pending state, or None if unknown or expired."""
        now = time.time() if now is None else now
        with self.lock:
            before = self._load()
            states = self._live(before, now)
            raw = states.pop(state, None)
            if raw is not None or len(states) != len(before):
                self._save(states)
        return PendingAuthState.model_validate(raw) if raw else None
