"""Daily usage ceiling for guests (callers without an access token)."""

from __future__ import annotations

from datetime import date
from typing import Callable

from pydantic import BaseModel, ValidationError

from deal_assistant.log import get_logger
from deal_assistant.storage.kv import KeyValueStore

logger = get_logger(__name__)

DEFAULT_DAILY_LIMIT = 2
DEFAULT_KEY = "ai_guest_usage"


class QuotaRecord(BaseModel):
    count: int = 0
    date: str = ""


class QuotaGuard:
    """Counts guest sends per calendar day.

    The record is read once at construction and written back on every
    ``consume()`` and on day rollover.
    """

    def __init__(
        self,
        store: KeyValueStore,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        key: str = DEFAULT_KEY,
        today: Callable[[], date] = date.today,
    ):
        self._store = store
        self._daily_limit = daily_limit
        self._key = key
        self._today = today
        self._record = self._load()

    @property
    def record(self) -> QuotaRecord:
        return self._record.model_copy()

    @property
    def remaining(self) -> int:
        if self._record.date != self._today().isoformat():
            return self._daily_limit
        return max(self._daily_limit - self._record.count, 0)

    def check(self) -> bool:
        """Return whether another send is allowed today."""
        today = self._today().isoformat()
        if self._record.date != today:
            self._record = QuotaRecord(count=0, date=today)
            self._persist()
        allowed = self._record.count < self._daily_limit
        if not allowed:
            logger.info("guest_quota_exhausted", count=self._record.count, limit=self._daily_limit)
        return allowed

    def consume(self) -> None:
        today = self._today().isoformat()
        count = self._record.count if self._record.date == today else 0
        self._record = QuotaRecord(count=count + 1, date=today)
        self._persist()
        logger.debug("guest_quota_consumed", count=self._record.count, limit=self._daily_limit)

    def _load(self) -> QuotaRecord:
        raw = self._store.get(self._key)
        if raw is None:
            return QuotaRecord()
        try:
            return QuotaRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning("guest_quota_record_invalid", key=self._key, error=str(e))
            return QuotaRecord()

    def _persist(self) -> None:
        self._store.set(self._key, self._record.model_dump())
