"""Pending seat purchase intents.

An intent records which organization membership a user was buying seats for
between the purchase form and order completion. Records are keyed by user id
and expire explicitly.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field, ValidationError

from orgman.core.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

INTENT_KEY_PREFIX = "seat_purchase_intent:"
DEFAULT_TTL_SECONDS = 3600


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SeatPurchaseIntent(BaseModel):
    user_id: str
    org_uuid: str
    membership_uuid: str
    membership_data: dict = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _now()) >= self.expires_at


class PendingIntentStore:
    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.store = store
        self.ttl_seconds = max(1, ttl_seconds)

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{INTENT_KEY_PREFIX}{user_id}"

    def put(
        self,
        user_id: str,
        org_uuid: str,
        membership_uuid: str,
        membership_data: dict | None = None,
    ) -> SeatPurchaseIntent:
        """Store (or replace) the user's intent."""
        now = _now()
        intent = SeatPurchaseIntent(
            user_id=user_id,
            org_uuid=org_uuid,
            membership_uuid=membership_uuid,
            membership_data=membership_data or {},
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        self.store.set(
            self._key(user_id), intent.model_dump(mode="json"), ttl_seconds=self.ttl_seconds
        )
        logger.info("Stored seat purchase intent for user %s (org=%s)", user_id, org_uuid)
        return intent

    def get(self, user_id: str) -> SeatPurchaseIntent | None:
        raw = self.store.get(self._key(user_id))
        if not raw:
            return None
        try:
            intent = SeatPurchaseIntent.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed seat purchase intent for user %s", user_id)
            self.store.delete(self._key(user_id))
            return None
        if intent.is_expired():
            self.store.delete(self._key(user_id))
            return None
        return intent

    def delete(self, user_id: str) -> None:
        self.store.delete(self._key(user_id))

    def consume(self, user_id: str) -> SeatPurchaseIntent | None:
        """Return the live intent and remove it."""
        intent = self.get(user_id)
        if intent is not None:
            self.delete(user_id)
        return intent
