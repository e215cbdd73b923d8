"""Tests for pending seat purchase intents and purchase completion."""

from datetime import datetime, timedelta, timezone

import pytest

from orgman.services.pending_intent_service import INTENT_KEY_PREFIX, PendingIntentStore
from orgman.services.seat_purchase_service import (
    InvalidSeatCountError,
    PendingIntentNotFoundError,
    SeatUpdateError,
    complete_seat_purchase,
)
from orgman.utils.jsonapi import attr

from conftest import api_error


@pytest.fixture
def intents(kv_store):
    return PendingIntentStore(kv_store, ttl_seconds=600)


def test_put_get_and_consume(intents):
    stored = intents.put("user-1", "org-1", "m-1", {"plan": "gold"})

    loaded = intents.get("user-1")
    assert loaded == stored
    assert loaded.membership_data == {"plan": "gold"}
    assert loaded.expires_at - loaded.created_at == timedelta(seconds=600)

    assert intents.consume("user-1") == stored
    assert intents.get("user-1") is None
    assert intents.consume("user-1") is None


def test_put_replaces_previous_intent(intents):
    intents.put("user-1", "org-1", "m-1")
    intents.put("user-1", "org-2", "m-2")

    assert intents.get("user-1").org_uuid == "org-2"


def test_expired_intent_is_dropped(intents, kv_store):
    record = intents.put("user-1", "org-1", "m-1").model_dump(mode="json")
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    record["expires_at"] = past.isoformat()
    kv_store.set(f"{INTENT_KEY_PREFIX}user-1", record)

    assert intents.get("user-1") is None
    assert kv_store.get(f"{INTENT_KEY_PREFIX}user-1") is None


def test_malformed_intent_is_dropped(intents, kv_store):
    kv_store.set(f"{INTENT_KEY_PREFIX}user-1", {"user_id": "user-1"})

    assert intents.get("user-1") is None
    assert kv_store.get(f"{INTENT_KEY_PREFIX}user-1") is None


def test_complete_purchase_raises_seat_cap(fake_api, intents):
    org_uuid, membership_uuid = fake_api.seed_organization(max_assignments=10)
    intents.put("user-1", org_uuid, membership_uuid)

    result = complete_seat_purchase(fake_api, intents, "user-1", 5)

    assert (result.previous_max_assignments, result.max_assignments) == (10, 15)
    document = fake_api.membership_documents[membership_uuid]
    assert attr(document["data"], "max_assignments") == 15
    assert intents.get("user-1") is None


def test_complete_purchase_validation(fake_api, intents):
    with pytest.raises(InvalidSeatCountError):
        complete_seat_purchase(fake_api, intents, "user-1", 0)
    with pytest.raises(PendingIntentNotFoundError):
        complete_seat_purchase(fake_api, intents, "user-1", 2)
    assert fake_api.calls == []


def test_failed_update_keeps_intent_for_retry(fake_api, intents):
    org_uuid, membership_uuid = fake_api.seed_organization()
    intents.put("user-1", org_uuid, membership_uuid)
    fake_api.fail["update_organization_membership"] = api_error("locked", 423)

    with pytest.raises(SeatUpdateError) as exc_info:
        complete_seat_purchase(fake_api, intents, "user-1", 3)

    assert exc_info.value.status_code == 502
    assert intents.get("user-1") is not None
