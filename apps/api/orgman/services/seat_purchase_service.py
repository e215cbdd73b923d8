"""Seat purchase completion - raise an organization membership's seat cap."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from orgman.core.errors import ServiceError
from orgman.core.structured_logging import build_log_context
from orgman.services import membership_service
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.pending_intent_service import PendingIntentStore
from orgman.utils.jsonapi import attr

logger = logging.getLogger(__name__)


class SeatPurchaseError(ServiceError):
    code = "seat_purchase_error"


class InvalidSeatCountError(SeatPurchaseError):
    code = "invalid_seat_count"


class PendingIntentNotFoundError(SeatPurchaseError):
    code = "pending_intent_not_found"
    status_code = 404


class SeatUpdateError(SeatPurchaseError):
    code = "seat_update_failed"
    status_code = 502


class SeatPurchaseResult(BaseModel):
    org_uuid: str
    membership_uuid: str
    previous_max_assignments: int
    max_assignments: int


def current_max_assignments(api: MembershipApi, membership_uuid: str) -> int:
    document = api.get_organization_membership(membership_uuid)
    value = attr((document or {}).get("data"), "max_assignments")
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def complete_seat_purchase(
    api: MembershipApi,
    intents: PendingIntentStore,
    user_id: str,
    additional_seats: int,
) -> SeatPurchaseResult:
    """
    Consume the user's pending intent and add ``additional_seats`` to the
    membership's max_assignments.

    The intent is consumed only after the cap update succeeds, so a failed
    update can be retried.
    """
    if additional_seats < 1:
        raise InvalidSeatCountError("Additional seats must be a positive number.")

    intent = intents.get(user_id)
    if intent is None:
        raise PendingIntentNotFoundError("No pending seat purchase for this user.")

    log_context = build_log_context(org_id=intent.org_uuid)
    try:
        previous = current_max_assignments(api, intent.membership_uuid)
        new_total = previous + additional_seats
        membership_service.update_max_assignments(api, intent.membership_uuid, new_total)
    except MembershipApiError as exc:
        logger.error("Seat cap update failed: %s", exc.message, extra=log_context)
        raise SeatUpdateError(f"Failed to update seat count: {exc.message}") from exc

    intents.consume(user_id)
    logger.info(
        "Seat cap raised from %d to %d for membership %s",
        previous,
        new_total,
        intent.membership_uuid,
        extra=log_context,
    )
    return SeatPurchaseResult(
        org_uuid=intent.org_uuid,
        membership_uuid=intent.membership_uuid,
        previous_max_assignments=previous,
        max_assignments=new_total,
    )
