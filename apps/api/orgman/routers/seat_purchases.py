"""Seat purchase intents - carry a pending purchase from form to order completion."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from orgman.core.deps import get_membership_api, get_pending_intent_store, verify_internal_secret
from orgman.services import seat_purchase_service
from orgman.services.membership_api import MembershipApi
from orgman.services.pending_intent_service import PendingIntentStore, SeatPurchaseIntent
from orgman.services.seat_purchase_service import SeatPurchaseResult

router = APIRouter(
    prefix="/seat-purchase-intents",
    tags=["seat-purchases"],
    dependencies=[Depends(verify_internal_secret)],
)


class IntentCreate(BaseModel):
    org_uuid: str = Field(min_length=1)
    membership_uuid: str = Field(min_length=1)
    membership_data: dict = Field(default_factory=dict)


class PurchaseComplete(BaseModel):
    additional_seats: int


@router.put("/{user_id}", response_model=SeatPurchaseIntent)
def put_intent(
    user_id: str,
    body: IntentCreate,
    intents: PendingIntentStore = Depends(get_pending_intent_store),
):
    return intents.put(user_id, body.org_uuid, body.membership_uuid, body.membership_data)


@router.get("/{user_id}", response_model=SeatPurchaseIntent)
def get_intent(user_id: str, intents: PendingIntentStore = Depends(get_pending_intent_store)):
    intent = intents.get(user_id)
    if not intent:
        raise HTTPException(status_code=404, detail="No pending seat purchase")
    return intent


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_intent(user_id: str, intents: PendingIntentStore = Depends(get_pending_intent_store)):
    intents.delete(user_id)


@router.post("/{user_id}/complete", response_model=SeatPurchaseResult)
def complete_purchase(
    user_id: str,
    body: PurchaseComplete,
    api: MembershipApi = Depends(get_membership_api),
    intents: PendingIntentStore = Depends(get_pending_intent_store),
):
    """Apply a paid seat purchase to the membership's seat cap."""
    return seat_purchase_service.complete_seat_purchase(
        api, intents, user_id, body.additional_seats
    )
