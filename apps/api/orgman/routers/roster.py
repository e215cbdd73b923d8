"""Roster router - add, edit and remove organization members and list the roster."""

from fastapi import APIRouter, Depends, Query

from orgman.core.config import settings
from orgman.core.deps import (
    get_membership_api,
    get_roster_service,
    get_store,
    verify_internal_secret,
)
from orgman.core.kv_store import KeyValueStore
from orgman.schemas.roster import (
    AddMemberBody,
    MemberListItem,
    MemberListResponse,
    MemberUpdateRequest,
    MemberUpdateResult,
    RemoveMemberBody,
    StrategyResult,
)
from orgman.services import member_update_service, membership_service
from orgman.services.membership_api import MembershipApi
from orgman.services.roster_service import RosterService

router = APIRouter(
    prefix="/roster",
    tags=["roster"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/{org_uuid}/members", response_model=StrategyResult)
def add_member(
    org_uuid: str,
    body: AddMemberBody,
    roster: RosterService = Depends(get_roster_service),
    store: KeyValueStore = Depends(get_store),
):
    """Add a person to the organization using the configured roster strategy."""
    result = roster.add_member(org_uuid, body.member, body.context)
    if body.context.resolved_membership_uuid:
        membership_service.clear_members_cache(store, body.context.resolved_membership_uuid)
    return result


@router.delete("/{org_uuid}/members/{person_uuid}", response_model=StrategyResult)
def remove_member(
    org_uuid: str,
    person_uuid: str,
    body: RemoveMemberBody | None = None,
    roster: RosterService = Depends(get_roster_service),
    store: KeyValueStore = Depends(get_store),
):
    context = (body or RemoveMemberBody()).context
    result = roster.remove_member(org_uuid, person_uuid, context)
    if context.resolved_membership_uuid:
        membership_service.clear_members_cache(store, context.resolved_membership_uuid)
    return result


@router.patch("/{org_uuid}/members/{person_uuid}", response_model=MemberUpdateResult)
def update_member(
    org_uuid: str,
    person_uuid: str,
    body: MemberUpdateRequest,
    api: MembershipApi = Depends(get_membership_api),
):
    """Edit a member's relationship type, description or organization roles."""
    return member_update_service.update_member(api, settings, org_uuid, person_uuid, body)


@router.get("/memberships/{membership_uuid}/members", response_model=MemberListResponse)
def list_members(
    membership_uuid: str,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    api: MembershipApi = Depends(get_membership_api),
    store: KeyValueStore = Depends(get_store),
):
    """Active seats of one organization membership (cached per page)."""
    items, cached = membership_service.list_members(
        api,
        store,
        membership_uuid,
        page=page,
        size=size,
        ttl_seconds=settings.MEMBER_CACHE_TTL_SECONDS,
    )
    return MemberListResponse(
        membership_uuid=membership_uuid,
        page=page,
        size=size,
        items=[MemberListItem(**item) for item in items],
        cached=cached,
    )
