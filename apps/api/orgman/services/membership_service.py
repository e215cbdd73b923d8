"""Membership service - organization memberships, seats and the member-list cache."""

from __future__ import annotations

import logging
from datetime import date

from orgman.core.kv_store import KeyValueStore
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.roster.errors import (
    InvalidMembershipUuidError,
    InvalidOrganizationError,
    MembershipAssignmentError,
    MembershipEndError,
    MembershipOrgMismatchError,
    MembershipTypeMissingError,
    MissingMembershipUuidError,
)
from orgman.utils.jsonapi import attr, find_included, related_id, resource_id

logger = logging.getLogger(__name__)

MEMBERSHIP_TYPE_INCLUDES = ("memberships", "membership", "membership_types")

MEMBERS_CACHE_PAGES = range(1, 6)
MEMBERS_CACHE_SIZES = (10, 15, 20, 50, 100)


def _is_active(resource: dict, today: date | None = None) -> bool:
    """Explicit ``active`` flag wins; otherwise ends_at unset or in the future."""
    flag = attr(resource, "active")
    if flag is not None:
        return bool(flag)
    ends_at = attr(resource, "ends_at")
    if not ends_at:
        return True
    today = today or date.today()
    return str(ends_at)[:10] > today.isoformat()


# =============================================================================
# Organization membership resolution
# =============================================================================


def resolve_org_membership_uuid(api: MembershipApi, org_uuid: str) -> str | None:
    """Prefer an active or in-grace membership, else the first one listed."""
    fallback = None
    for entry in api.list_organization_memberships(org_uuid):
        membership_uuid = resource_id(entry)
        if not membership_uuid:
            continue
        if attr(entry, "active") or attr(entry, "in_grace"):
            return membership_uuid
        if fallback is None:
            fallback = membership_uuid
    return fallback


def get_organization_owner_uuid(api: MembershipApi, org_uuid: str) -> str | None:
    """Owner of the active membership entry, else of the most recent one."""
    entries = api.list_organization_memberships(org_uuid)
    for entry in entries:
        owner = related_id(entry, "owner")
        if attr(entry, "active") and owner:
            return owner
    if entries:
        return related_id(entries[0], "owner")
    return None


def get_org_membership_document(api: MembershipApi, membership_uuid: str) -> dict | None:
    try:
        return api.get_organization_membership(membership_uuid)
    except MembershipApiError:
        logger.warning("Organization membership lookup failed for %s", membership_uuid, exc_info=True)
        return None


def verify_membership_scope(api: MembershipApi, org_uuid: str, membership_uuid: str) -> dict:
    """Return the membership document after checking it belongs to ``org_uuid``."""
    if not org_uuid:
        raise InvalidOrganizationError("Organization identifier is required.")
    if not membership_uuid:
        raise MissingMembershipUuidError("Membership UUID is required.")

    document = get_org_membership_document(api, membership_uuid)
    data = (document or {}).get("data")
    if not isinstance(data, dict):
        raise InvalidMembershipUuidError("Invalid membership UUID.")

    membership_org = related_id(data, "organization")
    if membership_org and membership_org != org_uuid:
        raise MembershipOrgMismatchError("Membership does not belong to this organization.")
    return document


def membership_type_id(document: dict | None) -> str | None:
    data = (document or {}).get("data")
    type_id = related_id(data, "membership")
    if type_id:
        return type_id
    return resource_id(find_included(document, MEMBERSHIP_TYPE_INCLUDES))


# =============================================================================
# Person memberships (seats)
# =============================================================================


def find_active_person_membership(
    api: MembershipApi,
    membership_uuid: str,
    person_uuid: str | None = None,
    email: str | None = None,
) -> dict | None:
    """Active seat of the person (by uuid or email) in one organization membership."""
    for item in api.query_person_memberships(membership_uuid, person_uuid=person_uuid, email=email):
        if _is_active(item):
            return item
    return None


def person_has_membership(
    api: MembershipApi,
    membership_uuid: str,
    person_uuid: str | None = None,
    email: str | None = None,
) -> bool:
    return find_active_person_membership(api, membership_uuid, person_uuid, email) is not None


def person_has_active_membership(
    api: MembershipApi, person_uuid: str, membership_uuid: str | None = None
) -> bool:
    """Check from the person's side, optionally scoped to one org membership."""
    for item in api.list_person_memberships(person_uuid):
        if not _is_active(item):
            continue
        if membership_uuid is None or related_id(item, "organization_membership") == membership_uuid:
            return True
    return False


def assign_seat(
    api: MembershipApi,
    person_uuid: str,
    membership_uuid: str,
    document: dict | None = None,
) -> bool:
    """
    Assign the person to a seat of the organization membership.

    Returns False when the person already holds a seat. A failed create is
    re-checked once, since the API may reject duplicates it just accepted.
    """
    try:
        if person_has_membership(api, membership_uuid, person_uuid):
            return False
    except MembershipApiError as exc:
        raise MembershipAssignmentError(f"Failed to check membership: {exc.message}") from exc

    document = document or get_org_membership_document(api, membership_uuid)
    type_id = membership_type_id(document)
    if not type_id:
        raise MembershipTypeMissingError("Organization membership has no membership type.")

    try:
        api.create_person_membership(
            person_uuid, membership_uuid, type_id, date.today().isoformat()
        )
    except MembershipApiError as exc:
        logger.warning(
            "Seat assignment failed for person %s (status=%s), re-checking",
            person_uuid,
            exc.status_code,
        )
        try:
            if person_has_membership(api, membership_uuid, person_uuid):
                return False
        except MembershipApiError:
            pass
        raise MembershipAssignmentError(f"Failed to assign membership: {exc.message}") from exc
    return True


def end_person_membership_today(api: MembershipApi, person_membership_id: str) -> None:
    try:
        record = api.get_person_membership(person_membership_id)
        if record is None:
            raise MembershipEndError("Person membership not found.")
        api.update_person_membership(
            person_membership_id, {"ends_at": date.today().isoformat()}
        )
    except MembershipApiError as exc:
        raise MembershipEndError(f"Failed to end membership: {exc.message}") from exc


def update_max_assignments(api: MembershipApi, membership_uuid: str, max_assignments: int) -> dict:
    return api.update_organization_membership(
        membership_uuid, {"max_assignments": max_assignments}
    )


# =============================================================================
# Member list cache
# =============================================================================


def _members_cache_key(membership_uuid: str, page: int, size: int) -> str:
    return f"members:{membership_uuid}:{page}:{size}"


def list_members(
    api: MembershipApi,
    store: KeyValueStore,
    membership_uuid: str,
    page: int = 1,
    size: int = 20,
    ttl_seconds: int = 300,
) -> tuple[list[dict], bool]:
    """Active person memberships for one page; returns (items, from_cache)."""
    key = _members_cache_key(membership_uuid, page, size)
    cached = store.get(key)
    if cached is not None:
        return cached, True

    items = []
    for item in api.list_membership_person_memberships(membership_uuid, page=page, size=size):
        if not _is_active(item):
            continue
        items.append(
            {
                "person_uuid": related_id(item, "person"),
                "person_membership_id": resource_id(item),
                "starts_at": attr(item, "starts_at"),
                "ends_at": attr(item, "ends_at"),
            }
        )
    store.set(key, items, ttl_seconds=ttl_seconds)
    return items, False


def clear_members_cache(store: KeyValueStore, membership_uuid: str) -> None:
    for page in MEMBERS_CACHE_PAGES:
        for size in MEMBERS_CACHE_SIZES:
            store.delete(_members_cache_key(membership_uuid, page, size))
