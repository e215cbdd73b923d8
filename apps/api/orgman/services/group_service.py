"""Group rosters: access checks, membership lookups and group member records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterator

from orgman.core.config import Settings
from orgman.db.enums import GroupRemovalMode
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.roster.errors import (
    GroupMemberCreationError,
    GroupMemberRemovalError,
)
from orgman.utils.jsonapi import attr, related_id, relationship, resource_id

logger = logging.getLogger(__name__)

GROUP_SCAN_MAX_PAGES = 10
GROUP_SCAN_PAGE_SIZE = 100


@dataclass(frozen=True)
class GroupAccess:
    allowed: bool
    org_uuid: str | None = None
    org_identifier: str | None = None
    role_slug: str | None = None


def iter_group_members(
    api: MembershipApi,
    group_uuid: str,
    page_size: int = GROUP_SCAN_PAGE_SIZE,
    max_pages: int = GROUP_SCAN_MAX_PAGES,
    active_only: bool = True,
) -> Iterator[dict]:
    for page in range(1, max_pages + 1):
        items = api.list_group_members(group_uuid, page=page, size=page_size, active_only=active_only)
        yield from items
        if len(items) < page_size:
            return


def member_association(cfg: Settings, member: dict) -> str | None:
    """Organization identifier stored in the member's association custom field."""
    field = attr(member, "custom_data_field") or {}
    if field.get("key") != cfg.GROUPS_ASSOCIATION_KEY:
        return None
    value = field.get("value") or {}
    return value.get(cfg.GROUPS_ASSOCIATION_VALUE_FIELD)


def _is_active_member(member: dict) -> bool:
    flag = attr(member, "active")
    if flag is not None:
        return bool(flag)
    end_date = attr(member, "end_date")
    return not end_date or str(end_date)[:10] > date.today().isoformat()


def member_in_org(
    cfg: Settings,
    member: dict,
    org_uuid: str | None = None,
    org_identifier: str | None = None,
) -> bool:
    """
    Group members belong to the organization they were added for. Records
    carrying neither an organization relationship nor an association match
    any organization.
    """
    member_org = related_id(member, "organization")
    if org_uuid and member_org and member_org != org_uuid:
        return False
    association = member_association(cfg, member)
    if org_identifier and association and association != org_identifier:
        return False
    return True


def find_active_group_member(
    api: MembershipApi,
    cfg: Settings,
    group_uuid: str,
    person_uuid: str,
    org_uuid: str | None = None,
    org_identifier: str | None = None,
) -> dict | None:
    for member in iter_group_members(api, group_uuid):
        if related_id(member, "person") != person_uuid or not _is_active_member(member):
            continue
        if member_in_org(cfg, member, org_uuid, org_identifier):
            return member
    return None


def organization_identifier(api: MembershipApi, org_uuid: str) -> str:
    """Association value for an organization: its name, else its uuid."""
    try:
        organization = api.get_organization(org_uuid)
    except MembershipApiError:
        logger.warning("Organization lookup failed for %s", org_uuid, exc_info=True)
        return org_uuid
    return attr(organization, "legal_name") or attr(organization, "alternate_name") or org_uuid


def find_manager_membership(
    api: MembershipApi, cfg: Settings, group_uuid: str, actor_uuid: str
) -> dict | None:
    manage_roles = cfg.groups_manage_roles_list
    for member in iter_group_members(api, group_uuid):
        if related_id(member, "person") != actor_uuid or not _is_active_member(member):
            continue
        if attr(member, "type") in manage_roles:
            return member
    return None


def can_manage_group(
    api: MembershipApi,
    cfg: Settings,
    group_uuid: str,
    actor_uuid: str | None,
    org_uuid: str | None = None,
) -> GroupAccess:
    """
    Resolve who may manage the group and on behalf of which organization.

    An actor needs an active group membership with a role listed in
    GROUPS_MANAGE_ROLES; that membership decides the organization (its
    organization relationship, else the group's) and the association value
    (its association field, else the organization uuid). Calls without an
    actor come from trusted internal callers (bulk uploads) and act for
    ``org_uuid`` under that organization's name.
    """
    try:
        group = api.get_group(group_uuid)
    except MembershipApiError:
        logger.warning("Group lookup failed for %s", group_uuid, exc_info=True)
        return GroupAccess(allowed=False)
    if not group:
        return GroupAccess(allowed=False)
    group_org = related_id(group, "organization")

    if not actor_uuid:
        acting_org = org_uuid or group_org
        if not acting_org:
            return GroupAccess(allowed=False)
        return GroupAccess(
            allowed=True,
            org_uuid=acting_org,
            org_identifier=organization_identifier(api, acting_org),
        )

    try:
        member = find_manager_membership(api, cfg, group_uuid, actor_uuid)
    except MembershipApiError:
        logger.warning("Group access check failed for %s", group_uuid, exc_info=True)
        return GroupAccess(allowed=False)
    if not member:
        return GroupAccess(allowed=False)

    acting_org = related_id(member, "organization") or group_org
    return GroupAccess(
        allowed=True,
        org_uuid=acting_org,
        org_identifier=member_association(cfg, member) or acting_org,
        role_slug=attr(member, "type"),
    )


def role_seat_taken(
    api: MembershipApi,
    cfg: Settings,
    group_uuid: str,
    org_identifier: str | None,
    role: str,
) -> bool:
    """True when an active member associated with the organization already holds ``role``."""
    for member in iter_group_members(api, group_uuid):
        if attr(member, "type") != role or not _is_active_member(member):
            continue
        if member_association(cfg, member) == org_identifier:
            return True
    return False


def build_group_member_payload(
    cfg: Settings,
    group_uuid: str,
    person_uuid: str,
    role: str,
    org_identifier: str | None,
) -> dict:
    return {
        "data": {
            "type": "group_members",
            "attributes": {
                "type": role,
                "start_date": date.today().isoformat(),
                "end_date": None,
                "custom_data_field": {
                    "key": cfg.GROUPS_ASSOCIATION_KEY,
                    "value": {cfg.GROUPS_ASSOCIATION_VALUE_FIELD: org_identifier},
                },
            },
            "relationships": {
                "group": relationship("groups", group_uuid),
                "person": relationship("people", person_uuid),
            },
        }
    }


def create_group_member(
    api: MembershipApi,
    cfg: Settings,
    group_uuid: str,
    person_uuid: str,
    role: str,
    org_identifier: str | None,
) -> str | None:
    payload = build_group_member_payload(cfg, group_uuid, person_uuid, role, org_identifier)
    try:
        created = api.create_group_member(payload)
    except MembershipApiError as exc:
        raise GroupMemberCreationError(f"Failed to add group member: {exc.message}") from exc
    return resource_id(created)


def remove_group_member(api: MembershipApi, cfg: Settings, group_member_id: str) -> GroupRemovalMode:
    """Delete or end-date the group member record per GROUPS_REMOVAL_MODE."""
    try:
        mode = GroupRemovalMode(cfg.GROUPS_REMOVAL_MODE)
    except ValueError:
        mode = GroupRemovalMode.END_DATE
    try:
        if mode == GroupRemovalMode.DELETE:
            api.delete_group_member(group_member_id)
        else:
            api.update_group_member(group_member_id, {"end_date": date.today().isoformat()})
    except MembershipApiError as exc:
        raise GroupMemberRemovalError(f"Failed to remove group member: {exc.message}") from exc
    return mode
