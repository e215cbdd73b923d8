"""Role assignment and removal scoped to (person, organization)."""

from __future__ import annotations

from collections.abc import Iterable

from orgman.core.config import Settings
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.roster.errors import RoleAssignmentError, RoleRemovalError
from orgman.utils.jsonapi import attr, related_id
from orgman.utils.normalization import normalize_label, sanitize_key

# Platform roles never removed through roster operations
PROTECTED_ROLES = frozenset({"super_admin", "administrator", "user"})


def normalize_roles(roles: Iterable[str] | str | None, exclude: Iterable[str] = ()) -> list[str]:
    """Split comma lists, sanitize slugs, drop blanks, excluded and duplicates."""
    if not roles:
        return []
    if isinstance(roles, str):
        roles = [roles]

    excluded = {sanitize_key(role) for role in exclude}
    result: list[str] = []
    for raw in roles:
        for part in str(raw).split(","):
            slug = sanitize_key(part.strip())
            if slug and slug not in excluded and slug not in result:
                result.append(slug)
    return result


def filter_owner_role(cfg: Settings, roles: list[str]) -> list[str]:
    if not cfg.PREVENT_OWNER_ASSIGNMENT:
        return roles
    return [role for role in roles if role != cfg.ROLE_OWNER]


def relationship_roles(cfg: Settings, relationship_type: str | None) -> list[str]:
    """Roles granted by relationship type when relationship-based permissions are on."""
    if not cfg.RELATIONSHIP_BASED_PERMISSIONS or not relationship_type:
        return []
    mapped = cfg.RELATIONSHIP_ROLES_MAP.get(relationship_type) or []
    return normalize_roles(mapped)


def build_member_roles(
    cfg: Settings,
    requested: Iterable[str] | str | None,
    relationship_type: str | None = None,
) -> list[str]:
    """Base role, then auto-assigned roles, then caller and relationship roles."""
    base = sanitize_key(cfg.BASE_MEMBER_ROLE)
    ordered: list[str] = [base] if base else []
    for role in normalize_roles(cfg.auto_assign_roles_list):
        if role not in ordered:
            ordered.append(role)

    additional = normalize_roles(requested, exclude=[base]) + relationship_roles(
        cfg, relationship_type
    )
    for role in filter_owner_role(cfg, additional):
        if role not in ordered:
            ordered.append(role)
    return ordered


def filter_role_submission(
    roles: Iterable[str],
    allowed: Iterable[str] = (),
    excluded: Iterable[str] = (),
) -> list[str]:
    """
    Filter roles submitted through an upload. Names are compared
    case/punctuation-insensitively; an empty allow-list allows everything.
    """
    allowed_names = {normalize_label(role) for role in allowed if role}
    excluded_names = {normalize_label(role) for role in excluded if role}
    result: list[str] = []
    for role in roles:
        name = normalize_label(role)
        if not name or name in excluded_names:
            continue
        if allowed_names and name not in allowed_names:
            continue
        if role.strip() not in result:
            result.append(role.strip())
    return result


# =============================================================================
# Membership API operations
# =============================================================================


def get_person_roles_in_org(api: MembershipApi, person_uuid: str, org_uuid: str) -> list[str]:
    roles = []
    for role in api.list_person_roles(person_uuid):
        if related_id(role, "resource") == org_uuid:
            name = attr(role, "name")
            if name:
                roles.append(name)
    return roles


def person_has_any_role(
    api: MembershipApi, person_uuid: str, org_uuid: str, roles: Iterable[str]
) -> bool:
    wanted = set(roles)
    return any(role in wanted for role in get_person_roles_in_org(api, person_uuid, org_uuid))


def assign_roles(api: MembershipApi, person_uuid: str, roles: list[str], org_uuid: str) -> None:
    for role in roles:
        try:
            api.assign_role(person_uuid, role, org_uuid)
        except MembershipApiError as exc:
            raise RoleAssignmentError(f"Failed assigning role {role}: {exc.message}") from exc


def remove_person_roles_from_org(
    api: MembershipApi, person_uuid: str, roles: Iterable[str], org_uuid: str
) -> list[str]:
    """Remove the given roles, skipping protected platform roles."""
    removed = []
    for role in roles:
        if sanitize_key(role) in PROTECTED_ROLES:
            continue
        try:
            api.remove_role(person_uuid, role, org_uuid)
        except MembershipApiError as exc:
            raise RoleRemovalError(f"Failed removing role {role}: {exc.message}") from exc
        removed.append(role)
    return removed


def update_member_roles(
    api: MembershipApi,
    cfg: Settings,
    person_uuid: str,
    org_uuid: str,
    roles: Iterable[str] | str | None,
) -> tuple[list[str], list[str]]:
    """
    Make the person's organization roles match ``roles``.

    The base member role and the owner role are never removed here, and the
    owner role is not granted while PREVENT_OWNER_ASSIGNMENT is on.
    Returns (added, removed).
    """
    desired = filter_owner_role(cfg, normalize_roles(roles))
    current = get_person_roles_in_org(api, person_uuid, org_uuid)
    current_slugs = {sanitize_key(role) for role in current}
    kept = {sanitize_key(cfg.BASE_MEMBER_ROLE), sanitize_key(cfg.ROLE_OWNER)}

    to_add = [role for role in desired if role not in current_slugs]
    to_remove = [
        role
        for role in current
        if sanitize_key(role) not in desired and sanitize_key(role) not in kept
    ]
    assign_roles(api, person_uuid, to_add, org_uuid)
    removed = remove_person_roles_from_org(api, person_uuid, to_remove, org_uuid)
    return to_add, removed


def swap_relationship_roles(
    api: MembershipApi,
    cfg: Settings,
    person_uuid: str,
    org_uuid: str,
    relationship_type: str,
) -> tuple[list[str], list[str]]:
    """Replace roles granted by the previous relationship type with the new type's roles."""
    if not cfg.RELATIONSHIP_BASED_PERMISSIONS:
        return [], []

    mapped: set[str] = set()
    for roles in cfg.RELATIONSHIP_ROLES_MAP.values():
        mapped.update(normalize_roles(roles))
    granted = filter_owner_role(cfg, relationship_roles(cfg, relationship_type))
    current = get_person_roles_in_org(api, person_uuid, org_uuid)
    current_slugs = {sanitize_key(role) for role in current}

    to_remove = [
        role for role in current if sanitize_key(role) in mapped and sanitize_key(role) not in granted
    ]
    to_add = [role for role in granted if role not in current_slugs]
    removed = remove_person_roles_from_org(api, person_uuid, to_remove, org_uuid)
    assign_roles(api, person_uuid, to_add, org_uuid)
    return to_add, removed
