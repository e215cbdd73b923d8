"""Edit an existing member: relationship type, description and organization roles."""

from __future__ import annotations

import logging

from orgman.core.config import Settings
from orgman.core.structured_logging import build_log_context
from orgman.schemas.roster import MemberUpdateRequest, MemberUpdateResult
from orgman.services import connection_service, membership_service, permission_service
from orgman.services.membership_api import MembershipApi
from orgman.services.roster.errors import (
    EditingDisabledError,
    InvalidOrganizationError,
    InvalidRelationshipTypeError,
    PersonMembershipNotFoundError,
    PersonResolutionError,
)
from orgman.utils.normalization import sanitize_key

logger = logging.getLogger(__name__)


def update_member(
    api: MembershipApi,
    cfg: Settings,
    org_uuid: str,
    person_uuid: str,
    request: MemberUpdateRequest,
) -> MemberUpdateResult:
    """
    Apply the requested edits in order: relationship type, description, roles.

    When ``membership_uuid`` is given the membership must belong to the
    organization and the person must hold an active seat in it. A new
    relationship type swaps relationship-granted roles when
    RELATIONSHIP_BASED_PERMISSIONS is on.
    """
    org_uuid = (org_uuid or "").strip()
    person_uuid = (person_uuid or "").strip()
    if not org_uuid:
        raise InvalidOrganizationError("Organization identifier is required.")
    if not person_uuid:
        raise PersonResolutionError("Person identifier is required.")

    membership_uuid = (request.membership_uuid or "").strip()
    if membership_uuid:
        membership_service.verify_membership_scope(api, org_uuid, membership_uuid)
        if not membership_service.person_has_membership(api, membership_uuid, person_uuid):
            raise PersonMembershipNotFoundError(
                "Person membership not found in this organization."
            )

    result = MemberUpdateResult(person_uuid=person_uuid)

    relationship_type = sanitize_key(request.relationship_type)
    if relationship_type:
        if not cfg.ALLOW_RELATIONSHIP_TYPE_EDITING:
            raise EditingDisabledError("Relationship type editing is disabled.")
        allowed = {sanitize_key(slug) for slug in cfg.RELATIONSHIP_TYPES}
        if allowed and relationship_type not in allowed:
            raise InvalidRelationshipTypeError(
                f"Relationship type {relationship_type} is not allowed."
            )
        connection_service.update_org_connections(
            api, person_uuid, org_uuid, {"type": relationship_type}
        )
        added, removed = permission_service.swap_relationship_roles(
            api, cfg, person_uuid, org_uuid, relationship_type
        )
        result.relationship_type = relationship_type
        result.roles_added.extend(added)
        result.roles_removed.extend(removed)

    if request.description is not None:
        if not cfg.ALLOW_DESCRIPTION_EDITING:
            raise EditingDisabledError("Description editing is disabled.")
        connection_service.update_org_connections(
            api, person_uuid, org_uuid, {"description": request.description.strip() or None}
        )

    if request.roles is not None:
        added, removed = permission_service.update_member_roles(
            api, cfg, person_uuid, org_uuid, request.roles
        )
        result.roles_added.extend(role for role in added if role not in result.roles_added)
        result.roles_removed.extend(role for role in removed if role not in result.roles_removed)

    logger.info(
        "Member updated (added=%d, removed=%d)",
        len(result.roles_added),
        len(result.roles_removed),
        extra=build_log_context(org_id=org_uuid, person_id=person_uuid),
    )
    return result
