"""Person to organization relationships (connections)."""

import logging
from datetime import date

from orgman.core.config import Settings
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.roster.errors import (
    ConnectionCreationError,
    ConnectionNotFoundError,
    ConnectionUpdateError,
)
from orgman.utils.jsonapi import attr, related_id, relationship, resource_id
from orgman.utils.normalization import sanitize_key

logger = logging.getLogger(__name__)

CONNECTION_TYPE = "person_to_organization"


def resolve_relationship_type(cfg: Settings, requested: str | None, default: str) -> str:
    """
    Pick the relationship type: requested value when it is in the
    configured allow-list (or no allow-list is configured), else ``default``.
    """
    candidate = sanitize_key(requested)
    allowed = {sanitize_key(slug) for slug in cfg.RELATIONSHIP_TYPES}
    if candidate and (not allowed or candidate in allowed):
        return candidate
    if candidate:
        logger.info("Relationship type %s not in allow-list, using %s", candidate, default)
    return sanitize_key(default) or default


def build_connection_payload(
    person_uuid: str,
    org_uuid: str,
    relationship_type: str,
    description: str | None = None,
    starts_at: date | None = None,
) -> dict:
    attributes = {
        "connection_type": CONNECTION_TYPE,
        "type": relationship_type,
        "starts_at": (starts_at or date.today()).isoformat(),
    }
    if description:
        attributes["description"] = description
    return {
        "data": {
            "type": "connections",
            "attributes": attributes,
            "relationships": {
                "organization": relationship("organizations", org_uuid),
                "person": relationship("people", person_uuid),
                "from": relationship("people", person_uuid),
                "to": relationship("organizations", org_uuid),
            },
        }
    }


def find_org_connections(api: MembershipApi, person_uuid: str, org_uuid: str) -> list[dict]:
    """Active person-to-organization connections between the person and ``org_uuid``."""
    matches = []
    for connection in api.list_person_connections(person_uuid, active_only=True):
        if attr(connection, "connection_type") != CONNECTION_TYPE:
            continue
        org_id = related_id(connection, "organization") or related_id(connection, "to")
        if org_id == org_uuid:
            matches.append(connection)
    return matches


def person_has_relationship(api: MembershipApi, person_uuid: str, org_uuid: str) -> bool:
    return bool(find_org_connections(api, person_uuid, org_uuid))


def ensure_relationship(
    api: MembershipApi,
    person_uuid: str,
    org_uuid: str,
    relationship_type: str,
    description: str | None = None,
) -> bool:
    """Create the connection unless one exists. Returns True when created."""
    try:
        if person_has_relationship(api, person_uuid, org_uuid):
            return False
        api.create_connection(
            build_connection_payload(person_uuid, org_uuid, relationship_type, description)
        )
    except MembershipApiError as exc:
        raise ConnectionCreationError(
            f"Failed to create organization relationship: {exc.message}"
        ) from exc
    logger.info(
        "Created %s connection person=%s org=%s", relationship_type, person_uuid, org_uuid
    )
    return True


def update_org_connections(
    api: MembershipApi, person_uuid: str, org_uuid: str, attributes: dict
) -> int:
    """Patch every matching connection; returns how many were updated."""
    try:
        connections = find_org_connections(api, person_uuid, org_uuid)
    except MembershipApiError as exc:
        raise ConnectionUpdateError(f"Failed to load connections: {exc.message}") from exc
    if not connections:
        raise ConnectionNotFoundError("No active person-to-organization connection found.")

    for connection in connections:
        try:
            api.update_connection(resource_id(connection), attributes)
        except MembershipApiError as exc:
            raise ConnectionUpdateError(f"Failed to update connection: {exc.message}") from exc
    logger.info(
        "Updated %d connection(s) person=%s org=%s fields=%s",
        len(connections),
        person_uuid,
        org_uuid,
        ",".join(sorted(attributes)),
    )
    return len(connections)
