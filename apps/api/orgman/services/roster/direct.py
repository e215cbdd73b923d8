"""Direct roster mode: per-seat assignment; removal strips roles only."""

import logging

from orgman.db.enums import RosterMode
from orgman.schemas.roster import MemberAdditionRequest, RosterContext, StrategyResult
from orgman.services import (
    connection_service,
    membership_service,
    permission_service,
    person_service,
)
from orgman.services.membership_api import MembershipApiError
from orgman.services.roster.base import RosterStrategy
from orgman.services.roster.errors import NoMembershipError

logger = logging.getLogger(__name__)


class DirectStrategy(RosterStrategy):
    mode = RosterMode.DIRECT

    def _resolve_membership(self, org_uuid: str, context: RosterContext) -> tuple[str, dict | None]:
        """Context membership verified against the org, else the org's own membership."""
        membership_uuid = context.resolved_membership_uuid
        if membership_uuid:
            document = membership_service.verify_membership_scope(self.api, org_uuid, membership_uuid)
            return membership_uuid, document

        try:
            membership_uuid = membership_service.resolve_org_membership_uuid(self.api, org_uuid)
        except MembershipApiError as exc:
            raise NoMembershipError(f"Unable to load organization memberships: {exc.message}") from exc
        if not membership_uuid:
            raise NoMembershipError("No membership found for this organization.")
        return membership_uuid, None

    def add_member(
        self, org_uuid: str, request: MemberAdditionRequest, context: RosterContext
    ) -> StrategyResult:
        org_uuid = self._require_org(org_uuid)
        person_service.validate_member_fields(request.first_name, request.last_name, request.email)

        # Resolved before any person mutation so a mismatch leaves nothing behind
        membership_uuid, document = self._resolve_membership(org_uuid, context)

        person_uuid = person_service.create_or_update_person(self.api, request)

        relationship_type = connection_service.resolve_relationship_type(
            self.settings,
            request.relationship_type or context.relationship_type,
            self.settings.MEMBER_ADDITION_RELATIONSHIP_TYPE,
        )
        connection_service.ensure_relationship(
            self.api,
            person_uuid,
            org_uuid,
            relationship_type,
            request.relationship_description or context.relationship_description,
        )
        seat_created = membership_service.assign_seat(
            self.api, person_uuid, membership_uuid, document
        )

        roles = self._assign_member_roles(person_uuid, org_uuid, request, context, relationship_type)
        logger.info(
            "Direct member added (seat_created=%s, roles=%d)",
            seat_created,
            len(roles),
            extra=self._log_context(org_uuid, person_uuid),
        )
        self._record_addition(
            person_uuid,
            org_uuid,
            context,
            {"membership_uuid": membership_uuid, "relationship_type": relationship_type, "roles": roles},
        )
        return StrategyResult(message="Member added successfully.", person_uuid=person_uuid)

    def remove_member(
        self, org_uuid: str, person_uuid: str, context: RosterContext
    ) -> StrategyResult:
        org_uuid = self._require_org(org_uuid)
        person_uuid = self._require_person(person_uuid)

        roles = self._current_roles(org_uuid, person_uuid)
        if self.settings.PREVENT_OWNER_REMOVAL:
            self._ensure_not_owner(org_uuid, person_uuid)
        person_membership_id = self._require_person_membership_id(context)

        # Relationship and seat stay in place
        removed = permission_service.remove_person_roles_from_org(
            self.api, person_uuid, roles, org_uuid
        )
        logger.info(
            "Direct member roles removed (roles_removed=%d)",
            len(removed),
            extra=self._log_context(org_uuid, person_uuid),
        )
        self._record_removal(
            person_uuid,
            org_uuid,
            {"person_membership_id": person_membership_id, "roles_removed": removed},
        )
        return StrategyResult(message="Member removed successfully.", person_uuid=person_uuid)
