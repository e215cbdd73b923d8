"""Groups roster mode: people join a group with a roster role.

A group can hold members for several organizations. Each group member
record carries an association field naming the organization it was added
for, and seat limits, duplicate checks and removals are scoped to it.
"""

import logging

from orgman.db.enums import RosterMode
from orgman.schemas.roster import MemberAdditionRequest, RosterContext, StrategyResult
from orgman.services import connection_service, group_service, person_service
from orgman.services.group_service import GroupAccess
from orgman.services.membership_api import MembershipApiError
from orgman.services.roster.base import RosterStrategy
from orgman.services.roster.errors import (
    GroupAccessDeniedError,
    GroupMemberExistsError,
    GroupMemberNotFoundError,
    InvalidRoleError,
    MissingGroupUuidError,
    RoleRemovalForbiddenError,
    SeatUnavailableError,
)
from orgman.utils.jsonapi import attr, resource_id
from orgman.utils.normalization import sanitize_key

logger = logging.getLogger(__name__)


class GroupsStrategy(RosterStrategy):
    mode = RosterMode.GROUPS

    @staticmethod
    def _require_group(context: RosterContext) -> str:
        group_uuid = (context.group_uuid or "").strip()
        if not group_uuid:
            raise MissingGroupUuidError("Group UUID is required.")
        return group_uuid

    def _check_access(self, org_uuid: str, group_uuid: str, context: RosterContext) -> GroupAccess:
        access = group_service.can_manage_group(
            self.api, self.settings, group_uuid, context.actor_uuid, org_uuid
        )
        if not access.allowed:
            logger.warning(
                "Group access denied for %s",
                group_uuid,
                extra=self._log_context(org_uuid, context.actor_uuid),
            )
            raise GroupAccessDeniedError("You do not have permission to manage this group.")
        return access

    def _roster_role(self, context: RosterContext) -> str:
        role = sanitize_key(context.role) or sanitize_key(self.settings.GROUPS_MEMBER_ROLE)
        if role not in self.settings.groups_roster_roles_list:
            raise InvalidRoleError(f"Role {role} is not a valid roster role.")
        return role

    def add_member(
        self, org_uuid: str, request: MemberAdditionRequest, context: RosterContext
    ) -> StrategyResult:
        org_uuid = self._require_org(org_uuid)
        group_uuid = self._require_group(context)
        role = self._roster_role(context)
        person_service.validate_member_fields(request.first_name, request.last_name, request.email)

        access = self._check_access(org_uuid, group_uuid, context)
        acting_org = access.org_uuid or org_uuid

        try:
            if role in self.settings.groups_seat_limited_roles_list and group_service.role_seat_taken(
                self.api, self.settings, group_uuid, access.org_identifier, role
            ):
                raise SeatUnavailableError(
                    f"The {role} seat for this organization is already filled."
                )
        except MembershipApiError:
            logger.warning("Seat check failed, continuing", exc_info=True)

        person_uuid = person_service.create_or_update_person(self.api, request)

        try:
            existing = group_service.find_active_group_member(
                self.api,
                self.settings,
                group_uuid,
                person_uuid,
                org_uuid=acting_org,
                org_identifier=access.org_identifier,
            )
        except MembershipApiError:
            existing = None
            logger.warning("Existing group member lookup failed", exc_info=True)
        if existing:
            raise GroupMemberExistsError(
                "This person is already a member of the group for this organization."
            )

        relationship_type = connection_service.resolve_relationship_type(
            self.settings,
            request.relationship_type or context.relationship_type,
            self.settings.DEFAULT_RELATIONSHIP_TYPE,
        )
        connection_service.ensure_relationship(
            self.api,
            person_uuid,
            acting_org,
            relationship_type,
            request.relationship_description or context.relationship_description,
        )
        group_member_id = group_service.create_group_member(
            self.api, self.settings, group_uuid, person_uuid, role, access.org_identifier
        )

        logger.info(
            "Group member added (role=%s)",
            role,
            extra=self._log_context(acting_org, person_uuid),
        )
        self.notifier.write_touchpoint(
            person_uuid,
            "Group member added",
            f"Added to group {group_uuid} as {role}",
            {"group_uuid": group_uuid, "group_member_id": group_member_id, "org_uuid": acting_org},
        )
        self.notifier.send_group_assignment_notice(
            person_uuid, group_uuid, role, context.fallback_email
        )
        return StrategyResult(message="Member added to group.", person_uuid=person_uuid)

    def remove_member(
        self, org_uuid: str, person_uuid: str, context: RosterContext
    ) -> StrategyResult:
        org_uuid = self._require_org(org_uuid)
        person_uuid = self._require_person(person_uuid)
        group_uuid = self._require_group(context)

        access = self._check_access(org_uuid, group_uuid, context)
        acting_org = access.org_uuid or org_uuid
        self._ensure_not_owner(acting_org, person_uuid)

        try:
            member = group_service.find_active_group_member(
                self.api,
                self.settings,
                group_uuid,
                person_uuid,
                org_uuid=acting_org,
                org_identifier=access.org_identifier,
            )
        except MembershipApiError:
            member = None
            logger.warning("Group member lookup failed", exc_info=True)
        member_role = attr(member, "type")
        if member_role and member_role in self.settings.groups_manage_roles_list:
            raise RoleRemovalForbiddenError(
                f"Members with the {member_role} role cannot be removed."
            )

        group_member_id = (context.group_member_id or "").strip() or resource_id(member)
        if not group_member_id:
            raise GroupMemberNotFoundError("Group member record not found.")

        mode = group_service.remove_group_member(self.api, self.settings, group_member_id)
        logger.info(
            "Group member removed (mode=%s)",
            mode.value,
            extra=self._log_context(acting_org, person_uuid),
        )
        self._record_removal(
            person_uuid,
            acting_org,
            {"group_uuid": group_uuid, "group_member_id": group_member_id, "mode": mode.value},
        )
        return StrategyResult(message="Member removed from group.", person_uuid=person_uuid)
