"""Membership cycle roster mode: the caller names the membership explicitly."""

import logging

from orgman.db.enums import RosterMode
from orgman.schemas.roster import MemberAdditionRequest, RosterContext, StrategyResult
from orgman.services import membership_service, permission_service
from orgman.services.membership_api import MembershipApiError
from orgman.services.roster.base import RosterStrategy
from orgman.services.roster.direct import DirectStrategy
from orgman.services.roster.errors import MissingMembershipUuidError, PermissionDeniedError

logger = logging.getLogger(__name__)


class MembershipCycleStrategy(RosterStrategy):
    mode = RosterMode.MEMBERSHIP_CYCLE

    def __init__(self, api, cfg=None, notifier=None) -> None:
        super().__init__(api, cfg, notifier)
        self._direct = DirectStrategy(api, self.settings, self.notifier)

    @staticmethod
    def _require_membership(context: RosterContext) -> str:
        membership_uuid = context.resolved_membership_uuid
        if not membership_uuid:
            raise MissingMembershipUuidError("Membership UUID is required for this roster mode.")
        return membership_uuid

    def _check_permission(self, org_uuid: str, context: RosterContext, roles: list[str]) -> None:
        """Actor must hold one of ``roles`` in the org; calls without an actor are internal."""
        if not context.actor_uuid:
            return
        try:
            allowed = permission_service.person_has_any_role(
                self.api, context.actor_uuid, org_uuid, roles
            )
        except MembershipApiError:
            logger.warning("Permission lookup failed", exc_info=True)
            allowed = False
        if not allowed:
            raise PermissionDeniedError("You do not have permission to manage this membership.")

    def add_member(
        self, org_uuid: str, request: MemberAdditionRequest, context: RosterContext
    ) -> StrategyResult:
        membership_uuid = self._require_membership(context)
        org_uuid = self._require_org(org_uuid)
        self._check_permission(org_uuid, context, self.settings.membership_cycle_add_roles_list)
        membership_service.verify_membership_scope(self.api, org_uuid, membership_uuid)

        scoped = context.model_copy(update={"membership_uuid": membership_uuid, "membership_id": None})
        return self._direct.add_member(org_uuid, request, scoped)

    def remove_member(
        self, org_uuid: str, person_uuid: str, context: RosterContext
    ) -> StrategyResult:
        membership_uuid = self._require_membership(context)
        org_uuid = self._require_org(org_uuid)
        person_uuid = self._require_person(person_uuid)
        person_membership_id = self._require_person_membership_id(context)

        self._check_permission(org_uuid, context, self.settings.membership_cycle_remove_roles_list)
        membership_service.verify_membership_scope(self.api, org_uuid, membership_uuid)
        if self.settings.MEMBERSHIP_CYCLE_PREVENT_OWNER_REMOVAL:
            self._ensure_not_owner(org_uuid, person_uuid)

        membership_service.end_person_membership_today(self.api, person_membership_id)
        logger.info(
            "Membership cycle seat ended",
            extra=self._log_context(org_uuid, person_uuid),
        )
        self._record_removal(
            person_uuid,
            org_uuid,
            {"membership_uuid": membership_uuid, "person_membership_id": person_membership_id},
        )
        return StrategyResult(message="Member removed successfully.", person_uuid=person_uuid)
