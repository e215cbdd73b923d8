"""Roster strategy contract and the steps shared by every roster mode."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import ClassVar

from orgman.core.config import Settings, settings as default_settings
from orgman.core.structured_logging import build_log_context
from orgman.db.enums import RosterMode
from orgman.schemas.roster import MemberAdditionRequest, RosterContext, StrategyResult
from orgman.services import membership_service, permission_service
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.notification_service import NotificationDispatcher
from orgman.services.roster.errors import (
    InvalidOrganizationError,
    MissingPersonMembershipIdError,
    OwnerRemovalForbiddenError,
    PersonResolutionError,
)

logger = logging.getLogger(__name__)

MEMBER_ADDED_ACTION = "Organization member added"
MEMBER_REMOVED_ACTION = "Organization member removed"


class RosterStrategy(ABC):
    """
    One organizational membership model.

    add_member runs Validate -> ResolvePerson -> ResolveMembershipOrGroup ->
    EnsureRelationship -> AssignSeatOrGroupMembership -> AssignRoles ->
    Notify. Failures up to the seat step raise a RosterError; earlier steps
    are idempotent lookups/creates and are not rolled back.
    """

    mode: ClassVar[RosterMode]

    def __init__(
        self,
        api: MembershipApi,
        cfg: Settings | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.api = api
        self.settings = cfg or default_settings
        self.notifier = notifier or NotificationDispatcher(api, self.settings)

    @abstractmethod
    def add_member(
        self, org_uuid: str, request: MemberAdditionRequest, context: RosterContext
    ) -> StrategyResult:
        """Add a person to the organization's roster."""

    @abstractmethod
    def remove_member(
        self, org_uuid: str, person_uuid: str, context: RosterContext
    ) -> StrategyResult:
        """Remove a person from the organization's roster."""

    # =========================================================================
    # Shared steps
    # =========================================================================

    def _log_context(self, org_uuid: str | None, person_uuid: str | None = None) -> dict:
        return build_log_context(
            org_id=org_uuid, person_id=person_uuid, roster_mode=self.mode.value
        )

    @staticmethod
    def _require_org(org_uuid: str | None) -> str:
        org_uuid = (org_uuid or "").strip()
        if not org_uuid:
            raise InvalidOrganizationError("Organization identifier is required.")
        return org_uuid

    @staticmethod
    def _require_person(person_uuid: str | None) -> str:
        person_uuid = (person_uuid or "").strip()
        if not person_uuid:
            raise PersonResolutionError("Person identifier is required.")
        return person_uuid

    @staticmethod
    def _require_person_membership_id(context: RosterContext) -> str:
        person_membership_id = (context.person_membership_id or "").strip()
        if not person_membership_id:
            raise MissingPersonMembershipIdError("Person membership ID is required.")
        return person_membership_id

    def _ensure_not_owner(self, org_uuid: str, person_uuid: str) -> None:
        try:
            owner_uuid = membership_service.get_organization_owner_uuid(self.api, org_uuid)
        except MembershipApiError:
            logger.warning(
                "Owner lookup failed, continuing removal",
                exc_info=True,
                extra=self._log_context(org_uuid, person_uuid),
            )
            return
        if owner_uuid and owner_uuid == person_uuid:
            logger.warning(
                "Refused removal of organization owner",
                extra=self._log_context(org_uuid, person_uuid),
            )
            raise OwnerRemovalForbiddenError(
                "The organization owner (Primary Member) cannot be removed."
            )

    def _current_roles(self, org_uuid: str, person_uuid: str) -> list[str]:
        try:
            return permission_service.get_person_roles_in_org(self.api, person_uuid, org_uuid)
        except MembershipApiError:
            logger.warning("Could not load current roles", exc_info=True)
            return []

    def _assign_member_roles(
        self,
        person_uuid: str,
        org_uuid: str,
        request: MemberAdditionRequest,
        context: RosterContext,
        relationship_type: str | None,
    ) -> list[str]:
        roles = permission_service.build_member_roles(
            self.settings, [*request.roles, *context.roles], relationship_type
        )
        permission_service.assign_roles(self.api, person_uuid, roles, org_uuid)
        return roles

    def _record_addition(
        self,
        person_uuid: str,
        org_uuid: str,
        context: RosterContext,
        details: dict,
    ) -> None:
        org_name = context.org_name or org_uuid
        self.notifier.write_touchpoint(
            person_uuid,
            MEMBER_ADDED_ACTION,
            f"Added to {org_name} ({self.mode.value})",
            {**details, "org_uuid": org_uuid, "org_name": org_name},
        )
        self.notifier.send_assignment_notice(
            person_uuid, org_uuid, context.org_name, context.fallback_email
        )

    def _record_removal(self, person_uuid: str, org_uuid: str, details: dict) -> None:
        self.notifier.write_touchpoint(
            person_uuid,
            MEMBER_REMOVED_ACTION,
            f"Removed from {org_uuid} ({self.mode.value})",
            {**details, "org_uuid": org_uuid},
        )
