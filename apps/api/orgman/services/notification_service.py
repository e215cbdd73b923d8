"""Best-effort notifications and touchpoints.

Every public method logs its outcome and returns a bool; nothing here raises
into the roster operation that triggered it.
"""

from __future__ import annotations

import logging
from typing import Protocol

from orgman.core.config import Settings, settings as default_settings
from orgman.services.membership_api import MembershipApi
from orgman.utils.jsonapi import attr, relationship
from orgman.utils.normalization import mask_email

logger = logging.getLogger(__name__)

TOUCHPOINT_SOURCE = "orgman"


class EmailSender(Protocol):
    def send(self, to_email: str, subject: str, body: str, from_email: str) -> None: ...


class LoggingEmailSender:
    """Dry-run sender used when no outbound email provider is wired in."""

    def send(self, to_email: str, subject: str, body: str, from_email: str) -> None:
        logger.info("[DRY RUN] Email send skipped to=%s subject=%s", mask_email(to_email), subject)


class NotificationDispatcher:
    def __init__(
        self,
        api: MembershipApi,
        cfg: Settings | None = None,
        sender: EmailSender | None = None,
    ) -> None:
        self.api = api
        self.settings = cfg or default_settings
        self.sender = sender or LoggingEmailSender()

    def _recipient(self, person_uuid: str, fallback_email: str | None) -> str | None:
        person = self.api.get_person(person_uuid)
        email = attr(person, "primary_email_address")
        return email or fallback_email or self.settings.NOTIFICATION_FALLBACK_EMAIL or None

    def send_assignment_notice(
        self,
        person_uuid: str,
        org_uuid: str,
        org_name: str | None = None,
        fallback_email: str | None = None,
    ) -> bool:
        if not self.settings.NOTIFICATIONS_ENABLED:
            return False
        try:
            to_email = self._recipient(person_uuid, fallback_email)
            if not to_email:
                logger.info("No recipient for assignment notice person=%s", person_uuid)
                return False
            name = org_name or org_uuid
            self.sender.send(
                to_email,
                f"You have been added to {name}",
                f"You now have access to {name}'s membership.",
                self.settings.NOTIFICATION_FROM_EMAIL,
            )
        except Exception:
            logger.warning("Assignment notice failed for person %s", person_uuid, exc_info=True)
            return False
        return True

    def send_group_assignment_notice(
        self,
        person_uuid: str,
        group_uuid: str,
        role: str,
        fallback_email: str | None = None,
    ) -> bool:
        if not self.settings.NOTIFICATIONS_ENABLED:
            return False
        try:
            to_email = self._recipient(person_uuid, fallback_email)
            if not to_email:
                return False
            group = self.api.get_group(group_uuid)
            group_name = attr(group, "name") or group_uuid
            self.sender.send(
                to_email,
                f"You have been added to {group_name}",
                f"You were added to {group_name} as {role}.",
                self.settings.NOTIFICATION_FROM_EMAIL,
            )
        except Exception:
            logger.warning("Group notice failed for person %s", person_uuid, exc_info=True)
            return False
        return True

    def write_touchpoint(
        self,
        person_uuid: str,
        action: str,
        details: str,
        data: dict | None = None,
    ) -> bool:
        payload = {
            "data": {
                "type": "touchpoints",
                "attributes": {
                    "action": action,
                    "details": details,
                    "source": TOUCHPOINT_SOURCE,
                    "data": data or {},
                },
                "relationships": {"person": relationship("people", person_uuid)},
            }
        }
        try:
            self.api.create_touchpoint(payload)
        except Exception:
            logger.warning("Touchpoint write failed for person %s", person_uuid, exc_info=True)
            return False
        return True
