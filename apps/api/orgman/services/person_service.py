"""Person resolution: find-or-create by email, then optional enrichment."""

import logging
import re

from orgman.schemas.roster import MemberAdditionRequest
from orgman.services.membership_api import MembershipApi, MembershipApiError
from orgman.services.roster.errors import (
    InvalidEmailError,
    InvalidMemberDataError,
    PersonCreationError,
    PersonResolutionError,
)
from orgman.utils.jsonapi import attr, resource_id
from orgman.utils.normalization import is_valid_email, mask_email, normalize_email

logger = logging.getLogger(__name__)

PHONE_STRIP_RE = re.compile(r"[^\d+]")
PHONE_TYPE = "work"


def validate_member_fields(first_name: str, last_name: str, email: str) -> str:
    """Return the normalized email or raise a validation error."""
    if not first_name.strip() or not last_name.strip() or not email.strip():
        raise InvalidMemberDataError("First name, last name, and email are required.")
    if not is_valid_email(email):
        raise InvalidEmailError("Invalid email address.")
    return normalize_email(email)


def find_person_uuid(api: MembershipApi, email: str) -> str | None:
    """Lookup only; never creates."""
    person = api.get_person_by_email(normalize_email(email))
    return resource_id(person)


def create_or_get_person(api: MembershipApi, request: MemberAdditionRequest) -> str:
    """Resolve the person by email, creating them when missing."""
    email = validate_member_fields(request.first_name, request.last_name, request.email)

    try:
        person = api.get_person_by_email(email)
        if person is None:
            person = api.create_person(
                request.first_name.strip(), request.last_name.strip(), email
            )
            logger.info("Created person for %s", mask_email(email))
    except MembershipApiError as exc:
        raise PersonCreationError(f"Failed to create or find person: {exc.message}") from exc

    person_uuid = resource_id(person)
    if not person_uuid:
        raise PersonResolutionError("Unable to resolve person identifier.")
    return person_uuid


def create_or_update_person(api: MembershipApi, request: MemberAdditionRequest) -> str:
    """create_or_get_person plus best-effort title and phone enrichment."""
    person_uuid = create_or_get_person(api, request)
    _enrich_person(api, person_uuid, request)
    return person_uuid


def _enrich_person(api: MembershipApi, person_uuid: str, request: MemberAdditionRequest) -> None:
    job_title = (request.job_title or "").strip()
    if job_title:
        try:
            person = api.get_person(person_uuid)
            if attr(person, "job_title") != job_title:
                api.update_person(person_uuid, {"job_title": job_title})
        except MembershipApiError:
            logger.warning("Job title update failed for person %s", person_uuid, exc_info=True)

    phone = PHONE_STRIP_RE.sub("", request.phone or "")
    if phone:
        try:
            api.add_person_phone(person_uuid, phone, PHONE_TYPE)
        except MembershipApiError:
            logger.warning("Phone update failed for person %s", person_uuid, exc_info=True)
