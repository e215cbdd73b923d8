"""Membership platform API client.

The roster strategies talk to the membership platform only through the
``MembershipApi`` protocol. ``HttpMembershipApi`` is the production client:
JSON:API documents over httpx with bearer auth and retry/backoff.
Lookups return ``None`` on 404; every other failure raises
``MembershipApiError``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from orgman.core.config import Settings, settings as default_settings
from orgman.services.http_service import request_with_retries
from orgman.utils.jsonapi import relationship

logger = logging.getLogger(__name__)


class MembershipApiError(Exception):
    """Raised when the membership API rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MembershipApi(Protocol):
    # People
    def get_person_by_email(self, email: str) -> dict | None: ...

    def get_person(self, person_uuid: str) -> dict | None: ...

    def create_person(self, given_name: str, family_name: str, email: str) -> dict: ...

    def update_person(self, person_uuid: str, attributes: dict) -> dict: ...

    def add_person_phone(self, person_uuid: str, number: str, phone_type: str) -> dict: ...

    # Organizations and memberships
    def get_organization(self, org_uuid: str) -> dict | None: ...

    def list_organization_memberships(self, org_uuid: str) -> list[dict]: ...

    def get_organization_membership(self, membership_uuid: str) -> dict | None: ...

    def update_organization_membership(self, membership_uuid: str, attributes: dict) -> dict: ...

    def list_membership_person_memberships(
        self, membership_uuid: str, page: int = 1, size: int = 100
    ) -> list[dict]: ...

    def query_person_memberships(
        self,
        membership_uuid: str,
        *,
        person_uuid: str | None = None,
        email: str | None = None,
        active_now: bool = True,
    ) -> list[dict]: ...

    def list_person_memberships(self, person_uuid: str) -> list[dict]: ...

    def create_person_membership(
        self, person_uuid: str, membership_uuid: str, membership_type_id: str, starts_at: str
    ) -> dict: ...

    def get_person_membership(self, person_membership_id: str) -> dict | None: ...

    def update_person_membership(self, person_membership_id: str, attributes: dict) -> dict: ...

    # Connections
    def list_person_connections(self, person_uuid: str, active_only: bool = True) -> list[dict]: ...

    def create_connection(self, payload: dict) -> dict: ...

    def update_connection(self, connection_id: str, attributes: dict) -> dict: ...

    # Roles
    def list_person_roles(self, person_uuid: str) -> list[dict]: ...

    def assign_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None: ...

    def remove_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None: ...

    # Groups
    def get_group(self, group_uuid: str) -> dict | None: ...

    def list_group_members(
        self, group_uuid: str, page: int = 1, size: int = 50, active_only: bool = True
    ) -> list[dict]: ...

    def create_group_member(self, payload: dict) -> dict: ...

    def update_group_member(self, group_member_id: str, attributes: dict) -> dict: ...

    def delete_group_member(self, group_member_id: str) -> None: ...

    # Touchpoints
    def create_touchpoint(self, payload: dict) -> dict: ...


class HttpMembershipApi:
    """httpx client for the membership platform's JSON:API."""

    def __init__(
        self,
        cfg: Settings | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        cfg = cfg or default_settings
        self._max_attempts = cfg.MEMBERSHIP_API_MAX_ATTEMPTS
        headers = {"Accept": "application/vnd.api+json"}
        if cfg.MEMBERSHIP_API_TOKEN:
            headers["Authorization"] = f"Bearer {cfg.MEMBERSHIP_API_TOKEN}"
        self._client = client or httpx.Client(
            base_url=cfg.MEMBERSHIP_API_BASE_URL,
            headers=headers,
            timeout=cfg.MEMBERSHIP_API_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        self._client.close()

    # =========================================================================
    # Transport
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        allow_not_found: bool = False,
    ) -> dict | None:
        try:
            response = request_with_retries(
                lambda: self._client.request(method, path, params=params, json=json),
                max_attempts=self._max_attempts,
            )
        except httpx.RequestError as exc:
            raise MembershipApiError(f"{method} {path} failed: {type(exc).__name__}") from exc

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            raise MembershipApiError(_error_message(response), status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise MembershipApiError(
                f"{method} {path} returned invalid JSON", status_code=response.status_code
            ) from exc

    def _get_resource(self, path: str, params: dict | None = None) -> dict | None:
        document = self._request("GET", path, params=params, allow_not_found=True)
        if not document:
            return None
        return document.get("data")

    def _get_list(self, path: str, params: dict | None = None) -> list[dict]:
        document = self._request("GET", path, params=params) or {}
        data = document.get("data") or []
        return data if isinstance(data, list) else [data]

    def _write(self, method: str, path: str, payload: dict) -> dict:
        document = self._request(method, path, json=payload) or {}
        return document.get("data") or {}

    # =========================================================================
    # People
    # =========================================================================

    def get_person_by_email(self, email: str) -> dict | None:
        people = self._get_list(
            "/people",
            params={"filter[emails_address_eq]": email, "page[size]": 1},
        )
        return people[0] if people else None

    def get_person(self, person_uuid: str) -> dict | None:
        return self._get_resource(f"/people/{person_uuid}")

    def create_person(self, given_name: str, family_name: str, email: str) -> dict:
        payload = {
            "data": {
                "type": "people",
                "attributes": {"given_name": given_name, "family_name": family_name},
                "relationships": {
                    "emails": {
                        "data": [
                            {"type": "emails", "attributes": {"address": email, "primary": True}}
                        ]
                    }
                },
            }
        }
        return self._write("POST", "/people", payload)

    def update_person(self, person_uuid: str, attributes: dict) -> dict:
        payload = {"data": {"type": "people", "id": person_uuid, "attributes": attributes}}
        return self._write("PATCH", f"/people/{person_uuid}", payload)

    def add_person_phone(self, person_uuid: str, number: str, phone_type: str) -> dict:
        payload = {"data": {"type": "phones", "attributes": {"number": number, "type": phone_type}}}
        return self._write("POST", f"/people/{person_uuid}/phones", payload)

    # =========================================================================
    # Organizations and memberships
    # =========================================================================

    def get_organization(self, org_uuid: str) -> dict | None:
        return self._get_resource(f"/organizations/{org_uuid}")

    def list_organization_memberships(self, org_uuid: str) -> list[dict]:
        return self._get_list(
            f"/organizations/{org_uuid}/membership_entries",
            params={"include": "membership,owner", "page[size]": 100},
        )

    def get_organization_membership(self, membership_uuid: str) -> dict | None:
        return self._request(
            "GET",
            f"/organization_memberships/{membership_uuid}",
            params={"include": "membership,owner"},
            allow_not_found=True,
        )

    def update_organization_membership(self, membership_uuid: str, attributes: dict) -> dict:
        payload = {
            "data": {
                "type": "organization_memberships",
                "id": membership_uuid,
                "attributes": attributes,
            }
        }
        return self._write("PATCH", f"/organization_memberships/{membership_uuid}", payload)

    def list_membership_person_memberships(
        self, membership_uuid: str, page: int = 1, size: int = 100
    ) -> list[dict]:
        return self._get_list(
            f"/organization_memberships/{membership_uuid}/person_memberships",
            params={"page[number]": page, "page[size]": size, "include": "person"},
        )

    def query_person_memberships(
        self,
        membership_uuid: str,
        *,
        person_uuid: str | None = None,
        email: str | None = None,
        active_now: bool = True,
    ) -> list[dict]:
        """Server-side filtered seats of one organization membership."""
        filters: dict[str, Any] = {"organization_membership_uuid_in": [membership_uuid]}
        if person_uuid:
            filters["person_uuid_eq"] = person_uuid
        if email:
            filters["person_emails_address_eq"] = email
        if active_now:
            filters["active_at"] = "now"
        document = self._request("POST", "/person_memberships/query", json={"filter": filters}) or {}
        data = document.get("data") or []
        return data if isinstance(data, list) else [data]

    def list_person_memberships(self, person_uuid: str) -> list[dict]:
        return self._get_list(
            f"/people/{person_uuid}/membership_entries",
            params={"page[size]": 100},
        )

    def create_person_membership(
        self, person_uuid: str, membership_uuid: str, membership_type_id: str, starts_at: str
    ) -> dict:
        payload = {
            "data": {
                "type": "person_memberships",
                "attributes": {"starts_at": starts_at},
                "relationships": {
                    "person": relationship("people", person_uuid),
                    "membership": relationship("memberships", membership_type_id),
                    "organization_membership": relationship(
                        "organization_memberships", membership_uuid
                    ),
                },
            }
        }
        return self._write("POST", "/person_memberships", payload)

    def get_person_membership(self, person_membership_id: str) -> dict | None:
        return self._get_resource(f"/person_memberships/{person_membership_id}")

    def update_person_membership(self, person_membership_id: str, attributes: dict) -> dict:
        payload = {
            "data": {
                "type": "person_memberships",
                "id": person_membership_id,
                "attributes": attributes,
            }
        }
        return self._write("PATCH", f"/person_memberships/{person_membership_id}", payload)

    # =========================================================================
    # Connections
    # =========================================================================

    def list_person_connections(self, person_uuid: str, active_only: bool = True) -> list[dict]:
        params: dict[str, Any] = {"page[size]": 100}
        if active_only:
            params["filter[active_true]"] = "true"
        return self._get_list(f"/people/{person_uuid}/connections", params=params)

    def create_connection(self, payload: dict) -> dict:
        return self._write("POST", "/connections", payload)

    def update_connection(self, connection_id: str, attributes: dict) -> dict:
        payload = {"data": {"type": "connections", "id": connection_id, "attributes": attributes}}
        return self._write("PATCH", f"/connections/{connection_id}", payload)

    # =========================================================================
    # Roles
    # =========================================================================

    def list_person_roles(self, person_uuid: str) -> list[dict]:
        return self._get_list(
            f"/people/{person_uuid}/roles",
            params={"page[size]": 100, "include": "resource"},
        )

    def _role_payload(self, role_name: str, org_uuid: str) -> dict:
        return {
            "data": {
                "type": "roles",
                "attributes": {"name": role_name},
                "relationships": {"resource": relationship("organizations", org_uuid)},
            }
        }

    def assign_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None:
        self._request(
            "POST", f"/people/{person_uuid}/roles", json=self._role_payload(role_name, org_uuid)
        )

    def remove_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None:
        self._request(
            "DELETE", f"/people/{person_uuid}/roles", json=self._role_payload(role_name, org_uuid)
        )

    # =========================================================================
    # Groups
    # =========================================================================

    def get_group(self, group_uuid: str) -> dict | None:
        return self._get_resource(f"/groups/{group_uuid}")

    def list_group_members(
        self, group_uuid: str, page: int = 1, size: int = 50, active_only: bool = True
    ) -> list[dict]:
        params: dict[str, Any] = {"page[number]": page, "page[size]": size, "include": "person"}
        if active_only:
            params["filter[active_true]"] = "true"
        return self._get_list(f"/groups/{group_uuid}/people", params=params)

    def create_group_member(self, payload: dict) -> dict:
        return self._write("POST", "/group_members", payload)

    def update_group_member(self, group_member_id: str, attributes: dict) -> dict:
        payload = {"data": {"type": "group_members", "id": group_member_id, "attributes": attributes}}
        return self._write("PATCH", f"/group_members/{group_member_id}", payload)

    def delete_group_member(self, group_member_id: str) -> None:
        self._request("DELETE", f"/group_members/{group_member_id}")

    # =========================================================================
    # Touchpoints
    # =========================================================================

    def create_touchpoint(self, payload: dict) -> dict:
        return self._write("POST", "/touchpoints", payload)


def _error_message(response: httpx.Response) -> str:
    """Best readable message from a JSON:API error document."""
    try:
        body = response.json()
    except ValueError:
        return f"Membership API returned {response.status_code}"
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list):
        first = errors[0] or {}
        detail = first.get("detail") or first.get("title")
        if detail:
            return str(detail)
    return f"Membership API returned {response.status_code}"
