"""
Test configuration and fixtures.

Provides:
- In-memory SQLite jobs table (tables created once, rows cleared per test)
- FakeMembershipApi: in-memory membership platform recording every mutation
- Settings, key/value store and batch scheduler fixtures
- HTTPX AsyncClient with dependency overrides
"""
import os
import uuid
from datetime import date
from typing import AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

# Configure before orgman modules build their singletons
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "memory://"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["BULK_UPLOAD_SCHEDULE_DELAY_SECONDS"] = "0"

from orgman.core.config import Settings
from orgman.core.deps import get_db, get_membership_api, get_store
from orgman.core.kv_store import InMemoryKeyValueStore
from orgman.db.base import Base
from orgman.db.models import Job
from orgman.db.session import SessionLocal, engine
from orgman.main import app
from orgman.services.connection_service import build_connection_payload
from orgman.services.membership_api import MembershipApiError
from orgman.utils.jsonapi import attr, related_id, relationship

INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}

MUTATING_METHODS = frozenset(
    {
        "create_person",
        "update_person",
        "add_person_phone",
        "update_organization_membership",
        "create_person_membership",
        "update_person_membership",
        "create_connection",
        "update_connection",
        "assign_role",
        "remove_role",
        "create_group_member",
        "update_group_member",
        "delete_group_member",
    }
)


# =============================================================================
# Fake membership platform
# =============================================================================


class FakeMembershipApi:
    """
    In-memory stand-in for the membership platform.

    Resources use the same JSON:API shapes as the HTTP client returns.
    ``calls`` records every method call in order; ``fail`` maps a method
    name to an exception raised on its next invocations.
    """

    def __init__(self) -> None:
        self.people: dict[str, dict] = {}
        self.organizations: dict[str, dict] = {}
        self.org_memberships: dict[str, list[dict]] = {}
        self.membership_documents: dict[str, dict] = {}
        self.person_memberships: dict[str, dict] = {}
        self.connections: list[dict] = []
        self.roles: list[tuple[str, str, str]] = []
        self.groups: dict[str, dict] = {}
        self.group_members: dict[str, dict] = {}
        self.touchpoints: list[dict] = []
        self.calls: list[tuple[str, tuple]] = []
        self.fail: dict[str, Exception] = {}

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]

    @property
    def mutations(self) -> list[str]:
        return [name for name, _ in self.calls if name in MUTATING_METHODS]

    def called(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    # -------------------------------------------------------------------------
    # Seeding helpers
    # -------------------------------------------------------------------------

    def seed_person(self, email: str, given_name: str = "Test", family_name: str = "Person") -> str:
        person_uuid = str(uuid.uuid4())
        self.people[person_uuid] = {
            "id": person_uuid,
            "type": "people",
            "attributes": {
                "given_name": given_name,
                "family_name": family_name,
                "primary_email_address": email.lower(),
            },
        }
        return person_uuid

    def seed_organization(
        self,
        org_uuid: str | None = None,
        name: str = "Acme Corp",
        owner_uuid: str | None = None,
        membership_uuid: str | None = None,
        membership_type_id: str | None = "membership-type-1",
        max_assignments: int = 10,
        active: bool = True,
    ) -> tuple[str, str]:
        org_uuid = org_uuid or str(uuid.uuid4())
        membership_uuid = membership_uuid or str(uuid.uuid4())
        self.organizations[org_uuid] = {
            "id": org_uuid,
            "type": "organizations",
            "attributes": {"legal_name": name},
        }
        entry = {
            "id": membership_uuid,
            "type": "organization_memberships",
            "attributes": {"active": active, "in_grace": False},
            "relationships": {
                "owner": relationship("people", owner_uuid) if owner_uuid else {"data": None},
            },
        }
        self.org_memberships.setdefault(org_uuid, []).append(entry)
        data = {
            "id": membership_uuid,
            "type": "organization_memberships",
            "attributes": {"max_assignments": max_assignments, "active": active},
            "relationships": {"organization": relationship("organizations", org_uuid)},
        }
        if membership_type_id:
            data["relationships"]["membership"] = relationship("memberships", membership_type_id)
        self.membership_documents[membership_uuid] = {"data": data, "included": []}
        return org_uuid, membership_uuid

    def seed_seat(
        self, person_uuid: str, membership_uuid: str, ends_at: str | None = None
    ) -> str:
        person_membership_id = str(uuid.uuid4())
        self.person_memberships[person_membership_id] = {
            "id": person_membership_id,
            "type": "person_memberships",
            "attributes": {"starts_at": date.today().isoformat(), "ends_at": ends_at},
            "relationships": {
                "person": relationship("people", person_uuid),
                "organization_membership": relationship(
                    "organization_memberships", membership_uuid
                ),
            },
        }
        return person_membership_id

    def seed_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None:
        self.roles.append((person_uuid, role_name, org_uuid))

    def seed_connection(
        self, person_uuid: str, org_uuid: str, relationship_type: str = "employee_staff"
    ) -> str:
        connection = dict(
            build_connection_payload(person_uuid, org_uuid, relationship_type)["data"],
            id=str(uuid.uuid4()),
        )
        self.connections.append(connection)
        return connection["id"]

    def seed_group(self, org_uuid: str, group_uuid: str | None = None, name: str = "Council") -> str:
        group_uuid = group_uuid or str(uuid.uuid4())
        self.groups[group_uuid] = {
            "id": group_uuid,
            "type": "groups",
            "attributes": {"name": name},
            "relationships": {"organization": relationship("organizations", org_uuid)},
        }
        return group_uuid

    def seed_group_member(
        self,
        group_uuid: str,
        person_uuid: str,
        role: str,
        association: str | None = None,
        end_date: str | None = None,
        org_uuid: str | None = None,
    ) -> str:
        member_id = str(uuid.uuid4())
        relationships = {
            "group": relationship("groups", group_uuid),
            "person": relationship("people", person_uuid),
        }
        if org_uuid:
            relationships["organization"] = relationship("organizations", org_uuid)
        self.group_members[member_id] = {
            "id": member_id,
            "type": "group_members",
            "attributes": {
                "type": role,
                "start_date": date.today().isoformat(),
                "end_date": end_date,
                "custom_data_field": {"key": "association", "value": {"name": association}},
            },
            "relationships": relationships,
        }
        return member_id

    # -------------------------------------------------------------------------
    # People
    # -------------------------------------------------------------------------

    def get_person_by_email(self, email: str) -> dict | None:
        self._call("get_person_by_email", email)
        for person in self.people.values():
            if attr(person, "primary_email_address") == email.lower():
                return person
        return None

    def get_person(self, person_uuid: str) -> dict | None:
        self._call("get_person", person_uuid)
        return self.people.get(person_uuid)

    def create_person(self, given_name: str, family_name: str, email: str) -> dict:
        self._call("create_person", given_name, family_name, email)
        person_uuid = self.seed_person(email, given_name, family_name)
        return self.people[person_uuid]

    def update_person(self, person_uuid: str, attributes: dict) -> dict:
        self._call("update_person", person_uuid, attributes)
        self.people[person_uuid]["attributes"].update(attributes)
        return self.people[person_uuid]

    def add_person_phone(self, person_uuid: str, number: str, phone_type: str) -> dict:
        self._call("add_person_phone", person_uuid, number, phone_type)
        return {"attributes": {"number": number, "type": phone_type}}

    # -------------------------------------------------------------------------
    # Organizations and memberships
    # -------------------------------------------------------------------------

    def get_organization(self, org_uuid: str) -> dict | None:
        self._call("get_organization", org_uuid)
        return self.organizations.get(org_uuid)

    def list_organization_memberships(self, org_uuid: str) -> list[dict]:
        self._call("list_organization_memberships", org_uuid)
        return list(self.org_memberships.get(org_uuid, []))

    def get_organization_membership(self, membership_uuid: str) -> dict | None:
        self._call("get_organization_membership", membership_uuid)
        return self.membership_documents.get(membership_uuid)

    def update_organization_membership(self, membership_uuid: str, attributes: dict) -> dict:
        self._call("update_organization_membership", membership_uuid, attributes)
        self.membership_documents[membership_uuid]["data"]["attributes"].update(attributes)
        return self.membership_documents[membership_uuid]

    def list_membership_person_memberships(
        self, membership_uuid: str, page: int = 1, size: int = 100
    ) -> list[dict]:
        self._call("list_membership_person_memberships", membership_uuid, page, size)
        items = [
            item
            for item in self.person_memberships.values()
            if related_id(item, "organization_membership") == membership_uuid
        ]
        start = (page - 1) * size
        return items[start : start + size]

    def query_person_memberships(
        self,
        membership_uuid: str,
        *,
        person_uuid: str | None = None,
        email: str | None = None,
        active_now: bool = True,
    ) -> list[dict]:
        self._call("query_person_memberships", membership_uuid, person_uuid, email)
        if email:
            person_uuid = next(
                (
                    uuid_
                    for uuid_, person in self.people.items()
                    if attr(person, "primary_email_address") == email.lower()
                ),
                None,
            )
            if person_uuid is None:
                return []
        today = date.today().isoformat()
        return [
            item
            for item in self.person_memberships.values()
            if related_id(item, "organization_membership") == membership_uuid
            and (person_uuid is None or related_id(item, "person") == person_uuid)
            and (not active_now or not attr(item, "ends_at") or attr(item, "ends_at") > today)
        ]

    def list_person_memberships(self, person_uuid: str) -> list[dict]:
        self._call("list_person_memberships", person_uuid)
        return [
            item
            for item in self.person_memberships.values()
            if related_id(item, "person") == person_uuid
        ]

    def create_person_membership(
        self, person_uuid: str, membership_uuid: str, membership_type_id: str, starts_at: str
    ) -> dict:
        self._call(
            "create_person_membership", person_uuid, membership_uuid, membership_type_id, starts_at
        )
        person_membership_id = self.seed_seat(person_uuid, membership_uuid)
        return self.person_memberships[person_membership_id]

    def get_person_membership(self, person_membership_id: str) -> dict | None:
        self._call("get_person_membership", person_membership_id)
        return self.person_memberships.get(person_membership_id)

    def update_person_membership(self, person_membership_id: str, attributes: dict) -> dict:
        self._call("update_person_membership", person_membership_id, attributes)
        self.person_memberships[person_membership_id]["attributes"].update(attributes)
        return self.person_memberships[person_membership_id]

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def list_person_connections(self, person_uuid: str, active_only: bool = True) -> list[dict]:
        self._call("list_person_connections", person_uuid, active_only)
        return [c for c in self.connections if related_id(c, "person") == person_uuid]

    def create_connection(self, payload: dict) -> dict:
        self._call("create_connection", payload)
        connection = dict(payload["data"], id=str(uuid.uuid4()))
        self.connections.append(connection)
        return connection

    def update_connection(self, connection_id: str, attributes: dict) -> dict:
        self._call("update_connection", connection_id, attributes)
        for connection in self.connections:
            if connection["id"] == connection_id:
                connection["attributes"].update(attributes)
                return connection
        raise MembershipApiError("Connection not found", status_code=404)

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    def list_person_roles(self, person_uuid: str) -> list[dict]:
        self._call("list_person_roles", person_uuid)
        return [
            {
                "type": "roles",
                "attributes": {"name": name},
                "relationships": {"resource": relationship("organizations", org)},
            }
            for person, name, org in self.roles
            if person == person_uuid
        ]

    def assign_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None:
        self._call("assign_role", person_uuid, role_name, org_uuid)
        if (person_uuid, role_name, org_uuid) not in self.roles:
            self.roles.append((person_uuid, role_name, org_uuid))

    def remove_role(self, person_uuid: str, role_name: str, org_uuid: str) -> None:
        self._call("remove_role", person_uuid, role_name, org_uuid)
        self.roles = [r for r in self.roles if r != (person_uuid, role_name, org_uuid)]

    def roles_for(self, person_uuid: str, org_uuid: str) -> list[str]:
        return [name for person, name, org in self.roles if person == person_uuid and org == org_uuid]

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def get_group(self, group_uuid: str) -> dict | None:
        self._call("get_group", group_uuid)
        return self.groups.get(group_uuid)

    def list_group_members(
        self, group_uuid: str, page: int = 1, size: int = 50, active_only: bool = True
    ) -> list[dict]:
        self._call("list_group_members", group_uuid, page, size, active_only)
        today = date.today().isoformat()
        items = []
        for member in self.group_members.values():
            if related_id(member, "group") != group_uuid:
                continue
            end_date = attr(member, "end_date")
            if active_only and end_date and str(end_date)[:10] <= today:
                continue
            items.append(member)
        start = (page - 1) * size
        return items[start : start + size]

    def create_group_member(self, payload: dict) -> dict:
        self._call("create_group_member", payload)
        member_id = str(uuid.uuid4())
        self.group_members[member_id] = dict(payload["data"], id=member_id)
        return self.group_members[member_id]

    def update_group_member(self, group_member_id: str, attributes: dict) -> dict:
        self._call("update_group_member", group_member_id, attributes)
        self.group_members[group_member_id]["attributes"].update(attributes)
        return self.group_members[group_member_id]

    def delete_group_member(self, group_member_id: str) -> None:
        self._call("delete_group_member", group_member_id)
        self.group_members.pop(group_member_id, None)

    # -------------------------------------------------------------------------
    # Touchpoints
    # -------------------------------------------------------------------------

    def create_touchpoint(self, payload: dict) -> dict:
        self._call("create_touchpoint", payload)
        self.touchpoints.append(payload["data"])
        return payload["data"]


def api_error(message: str = "upstream failure", status_code: int = 500) -> MembershipApiError:
    return MembershipApiError(message, status_code)


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def fake_api() -> FakeMembershipApi:
    return FakeMembershipApi()


@pytest.fixture
def test_settings() -> Settings:
    """Isolated settings (no .env) with deterministic bulk upload timing."""
    return Settings(
        _env_file=None,
        ROSTER_STRATEGY="direct",
        BULK_UPLOAD_SCHEDULE_DELAY_SECONDS=0,
        NOTIFICATIONS_ENABLED=True,
    )


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


class RecordingScheduler:
    """Batch scheduler that records requests instead of dispatching them."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.requests: list[tuple[int, str, int]] = []

    def schedule_after(self, delay_seconds: int, job_id: str, offset: int = 0) -> bool:
        self.requests.append((delay_seconds, job_id, offset))
        return self.result


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _create_tables() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Session on the shared in-memory database; jobs are cleared afterwards."""
    session = SessionLocal()
    yield session
    session.rollback()
    session.query(Job).delete()
    session.commit()
    session.close()


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
async def client(
    db: Session, fake_api: FakeMembershipApi, kv_store: InMemoryKeyValueStore
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient with the database, membership API and store overridden."""

    def override_get_db():
        yield db

    def override_get_membership_api():
        yield fake_api

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_membership_api] = override_get_membership_api
    app.dependency_overrides[get_store] = lambda: kv_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=INTERNAL_HEADERS,
    ) as c:
        yield c

    app.dependency_overrides.clear()
