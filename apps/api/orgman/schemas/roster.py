"""Pydantic schemas for roster operations."""

from pydantic import BaseModel, ConfigDict, Field

from orgman.db.enums import StrategyStatus


class MemberAdditionRequest(BaseModel):
    """A person to add to an organization roster."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    roles: list[str] = Field(default_factory=list)
    relationship_type: str | None = None
    relationship_description: str | None = None
    job_title: str | None = None
    phone: str | None = None


class RosterContext(BaseModel):
    """
    Typed context passed alongside an add/remove call.

    Strategies read the subset they need:
    - cascade: relationship_type, roles
    - direct: membership_uuid, org_name, relationship_*, roles
    - groups: group_uuid, role, group_member_id, actor_uuid
    - membership_cycle: membership_uuid, person_membership_id, actor_uuid

    Frozen so a strategy cannot mutate context it does not own; derive a
    copy with ``model_copy(update=...)`` instead.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    membership_uuid: str | None = None
    membership_id: str | None = None  # Alias accepted from older callers
    group_uuid: str | None = None
    role: str | None = None
    person_membership_id: str | None = None
    group_member_id: str | None = None
    org_name: str | None = None
    relationship_type: str | None = None
    relationship_description: str | None = None
    roles: list[str] = Field(default_factory=list)
    actor_uuid: str | None = None
    fallback_email: str | None = None

    @property
    def resolved_membership_uuid(self) -> str | None:
        return (self.membership_uuid or self.membership_id or "").strip() or None


class StrategyResult(BaseModel):
    """Successful outcome of a roster operation. Failures raise RosterError."""

    status: StrategyStatus = StrategyStatus.SUCCESS
    message: str
    person_uuid: str | None = None


# =============================================================================
# API payloads
# =============================================================================


class AddMemberBody(BaseModel):
    member: MemberAdditionRequest
    context: RosterContext = Field(default_factory=RosterContext)


class RemoveMemberBody(BaseModel):
    context: RosterContext = Field(default_factory=RosterContext)


class MemberUpdateRequest(BaseModel):
    """Edit an existing member. Fields left as None are not changed."""

    membership_uuid: str | None = None
    roles: list[str] | None = None
    relationship_type: str | None = None
    description: str | None = None


class MemberUpdateResult(BaseModel):
    status: StrategyStatus = StrategyStatus.SUCCESS
    message: str = "Member updated."
    person_uuid: str
    relationship_type: str | None = None
    roles_added: list[str] = Field(default_factory=list)
    roles_removed: list[str] = Field(default_factory=list)


class MemberListItem(BaseModel):
    person_uuid: str | None = None
    person_membership_id: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None


class MemberListResponse(BaseModel):
    membership_uuid: str
    page: int
    size: int
    items: list[MemberListItem]
    cached: bool = False

