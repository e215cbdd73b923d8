"""Roster errors. Each subclass carries one stable error code."""

from orgman.core.errors import ServiceError


class RosterError(ServiceError):
    """Base exception for roster strategy errors."""

    code = "roster_error"


# =============================================================================
# Validation
# =============================================================================


class InvalidMemberDataError(RosterError):
    """First name, last name and email are required."""

    code = "invalid_member_data"


class InvalidEmailError(RosterError):
    """Email address is not valid."""

    code = "invalid_email"


class InvalidOrganizationError(RosterError):
    """Organization identifier missing."""

    code = "invalid_org_id"


class MissingMembershipUuidError(RosterError):
    """Membership uuid required but not provided."""

    code = "missing_membership_uuid"


class InvalidMembershipUuidError(RosterError):
    """Membership uuid does not resolve to a membership."""

    code = "invalid_membership_uuid"


class MissingPersonMembershipIdError(RosterError):
    """Person membership id required for removal."""

    code = "missing_person_membership_id"


class MissingGroupUuidError(RosterError):
    """Group uuid required in groups mode."""

    code = "missing_group_uuid"


class InvalidRoleError(RosterError):
    """Role is not a valid roster role."""

    code = "invalid_role"


class InvalidRelationshipTypeError(RosterError):
    """Relationship type is not in the configured allow-list."""

    code = "invalid_relationship_type"


# =============================================================================
# Resolution
# =============================================================================


class NoMembershipError(RosterError):
    """Organization has no membership to assign seats from."""

    code = "no_membership"
    status_code = 404


class MembershipTypeMissingError(RosterError):
    """Organization membership has no membership type."""

    code = "membership_type_missing"
    status_code = 409


class GroupMemberNotFoundError(RosterError):
    """Person is not an active member of the group."""

    code = "group_member_not_found"
    status_code = 404


class PersonMembershipNotFoundError(RosterError):
    """Person holds no active seat in the organization membership."""

    code = "membership_not_found"
    status_code = 404


class ConnectionNotFoundError(RosterError):
    """No active person-to-organization connection to update."""

    code = "no_connection"
    status_code = 404


# =============================================================================
# Access
# =============================================================================


class PermissionDeniedError(RosterError):
    """Actor lacks the roles required for this operation."""

    code = "no_permission"
    status_code = 403


class GroupAccessDeniedError(RosterError):
    """Actor cannot manage the group."""

    code = "no_group_access"
    status_code = 403


class EditingDisabledError(RosterError):
    """The member field cannot be edited under the current configuration."""

    code = "editing_disabled"
    status_code = 403


# =============================================================================
# Conflicts
# =============================================================================


class MembershipOrgMismatchError(RosterError):
    """Membership belongs to a different organization."""

    code = "membership_org_mismatch"
    status_code = 409


class SeatUnavailableError(RosterError):
    """Seat-limited role already taken for this organization."""

    code = "seat_unavailable"
    status_code = 409


class GroupMemberExistsError(RosterError):
    """Person already holds an active group membership."""

    code = "group_member_exists"
    status_code = 409


class OwnerRemovalForbiddenError(RosterError):
    """The organization's owner cannot be removed."""

    code = "owner_removal_forbidden"
    status_code = 409


class RoleRemovalForbiddenError(RosterError):
    """Members holding a managing role cannot be removed."""

    code = "role_removal_forbidden"
    status_code = 409


# =============================================================================
# Upstream failures
# =============================================================================


class UpstreamRosterError(RosterError):
    """Membership API call failed during a roster step."""

    status_code = 502


class PersonCreationError(UpstreamRosterError):
    code = "person_creation_failed"


class PersonResolutionError(UpstreamRosterError):
    code = "person_resolution_failed"


class ConnectionCreationError(UpstreamRosterError):
    code = "connection_creation_failed"


class MembershipAssignmentError(UpstreamRosterError):
    code = "membership_assignment_failed"


class RoleAssignmentError(UpstreamRosterError):
    code = "role_assignment_failed"


class RoleRemovalError(UpstreamRosterError):
    code = "role_removal_failed"


class MembershipEndError(UpstreamRosterError):
    code = "membership_end_failed"


class GroupMemberCreationError(UpstreamRosterError):
    code = "group_member_creation_failed"


class GroupMemberRemovalError(UpstreamRosterError):
    code = "group_member_removal_failed"


class ConnectionUpdateError(UpstreamRosterError):
    code = "connection_update_failed"
