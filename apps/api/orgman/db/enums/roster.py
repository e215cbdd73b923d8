"""Roster management enums."""

from enum import Enum


class RosterMode(str, Enum):
    """
    Organizational membership models.

    - CASCADE: one org-wide membership; removal ends the person's membership
    - DIRECT: per-seat assignment; removal strips roles only
    - GROUPS: group rosters with a role and an association custom field
    - MEMBERSHIP_CYCLE: membership named explicitly by the caller
    """

    CASCADE = "cascade"
    DIRECT = "direct"
    GROUPS = "groups"
    MEMBERSHIP_CYCLE = "membership_cycle"


class StrategyStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class GroupRemovalMode(str, Enum):
    END_DATE = "end_date"
    DELETE = "delete"
