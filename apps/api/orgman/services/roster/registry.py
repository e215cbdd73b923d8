"""Roster strategy registry."""

from __future__ import annotations

from typing import Mapping

from orgman.db.enums import RosterMode
from orgman.services.roster.base import RosterStrategy
from orgman.services.roster.cascade import CascadeStrategy
from orgman.services.roster.direct import DirectStrategy
from orgman.services.roster.groups import GroupsStrategy
from orgman.services.roster.membership_cycle import MembershipCycleStrategy

STRATEGIES: Mapping[RosterMode, type[RosterStrategy]] = {
    RosterMode.CASCADE: CascadeStrategy,
    RosterMode.DIRECT: DirectStrategy,
    RosterMode.GROUPS: GroupsStrategy,
    RosterMode.MEMBERSHIP_CYCLE: MembershipCycleStrategy,
}


def resolve_strategy_class(mode: RosterMode) -> type[RosterStrategy]:
    strategy = STRATEGIES.get(mode)
    if not strategy:
        raise ValueError(f"Unknown roster mode: {mode}")
    return strategy
