"""Roster orchestrator: the single entry point for add/remove member calls."""

from __future__ import annotations

import logging

from orgman.core.config import Settings, settings as default_settings
from orgman.db.enums import RosterMode
from orgman.schemas.roster import MemberAdditionRequest, RosterContext, StrategyResult
from orgman.services.membership_api import HttpMembershipApi, MembershipApi
from orgman.services.notification_service import NotificationDispatcher
from orgman.services.roster.base import RosterStrategy
from orgman.services.roster.registry import resolve_strategy_class

logger = logging.getLogger(__name__)


def resolve_roster_mode(value: str | None) -> RosterMode:
    """Configured mode, falling back to cascade for unknown values."""
    try:
        return RosterMode((value or "").strip().lower())
    except ValueError:
        logger.warning("Unknown roster strategy %r, falling back to cascade", value)
        return RosterMode.CASCADE


class RosterService:
    """Binds the configured strategy once and delegates to it unchanged."""

    def __init__(
        self,
        api: MembershipApi,
        cfg: Settings | None = None,
        notifier: NotificationDispatcher | None = None,
        mode: RosterMode | str | None = None,
    ) -> None:
        self.settings = cfg or default_settings
        self.mode = resolve_roster_mode(
            mode.value if isinstance(mode, RosterMode) else mode or self.settings.ROSTER_STRATEGY
        )
        strategy_class = resolve_strategy_class(self.mode)
        self.strategy: RosterStrategy = strategy_class(api, self.settings, notifier)

    def add_member(
        self,
        org_uuid: str,
        request: MemberAdditionRequest,
        context: RosterContext | None = None,
    ) -> StrategyResult:
        return self.strategy.add_member(org_uuid, request, context or RosterContext())

    def remove_member(
        self,
        org_uuid: str,
        person_uuid: str,
        context: RosterContext | None = None,
    ) -> StrategyResult:
        return self.strategy.remove_member(org_uuid, person_uuid, context or RosterContext())


def build_roster_service(
    api: MembershipApi | None = None,
    cfg: Settings | None = None,
    mode: RosterMode | str | None = None,
) -> RosterService:
    cfg = cfg or default_settings
    return RosterService(api or HttpMembershipApi(cfg), cfg, mode=mode)
