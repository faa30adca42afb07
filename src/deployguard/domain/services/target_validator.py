"""Target validation: the single chokepoint before any target mutation."""

from __future__ import annotations

import structlog

from deployguard.config import SafetySettings
from deployguard.domain.errors import BlockedTargetError
from deployguard.domain.models.base import ValueObject


logger = structlog.get_logger(__name__)


class TargetValidation(ValueObject):
    """Outcome of an allowed validation. ``warning`` is set in relaxed mode."""

    target: str
    allowed: bool = True
    warning: str | None = None


class TargetValidator:
    """Classifies a target as allow-listed, production-like or unknown.

    Pure function over configuration: no network, no I/O.
    """

    def __init__(self, settings: SafetySettings) -> None:
        self._whitelist = frozenset(settings.sandbox_whitelist)
        self._indicators = tuple(token.lower() for token in settings.production_indicators)
        self._strict_mode = settings.strict_mode

    @property
    def strict_mode(self) -> bool:
        return self._strict_mode

    def production_indicator(self, target: str) -> str | None:
        """Return the first production token contained in ``target``, if any."""
        lowered = target.lower()
        for token in self._indicators:
            if token in lowered:
                return token
        return None

    def validate(self, target: str) -> TargetValidation:
        """Allow or refuse a target. Raises :class:`BlockedTargetError` when refused."""
        if target in self._whitelist:
            return TargetValidation(target=target)

        token = self.production_indicator(target)
        if token is not None:
            logger.warning("target_blocked_production", target=target, indicator=token)
            raise BlockedTargetError(
                target,
                f"BLOCKED: Cannot deploy to production-like target '{target}' "
                f"(matched '{token}')",
            )

        if self._strict_mode:
            logger.warning("target_blocked_not_whitelisted", target=target)
            raise BlockedTargetError(
                target,
                f"BLOCKED: Target '{target}' is not whitelisted. "
                f"Allowed targets: {', '.join(sorted(self._whitelist))}",
            )

        warning = f"Target '{target}' is not whitelisted; proceeding because strict mode is off"
        logger.warning("target_not_whitelisted", target=target)
        return TargetValidation(target=target, warning=warning)
