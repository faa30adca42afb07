"""Deployment window policy per environment class."""

from __future__ import annotations

from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from deployguard.domain.models.base import ensure_utc, utc_now
from deployguard.domain.models.scheduling import (
    DeploymentWindow,
    EnvironmentClass,
    NextWindow,
    WindowCheck,
)
from deployguard.domain.ports.services import TargetMetadataSource


_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Today plus a full week, so a weekly window is always found.
SEARCH_DAYS = 8


class DeploymentWindowPolicy:
    """Pure functions over the configured windows and a reference timezone."""

    def __init__(
        self,
        windows: dict[EnvironmentClass, DeploymentWindow],
        metadata: TargetMetadataSource,
        timezone: str = "UTC",
    ) -> None:
        self._windows = dict(windows)
        self._metadata = metadata
        self._tz = ZoneInfo(timezone)

    def window_for(self, target: str) -> tuple[EnvironmentClass, DeploymentWindow]:
        env_class = self._metadata.environment_class(target)
        window = self._windows.get(env_class) or DeploymentWindow(enabled=False)
        return env_class, window

    def is_within_window(self, at: datetime, target: str) -> WindowCheck:
        env_class, window = self.window_for(target)
        if not window.enabled:
            return WindowCheck(allowed=True, reason="Windows disabled", environment_class=env_class)

        local = ensure_utc(at).astimezone(self._tz)
        day = local.weekday()
        if day not in window.days:
            allowed_days = ", ".join(_DAY_NAMES[d] for d in window.days)
            return WindowCheck(
                allowed=False,
                reason=f"{_DAY_NAMES[day]} is not allowed. Allowed days: {allowed_days}",
                environment_class=env_class,
            )
        if local.hour < window.start_hour or local.hour >= window.end_hour:
            return WindowCheck(
                allowed=False,
                reason=(
                    f"Hour {local.hour} is outside window "
                    f"{window.start_hour}-{window.end_hour}"
                ),
                environment_class=env_class,
            )
        return WindowCheck(allowed=True, reason="Within window", environment_class=env_class)

    def next_window(self, target: str, after: datetime | None = None) -> NextWindow:
        """The window containing ``after`` (``available=True``) or the next one to open."""
        env_class, window = self.window_for(target)
        now = ensure_utc(after) if after is not None else utc_now()
        if not window.enabled:
            return NextWindow(
                available=True, environment_class=env_class, start=now, reason="Windows disabled",
            )

        local_now = now.astimezone(self._tz)
        for days_ahead in range(SEARCH_DAYS):
            day = local_now.date() + timedelta(days=days_ahead)
            if day.weekday() not in window.days:
                continue
            midnight = datetime.combine(day, time(0), tzinfo=self._tz)
            start = midnight + timedelta(hours=window.start_hour)
            end = midnight + timedelta(hours=window.end_hour)
            if start <= local_now < end:
                return NextWindow(
                    available=True,
                    environment_class=env_class,
                    start=now,
                    end=end.astimezone(now.tzinfo),
                )
            if start > local_now:
                return NextWindow(
                    available=False,
                    environment_class=env_class,
                    start=start.astimezone(now.tzinfo),
                    end=end.astimezone(now.tzinfo),
                )

        return NextWindow(
            available=False,
            environment_class=env_class,
            reason=f"No window found in next {SEARCH_DAYS - 1} days",
        )

    def earliest_allowed(self, at: datetime, target: str) -> datetime | None:
        """``at`` itself when inside a window, otherwise the next window start."""
        if self.is_within_window(at, target).allowed:
            return ensure_utc(at)
        return self.next_window(target, after=at).start
