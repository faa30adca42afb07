"""Target classification by name."""

from __future__ import annotations

from deployguard.domain.models.scheduling import EnvironmentClass
from deployguard.domain.ports.services import TargetMetadataSource


class NamePatternMetadataSource(TargetMetadataSource):
    """``uat`` in the name means UAT, ``prod`` means production, anything else development."""

    def __init__(self, overrides: dict[str, EnvironmentClass] | None = None) -> None:
        self._overrides = dict(overrides or {})

    def environment_class(self, target: str) -> EnvironmentClass:
        if target in self._overrides:
            return self._overrides[target]
        lowered = target.lower()
        if "uat" in lowered:
            return EnvironmentClass.UAT
        if "prod" in lowered:
            return EnvironmentClass.PRODUCTION
        return EnvironmentClass.DEVELOPMENT
