"""Static analysis findings."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from deployguard.domain.models.base import ValueObject


class FindingSeverity(str, Enum):
    BLOCKING = "blocking"
    ADVISORY = "advisory"


class RiskCategory(str, Enum):
    RESOURCE_LIMITS = "resource_limits"
    CREDENTIALS = "credentials"
    INJECTION = "injection"
    DEFENSIVE_CHECKS = "defensive_checks"
    SENSITIVE_DATA = "sensitive_data"
    MAINTAINABILITY = "maintainability"
    ACCESS_CONTROL = "access_control"


class Finding(ValueObject):
    """One rule hit on one artifact."""

    rule: str
    artifact: str
    category: RiskCategory
    severity: FindingSeverity
    message: str

    def __str__(self) -> str:
        return f"{self.artifact}: {self.message}"


class ScanReport(ValueObject):
    """Findings for a whole artifact set, split by severity."""

    findings: list[Finding] = Field(default_factory=list)

    @property
    def blocking_errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == FindingSeverity.BLOCKING]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == FindingSeverity.ADVISORY]

    @property
    def passed(self) -> bool:
        return not self.blocking_errors

    def for_artifact(self, name: str) -> list[Finding]:
        return [f for f in self.findings if f.artifact == name]
