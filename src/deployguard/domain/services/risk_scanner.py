"""Static risk analysis over proposed source artifacts.

Rules are pluggable: each one looks at a single artifact and returns zero or
more findings. The scanner concatenates the findings, so scanning one artifact
never affects another and the result is deterministic for a given rule set.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable

import structlog

from deployguard.domain.models.artifacts import Artifact, ArtifactBundle, ArtifactKind
from deployguard.domain.models.risk import (
    Finding,
    FindingSeverity,
    RiskCategory,
    ScanReport,
)


logger = structlog.get_logger(__name__)


class RiskRule(ABC):
    """One static check."""

    name: str
    category: RiskCategory
    severity: FindingSeverity

    def finding(self, artifact: Artifact, message: str) -> Finding:
        return Finding(
            rule=self.name,
            artifact=artifact.name,
            category=self.category,
            severity=self.severity,
            message=message,
        )

    @abstractmethod
    def check(self, artifact: Artifact) -> list[Finding]:
        """Return the findings for one artifact."""


class PatternRule(RiskRule):
    """Fires once when any of ``patterns`` matches the artifact's text."""

    def __init__(
        self,
        name: str,
        category: RiskCategory,
        severity: FindingSeverity,
        message: str,
        patterns: Iterable[str],
        flags: int = re.IGNORECASE,
        lowercase: bool = False,
    ) -> None:
        self.name = name
        self.category = category
        self.severity = severity
        self.message = message
        self._patterns = [re.compile(p, flags) for p in patterns]
        self._lowercase = lowercase

    def check(self, artifact: Artifact) -> list[Finding]:
        text = artifact.content.lower() if self._lowercase else artifact.content
        if any(pattern.search(text) for pattern in self._patterns):
            return [self.finding(artifact, self.message)]
        return []


class PredicateRule(RiskRule):
    """Fires when ``predicate(name, content)`` returns a message."""

    def __init__(
        self,
        name: str,
        category: RiskCategory,
        severity: FindingSeverity,
        predicate: Callable[[str, str], str | None],
    ) -> None:
        self.name = name
        self.category = category
        self.severity = severity
        self._predicate = predicate

    def check(self, artifact: Artifact) -> list[Finding]:
        message = self._predicate(artifact.name, artifact.content)
        return [self.finding(artifact, message)] if message else []


_QUERY_IN_LOOP = r"for\s*\([^)]*\)\s*\{[^}]*\[SELECT"
_MUTATION_IN_LOOP = r"for\s*\([^)]*\)\s*\{[^}]*\b(insert|update|delete|upsert)\s+"
_HARDCODED_SECRETS = (
    r"password\s*=\s*['\"]",
    r"api[_-]?key\s*=\s*['\"]",
    r"secret\s*=\s*['\"]",
)
_HARDCODED_ID = r"['\"][a-zA-Z0-9]{15,18}['\"]"
_SHARING_KEYWORDS = ("with sharing", "without sharing", "inherited sharing")

MAX_DEBUG_STATEMENTS = 10
MAX_QUERIES_PER_ARTIFACT = 50


def _query_injection(name: str, content: str) -> str | None:
    lowered = content.lower()
    if "database.query(" in lowered and "+" in content and "escapesinglequotes" not in lowered:
        return "Potential query injection: dynamic query built by concatenation without escaping"
    return None


def _missing_null_guard(name: str, content: str) -> str | None:
    if "[SELECT" in content and "!= null" not in content:
        return "Consider adding null checks before queries"
    return None


def _sensitive_logging(name: str, content: str) -> str | None:
    lowered = content.lower()
    if "system.debug" in lowered and ("password" in lowered or "token" in lowered):
        return "Potentially logging sensitive data"
    return None


def _excessive_debug(name: str, content: str) -> str | None:
    if "test" in name.lower():
        return None
    count = content.count("System.debug")
    if count > MAX_DEBUG_STATEMENTS:
        return f"Excessive debug statements ({count}) may impact performance"
    return None


def _missing_sharing(name: str, content: str) -> str | None:
    lowered_name = name.lower()
    if "controller" not in lowered_name and "service" not in lowered_name:
        return None
    lowered = content.lower()
    if any(keyword in lowered for keyword in _SHARING_KEYWORDS):
        return None
    return "Missing sharing keyword - defaults to without sharing"


def _high_query_count(name: str, content: str) -> str | None:
    count = content.count("[SELECT")
    if count > MAX_QUERIES_PER_ARTIFACT:
        return f"High query count ({count}) - risk of hitting the per-transaction query limit"
    return None


def _missing_recursion_guard(name: str, content: str) -> str | None:
    lowered_name = name.lower()
    if "trigger" not in lowered_name and "handler" not in lowered_name:
        return None
    if "recursion" in content or "alreadyRun" in content:
        return None
    return "Consider adding recursion prevention for trigger handler"


def _unbounded_collection(name: str, content: str) -> str | None:
    if "for (" in content and ".size()" in content:
        return "Consider adding collection size checks to prevent CPU time limit"
    return None


def default_rules() -> list[RiskRule]:
    """The stock rule set, blocking rules first."""
    blocking = FindingSeverity.BLOCKING
    advisory = FindingSeverity.ADVISORY
    return [
        PatternRule(
            "query_in_loop", RiskCategory.RESOURCE_LIMITS, blocking,
            "Query inside loop detected - will hit governor limits",
            [_QUERY_IN_LOOP],
        ),
        PatternRule(
            "mutation_in_loop", RiskCategory.RESOURCE_LIMITS, blocking,
            "DML operation inside loop detected - will hit governor limits",
            [_MUTATION_IN_LOOP],
        ),
        PatternRule(
            "hardcoded_secret", RiskCategory.CREDENTIALS, blocking,
            "SECURITY - Potential hardcoded credentials detected",
            _HARDCODED_SECRETS,
            lowercase=True,
        ),
        PredicateRule("query_injection", RiskCategory.INJECTION, blocking, _query_injection),
        PredicateRule(
            "missing_null_guard", RiskCategory.DEFENSIVE_CHECKS, advisory, _missing_null_guard,
        ),
        PredicateRule(
            "sensitive_logging", RiskCategory.SENSITIVE_DATA, advisory, _sensitive_logging,
        ),
        PatternRule(
            "hardcoded_id", RiskCategory.MAINTAINABILITY, advisory,
            "Hardcoded record ID detected - use custom metadata instead",
            [_HARDCODED_ID],
            flags=0,
        ),
        PredicateRule(
            "excessive_debug", RiskCategory.MAINTAINABILITY, advisory, _excessive_debug,
        ),
        PredicateRule(
            "missing_sharing", RiskCategory.ACCESS_CONTROL, advisory, _missing_sharing,
        ),
        PredicateRule(
            "high_query_count", RiskCategory.RESOURCE_LIMITS, advisory, _high_query_count,
        ),
        PredicateRule(
            "missing_recursion_guard", RiskCategory.RESOURCE_LIMITS, advisory,
            _missing_recursion_guard,
        ),
        PredicateRule(
            "unbounded_collection", RiskCategory.RESOURCE_LIMITS, advisory,
            _unbounded_collection,
        ),
    ]


class RiskScanner:
    """Runs every rule over every source artifact. Metadata files are not scanned."""

    def __init__(self, rules: list[RiskRule] | None = None) -> None:
        self._rules = list(rules) if rules is not None else default_rules()

    @property
    def rules(self) -> list[RiskRule]:
        return list(self._rules)

    def scan_artifact(self, artifact: Artifact) -> list[Finding]:
        findings: list[Finding] = []
        for rule in self._rules:
            findings.extend(rule.check(artifact))
        return findings

    def scan(self, artifacts: ArtifactBundle) -> ScanReport:
        findings: list[Finding] = []
        for artifact in artifacts.iter_artifacts():
            if artifact.kind != ArtifactKind.SOURCE:
                continue
            findings.extend(self.scan_artifact(artifact))

        report = ScanReport(findings=findings)
        logger.info(
            "risk_scan_completed",
            artifacts=len(artifacts.sources),
            blocking=len(report.blocking_errors),
            warnings=len(report.warnings),
        )
        return report
