"""Prometheus metrics configuration."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
)


# Application info
APP_INFO = Info("deployguard", "Sandbox deployment guard application info")
APP_INFO.info({
    "version": "0.4.0",
    "service": "sandbox-deployment-guard",
})

# Pipeline metrics
DEPLOYMENTS_TOTAL = Counter(
    "deployguard_deployments_total",
    "Total number of deployment attempts by outcome",
    ["outcome", "target"],
)

DEPLOYMENT_DURATION = Histogram(
    "deployguard_deployment_duration_seconds",
    "Time taken for one pipeline attempt",
    ["outcome"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800],
)

STAGE_FAILURES_TOTAL = Counter(
    "deployguard_stage_failures_total",
    "Pipeline attempts that stopped at a stage",
    ["stage", "error_kind"],
)

ACTIVE_DEPLOYMENTS = Gauge(
    "deployguard_active_deployments",
    "Number of pipeline attempts currently in flight",
)

ROLLBACKS_TOTAL = Counter(
    "deployguard_rollbacks_total",
    "Total number of rollbacks",
    ["result"],  # "success", "failure"
)

SNAPSHOTS_TOTAL = Counter(
    "deployguard_snapshots_total",
    "Total number of snapshots captured",
)

# Safety metrics
BLOCKED_TARGETS_TOTAL = Counter(
    "deployguard_blocked_targets_total",
    "Deployments refused by the target validator",
)

CIRCUIT_BREAKER_OPEN = Gauge(
    "deployguard_circuit_breaker_open",
    "1 while the deployment circuit breaker is open",
)

CIRCUIT_BREAKER_FAILURES = Gauge(
    "deployguard_circuit_breaker_failures",
    "Consecutive failures counted by the circuit breaker",
)

RISK_FINDINGS_TOTAL = Counter(
    "deployguard_risk_findings_total",
    "Static analysis findings",
    ["rule", "severity"],
)

# Quality gate metrics
QUALITY_GATE_REVIEWS_TOTAL = Counter(
    "deployguard_quality_gate_reviews_total",
    "Quality gate reviews by verdict",
    ["verdict"],
)

QUALITY_GATE_DURATION = Histogram(
    "deployguard_quality_gate_duration_seconds",
    "External reviewer call duration",
    buckets=[1, 5, 10, 30, 60, 120, 300],
)

# Scheduler metrics
SCHEDULED_DEPLOYMENTS = Gauge(
    "deployguard_scheduled_deployments",
    "Scheduled deployments by status",
    ["status"],
)

SCHEDULED_RETRIES_TOTAL = Counter(
    "deployguard_scheduled_retries_total",
    "Total number of retries scheduled",
)

# API metrics
API_REQUESTS_TOTAL = Counter(
    "deployguard_api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status_code"],
)

# Infrastructure metrics
DISTRIBUTED_LOCK_OPERATIONS = Counter(
    "deployguard_distributed_lock_operations_total",
    "Total target lock operations",
    ["operation", "result"],  # operation: acquire/release, result: success/failure
)
