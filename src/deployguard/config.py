"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from deployguard.domain.models.scheduling import DeploymentWindow, EnvironmentClass


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class StorageBackend(str, Enum):
    MEMORY = "memory"
    JSON = "json"
    POSTGRES = "postgres"


class SafetySettings(BaseSettings):
    """Target allow-list and production guard rails."""

    sandbox_whitelist: list[str] = Field(
        default_factory=lambda: [
            "dev-sandbox",
            "Devin1",
            "devin1",
            "test-sandbox",
            "uat-sandbox",
        ],
        alias="SAFETY_SANDBOX_WHITELIST",
    )
    production_indicators: list[str] = Field(
        default_factory=lambda: ["production", "prod", "live", "main"],
        alias="SAFETY_PRODUCTION_INDICATORS",
    )
    strict_mode: bool = Field(default=True, alias="DEPLOYMENT_STRICT_MODE")

    model_config = {"env_prefix": "SAFETY_", "extra": "ignore", "populate_by_name": True}


class CircuitBreakerSettings(BaseSettings):
    """Process-wide deployment circuit breaker."""

    threshold: int = Field(default=3, ge=1, alias="CIRCUIT_BREAKER_THRESHOLD")
    reset_timeout_seconds: float = Field(default=60.0, gt=0, alias="CIRCUIT_BREAKER_RESET_TIMEOUT")

    model_config = {"env_prefix": "CIRCUIT_BREAKER_", "extra": "ignore", "populate_by_name": True}


class PipelineSettings(BaseSettings):
    """Deployment pipeline behaviour."""

    enforce_windows: bool = Field(default=False, alias="DEPLOYMENT_WINDOWS_ENABLED")
    serialize_per_target: bool = Field(default=True, alias="PIPELINE_SERIALIZE_PER_TARGET")
    target_lock_ttl_seconds: int = Field(default=3600, alias="PIPELINE_TARGET_LOCK_TTL")
    push_timeout_seconds: float = Field(default=600.0, gt=0, alias="PIPELINE_PUSH_TIMEOUT")
    verify_timeout_seconds: float = Field(default=900.0, gt=0, alias="PIPELINE_VERIFY_TIMEOUT")
    remote_timeout_seconds: float = Field(default=300.0, gt=0, alias="PIPELINE_REMOTE_TIMEOUT")
    max_concurrent_deployments: int = Field(default=5, ge=1, alias="PIPELINE_MAX_CONCURRENT")
    work_dir: str = Field(default="./deployments", alias="PIPELINE_WORK_DIR")

    model_config = {"env_prefix": "PIPELINE_", "extra": "ignore", "populate_by_name": True}

    @property
    def attempt_budget_seconds(self) -> float:
        """Longest a single attempt can hold its target lock.

        Snapshot retrieve, remote validate, push, verify, then a rollback
        push and delete.
        """
        return (
            2 * self.push_timeout_seconds
            + self.verify_timeout_seconds
            + 3 * self.remote_timeout_seconds
        )

    @model_validator(mode="after")
    def _lock_outlives_attempt(self) -> PipelineSettings:
        if self.target_lock_ttl_seconds <= self.attempt_budget_seconds:
            raise ValueError(
                f"target_lock_ttl_seconds ({self.target_lock_ttl_seconds}) must exceed "
                f"the stage timeout budget ({self.attempt_budget_seconds:g}s)"
            )
        return self


class QualityGateSettings(BaseSettings):
    """External reviewer configuration."""

    enabled: bool = Field(default=True, alias="QUALITY_GATE_ENABLED")
    command: str = Field(default="claude --print", alias="QUALITY_GATE_COMMAND")
    timeout_seconds: float = Field(default=120.0, gt=0, alias="QUALITY_GATE_TIMEOUT")
    batch_delay_seconds: float = Field(default=1.0, ge=0, alias="QUALITY_GATE_BATCH_DELAY")

    model_config = {"env_prefix": "QUALITY_GATE_", "extra": "ignore", "populate_by_name": True}


class SchedulerSettings(BaseSettings):
    """Deployment scheduler configuration."""

    retry_delay_seconds: float = Field(default=300.0, ge=0, alias="SCHEDULER_RETRY_DELAY")
    default_max_retries: int = Field(default=3, ge=0, alias="SCHEDULER_MAX_RETRIES")
    reminder_lead_seconds: float = Field(default=900.0, ge=0, alias="SCHEDULER_REMINDER_LEAD")
    catch_up_missed_retries: bool = Field(default=False, alias="SCHEDULER_CATCH_UP_MISSED_RETRIES")

    model_config = {"env_prefix": "SCHEDULER_", "extra": "ignore", "populate_by_name": True}


class WindowSettings(BaseSettings):
    """Deployment windows per environment class, in a fixed reference timezone."""

    timezone: str = Field(default="UTC", alias="WINDOWS_TIMEZONE")
    development: DeploymentWindow = Field(
        default_factory=lambda: DeploymentWindow(days=[0, 1, 2, 3, 4], start_hour=6, end_hour=22),
    )
    uat: DeploymentWindow = Field(
        default_factory=lambda: DeploymentWindow(days=[0, 1, 2, 3, 4], start_hour=9, end_hour=18),
    )
    production: DeploymentWindow = Field(
        default_factory=lambda: DeploymentWindow(days=[6], start_hour=2, end_hour=6),
    )

    model_config = {"env_prefix": "WINDOWS_", "extra": "ignore", "populate_by_name": True}

    def as_mapping(self) -> dict[EnvironmentClass, DeploymentWindow]:
        return {
            EnvironmentClass.DEVELOPMENT: self.development,
            EnvironmentClass.UAT: self.uat,
            EnvironmentClass.PRODUCTION: self.production,
        }


class RemoteSettings(BaseSettings):
    """Platform CLI used to push artifacts and run remote tests."""

    cli_binary: str = Field(default="sf", alias="REMOTE_CLI_BINARY")
    api_version: str = Field(default="60.0", alias="SF_API_VERSION")
    simulated: bool = Field(default=False, alias="REMOTE_SIMULATED")
    test_wait_minutes: int = Field(default=10, alias="REMOTE_TEST_WAIT_MINUTES")

    model_config = {"env_prefix": "REMOTE_", "extra": "ignore", "populate_by_name": True}


class StorageSettings(BaseSettings):
    """Durable storage for schedules, records and snapshots."""

    backend: StorageBackend = Field(default=StorageBackend.JSON, alias="STORAGE_BACKEND")
    data_dir: str = Field(default="./deployguard-data", alias="STORAGE_DATA_DIR")

    model_config = {"env_prefix": "STORAGE_", "extra": "ignore", "populate_by_name": True}


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    host: str = Field(default="localhost", alias="DB_HOST")
    port: int = Field(default=5432, alias="DB_PORT")
    name: str = Field(default="deployguard", alias="DB_NAME")
    user: str = Field(default="deployguard", alias="DB_USER")
    password: str = Field(default="", alias="DB_PASSWORD")
    pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    @property
    def async_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    model_config = {"env_prefix": "DB_", "extra": "ignore", "populate_by_name": True}


class RedisSettings(BaseSettings):
    """Redis configuration, used for cross-process target locks."""

    enabled: bool = Field(default=False, alias="REDIS_ENABLED")
    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: str = Field(default="", alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    model_config = {"env_prefix": "REDIS_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    otlp_endpoint: str = Field(default="http://localhost:4317", alias="OTLP_ENDPOINT")
    service_name: str = Field(default="deployguard", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")

    safety: SafetySettings = Field(default_factory=SafetySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    quality_gate: QualityGateSettings = Field(default_factory=QualityGateSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    windows: WindowSettings = Field(default_factory=WindowSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
