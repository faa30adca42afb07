"""Quality gate review models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, StrictBool

from deployguard.domain.models.base import ValueObject


class ReviewVerdict(str, Enum):
    """Tagged outcome of a quality gate review."""

    APPROVED = "approved"
    REJECTED = "rejected"
    PARSE_FAILED = "parse_failed"
    REVIEWER_ERROR = "reviewer_error"


class ProposalMetadata(ValueObject):
    """Context handed to the reviewer alongside the code."""

    coverage: float | None = None
    risk_level: str | None = None
    lines_changed: int | None = None


class ImprovementProposal(ValueObject):
    """An AI-authored change to a single source artifact."""

    class_name: str = Field(..., min_length=1)
    original_code: str = ""
    improved_code: str
    improvements: list[str] = Field(default_factory=list)
    metadata: ProposalMetadata = Field(default_factory=ProposalMetadata)
    file_extension: str = ".cls"

    @property
    def artifact_name(self) -> str:
        return f"{self.class_name}{self.file_extension}"


class ReviewPayload(BaseModel):
    """Schema the reviewer's JSON answer must satisfy."""

    approved: StrictBool
    reason: str = ""
    changes: list[str] = Field(default_factory=list)
    final_code: str | None = Field(default=None, alias="finalCode")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("reason", mode="before")
    @classmethod
    def _null_reason(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("changes", mode="before")
    @classmethod
    def _null_changes(cls, value: object) -> object:
        return [] if value is None else value


class QualityGateReview(ValueObject):
    """Result of one review call. Consumed once by the pipeline."""

    verdict: ReviewVerdict
    reason: str = ""
    changes: list[str] = Field(default_factory=list)
    final_code: str | None = None
    raw_response: str = ""

    @property
    def approved(self) -> bool:
        return self.verdict == ReviewVerdict.APPROVED

    @classmethod
    def from_payload(cls, payload: ReviewPayload, raw: str = "") -> QualityGateReview:
        return cls(
            verdict=ReviewVerdict.APPROVED if payload.approved else ReviewVerdict.REJECTED,
            reason=payload.reason,
            changes=payload.changes,
            final_code=payload.final_code if payload.approved else None,
            raw_response=raw,
        )


class BatchReviewItem(ValueObject):
    class_name: str
    review: QualityGateReview


class BatchReviewSummary(ValueObject):
    """Aggregate approval statistics for a batch of reviews."""

    total: int
    approved: int
    rejected: int
    approval_rate: float
    rejection_reasons: list[dict[str, Any]] = Field(default_factory=list)
