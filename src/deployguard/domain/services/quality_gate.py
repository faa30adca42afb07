"""Quality gate: external review of AI-authored changes before deployment."""

from __future__ import annotations

import asyncio
import re
import time

import structlog
from pydantic import ValidationError

from deployguard.domain.errors import ReviewerTimeoutError
from deployguard.domain.models.review import (
    BatchReviewItem,
    BatchReviewSummary,
    ImprovementProposal,
    QualityGateReview,
    ReviewPayload,
    ReviewVerdict,
)
from deployguard.domain.ports.services import ExternalReviewer
from deployguard.infrastructure.observability.metrics import (
    QUALITY_GATE_DURATION,
    QUALITY_GATE_REVIEWS_TOTAL,
)


logger = structlog.get_logger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\"approved\"[\s\S]*\}")

RAW_RESPONSE_LIMIT = 500


def _unknown(value: object) -> str:
    return "Unknown" if value is None else str(value)


def build_review_prompt(proposal: ImprovementProposal) -> str:
    """Render the review request handed to the external reviewer on stdin."""
    improvements = "\n".join(
        f"{i}. {item}" for i, item in enumerate(proposal.improvements, start=1)
    ) or "(none stated)"
    meta = proposal.metadata
    coverage = "Unknown" if meta.coverage is None else f"{meta.coverage}%"

    return f"""# Code Review Task: {proposal.class_name}

## Your Role
You are the quality gate reviewer. An autonomous agent has generated code improvements. Your job is to:
1. Determine if the changes are genuinely better or over-engineered
2. Simplify if the agent added unnecessary complexity
3. Ensure the code will compile and deploy
4. Return the final approved code (or reject with reason)

## Agent's Claimed Improvements
{improvements}

## Context
- Class: {proposal.class_name}
- Current Coverage: {coverage}
- Risk Level: {_unknown(meta.risk_level)}
- Lines Changed: {_unknown(meta.lines_changed)}

## Review Criteria
1. **Simplicity**: Is the improvement actually simpler/cleaner, or did it bloat the code?
2. **Correctness**: Will this compile? Does it change behavior unintentionally?
3. **Value**: Does this improvement provide real value or is it cosmetic?
4. **Logging**: Are there excessive debug statements that should be removed?
5. **Comments**: Are there redundant "IMPROVED:" comments that should be stripped?

## Original Code
```apex
{proposal.original_code}
```

## Agent's Improved Code
```apex
{proposal.improved_code}
```

## Your Response Format
Respond with a JSON object (and nothing else) in this exact format:
```json
{{
  "approved": true|false,
  "reason": "Brief explanation of your decision",
  "changes": ["List of changes you made to simplify/fix"],
  "finalCode": "The complete final code to deploy (if approved)"
}}
```

If rejecting, set finalCode to null and explain why in reason."""


def parse_review_response(response: str) -> QualityGateReview:
    """Extract the reviewer's decision, failing closed.

    A fenced ```json block is tried first, then the outermost object that
    mentions ``"approved"``. Anything that does not validate against
    :class:`ReviewPayload` becomes ``parse_failed``.
    """
    candidates: list[str] = []
    fenced = _FENCED_JSON.search(response)
    if fenced:
        candidates.append(fenced.group(1))
    bare = _BARE_OBJECT.search(response)
    if bare:
        candidates.append(bare.group(0))

    for candidate in candidates:
        try:
            payload = ReviewPayload.model_validate_json(candidate)
        except ValidationError:
            logger.warning("review_payload_invalid", candidate_length=len(candidate))
            continue
        return QualityGateReview.from_payload(payload, raw=response[:RAW_RESPONSE_LIMIT])

    return QualityGateReview(
        verdict=ReviewVerdict.PARSE_FAILED,
        reason="Could not parse review response",
        raw_response=response[:RAW_RESPONSE_LIMIT],
    )


class QualityGate:
    """Sends improvement proposals to an external reviewer and parses the verdict."""

    def __init__(
        self,
        reviewer: ExternalReviewer,
        timeout_seconds: float = 120.0,
        batch_delay_seconds: float = 1.0,
    ) -> None:
        self._reviewer = reviewer
        self._timeout = timeout_seconds
        self._batch_delay = batch_delay_seconds

    async def review(self, proposal: ImprovementProposal) -> QualityGateReview:
        """Review one proposal. Never raises; errors become a non-approved verdict."""
        logger.info("quality_gate_review_started", class_name=proposal.class_name)
        prompt = build_review_prompt(proposal)
        started = time.perf_counter()

        try:
            response = await self._reviewer.invoke(prompt, self._timeout)
        except ReviewerTimeoutError:
            review = QualityGateReview(
                verdict=ReviewVerdict.REVIEWER_ERROR,
                reason=f"Review failed: reviewer timed out after {self._timeout:g}s",
            )
        except Exception as e:
            logger.exception("quality_gate_reviewer_error", class_name=proposal.class_name)
            review = QualityGateReview(
                verdict=ReviewVerdict.REVIEWER_ERROR,
                reason=f"Review failed: {e}",
            )
        else:
            if response.exit_code != 0 and not response.stdout.strip():
                review = QualityGateReview(
                    verdict=ReviewVerdict.REVIEWER_ERROR,
                    reason=(
                        f"Review failed: reviewer exited with code {response.exit_code}: "
                        f"{response.stderr.strip()}"
                    ),
                )
            else:
                if response.stderr and "warning" not in response.stderr.lower():
                    logger.warning("quality_gate_reviewer_stderr", stderr=response.stderr[:500])
                review = parse_review_response(response.stdout)

        QUALITY_GATE_DURATION.observe(time.perf_counter() - started)
        QUALITY_GATE_REVIEWS_TOTAL.labels(verdict=review.verdict.value).inc()

        if review.approved:
            logger.info(
                "quality_gate_approved",
                class_name=proposal.class_name,
                reason=review.reason,
                refined=review.final_code is not None,
            )
        else:
            logger.warning(
                "quality_gate_rejected",
                class_name=proposal.class_name,
                verdict=review.verdict.value,
                reason=review.reason,
            )
        return review

    async def review_batch(self, proposals: list[ImprovementProposal]) -> list[BatchReviewItem]:
        """Review proposals one after another with a fixed delay between calls."""
        results: list[BatchReviewItem] = []
        for index, proposal in enumerate(proposals):
            if index and self._batch_delay:
                await asyncio.sleep(self._batch_delay)
            review = await self.review(proposal)
            results.append(BatchReviewItem(class_name=proposal.class_name, review=review))
        return results

    @staticmethod
    def summarize(results: list[BatchReviewItem]) -> BatchReviewSummary:
        approved = [r for r in results if r.review.approved]
        rejected = [r for r in results if not r.review.approved]
        rate = round(len(approved) / len(results) * 100, 1) if results else 0.0
        return BatchReviewSummary(
            total=len(results),
            approved=len(approved),
            rejected=len(rejected),
            approval_rate=rate,
            rejection_reasons=[
                {"class_name": r.class_name, "reason": r.review.reason} for r in rejected
            ],
        )
