"""Unit tests for target validation."""

from __future__ import annotations

import pytest

from deployguard.config import SafetySettings
from deployguard.domain.errors import BlockedTargetError
from deployguard.domain.models.deployment import ErrorKind
from deployguard.domain.services.target_validator import TargetValidator


class TestTargetValidator:
    def test_whitelisted_target_allowed(self, validator: TargetValidator) -> None:
        result = validator.validate("dev-sandbox")
        assert result.allowed is True
        assert result.warning is None

    @pytest.mark.parametrize("target", ["production", "my-PROD-org", "LiveOrg", "main-branch"])
    def test_production_like_target_blocked(self, validator: TargetValidator, target: str) -> None:
        with pytest.raises(BlockedTargetError) as exc_info:
            validator.validate(target)
        assert "production-like" in exc_info.value.message
        assert exc_info.value.target == target
        assert exc_info.value.kind == ErrorKind.BLOCKED_TARGET

    def test_indicator_match_is_case_insensitive(self, validator: TargetValidator) -> None:
        assert validator.production_indicator("ACME-PRODUCTION") == "production"
        assert validator.production_indicator("acme-sandbox") is None

    def test_unknown_target_blocked_in_strict_mode(self, validator: TargetValidator) -> None:
        with pytest.raises(BlockedTargetError) as exc_info:
            validator.validate("scratch-org-7")
        assert "is not whitelisted" in exc_info.value.message
        assert "dev-sandbox" in exc_info.value.message

    def test_unknown_target_warns_in_relaxed_mode(self) -> None:
        validator = TargetValidator(SafetySettings(strict_mode=False))
        result = validator.validate("scratch-org-7")
        assert result.allowed is True
        assert result.warning is not None
        assert "scratch-org-7" in result.warning

    def test_relaxed_mode_still_blocks_production(self) -> None:
        validator = TargetValidator(SafetySettings(strict_mode=False))
        with pytest.raises(BlockedTargetError):
            validator.validate("prod-eu")

    def test_whitelist_wins_over_indicator(self) -> None:
        validator = TargetValidator(SafetySettings(sandbox_whitelist=["prod-copy-sandbox"]))
        assert validator.validate("prod-copy-sandbox").allowed is True

    def test_whitelist_match_is_exact(self, validator: TargetValidator) -> None:
        with pytest.raises(BlockedTargetError):
            validator.validate("DEV-SANDBOX")

    def test_custom_indicators(self) -> None:
        validator = TargetValidator(
            SafetySettings(sandbox_whitelist=[], production_indicators=["customer"])
        )
        with pytest.raises(BlockedTargetError) as exc_info:
            validator.validate("customer-eu")
        assert "matched 'customer'" in exc_info.value.message
