"""Quality assessment: models, rules and the validator."""

from arbiter.quality.models import (
    QualityAssessment,
    QualityCategory,
    QualityRuleResult,
    Severity,
    SubAgentResponse,
    ValidationContext,
)
from arbiter.quality.rules import QualityRule, RuleRegistry, default_rule_registry
from arbiter.quality.validator import QualityValidator

__all__ = [
    "QualityAssessment",
    "QualityCategory",
    "QualityRule",
    "QualityRuleResult",
    "QualityValidator",
    "RuleRegistry",
    "Severity",
    "SubAgentResponse",
    "ValidationContext",
    "default_rule_registry",
]
