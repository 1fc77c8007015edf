"""Tests for arbiter.quality: response parsing, rules and the validator."""

from __future__ import annotations

import json

import pytest

from arbiter.analytics.store import AnalyticsStore
from arbiter.core.config import QualityConfig
from arbiter.intelligence.params import ParameterBoard, ParameterSet
from arbiter.quality.models import (
    QualityCategory,
    QualityRuleResult,
    Severity,
    SubAgentResponse,
    ValidationContext,
)
from arbiter.quality.rules import (
    CodeSnippetRule,
    FilePathSpecificityRule,
    FormatComplianceRule,
    RuleRegistry,
    StructuredOperationsRule,
    TaskCompletionRule,
    _SpecificityRule,
    default_rule_registry,
)
from arbiter.quality.validator import QualityValidator
from tests.helpers import EchoScoreRule, context, good_response


class _FixedRule:
    def __init__(self, name: str, category: QualityCategory, score: float) -> None:
        self.name = name
        self.category = category
        self.score = score

    def evaluate(self, response, context):
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=self.score,
            passed=self.score >= 0.7,
            feedback=f"{self.name} scored {self.score}",
            severity=Severity.IMPORTANT,
        )


class _BrokenRule:
    name = "broken"
    category = QualityCategory.SPECIFICITY

    def evaluate(self, response, context):
        raise KeyError("missing field")


# ─── Response parsing ────────────────────────────────────────────────


class TestSubAgentResponse:
    def test_parses_bare_json(self):
        parsed = SubAgentResponse.parse(json.dumps(good_response()))
        assert parsed.deliverables is not None
        assert len(parsed.recommendations) == 3
        assert parsed.structured_operations is not None

    def test_parses_fenced_json(self):
        text = "Here you go:\n```json\n" + json.dumps(good_response()) + "\n```"
        assert SubAgentResponse.parse(text).metadata is not None

    def test_plain_text_is_unstructured(self):
        parsed = SubAgentResponse.parse("just some prose")
        assert parsed.deliverables is None
        assert parsed.analysis == "just some prose"

    def test_accepts_legacy_operations_key(self):
        data = {"memory_operations": [{"operation": "create_entities"}]}
        assert SubAgentResponse.parse(data).structured_operations == [
            {"operation": "create_entities"}
        ]


# ─── Rules ───────────────────────────────────────────────────────────


class TestRules:
    def test_format_compliance_full(self):
        result = FormatComplianceRule().evaluate(
            SubAgentResponse.parse(good_response()), context()
        )
        assert result.score == 1.0
        assert result.passed

    def test_format_compliance_unstructured_is_critical(self):
        result = FormatComplianceRule().evaluate(SubAgentResponse.parse("prose"), context())
        assert result.score == 0.0
        assert result.severity == Severity.CRITICAL

    def test_invalid_operation_types(self):
        response = SubAgentResponse.parse({
            "structured_operations": [
                {"operation": "create_entities"},
                {"operation": "drop_database"},
            ]
        })
        result = StructuredOperationsRule().evaluate(response, context())
        assert result.score == 0.5
        assert "invalid operation type: drop_database" in result.issues

    def test_task_completion_partial(self):
        response = SubAgentResponse.parse(good_response(
            task_completion_status="partial", confidence_level="low", processing_time="0"
        ))
        result = TaskCompletionRule().evaluate(response, context())
        assert result.score == pytest.approx(0.4)
        assert not result.passed

    def test_specificity_not_applicable_for_non_technical(self):
        rule = FilePathSpecificityRule(["Security Engineer"])
        result = rule.evaluate(SubAgentResponse.parse("prose"), context("Research Analyst"))
        assert result.score == 1.0
        assert result.feedback == "Not applicable for this sub-agent"

    def test_file_path_specificity_for_technical(self):
        response = SubAgentResponse.parse({
            "deliverables": {
                "analysis": (
                    "Token check in src/auth/jwt.py line 42, config/settings.yaml and "
                    "src/api/routes.py skip validation."
                ),
                "recommendations": [],
            }
        })
        result = FilePathSpecificityRule(["Security Engineer"]).evaluate(
            response, context("Security Engineer")
        )
        assert result.score == 1.0
        assert result.passed

    def test_generic_code_examples_score_lower(self):
        rule = CodeSnippetRule(["Security Engineer"])
        real = SubAgentResponse(raw="", deliverables={
            "analysis": "`verify_token()` calls `jwt.decode` and `def refresh(token):` leaks",
        })
        generic = SubAgentResponse(raw="", deliverables={
            "analysis": "For example `verify_token()` calls `jwt.decode` and `def sample(x):`",
        })
        ctx = context("Security Engineer")
        assert rule.evaluate(real, ctx).score > rule.evaluate(generic, ctx).score

    def test_specificity_rules_must_implement_scoring(self):
        class Unscored(_SpecificityRule):
            name = "unscored"

        with pytest.raises(TypeError):
            Unscored(["Security Engineer"])


class TestRuleRegistry:
    def test_default_registry_order(self):
        registry = default_rule_registry([])
        assert registry.names[0] == "format_compliance"
        assert len(registry) == 8

    def test_duplicate_name_rejected(self):
        registry = RuleRegistry([FormatComplianceRule()])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(FormatComplianceRule())

    def test_unregister(self):
        registry = default_rule_registry([])
        registry.unregister("task_completion")
        assert "task_completion" not in registry.names


# ─── Validator ───────────────────────────────────────────────────────


class TestValidatorScoring:
    def test_good_response_passes(self):
        assessment = QualityValidator().assess(good_response(), context(), record=False)
        assert assessment.overall_score == pytest.approx(1.0)
        assert assessment.passed
        assert assessment.confidence == "high"
        assert assessment.critical_issues == ()

    def test_scores_stay_in_unit_range(self):
        for response in ("", "prose", good_response(), {"metadata": {}}):
            assessment = QualityValidator().assess(response, context(), record=False)
            assert 0.0 <= assessment.overall_score <= 1.0
            for score in assessment.category_scores.values():
                assert 0.0 <= score <= 1.0

    def test_plain_text_fails_with_critical_issues(self):
        assessment = QualityValidator().assess("ok", context(), record=False)
        assert not assessment.passed
        assert assessment.critical_issues
        assert assessment.failure() is not None

    @pytest.mark.parametrize(
        ("scores", "expected"),
        [
            ((0.9, 0.9), True),
            ((0.9, 0.69), True),
            ((0.95, 0.49), False),
            ((0.7, 0.7), True),
            ((0.55, 0.7), False),
        ],
    )
    def test_pass_requires_threshold_and_floor(self, scores, expected):
        rules = RuleRegistry([
            _FixedRule("a", QualityCategory.FORMAT, scores[0]),
            _FixedRule("b", QualityCategory.COMPLETENESS, scores[1]),
        ])
        validator = QualityValidator(QualityConfig(default_threshold=0.65), rules=rules)
        assessment = validator.assess("x", context(), record=False)

        overall = sum(scores) / 2
        assert assessment.overall_score == pytest.approx(overall)
        assert assessment.passed is (
            overall >= 0.65 and min(scores) >= 0.50
        )
        assert assessment.passed is expected

    def test_category_weights_from_parameters(self):
        rules = RuleRegistry([
            _FixedRule("a", QualityCategory.FORMAT, 1.0),
            _FixedRule("b", QualityCategory.COMPLETENESS, 0.5),
        ])
        board = ParameterBoard(ParameterSet(category_weights={"format": 3.0}))
        assessment = QualityValidator(rules=rules, parameters=board).assess(
            "x", context(), record=False
        )
        assert assessment.overall_score == pytest.approx((3.0 + 0.5) / 4.0)

    def test_subagent_threshold_and_recommendation(self):
        rules = RuleRegistry([_FixedRule("a", QualityCategory.FORMAT, 0.65)])
        assessment = QualityValidator(rules=rules).assess(
            "x", context("Security Engineer"), record=False
        )
        assert assessment.threshold == 0.80
        assert not assessment.passed
        assert assessment.recommendations[-1].startswith(
            "Consider the specific requirements for Security Engineer"
        )


class TestValidatorFailures:
    def test_rule_exception_isolated(self):
        rules = RuleRegistry([
            _FixedRule("good", QualityCategory.FORMAT, 1.0),
            _BrokenRule(),
        ])
        assessment = QualityValidator(rules=rules).assess("x", context(), record=False)

        assert assessment.category_scores["specificity"] == 0.0
        assert assessment.category_scores["format"] == 1.0
        errored = next(r for r in assessment.rule_results if r.rule == "broken")
        assert errored.errored
        assert errored.feedback == "Rule evaluation failed: broken"
        assert "Improve specificity: Rule evaluation failed: broken" in (
            assessment.refinement_suggestions
        )

    def test_errored_rule_zeroes_its_whole_category(self):
        rules = RuleRegistry([
            _FixedRule("fine", QualityCategory.SPECIFICITY, 1.0),
            _BrokenRule(),
        ])
        assessment = QualityValidator(rules=rules).assess("x", context(), record=False)
        assert assessment.category_scores["specificity"] == 0.0

    def test_threshold_provider_failure_falls_back(self):
        def provider(subagent_id: str, fallback: float) -> float:
            raise RuntimeError("no history")

        validator = QualityValidator(threshold_provider=provider)
        assert validator.threshold_for("Security Engineer") == 0.80

    def test_threshold_provider_receives_fallback(self):
        seen: list[tuple[str, float]] = []

        def provider(subagent_id: str, fallback: float) -> float:
            seen.append((subagent_id, fallback))
            return 0.66

        validator = QualityValidator(threshold_provider=provider)
        assert validator.threshold_for("Test Engineer") == 0.66
        assert seen == [("Test Engineer", 0.75)]

    def test_critical_only_failure_cannot_refine(self):
        validator = QualityValidator(rules=RuleRegistry([EchoScoreRule()]))
        assessment = validator.assess("0.1", context(), record=False)
        assert not assessment.can_refine
        assert assessment.refinement_suggestions == ()
        assert assessment.critical_issues == ("Score 0.1 is too low",)


class TestValidatorParameters:
    def test_publish_mid_assessment_not_observed(self):
        board = ParameterBoard(ParameterSet())

        class PublishingRule:
            name = "publisher"
            category = QualityCategory.FORMAT

            def evaluate(self, response, context):
                board.publish({"weight.format": 0.0, "weight.completeness": 1.0}, "test")
                return QualityRuleResult(self.name, self.category, 1.0, True, "ok")

        rules = RuleRegistry([
            PublishingRule(),
            _FixedRule("b", QualityCategory.COMPLETENESS, 0.5),
        ])
        validator = QualityValidator(rules=rules, parameters=board)

        first = validator.assess("x", context(), record=False)
        assert first.overall_score == pytest.approx(0.75)

        second = validator.assess("x", context(), record=False)
        assert second.overall_score == pytest.approx(0.5)


class TestValidatorRecording:
    def test_records_quality_metric(self, store: AnalyticsStore):
        validator = QualityValidator(store=store)
        validator.assess(
            good_response(),
            context(session_id="s1", task_type="review"),
            refinement_attempts=2,
        )
        [metric] = store.quality_metrics("Research Analyst")
        assert metric.passed
        assert metric.refinement_attempts == 2
        assert metric.session_id == "s1"
        assert metric.task_type == "review"
        assert set(metric.category_scores) == {c.value for c in QualityCategory}

    def test_storage_failure_does_not_fail_assessment(self, tmp_path):
        from arbiter.core.config import AnalyticsConfig

        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = AnalyticsStore(AnalyticsConfig(storage_path=blocker / "analytics", flush_every=1))
        assessment = QualityValidator(store=store).assess(good_response(), context())
        assert assessment.passed
        assert len(store.quality_metrics()) == 1

    def test_record_false_skips_store(self, store: AnalyticsStore):
        QualityValidator(store=store).assess(good_response(), context(), record=False)
        assert store.total_records == 0


def test_context_is_immutable():
    ctx = ValidationContext(subagent_id="a", requirements="r")
    with pytest.raises(AttributeError):
        ctx.subagent_id = "b"  # type: ignore[misc]
