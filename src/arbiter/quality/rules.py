"""Quality rules and the registry that holds them.

Each rule is a named implementation of the ``QualityRule`` protocol and
scores one aspect of a response on [0, 1]. Rules are looked up by name in a
``RuleRegistry``, so adding a rule means registering it, not editing the
validator.

Rules scoring file/code specificity only apply to technical sub-agents;
for everyone else they report "not applicable" with a full score.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from typing import Protocol, runtime_checkable

from arbiter.quality.models import (
    VALID_OPERATION_TYPES,
    QualityCategory,
    QualityRuleResult,
    Severity,
    SubAgentResponse,
    ValidationContext,
)


@runtime_checkable
class QualityRule(Protocol):
    """A single independent quality check."""

    name: str
    category: QualityCategory

    def evaluate(
        self, response: SubAgentResponse, context: ValidationContext
    ) -> QualityRuleResult: ...


class RuleRegistry:
    """Name-indexed collection of quality rules, in registration order."""

    def __init__(self, rules: Iterable[QualityRule] = ()) -> None:
        self._rules: dict[str, QualityRule] = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: QualityRule) -> None:
        if rule.name in self._rules:
            raise ValueError(f"Rule {rule.name!r} is already registered")
        self._rules[rule.name] = rule

    def unregister(self, name: str) -> QualityRule:
        return self._rules.pop(name)

    def get(self, name: str) -> QualityRule | None:
        return self._rules.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._rules)

    def categories(self) -> list[QualityCategory]:
        seen: list[QualityCategory] = []
        for rule in self._rules.values():
            if rule.category not in seen:
                seen.append(rule.category)
        return seen

    def __iter__(self) -> Iterator[QualityRule]:
        return iter(list(self._rules.values()))

    def __len__(self) -> int:
        return len(self._rules)


# =============================================================================
# Universal rules
# =============================================================================


class FormatComplianceRule:
    """Checks the response carries deliverables, operations and metadata."""

    name = "format_compliance"
    category = QualityCategory.FORMAT

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        issues: list[str] = []
        score = 0.0
        if response.deliverables is not None:
            score += 0.4
        else:
            issues.append("deliverables section is missing")
        if response.structured_operations is not None:
            score += 0.3
        else:
            issues.append("structured_operations list is missing")
        if response.metadata is not None:
            score += 0.3
        else:
            issues.append("metadata section is missing")

        score = round(score, 4)
        passed = score >= 0.8
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=passed,
            feedback=(
                "Response format is valid" if passed
                else "Response structure is incomplete - missing required sections"
            ),
            severity=Severity.CRITICAL if score < 0.5 else Severity.IMPORTANT,
            issues=tuple(issues),
        )


class DeliverablesCompletenessRule:
    """Checks analysis, recommendations and expected documents are present."""

    name = "deliverables_completeness"
    category = QualityCategory.COMPLETENESS

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        issues: list[str] = []
        score = 0.0

        if len(response.analysis) > 100:
            score += 0.4
        else:
            issues.append("analysis is missing or too brief")

        if response.recommendations:
            score += 0.3
        else:
            issues.append("recommendations are missing")

        if response.documents:
            score += 0.3
        elif "documents" in context.expected_deliverables:
            issues.append("expected documents are missing")
        else:
            score += 0.3

        score = round(score, 4)
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=score >= 0.7,
            feedback=(
                f"Deliverables incomplete: {', '.join(issues)}" if issues
                else "All required deliverables are present"
            ),
            severity=Severity.CRITICAL if score < 0.4 else Severity.IMPORTANT,
            issues=tuple(issues),
        )


class ContentDepthRule:
    """Scores analysis depth, recommendation count and alignment with the task."""

    name = "content_depth"
    category = QualityCategory.COMPLETENESS

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        issues: list[str] = []
        score = 0.0
        analysis = response.analysis

        if len(analysis) > 500:
            score += 0.30
        elif len(analysis) > 200:
            score += 0.20
        else:
            issues.append("analysis lacks depth")

        recommendations = response.recommendations
        if len(recommendations) >= 3:
            score += 0.25
        elif recommendations:
            score += 0.15
        else:
            issues.append("insufficient recommendations")

        task_words = [w for w in context.requirements.lower().split() if w]
        if task_words:
            text = f"{analysis} {' '.join(recommendations)}".lower()
            alignment = sum(1 for w in task_words if w in text) / len(task_words)
            score += round(alignment * 0.45, 2)

        score = min(1.0, round(score, 4))
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=score >= 0.7,
            feedback=(
                f"Content quality issues: {', '.join(issues)}" if issues
                else "Response content meets quality standards"
            ),
            severity=Severity.IMPORTANT,
            issues=tuple(issues),
        )


class StructuredOperationsRule:
    """Checks structured operations use known operation types."""

    name = "structured_operations_validity"
    category = QualityCategory.STRUCTURED_OPERATIONS

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        operations = response.structured_operations or []
        if not operations:
            return QualityRuleResult(
                rule=self.name,
                category=self.category,
                score=0.2,
                passed=False,
                feedback="No structured operations provided - knowledge may not be captured",
                severity=Severity.MINOR,
                issues=("no structured operations",),
            )

        invalid = [
            str(op.get("operation")) for op in operations
            if op.get("operation") not in VALID_OPERATION_TYPES
        ]
        score = round((len(operations) - len(invalid)) / len(operations), 4)
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=score >= 0.8,
            feedback=(
                "Structured operations are valid" if score >= 0.8
                else "Some structured operations have invalid types"
            ),
            severity=Severity.IMPORTANT if score < 0.5 else Severity.MINOR,
            issues=tuple(f"invalid operation type: {name}" for name in invalid),
        )


class TaskCompletionRule:
    """Scores self-reported completion status, confidence and processing time."""

    name = "task_completion"
    category = QualityCategory.TASK_COMPLETION

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        metadata = response.metadata or {}
        score = 0.0

        status = metadata.get("task_completion_status")
        if status == "complete":
            score += 0.5
        elif status == "partial":
            score += 0.3

        confidence = metadata.get("confidence_level")
        if confidence == "high":
            score += 0.3
        elif confidence == "medium":
            score += 0.2
        else:
            score += 0.1

        try:
            processing_time = int(str(metadata.get("processing_time", 0)).strip() or 0)
        except ValueError:
            processing_time = 0
        if 0 < processing_time < 300_000:
            score += 0.2

        score = round(score, 4)
        passed = score >= 0.7
        issues: list[str] = []
        if status != "complete":
            issues.append(f"task reported as {status or 'unknown'}")
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=passed,
            feedback=(
                "Task completion indicators are satisfactory" if passed
                else "Task completion assessment indicates potential issues"
            ),
            severity=Severity.IMPORTANT if score < 0.4 else Severity.MINOR,
            issues=tuple(issues),
        )


# =============================================================================
# Specificity rules (technical sub-agents only)
# =============================================================================

_FILE_PATH_PATTERNS = [
    re.compile(r"[a-zA-Z0-9_-]+/[a-zA-Z0-9_/-]+\.[a-zA-Z0-9]+"),
    re.compile(r"src/[a-zA-Z0-9_/-]+"),
    re.compile(r"config/[a-zA-Z0-9_/-]+"),
    re.compile(r"\./[a-zA-Z0-9_/-]+"),
    re.compile(r"/[a-zA-Z0-9_/-]+\.[a-zA-Z0-9]+"),
]
_LINE_NUMBER_PATTERNS = [
    re.compile(r"lines?\s+\d+(-\d+)?", re.IGNORECASE),
    re.compile(r":\d+"),
]
_DIRECTORY_PATTERNS = [
    re.compile(r"src/[a-zA-Z0-9_-]+"),
    re.compile(r"components?/[a-zA-Z0-9_-]+"),
    re.compile(r"utils?/[a-zA-Z0-9_-]+"),
    re.compile(r"services?/[a-zA-Z0-9_-]+"),
]
_CODE_PATTERNS = [
    re.compile(r"```[\s\S]*?```"),
    re.compile(r"`[^`\n]+`"),
    re.compile(r"\bdef\s+[a-zA-Z_]\w*\s*\("),
    re.compile(r"\bfunction\s+[a-zA-Z_]\w*\s*\("),
    re.compile(r"\bclass\s+[a-zA-Z_]\w*"),
    re.compile(r"\bconst\s+[a-zA-Z_]\w*\s*="),
    re.compile(r"SELECT\s+[\s\S]*?FROM", re.IGNORECASE),
    re.compile(r"CREATE\s+TABLE", re.IGNORECASE),
]
_GENERIC_TERMS = ("example", "pseudo", "sample", "template", "placeholder")
_VAGUE_TERMS = (
    "security vulnerabilities", "performance issues", "best practices",
    "code quality", "optimization opportunities", "potential problems",
    "may have", "could be", "might contain", "generally", "typically",
    "standard practices", "common issues", "usual problems",
)
_TECHNICAL_TERMS = (
    "algorithm", "function", "method", "variable", "parameter",
    "injection", "xss", "csrf", "jwt", "sql", "nosql",
    "middleware", "controller", "service", "repository",
    "index", "query", "schema", "migration", "constraint",
    "dependency", "import", "export", "configuration",
)
_ACTIONABLE_PHRASES = (
    "change line", "modify function", "update configuration",
    "add validation", "remove code", "refactor method",
    "fix query", "update schema", "install package",
)


class _SpecificityRule(ABC):
    """Base for rules that only apply to technical sub-agents."""

    name = "specificity"
    category = QualityCategory.SPECIFICITY

    def __init__(self, technical_subagents: Iterable[str]) -> None:
        self.technical_subagents = frozenset(technical_subagents)

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        if context.subagent_id not in self.technical_subagents:
            return QualityRuleResult(
                rule=self.name,
                category=self.category,
                score=1.0,
                passed=True,
                feedback="Not applicable for this sub-agent",
            )
        return self._score(response.full_text)

    @abstractmethod
    def _score(self, text: str) -> QualityRuleResult:
        """Score the full response text."""


class FilePathSpecificityRule(_SpecificityRule):
    """Rewards concrete file paths, line numbers and directory references."""

    name = "file_path_specificity"

    def _score(self, text: str) -> QualityRuleResult:
        issues: list[str] = []
        score = 0.0

        paths = {match for pattern in _FILE_PATH_PATTERNS for match in pattern.findall(text)}
        if len(paths) >= 3:
            score += 0.5
        elif paths:
            score += 0.25
        else:
            issues.append("no specific file paths found")

        if any(p.search(text) for p in _LINE_NUMBER_PATTERNS):
            score += 0.3
        else:
            issues.append("no line number references found")

        if any(p.search(text) for p in _DIRECTORY_PATTERNS):
            score += 0.2

        score = round(score, 4)
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=score >= 0.5,
            feedback=(
                f"File specificity issues: {', '.join(issues)}. "
                f"Found {len(paths)} file references." if issues
                else f"Good file specificity: Found {len(paths)} specific file paths"
            ),
            severity=Severity.CRITICAL if score < 0.25 else Severity.IMPORTANT,
            issues=tuple(issues),
        )


class CodeSnippetRule(_SpecificityRule):
    """Rewards real code snippets over generic examples."""

    name = "code_snippet_presence"

    def _score(self, text: str) -> QualityRuleResult:
        issues: list[str] = []
        score = 0.0

        snippets = sum(len(p.findall(text)) for p in _CODE_PATTERNS)
        if snippets >= 3:
            score += 0.6
        elif snippets:
            score += 0.3
        else:
            issues.append("no code snippets found")

        if snippets:
            if any(term in text.lower() for term in _GENERIC_TERMS):
                score += 0.2
                issues.append("appears to use generic examples rather than actual code")
            else:
                score += 0.4

        score = round(score, 4)
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=score >= 0.5,
            feedback=(
                f"Code snippet issues: {', '.join(issues)}. Found {snippets} code references."
                if issues else f"Good code specificity: Found {snippets} actual code snippets"
            ),
            severity=Severity.CRITICAL if score < 0.3 else Severity.IMPORTANT,
            issues=tuple(issues),
        )


class AnalysisDepthRule(_SpecificityRule):
    """Penalizes vague wording; rewards technical terms and actionable steps."""

    name = "concrete_analysis_depth"

    def _score(self, text: str) -> QualityRuleResult:
        lowered = text.lower()
        issues: list[str] = []
        score = 0.0

        vagueness = sum(1 for term in _VAGUE_TERMS if term in lowered)
        if vagueness <= 2:
            score += 0.4
        elif vagueness <= 5:
            score += 0.2
        else:
            issues.append(f"too many vague terms used ({vagueness} found)")

        specificity = sum(1 for term in _TECHNICAL_TERMS if term in lowered)
        if specificity >= 5:
            score += 0.4
        elif specificity >= 3:
            score += 0.25
        else:
            issues.append(f"insufficient technical specificity ({specificity} technical terms)")

        actionable = sum(1 for phrase in _ACTIONABLE_PHRASES if phrase in lowered)
        if actionable >= 2:
            score += 0.2
        elif actionable:
            score += 0.1
        else:
            issues.append("lacks actionable recommendations")

        score = round(score, 4)
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=score >= 0.6,
            feedback=(
                f"Analysis depth issues: {', '.join(issues)}." if issues
                else f"Good analysis depth: {specificity} technical terms, "
                f"{actionable} actionable recommendations"
            ),
            severity=Severity.CRITICAL if score < 0.4 else Severity.IMPORTANT,
            issues=tuple(issues),
        )


def default_rule_registry(technical_subagents: Iterable[str]) -> RuleRegistry:
    """Registry with every built-in rule."""
    technical = list(technical_subagents)
    return RuleRegistry([
        FormatComplianceRule(),
        DeliverablesCompletenessRule(),
        ContentDepthRule(),
        StructuredOperationsRule(),
        TaskCompletionRule(),
        FilePathSpecificityRule(technical),
        CodeSnippetRule(technical),
        AnalysisDepthRule(technical),
    ])
