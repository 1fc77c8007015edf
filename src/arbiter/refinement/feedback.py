"""Refinement prompts built from a failed assessment.

The prompt tells the sub-agent how it scored, which areas fell short, and
what to change, then repeats the original task and its quality
requirements.
"""

from __future__ import annotations

import jinja2

from arbiter.analytics.trends import WEAK_CATEGORY_THRESHOLD, to_display_scale
from arbiter.core.logging import get_logger
from arbiter.quality.models import QualityAssessment, Severity

_logger = get_logger("refinement.feedback")

MAX_TASK_CHARS = 3000

REFINEMENT_TEMPLATE = """\
REFINEMENT REQUEST

Your previous response scored {{ score }}/100 (threshold: {{ threshold }}). \
Please refine your response addressing the following areas:

AREAS NEEDING IMPROVEMENT:
{% for area in areas %}- {{ area }}
{% endfor %}
SPECIFIC FEEDBACK:
{% for item in feedback %}- {{ item }}
{% endfor %}
{% if suggestions %}REFINEMENT SUGGESTIONS:
{% for suggestion in suggestions %}- {{ suggestion }}
{% endfor %}
{% endif %}ORIGINAL TASK:
{{ original_task }}

QUALITY REQUIREMENTS:
{{ quality_criteria or "Follow the original task requirements." }}

Please provide a refined response that addresses these issues while keeping \
the same JSON format structure.
"""


def refinement_areas(assessment: QualityAssessment) -> list[str]:
    """Weak categories with their display score, then other failed categories."""
    areas = [
        f"{category} (score: {to_display_scale(score):g}/100)"
        for category, score in assessment.weak_categories(WEAK_CATEGORY_THRESHOLD).items()
    ]
    for result in assessment.rule_results:
        if result.passed or result.severity == Severity.CRITICAL:
            continue
        category = result.category.value
        if not any(area.startswith(category) for area in areas):
            areas.append(category)
    return areas


def specific_feedback(assessment: QualityAssessment) -> list[str]:
    feedback = [
        r.feedback
        for r in assessment.rule_results
        if not r.passed and r.feedback and r.severity != Severity.CRITICAL
    ]
    if assessment.overall_score < 0.5:
        feedback.append("Response needs significant improvement to meet quality standards")
    elif assessment.overall_score < assessment.threshold:
        feedback.append("Response is close to the quality threshold; minor improvements needed")
    return feedback


class RefinementPromptBuilder:
    """Renders refinement prompts with Jinja2.

    Args:
        template: Optional replacement for the default template. It receives
            ``score``, ``threshold``, ``areas``, ``feedback``,
            ``suggestions``, ``original_task`` and ``quality_criteria``.
        jinja_env: Optional custom Jinja2 environment.
    """

    def __init__(
        self,
        template: str | None = None,
        jinja_env: jinja2.Environment | None = None,
    ) -> None:
        self.env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.template_source = template or REFINEMENT_TEMPLATE

    def build(
        self,
        assessment: QualityAssessment,
        original_task: str,
        quality_criteria: str = "",
    ) -> str:
        if len(original_task) > MAX_TASK_CHARS:
            original_task = (
                original_task[:MAX_TASK_CHARS] + "\n\n[... original task truncated for brevity ...]"
            )
        context = {
            "score": f"{to_display_scale(assessment.overall_score):g}",
            "threshold": f"{to_display_scale(assessment.threshold):g}",
            "areas": refinement_areas(assessment),
            "feedback": specific_feedback(assessment),
            "suggestions": list(assessment.refinement_suggestions),
            "original_task": original_task,
            "quality_criteria": quality_criteria,
        }
        try:
            return self.env.from_string(self.template_source).render(**context).strip()
        except jinja2.TemplateError as e:
            _logger.error("refinement.template_failed", error=str(e))
            return self.env.from_string(REFINEMENT_TEMPLATE).render(**context).strip()
