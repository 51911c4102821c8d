"""
Stage G: Cross-file aggregation into the engineer review report.

Runs once after every file has been analyzed. Everything here is deterministic.
"""

from __future__ import annotations
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..models import (
    PrioritizedAction,
    Report,
    ReportSummary,
    TestAnalysis,
)

logger = logging.getLogger(__name__)

NEEDS_ATTENTION_BELOW = 70

_PRIORITY_RANK: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}

STANDING_RECOMMENDATIONS = [
    "**BEST PRACTICE**: Run tests in headed mode first to verify functionality",
    "**PROCESS**: Use this report to prioritize fixes by impact and effort",
    "**GOAL**: Aim for quality scores above 80 for production readiness",
]


def build_prioritized_actions(analyses: List[TestAnalysis]) -> List[PrioritizedAction]:
    """
    Flatten issues into action items.

    syntax -> high, api_usage errors -> medium, performance -> low. Other issues
    are not actionable here. Stable sort by priority, highest first.
    """
    actions: List[PrioritizedAction] = []

    for analysis in analyses:
        for issue in analysis.syntax_issues:
            actions.append(PrioritizedAction(
                priority="high", category="syntax", filename=analysis.filename,
                line=issue.line, description=issue.message,
                estimated_effort="low", impact="blocking",
            ))

    for analysis in analyses:
        for issue in analysis.api_usage_issues:
            if issue.severity != "error":
                continue
            actions.append(PrioritizedAction(
                priority="medium", category="api_usage", filename=analysis.filename,
                line=issue.line, description=issue.message,
                estimated_effort="medium", impact="functional",
            ))

    for analysis in analyses:
        for issue in analysis.performance_issues:
            actions.append(PrioritizedAction(
                priority="low", category="performance", filename=analysis.filename,
                line=issue.line, description=issue.message,
                estimated_effort="low", impact="optimization",
            ))

    return sorted(actions, key=lambda a: -_PRIORITY_RANK[a.priority])


def build_summary(analyses: List[TestAnalysis]) -> ReportSummary:
    scores = [a.overall_score for a in analyses]
    return ReportSummary(
        total_tests=len(analyses),
        total_issues=sum(a.count_problems() for a in analyses),
        average_quality_score=round(sum(scores) / len(scores)) if scores else 0,
        tests_needing_attention=sum(1 for s in scores if s < NEEDS_ATTENTION_BELOW),
        ready_for_execution=sum(1 for a in analyses if not a.syntax_issues),
    )


def build_recommendations(analyses: List[TestAnalysis], summary: ReportSummary) -> List[str]:
    recommendations: List[str] = []

    if any(a.syntax_issues for a in analyses):
        recommendations.append("**CRITICAL**: Fix all syntax errors before running tests")
    if sum(len(a.api_usage_issues) for a in analyses) > 5:
        recommendations.append("**HIGH**: Review Playwright API usage patterns across tests")
    if analyses and summary.average_quality_score < NEEDS_ATTENTION_BELOW:
        recommendations.append("**MEDIUM**: Overall test quality needs improvement")

    recommendations.extend(STANDING_RECOMMENDATIONS)
    return recommendations


class ReportBuilder:
    """Stage G aggregation: analyses in, write-once Report out."""

    def process(self, analyses: List[TestAnalysis], timestamp: Optional[datetime] = None) -> Report:
        summary = build_summary(analyses)
        report_kwargs = dict(
            summary=summary,
            test_analyses=analyses,
            prioritized_actions=build_prioritized_actions(analyses),
            recommendations=build_recommendations(analyses, summary),
        )
        if timestamp is not None:
            report_kwargs["timestamp"] = timestamp
        report = Report(**report_kwargs)

        logger.info(
            f"Report built: {summary.total_tests} tests, {summary.total_issues} issues, "
            f"average score {summary.average_quality_score}/100"
        )
        return report


def render_markdown(report: Report) -> str:
    """Render the engineer review report as Markdown."""
    summary = report.summary
    lines: List[str] = [
        "# Engineer Review Report",
        "",
        f"**Generated**: {report.timestamp.isoformat()}",
        f"**Total Tests**: {summary.total_tests}",
        f"**Overall Quality Score**: {summary.average_quality_score}/100",
        "",
        "## Summary",
        "",
        f"- **Total Issues Found**: {summary.total_issues}",
        f"- **Tests Ready for Execution**: {summary.ready_for_execution}/{summary.total_tests}",
        f"- **Tests Needing Attention**: {summary.tests_needing_attention}",
        "",
        "## Prioritized Actions",
        "",
    ]

    if not report.prioritized_actions:
        lines.extend(["No blocking, functional or performance actions.", ""])
    for action in report.prioritized_actions:
        lines.extend([
            f"### {action.priority.upper()} - {action.filename}:{action.line}",
            f"- **Type**: {action.category}",
            f"- **Description**: {action.description}",
            f"- **Estimated Effort**: {action.estimated_effort}",
            f"- **Impact**: {action.impact}",
            "",
        ])

    lines.extend(["## Individual Test Analysis", ""])
    for analysis in report.test_analyses:
        lines.extend([
            f"### {analysis.filename} (Score: {analysis.overall_score}/100)",
            "",
            "**Issues Found:**",
            f"- Syntax Errors: {len(analysis.syntax_issues)}",
            f"- API Issues: {len(analysis.api_usage_issues)}",
            f"- Locator Issues: {len(analysis.locator_quality_issues)}",
            f"- Performance Issues: {len(analysis.performance_issues)}",
            f"- Maintainability Issues: {len(analysis.maintainability_issues)}",
            f"- Best Practice Issues: {len(analysis.best_practice_issues)}",
            "",
            "**Top Recommendations:**",
        ])
        lines.extend(f"- {fix}" for fix in analysis.recommended_fixes)
        lines.append("")

        if analysis.syntax_issues:
            lines.append("**Syntax Errors:**")
            lines.extend(f"- Line {e.line}: {e.message}" for e in analysis.syntax_issues)
            lines.append("")
        if analysis.api_usage_issues:
            lines.append("**API Issues:**")
            lines.extend(
                f"- Line {i.line}: {i.message} ({i.severity})" for i in analysis.api_usage_issues
            )
            lines.append("")
        if analysis.best_practice_issues:
            lines.append("**Best Practice Issues:**")
            lines.extend(
                f"- Line {i.line}: {i.message} ({i.severity})" for i in analysis.best_practice_issues
            )
            lines.append("")

    lines.extend(["## Overall Recommendations", ""])
    lines.extend(f"- {rec}" for rec in report.recommendations)
    lines.extend([
        "",
        "## Next Steps",
        "",
        "1. **Fix Critical Issues**: Address all syntax errors first",
        "2. **Review API Usage**: Fix Playwright API issues",
        "3. **Optimize Locators**: Improve locator robustness",
        "4. **Test Execution**: Run tests in headed mode to verify",
        "5. **Iterate**: Re-run analysis after fixes",
        "",
        "---",
        "*Generated by storytest quality analysis*",
        "",
    ])
    return "\n".join(lines)
