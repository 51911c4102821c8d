"""Test report aggregation and rendering."""

from datetime import datetime, timezone

import pytest

from storytest.models import (
    ApiUsageIssue,
    PerformanceIssue,
    Report,
    SyntaxIssue,
    TestAnalysis,
)
from storytest.nodes.reporter import (
    STANDING_RECOMMENDATIONS,
    ReportBuilder,
    build_prioritized_actions,
    build_recommendations,
    build_summary,
    render_markdown,
)


def syntax(line):
    return SyntaxIssue(line=line, kind="compile_error", message=f"syntax at {line}", severity="error")


def api(line, severity="error"):
    return ApiUsageIssue(line=line, kind="missing_await", message=f"api at {line}", severity=severity)


def perf(line):
    return PerformanceIssue(line=line, kind="networkidle_usage", message=f"perf at {line}", severity="info")


@pytest.fixture
def analyses():
    return [
        TestAnalysis(
            filename="a.spec.ts",
            api_usage_issues=[api(4), api(5, severity="warning")],
            performance_issues=[perf(2)],
            overall_score=83,
            recommended_fixes=["Add await"],
        ),
        TestAnalysis(
            filename="b.spec.ts",
            syntax_issues=[syntax(9)],
            overall_score=50,
        ),
    ]


class TestPrioritizedActions:
    """Test action ordering."""

    def test_order_and_mapping(self, analyses):
        actions = build_prioritized_actions(analyses)

        assert [(a.priority, a.category, a.filename, a.line) for a in actions] == [
            ("high", "syntax", "b.spec.ts", 9),
            ("medium", "api_usage", "a.spec.ts", 4),
            ("low", "performance", "a.spec.ts", 2),
        ]
        assert [a.impact for a in actions] == ["blocking", "functional", "optimization"]
        assert [a.estimated_effort for a in actions] == ["low", "medium", "low"]

    def test_stable_within_priority(self):
        analyses = [
            TestAnalysis(filename="a.spec.ts", syntax_issues=[syntax(3), syntax(1)]),
            TestAnalysis(filename="b.spec.ts", syntax_issues=[syntax(2)]),
        ]

        actions = build_prioritized_actions(analyses)

        assert [(a.filename, a.line) for a in actions] == [("a.spec.ts", 3), ("a.spec.ts", 1), ("b.spec.ts", 2)]

    def test_empty(self):
        assert build_prioritized_actions([]) == []


class TestSummary:
    """Test summary statistics."""

    def test_summary(self, analyses):
        summary = build_summary(analyses)

        assert summary.total_tests == 2
        assert summary.total_issues == 4
        assert summary.average_quality_score == 66
        assert summary.tests_needing_attention == 1
        assert summary.ready_for_execution == 1

    def test_empty(self):
        summary = build_summary([])

        assert summary.total_tests == 0
        assert summary.average_quality_score == 0


class TestRecommendations:
    """Test overall recommendations."""

    def test_critical_and_medium(self, analyses):
        recommendations = build_recommendations(analyses, build_summary(analyses))

        assert recommendations == [
            "**CRITICAL**: Fix all syntax errors before running tests",
            "**MEDIUM**: Overall test quality needs improvement",
        ] + STANDING_RECOMMENDATIONS

    def test_high_when_many_api_issues(self):
        analyses = [TestAnalysis(filename="a.spec.ts", api_usage_issues=[api(n) for n in range(1, 7)], overall_score=80)]

        recommendations = build_recommendations(analyses, build_summary(analyses))

        assert recommendations[0] == "**HIGH**: Review Playwright API usage patterns across tests"
        assert len(recommendations) == 4

    def test_empty_run_only_standing(self):
        assert build_recommendations([], build_summary([])) == STANDING_RECOMMENDATIONS


class TestReportBuilder:
    """Test the report node and rendering."""

    def test_process(self, analyses):
        timestamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        report = ReportBuilder().process(analyses, timestamp=timestamp)

        assert report.timestamp == timestamp
        assert report.test_analyses == analyses
        assert len(report.prioritized_actions) == 3
        assert Report.model_validate_json(report.model_dump_json()) == report

    def test_markdown(self, analyses):
        report = ReportBuilder().process(analyses, timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc))

        markdown = render_markdown(report)

        assert markdown.startswith("# Engineer Review Report\n")
        assert "**Overall Quality Score**: 66/100" in markdown
        assert "### HIGH - b.spec.ts:9" in markdown
        assert "### a.spec.ts (Score: 83/100)" in markdown
        assert "- Add await" in markdown
        assert "- Line 4: api at 4 (error)" in markdown
        assert "- **CRITICAL**: Fix all syntax errors before running tests" in markdown
        assert markdown.endswith("*Generated by storytest quality analysis*\n")

    def test_markdown_without_actions(self):
        report = ReportBuilder().process([])
        assert "No blocking, functional or performance actions." in render_markdown(report)
