"""Test data models and validation."""

import pytest
from pydantic import TypeAdapter, ValidationError

from storytest.models import (
    ApiUsageIssue,
    Issue,
    LocatorQualityIssue,
    PerformanceIssue,
    Report,
    ReportSummary,
    Scenario,
    Story,
    SyntaxIssue,
    TestAnalysis,
    ValidatedScenario,
)


class TestStory:
    """Test Story model validation."""

    def test_description_is_stripped(self):
        story = Story(description="  User signs in  ")
        assert story.description == "User signs in"
        assert story.acceptance_criteria == []

    def test_empty_description_fails(self):
        with pytest.raises(ValidationError, match="must not be empty"):
            Story(description="   ")

    def test_story_is_frozen(self):
        story = Story(description="User signs in")
        with pytest.raises(ValidationError):
            story.description = "changed"


class TestScenario:
    """Test Scenario and ValidatedScenario models."""

    def test_empty_steps_fail(self):
        with pytest.raises(ValidationError, match="at least one step"):
            Scenario(title="t", kind="positive", description="d", steps=[], expected_outcome="o")

    def test_unknown_kind_fails(self):
        with pytest.raises(ValidationError):
            Scenario(title="t", kind="smoke", description="d", steps=["s"], expected_outcome="o")

    def test_default_device_is_desktop(self):
        scenario = Scenario(title="t", kind="positive", description="d", steps=["s"], expected_outcome="o")
        assert scenario.target_device == "desktop"

    def test_from_scenario_keeps_fields(self, sign_in_scenario):
        validated = ValidatedScenario.from_scenario(
            sign_in_scenario,
            matched_locators={"forms.email": "#email"},
            matched_routes=[],
            advisory_notes=["note"],
        )
        assert validated.title == sign_in_scenario.title
        assert validated.steps == sign_in_scenario.steps
        assert validated.matched_locators == {"forms.email": "#email"}
        assert validated.advisory_notes == ["note"]


class TestIssues:
    """Test the tagged issue union."""

    def test_discriminator_selects_subclass(self):
        adapter = TypeAdapter(Issue)
        issue = adapter.validate_python({
            "category": "locator_quality",
            "line": 3,
            "kind": "good_selector",
            "message": "Good use of semantic selector",
            "severity": "success",
            "robustness_score": 9,
        })
        assert isinstance(issue, LocatorQualityIssue)
        assert issue.is_positive

    def test_line_must_be_positive(self):
        with pytest.raises(ValidationError):
            ApiUsageIssue(line=0, kind="missing_await", message="m", severity="error")

    def test_robustness_score_range(self):
        with pytest.raises(ValidationError):
            LocatorQualityIssue(line=1, kind="k", message="m", severity="info", robustness_score=11)


class TestTestAnalysis:
    """Test per-file analysis helpers."""

    def test_count_problems_excludes_positive_signals(self):
        analysis = TestAnalysis(
            filename="a.spec.ts",
            syntax_issues=[SyntaxIssue(line=1, kind="compile_error", message="m", severity="error")],
            locator_quality_issues=[
                LocatorQualityIssue(line=2, kind="good_selector", message="m", severity="success", robustness_score=9),
                LocatorQualityIssue(line=3, kind="brittle_selector", message="m", severity="warning", robustness_score=3),
            ],
            performance_issues=[PerformanceIssue(line=4, kind="networkidle_usage", message="m", severity="info")],
        )
        assert analysis.count_problems() == 3
        assert len(analysis.all_issues()) == 4
        assert list(analysis.issues_by_category()) == [
            "syntax", "api_usage", "locator_quality", "performance", "maintainability", "best_practice",
        ]

    def test_score_is_bounded(self):
        with pytest.raises(ValidationError):
            TestAnalysis(filename="a.spec.ts", overall_score=101)


class TestReport:
    """Test Report serialization."""

    def test_round_trip(self):
        analysis = TestAnalysis(
            filename="sign-in-happy-path-desktop.spec.ts",
            api_usage_issues=[ApiUsageIssue(line=7, kind="missing_await", message="m", severity="error")],
            overall_score=90,
            recommended_fixes=["Add await"],
        )
        report = Report(
            summary=ReportSummary(
                total_tests=1, total_issues=1, average_quality_score=90,
                tests_needing_attention=0, ready_for_execution=1,
            ),
            test_analyses=[analysis],
            recommendations=["**GOAL**: Aim for quality scores above 80 for production readiness"],
        )

        restored = Report.model_validate_json(report.model_dump_json())

        assert restored == report
        assert isinstance(restored.test_analyses[0].api_usage_issues[0], ApiUsageIssue)
