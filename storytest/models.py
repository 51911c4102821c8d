"""
Data models for the storytest pipeline.

These Pydantic models define the records threaded through the four stages:
Story -> Scenario -> ValidatedScenario -> GeneratedTest -> TestAnalysis -> Report.
Issues form a closed tagged union keyed on ``category`` so that scoring and
prioritization can dispatch on the subtaxonomy.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


ScenarioKind = Literal["positive", "negative", "edge", "cross-device"]
SCENARIO_KINDS: Tuple[str, ...] = ("positive", "negative", "edge", "cross-device")

Device = Literal["desktop", "mobile", "tablet"]
DEVICES: Tuple[str, ...] = ("desktop", "mobile", "tablet")

Severity = Literal["error", "warning", "info", "success"]

IssueCategory = Literal[
    "syntax",
    "api_usage",
    "locator_quality",
    "performance",
    "maintainability",
    "best_practice",
]
ISSUE_CATEGORIES: Tuple[str, ...] = (
    "syntax",
    "api_usage",
    "locator_quality",
    "performance",
    "maintainability",
    "best_practice",
)

Priority = Literal["high", "medium", "low"]


# ==================== Pipeline Input ====================

class Story(BaseModel):
    """User story describing the feature under test."""
    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Natural-language feature description")
    acceptance_criteria: List[str] = Field(default_factory=list, description="Optional acceptance criteria")

    @field_validator('description')
    @classmethod
    def validate_description(cls, v):
        if not v or not v.strip():
            raise ValueError("Story description must not be empty")
        return v.strip()


# ==================== Stage A / B ====================

class Scenario(BaseModel):
    """Test scenario expanded from a story."""
    title: str = Field(..., description="Human-readable scenario title")
    kind: ScenarioKind = Field(..., description="Scenario category")
    description: str = Field(..., description="What this scenario tests")
    steps: List[str] = Field(..., description="Ordered free-text test steps")
    expected_outcome: str = Field(..., description="What should happen")
    target_device: Device = Field("desktop", description="Device the scenario targets")

    @field_validator('steps')
    @classmethod
    def validate_non_empty_steps(cls, v):
        if not v:
            raise ValueError("Scenario must have at least one step")
        return v


class ValidatedScenario(Scenario):
    """Scenario grounded against the knowledge base."""
    matched_locators: Dict[str, str] = Field(default_factory=dict,
        description="Qualified locator name -> locator expression")
    matched_routes: List[str] = Field(default_factory=list, description="Route descriptors")
    advisory_notes: List[str] = Field(default_factory=list, description="Grounding notes")

    @classmethod
    def from_scenario(
        cls,
        scenario: Scenario,
        matched_locators: Dict[str, str],
        matched_routes: List[str],
        advisory_notes: List[str]
    ) -> "ValidatedScenario":
        return cls(
            **scenario.model_dump(),
            matched_locators=matched_locators,
            matched_routes=matched_routes,
            advisory_notes=advisory_notes
        )


# ==================== Stage C ====================

class GeneratedTest(BaseModel):
    """Generated Playwright test file."""
    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., description="Derived file name, e.g. sign-in-happy-path-desktop.spec.ts")
    source_text: str = Field(..., description="TypeScript source")


# ==================== Stage G: Issues ====================

class BaseIssue(BaseModel):
    """Common fields of every detected issue."""
    model_config = ConfigDict(frozen=True)

    line: int = Field(..., ge=1, description="1-based line number")
    kind: str = Field(..., description="Detector-specific issue type")
    message: str
    severity: Severity
    suggestion: str = ""


class SyntaxIssue(BaseIssue):
    category: Literal["syntax"] = "syntax"
    character: int = Field(1, ge=1)
    code: int = 0


class ApiUsageIssue(BaseIssue):
    category: Literal["api_usage"] = "api_usage"


class LocatorQualityIssue(BaseIssue):
    category: Literal["locator_quality"] = "locator_quality"
    robustness_score: int = Field(..., ge=0, le=10)

    @property
    def is_positive(self) -> bool:
        return self.severity == "success"


class PerformanceIssue(BaseIssue):
    category: Literal["performance"] = "performance"
    impact: Literal["low", "medium", "high"] = "low"


class MaintainabilityIssue(BaseIssue):
    category: Literal["maintainability"] = "maintainability"


class BestPracticeIssue(BaseIssue):
    category: Literal["best_practice"] = "best_practice"


Issue = Annotated[
    Union[
        SyntaxIssue,
        ApiUsageIssue,
        LocatorQualityIssue,
        PerformanceIssue,
        MaintainabilityIssue,
        BestPracticeIssue,
    ],
    Field(discriminator="category"),
]


class TestAnalysis(BaseModel):
    """Static analysis of one generated test file."""
    model_config = ConfigDict(frozen=True)
    __test__ = False

    filename: str
    syntax_issues: List[SyntaxIssue] = Field(default_factory=list)
    api_usage_issues: List[ApiUsageIssue] = Field(default_factory=list)
    locator_quality_issues: List[LocatorQualityIssue] = Field(default_factory=list)
    performance_issues: List[PerformanceIssue] = Field(default_factory=list)
    maintainability_issues: List[MaintainabilityIssue] = Field(default_factory=list)
    best_practice_issues: List[BestPracticeIssue] = Field(default_factory=list)
    overall_score: int = Field(100, ge=0, le=100)
    recommended_fixes: List[str] = Field(default_factory=list)

    def issues_by_category(self) -> Dict[str, List[BaseIssue]]:
        """Issue lists keyed by subtaxonomy, in a fixed order."""
        return {
            "syntax": list(self.syntax_issues),
            "api_usage": list(self.api_usage_issues),
            "locator_quality": list(self.locator_quality_issues),
            "performance": list(self.performance_issues),
            "maintainability": list(self.maintainability_issues),
            "best_practice": list(self.best_practice_issues),
        }

    def all_issues(self) -> List[BaseIssue]:
        issues: List[BaseIssue] = []
        for category_issues in self.issues_by_category().values():
            issues.extend(category_issues)
        return issues

    def count_problems(self) -> int:
        """Count issues, excluding positive locator signals."""
        return sum(
            1 for issue in self.all_issues()
            if not (isinstance(issue, LocatorQualityIssue) and issue.is_positive)
        )


# ==================== Stage G: Report ====================

class PrioritizedAction(BaseModel):
    """Cross-file action item for the engineer review."""
    model_config = ConfigDict(frozen=True)

    priority: Priority
    category: IssueCategory
    filename: str
    line: int
    description: str
    estimated_effort: Literal["low", "medium", "high"]
    impact: Literal["blocking", "functional", "optimization"]


class ReportSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tests: int = Field(..., ge=0)
    total_issues: int = Field(..., ge=0)
    average_quality_score: int = Field(..., ge=0, le=100)
    tests_needing_attention: int = Field(..., ge=0, description="Files scoring below 70")
    ready_for_execution: int = Field(..., ge=0, description="Files with no syntax issues")


class Report(BaseModel):
    """Engineer review report. Write-once."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    summary: ReportSummary
    test_analyses: List[TestAnalysis] = Field(default_factory=list)
    prioritized_actions: List[PrioritizedAction] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# ==================== Workflow Output ====================

class WorkflowResult(BaseModel):
    """Everything produced by one pipeline run."""
    story: Story
    scenarios: List[Scenario]
    validated_scenarios: List[ValidatedScenario]
    tests: List[GeneratedTest]
    report: Report
    execution_stats: Dict[str, Any] = Field(default_factory=dict)
    model_info: Optional[Dict[str, Any]] = None
