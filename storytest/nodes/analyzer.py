"""
Stage G: Quality Analysis

Runs independent detectors over each generated test file, scores the result and
optionally asks the model for recommended fixes.

Each detector is a pure function ``source -> List[Issue]`` for one subtaxonomy.
Per-line detectors skip comment-only lines. The structural syntax check never
raises: any failure becomes one synthetic syntax issue.
"""

from __future__ import annotations
import asyncio
import logging
import re
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..exceptions import ModelInvocationError
from ..models import (
    ApiUsageIssue,
    BaseIssue,
    BestPracticeIssue,
    GeneratedTest,
    LocatorQualityIssue,
    MaintainabilityIssue,
    PerformanceIssue,
    SyntaxIssue,
    TestAnalysis,
)
from ..prompt_templates import RECOMMENDATIONS_PROMPT, RECOMMENDATIONS_SYSTEM_PROMPT
from ..runtime import ModelClient
from ..tsparse import collect_diagnostics, should_ignore_diagnostic

logger = logging.getLogger(__name__)

LONG_WAIT_MS = 5000

LOOKS_GOOD = "Test looks good! No major issues detected."

MIN_FIXES = 3
MAX_FIXES = 5

FALLBACK_FIXES = [
    "Could not generate LLM recommendations",
    "Please review the detected issues manually",
    "Focus on fixing syntax errors first",
    "Then address Playwright API usage issues",
    "Finally optimize locators and performance",
]

ASYNC_ACTIONS = (
    "goto|click|fill|type|press|check|uncheck|selectOption|hover|dblclick|focus|tap|"
    "setInputFiles|waitForLoadState|waitForURL|waitForSelector|waitForTimeout|"
    "waitForNavigation|waitForResponse|waitForRequest|reload|goBack|goForward|"
    "screenshot|evaluate|setViewportSize|title|content|textContent|innerText|isVisible"
)

_PAGE_ASYNC_CALL = re.compile(rf"\bpage\.(?:{ASYNC_ACTIONS})\(")
_LOCATOR_ASYNC_CALL = re.compile(rf"\bpage\.(?:locator|getBy\w+)\(.*\)\.(?:{ASYNC_ACTIONS})\(")
_AWAIT = re.compile(r"\bawait\b")
_RETURN = re.compile(r"\breturn\b")

_DEPRECATED_CALLS: List[Tuple[str, str, str]] = [
    (
        "page.waitForSelector(",
        "waitForSelector() is deprecated, use locator.waitFor() instead",
        "Replace with: await page.locator(selector).waitFor()",
    ),
    (
        "page.waitForNavigation(",
        "waitForNavigation() is deprecated and inherently racy",
        "Replace with: await page.waitForURL(url)",
    ),
    (
        "page.type(",
        "page.type() is deprecated",
        "Use locator.fill() or locator.pressSequentially() instead",
    ),
]

_INTERACTIVE_CALL = re.compile(r"\.(?:click|fill|press|check|selectOption|dblclick|hover)\(")
_TRY_BLOCK = re.compile(r"\btry\s*\{")

_LOCATOR_STRING = re.compile(
    r"""(?:\blocator|\bclick|\bfill|\bcheck|\buncheck|\bhover|\bdblclick|\bwaitForSelector|\$\$?eval|\$\$?)"""
    r"""\(\s*(['"`])((?:\\.|(?!\1).)*)\1"""
)
_XPATH_STRING = re.compile(r"""\(\s*['"`]\(?//""")
_CLASS_SELECTOR = re.compile(r"(?:^|[\s,>+~(\w\]])\.(?=[A-Za-z_-])")
_SEMANTIC_LOCATOR = re.compile(r"\b(?:getByRole|getByTestId|getByLabel)\(")

_WAIT_FOR_TIMEOUT = re.compile(r"\bwaitForTimeout\(\s*(\d+)")

_PAGE_FILL_LITERAL = re.compile(r"""\bpage\.(?:fill|type)\(\s*(['"`])(?:\\.|(?!\1).)*\1\s*,\s*['"`]""")
_LOCATOR_FILL_LITERAL = re.compile(r"""(?<!page)\.(?:fill|type|pressSequentially)\(\s*['"`]""")
_ASSERTION_LITERAL = re.compile(r"""\.(?:toBe|toEqual|toStrictEqual)\(\s*['"`]""")
_DESCRIBE = re.compile(r"\btest\.describe(?:\.\w+)?\(")

_CANONICAL_IMPORT = re.compile(r"""import\s*\{([^}]*)\}\s*from\s*['"]@playwright/test['"]""")
_ONLY_MARKER = re.compile(r"\b(?:test|describe)\.only\(")
_EXPECT_CALL = re.compile(r"\bexpect(?:\.soft)?\(")

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def _code_lines(source: str) -> Iterator[Tuple[int, str]]:
    """(line number, text) for every line that is not only a comment."""
    for index, line in enumerate(source.split("\n"), start=1):
        stripped = line.strip()
        if stripped.startswith(("//", "/*", "*")):
            continue
        yield index, line


# ==================== Detectors ====================

def detect_syntax_issues(source: str, base_dir: Optional[Path] = None) -> List[SyntaxIssue]:
    """Structural diagnostics minus known false positives for Playwright tests."""
    try:
        diagnostics = collect_diagnostics(source, base_dir)
    except Exception as e:
        logger.warning(f"TypeScript analysis failed: {e}")
        return [SyntaxIssue(
            line=1,
            kind="analysis_failure",
            message=f"TypeScript analysis failed: {e}",
            severity="error",
            suggestion="Check the file manually for syntax errors",
        )]

    return [
        SyntaxIssue(
            line=d.line,
            character=d.character,
            kind="compile_error",
            message=d.message,
            severity="error",
            code=d.code,
            suggestion="Fix the syntax error before running the test",
        )
        for d in diagnostics
        if not should_ignore_diagnostic(d.message, source)
    ]


def detect_api_usage_issues(source: str) -> List[ApiUsageIssue]:
    issues: List[ApiUsageIssue] = []
    has_error_handling = bool(_TRY_BLOCK.search(source)) or "catch" in source

    for line_num, line in _code_lines(source):
        for call, message, suggestion in _DEPRECATED_CALLS:
            if call in line:
                issues.append(ApiUsageIssue(
                    line=line_num, kind="deprecated_api", message=message,
                    severity="warning", suggestion=suggestion,
                ))

        # Textual heuristic: an async call with no await marker on the same line
        is_async_call = _PAGE_ASYNC_CALL.search(line) or _LOCATOR_ASYNC_CALL.search(line)
        if is_async_call and not _AWAIT.search(line) and not _RETURN.search(line):
            issues.append(ApiUsageIssue(
                line=line_num, kind="missing_await",
                message="Playwright method call missing await keyword",
                severity="error", suggestion="Add await before Playwright method calls",
            ))

        if ".nth(" in line:
            issues.append(ApiUsageIssue(
                line=line_num, kind="inefficient_selector",
                message="Using nth() selector which can be brittle",
                severity="warning",
                suggestion="Consider using more specific selectors like getByRole() or getByTestId()",
            ))

        if not has_error_handling and _INTERACTIVE_CALL.search(line):
            issues.append(ApiUsageIssue(
                line=line_num, kind="missing_error_handling",
                message="Interactive actions should have error handling",
                severity="info", suggestion="Consider wrapping in try-catch or using soft assertions",
            ))

    return issues


def _has_class_selector(selector: str) -> bool:
    # Attribute values and quoted text can contain dots that are not class selectors
    stripped = re.sub(r"\[[^\]]*\]", "", selector)
    stripped = re.sub(r'"[^"]*"|\'[^\']*\'', "", stripped)
    return bool(_CLASS_SELECTOR.search(stripped))


def detect_locator_quality_issues(source: str) -> List[LocatorQualityIssue]:
    issues: List[LocatorQualityIssue] = []

    for line_num, line in _code_lines(source):
        if "css=" in line or "xpath=" in line or _XPATH_STRING.search(line):
            issues.append(LocatorQualityIssue(
                line=line_num, kind="brittle_selector",
                message="CSS/XPath selectors are brittle and hard to maintain",
                severity="warning", robustness_score=3,
                suggestion="Use semantic selectors like getByRole(), getByLabel(), or getByTestId()",
            ))

        if any(_has_class_selector(m.group(2)) for m in _LOCATOR_STRING.finditer(line)):
            issues.append(LocatorQualityIssue(
                line=line_num, kind="class_based_selector",
                message="Class-based selectors can break with CSS changes",
                severity="info", robustness_score=5,
                suggestion="Consider using data-testid or semantic selectors",
            ))

        if "text=" in line and "/i" not in line:
            issues.append(LocatorQualityIssue(
                line=line_num, kind="case_sensitive_text",
                message="Text selector is case-sensitive",
                severity="info", robustness_score=6,
                suggestion="Use case-insensitive regex: /text/i",
            ))

        if _SEMANTIC_LOCATOR.search(line):
            issues.append(LocatorQualityIssue(
                line=line_num, kind="good_selector",
                message="Good use of semantic selector",
                severity="success", robustness_score=9,
                suggestion="Keep using semantic selectors for better maintainability",
            ))

    return issues


def detect_performance_issues(source: str) -> List[PerformanceIssue]:
    issues: List[PerformanceIssue] = []
    lines = list(_code_lines(source))
    navigation_lines = [num for num, line in lines if "goto(" in line]

    for line_num, line in lines:
        match = _WAIT_FOR_TIMEOUT.search(line)
        if match and int(match.group(1)) >= LONG_WAIT_MS:
            issues.append(PerformanceIssue(
                line=line_num, kind="excessive_wait",
                message="Long timeout may slow down test execution",
                severity="warning", impact="medium",
                suggestion="Use specific waitFor conditions instead of fixed timeouts",
            ))

        if "networkidle" in line:
            issues.append(PerformanceIssue(
                line=line_num, kind="networkidle_usage",
                message="networkidle can cause unnecessary delays",
                severity="info", impact="low",
                suggestion="Consider using domcontentloaded or specific element waits",
            ))

        if len(navigation_lines) > 1 and line_num in navigation_lines:
            issues.append(PerformanceIssue(
                line=line_num, kind="multiple_navigations",
                message="Multiple page navigations detected",
                severity="info", impact="medium",
                suggestion="Consider combining related actions in single page context",
            ))

    return issues


def detect_maintainability_issues(source: str) -> List[MaintainabilityIssue]:
    issues: List[MaintainabilityIssue] = []

    for line_num, line in _code_lines(source):
        if _PAGE_FILL_LITERAL.search(line) or _LOCATOR_FILL_LITERAL.search(line):
            issues.append(MaintainabilityIssue(
                line=line_num, kind="hardcoded_values",
                message="Hardcoded test data detected",
                severity="warning",
                suggestion="Use test data from configuration or fixtures",
            ))

        if _ASSERTION_LITERAL.search(line):
            issues.append(MaintainabilityIssue(
                line=line_num, kind="hardcoded_assertions",
                message="Hardcoded assertion values",
                severity="info",
                suggestion="Consider using dynamic assertions or constants",
            ))

    if not _DESCRIBE.search(source):
        issues.append(MaintainabilityIssue(
            line=1, kind="missing_describe_block",
            message="Missing test.describe() block for better organization",
            severity="info", suggestion="Wrap related tests in describe blocks",
        ))

    return issues


def _imports_test_and_expect(source: str) -> bool:
    for match in _CANONICAL_IMPORT.finditer(source):
        names = {part.split(" as ")[0].strip() for part in match.group(1).split(",")}
        if {"test", "expect"} <= names:
            return True
    return False


def detect_best_practice_issues(source: str) -> List[BestPracticeIssue]:
    issues: List[BestPracticeIssue] = []

    if not _imports_test_and_expect(source):
        issues.append(BestPracticeIssue(
            line=1, kind="missing_imports",
            message="Missing proper Playwright imports",
            severity="error", suggestion="Add: import { test, expect } from '@playwright/test'",
        ))

    for line_num, line in _code_lines(source):
        if _ONLY_MARKER.search(line):
            issues.append(BestPracticeIssue(
                line=line_num, kind="test_only_usage",
                message="test.only() found - should not be committed",
                severity="warning", suggestion="Replace test.only() with test()",
            ))

    if not _EXPECT_CALL.search(source):
        issues.append(BestPracticeIssue(
            line=1, kind="no_assertions",
            message="No assertions found in test",
            severity="error", suggestion="Add expect() assertions to verify test outcomes",
        ))

    return issues


DETECTORS: Dict[str, Callable[[str], List[BaseIssue]]] = {
    "api_usage": detect_api_usage_issues,
    "locator_quality": detect_locator_quality_issues,
    "performance": detect_performance_issues,
    "maintainability": detect_maintainability_issues,
    "best_practice": detect_best_practice_issues,
}


# ==================== Scoring ====================

def calculate_quality_score(analysis: TestAnalysis) -> int:
    """Score 0-100 from issue counts. Best-practice issues are not scored."""
    score = 100
    score -= 15 * len(analysis.syntax_issues)
    score -= 10 * sum(1 for i in analysis.api_usage_issues if i.severity == "error")
    score -= 5 * sum(1 for i in analysis.api_usage_issues if i.severity == "warning")
    score -= 3 * sum(1 for i in analysis.locator_quality_issues if i.severity == "warning")
    score -= 2 * len(analysis.performance_issues)
    score -= 2 * len(analysis.maintainability_issues)
    score += 2 * sum(1 for i in analysis.locator_quality_issues if i.is_positive)
    return max(0, min(100, score))


def analyze_source(filename: str, source: str, base_dir: Optional[Path] = None) -> TestAnalysis:
    """Run every detector over one file and score it. No model call."""
    analysis = TestAnalysis(
        filename=filename,
        syntax_issues=detect_syntax_issues(source, base_dir),
        api_usage_issues=DETECTORS["api_usage"](source),
        locator_quality_issues=DETECTORS["locator_quality"](source),
        performance_issues=DETECTORS["performance"](source),
        maintainability_issues=DETECTORS["maintainability"](source),
        best_practice_issues=DETECTORS["best_practice"](source),
    )
    return analysis.model_copy(update={"overall_score": calculate_quality_score(analysis)})


def needs_model_review(analysis: TestAnalysis) -> bool:
    return bool(
        analysis.syntax_issues
        or analysis.api_usage_issues
        or any(i.severity == "warning" for i in analysis.locator_quality_issues)
    )


class QualityAnalyzer:
    """
    Stage G: Analyze generated tests and attach recommended fixes.

    The model is only consulted for recommended fixes; issue lists and scores are
    computed without it.
    """

    def __init__(self, client: Optional[ModelClient] = None, base_dir: Optional[Path] = None):
        """
        Args:
            client: Model client for recommended fixes (fixed checklist if None)
            base_dir: Directory relative imports in the tests resolve against
        """
        self.client = client
        self.base_dir = base_dir
        self.fallback_count = 0

    async def process(self, tests: List[GeneratedTest]) -> List[TestAnalysis]:
        """
        Analyze every test concurrently.

        Args:
            tests: Generated test files

        Returns:
            One TestAnalysis per test, in input order
        """
        logger.info(f"Analyzing {len(tests)} generated tests")
        analyses = await asyncio.gather(*(self.analyze(test) for test in tests))
        logger.info(f"Analysis complete: scores {[a.overall_score for a in analyses]}")
        return list(analyses)

    async def analyze(self, test: GeneratedTest) -> TestAnalysis:
        analysis = analyze_source(test.filename, test.source_text, self.base_dir)
        fixes = await self.recommend_fixes(analysis)
        return analysis.model_copy(update={"recommended_fixes": fixes})

    async def recommend_fixes(self, analysis: TestAnalysis) -> List[str]:
        """
        Ask the model for 3-5 actionable fixes.

        Returns the fixed checklist when there is no client, the call fails or
        fewer than 3 fixes come back.
        """
        if not needs_model_review(analysis):
            return [LOOKS_GOOD]

        if self.client is None:
            return list(FALLBACK_FIXES)

        top_issues = [
            f"- Line {issue.line}: {issue.message}"
            for issue in analysis.syntax_issues[:3] + analysis.api_usage_issues[:3]
        ]
        prompt = RECOMMENDATIONS_PROMPT.format(
            filename=analysis.filename,
            syntax_count=len(analysis.syntax_issues),
            api_count=len(analysis.api_usage_issues),
            locator_count=len(analysis.locator_quality_issues),
            performance_count=len(analysis.performance_issues),
            top_issues="\n".join(top_issues) or "- (locator warnings only)",
        )

        try:
            response = await self.client.invoke_with_retry(
                RECOMMENDATIONS_SYSTEM_PROMPT, prompt, max_attempts=1
            )
        except ModelInvocationError as e:
            logger.warning(f"LLM recommendation generation failed for {analysis.filename}: {e}")
            self.fallback_count += 1
            return list(FALLBACK_FIXES)

        fixes = [
            _LIST_MARKER.sub("", line).strip()
            for line in response.split("\n")
        ]
        fixes = [fix for fix in fixes if fix][:MAX_FIXES]
        if len(fixes) < MIN_FIXES:
            logger.warning(f"Only {len(fixes)} recommendations for {analysis.filename}; using checklist")
            self.fallback_count += 1
            return list(FALLBACK_FIXES)
        return fixes
