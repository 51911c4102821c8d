"""Centralized prompt templates for all LLM interactions.

All prompts use {placeholders} for runtime values.  Templates are rendered with
.format() (not f-strings) so story text cannot inject new placeholders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class PromptTemplate:
    """A system prompt plus a user-prompt template with named inputs."""

    name: str
    system: str
    template: str
    input_variables: Tuple[str, ...] = field(default_factory=tuple)

    def missing_variables(self, variables: Dict[str, Any]) -> Tuple[str, ...]:
        return tuple(v for v in self.input_variables if v not in variables)

    def format(self, **variables: Any) -> str:
        missing = self.missing_variables(variables)
        if missing:
            raise KeyError(f"Template '{self.name}' missing variables: {', '.join(missing)}")
        return self.template.format(**{k: variables[k] for k in self.input_variables})


# ── Stage A: scenario expansion ──────────────────────────────────────

SCENARIO_EXPANSION_TEMPLATE = PromptTemplate(
    name="scenario_expansion",
    system=(
        "You are a QA test scenario generator. Return JSON only. "
        "No markdown formatting, no explanations, just valid JSON."
    ),
    template="""You expand user stories into comprehensive browser test scenarios.

Take the user story below and generate exactly 4 test scenarios, one of each type:
1. positive - normal successful flow (happy path)
2. negative - error handling and validation
3. edge - boundary conditions and unusual situations (network errors, rapid input)
4. cross-device - mobile/responsive behavior

For each scenario, provide:
- title: descriptive name
- type: one of positive, negative, edge, cross-device
- description: what this scenario tests
- steps: array of DETAILED, ACTIONABLE steps that break down EVERY action in the story
  * each step must be specific: "User clicks on Credit dropdown", "User clicks on Free Credit Report link"
  * include navigation steps: "User navigates to credit report information page"
  * include verification steps: "User sees credit report information displayed"
- expected_outcome: what should happen
- device: desktop or mobile

Do not create generic steps.

User Story: "{user_story}"
{acceptance_criteria}

Return ONLY a JSON array of 4 scenario objects:
[
  {{
    "title": "Descriptive scenario title",
    "type": "positive",
    "description": "What this scenario tests",
    "steps": ["User navigates to ...", "User clicks ..."],
    "expected_outcome": "What should happen",
    "device": "desktop"
  }}
]""",
    input_variables=("user_story", "acceptance_criteria"),
)


# ── Stage B: grounding against the knowledge base ────────────────────

SCENARIO_GROUNDING_TEMPLATE = PromptTemplate(
    name="scenario_grounding",
    system=(
        "You validate browser test scenarios against a catalog of known UI locators "
        "and API routes. Return JSON only."
    ),
    template="""Match the test scenario with the available locators and API routes.

Test Scenario:
{scenario}

Available Locators (category -> name -> locator):
{locators}

Available API Routes (category -> name -> route):
{routes}

Focus on:
- UI elements mentioned in steps
- actions that need locators (click, fill, verify)
- API calls implied by the scenario
- missing locators or routes
- device-specific considerations

Return ONLY a JSON object:
{{
  "matched_locators": {{"category.name": "locator expression"}},
  "matched_routes": ["category.name: route"],
  "advisory_notes": ["Note 1", "Note 2"],
  "confidence": 0.8
}}""",
    input_variables=("scenario", "locators", "routes"),
)


# ── Stage C: Playwright test generation ──────────────────────────────

TEST_GENERATION_TEMPLATE = PromptTemplate(
    name="test_generation",
    system=(
        "You write Playwright TypeScript tests. Return only the TypeScript source of "
        "one test file, with no explanations."
    ),
    template="""Convert the validated scenario into an executable Playwright TypeScript test file.

RULES:
- Implement EVERY step of the scenario literally and in order. Do not drop, merge or genericize steps.
- Start with: import {{ test, expect }} from '@playwright/test';
- Wrap the test in test.describe() using the scenario title.
- Put a Given/When/Then comment above each step's code.
- Await every Playwright call.
- Prefer getByRole(), getByLabel() and getByTestId(); otherwise use the matched locators below.
- Use expect() assertions to verify the expected outcome.
- Avoid waitForTimeout() and 'networkidle' waits.
- For mobile scenarios, configure the device with test.use({{ ...devices['iPhone 13'] }}).

Validated Scenario:
{validated_scenario}

Matched Locators:
{locators}

Relevant API Routes:
{routes}

Scenario steps to implement:
{steps}""",
    input_variables=("validated_scenario", "locators", "routes", "steps"),
)


# ── Stage G: recommendations ─────────────────────────────────────────

RECOMMENDATIONS_SYSTEM_PROMPT = (
    "You are a senior QA engineer reviewing Playwright test code. "
    "Provide specific, actionable recommendations for fixing issues."
)

RECOMMENDATIONS_PROMPT = """TEST FILE: {filename}

DETECTED ISSUES:
- Syntax Errors: {syntax_count}
- Playwright API Issues: {api_count}
- Locator Quality Issues: {locator_count}
- Performance Issues: {performance_count}

TOP ISSUES:
{top_issues}

Provide 3-5 specific, actionable recommendations for an engineer to fix these issues, one per line:"""
