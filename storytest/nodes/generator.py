"""
Stage C: CodeGenerator (LLM-based with template fallback)

Turns each validated scenario into one Playwright TypeScript test file.
The model's source is only stripped of markdown fences, never parsed; quality
is judged later by Stage G.
"""

from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import Dict, List, Optional

from ..exceptions import LLMRuntimeError, ModelInvocationError
from ..models import GeneratedTest, ValidatedScenario
from ..prompt_templates import TEST_GENERATION_TEMPLATE
from ..runtime import ModelClient
from ..validation import strip_code_fences

logger = logging.getLogger(__name__)

CANONICAL_IMPORT = "import { test, expect, devices } from '@playwright/test';"

MOBILE_DEVICE = "iPhone 13"

ERROR_LOCATOR = '.error-message, .alert-error, [role="alert"]'
SUCCESS_LOCATOR = ".success-message, .alert-success"

INDENT = "  "


def derive_filename(title: str, device: str) -> str:
    """Deterministic test file name, e.g. ``sign-in-happy-path-desktop.spec.ts``."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "scenario"
    return f"{slug}-{device}.spec.ts"


def ts_string(value: str) -> str:
    """Escaped TypeScript string literal."""
    return json.dumps(value)


def _one_line(text: str) -> str:
    return " ".join(text.split())


def find_locator(step: str, locators: Dict[str, str]) -> Optional[str]:
    """
    Best matched locator for a step, or None.

    Qualified names ("sign_in.button" as "sign in button") are tried before bare
    names ("sign_in" or "sign in"), then the login/submit affinity rule. Within
    a pass the first entry in mapping order wins.
    """
    step_lower = step.lower()

    def spaced(text: str) -> str:
        return re.sub(r"[_\-.]+", " ", text.lower()).strip()

    for key, locator in locators.items():
        if "." in key and spaced(key) in step_lower:
            return locator

    for key, locator in locators.items():
        name = key.rsplit(".", 1)[-1].lower()
        if name in step_lower or spaced(name) in step_lower:
            return locator

    for key, locator in locators.items():
        key_lower = key.lower()
        if ("login" in key_lower and "login" in step_lower) or ("submit" in key_lower and "submit" in step_lower):
            return locator

    return None


def _fill_value(step: str) -> str:
    step_lower = step.lower()
    if "password" in step_lower:
        return "testData.password"
    if "email" in step_lower or "username" in step_lower:
        return "testData.email"
    return "testData.text"


def render_step(step: str, locators: Dict[str, str]) -> List[str]:
    """Lines implementing one step, chosen by the step's action words."""
    step_lower = step.lower()
    lines = [f"// Given/When/Then: {_one_line(step)}"]

    if "navigate" in step_lower:
        lines.append('await page.goto("/"); // TODO: Replace with actual URL')
    elif "click" in step_lower or "button" in step_lower:
        locator = find_locator(step, locators) or "button"
        lines.append(f"await page.locator({ts_string(locator)}).first().click();")
    elif "fill" in step_lower or "enter" in step_lower or "type" in step_lower:
        locator = find_locator(step, locators) or "input"
        lines.append(f"await page.locator({ts_string(locator)}).first().fill({_fill_value(step)});")
    elif "wait" in step_lower or "load" in step_lower:
        lines.append('await page.waitForLoadState("domcontentloaded");')
    elif "verify" in step_lower or "check" in step_lower or "see" in step_lower:
        locator = find_locator(step, locators)
        target = f"page.locator({ts_string(locator)}).first()" if locator else 'page.locator("body")'
        lines.append(f"await expect({target}).toBeVisible();")
    else:
        lines.append(f"// TODO: Implement step logic for: {_one_line(step)}")

    return lines


def render_outcome_check(scenario: ValidatedScenario) -> List[str]:
    if scenario.kind == "negative":
        return [
            "// Verify error handling",
            f"await expect(page.locator({ts_string(ERROR_LOCATOR)}).first()).toBeVisible();",
        ]
    if "success" in scenario.expected_outcome.lower():
        return [
            "// Verify successful completion",
            f"await expect(page.locator({ts_string(SUCCESS_LOCATOR)}).first()).toBeVisible();",
        ]
    return [
        f"// TODO: Add specific outcome verification based on: {_one_line(scenario.expected_outcome)}",
        "await expect(page).toHaveURL(/.*\\/success/);",
    ]


def render_fallback_test(scenario: ValidatedScenario) -> str:
    """Deterministic Playwright test: one action block per scenario step."""
    body: List[str] = []

    if scenario.matched_locators:
        body.append("// Available selectors:")
        body.extend(f"// {name}: {_one_line(loc)}" for name, loc in scenario.matched_locators.items())
    if scenario.matched_routes:
        body.append("// Relevant API endpoints:")
        body.extend(f"// {_one_line(route)}" for route in scenario.matched_routes)
    if body:
        body.append("")

    for step in scenario.steps:
        body.extend(render_step(step, scenario.matched_locators))
        body.append("")

    body.extend(render_outcome_check(scenario))

    lines = [
        CANONICAL_IMPORT,
        "",
        f"test.describe({ts_string(scenario.title)}, () => {{",
        f"{INDENT}// Scenario Type: {scenario.kind}",
        f"{INDENT}// Description: {_one_line(scenario.description)}",
        f"{INDENT}// Expected Outcome: {_one_line(scenario.expected_outcome)}",
    ]
    lines.extend(f"{INDENT}// {_one_line(note)}" for note in scenario.advisory_notes)

    if scenario.target_device == "mobile":
        lines.append(f"{INDENT}test.use({{ ...devices[{ts_string(MOBILE_DEVICE)}] }});")

    lines.extend([
        "",
        f"{INDENT}const testData = {{",
        f'{INDENT * 2}email: process.env.TEST_EMAIL ?? "user@example.com",',
        f'{INDENT * 2}password: process.env.TEST_PASSWORD ?? "change-me",',
        f'{INDENT * 2}text: process.env.TEST_INPUT ?? "test-data",',
        f"{INDENT}}};",
        "",
        f"{INDENT}test({ts_string(scenario.title)}, async ({{ page }}) => {{",
    ])
    lines.extend(f"{INDENT * 2}{line}" if line else "" for line in body)
    lines.extend([
        f"{INDENT}}});",
        "});",
        "",
    ])
    return "\n".join(lines)


class CodeGenerator:
    """
    Stage C: Generate one Playwright test file per validated scenario.

    All scenarios are generated concurrently; output order matches input order.
    """

    def __init__(self, client: ModelClient):
        self.client = client
        self.fallback_count = 0

    async def process(self, scenarios: List[ValidatedScenario]) -> List[GeneratedTest]:
        """
        Generate test files for a batch of validated scenarios.

        Args:
            scenarios: Output from Stage B

        Returns:
            One GeneratedTest per scenario, in input order
        """
        logger.info(f"Generating {len(scenarios)} Playwright tests")
        tests = await asyncio.gather(*(self.generate(s) for s in scenarios))
        logger.info(f"Generated {len(tests)} test files")
        return list(tests)

    async def generate(self, scenario: ValidatedScenario) -> GeneratedTest:
        filename = derive_filename(scenario.title, scenario.target_device)
        try:
            source = await self._primary(scenario)
        except (ModelInvocationError, LLMRuntimeError) as e:
            source = self._fallback(filename, scenario, e)
        return GeneratedTest(filename=filename, source_text=source)

    async def _primary(self, scenario: ValidatedScenario) -> str:
        response = await self.client.invoke_with_template(
            TEST_GENERATION_TEMPLATE,
            {
                "validated_scenario": scenario.model_dump_json(indent=2),
                "locators": json.dumps(scenario.matched_locators, indent=2),
                "routes": "\n".join(scenario.matched_routes) or "(none)",
                "steps": "\n".join(f"{i}. {step}" for i, step in enumerate(scenario.steps, start=1)),
            },
        )
        source = strip_code_fences(response)
        if not source:
            raise LLMRuntimeError("Model returned an empty test body")
        return source + ("" if source.endswith("\n") else "\n")

    def _fallback(self, filename: str, scenario: ValidatedScenario, error: Exception) -> str:
        logger.warning(f"LLM test generation failed for {filename} ({error}); using template")
        self.fallback_count += 1
        return render_fallback_test(scenario)
