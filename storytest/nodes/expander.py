"""
Stage A: ScenarioExpander (LLM-based with deterministic fallback)

Expands one user story into exactly four test scenarios, one per kind:
positive, negative, edge and cross-device.
"""

from __future__ import annotations
import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..exceptions import LLMRuntimeError, ModelInvocationError, ResponseParseError
from ..models import DEVICES, SCENARIO_KINDS, Scenario, Story
from ..prompt_templates import SCENARIO_EXPANSION_TEMPLATE
from ..runtime import ModelClient
from ..validation import parse_json_payload

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "type", "description", "steps", "expected_outcome")

ACTION_WORDS = ("sign", "login", "request", "submit", "create", "update", "delete", "view")

_SIGN_UP = re.compile(r"\bsign(?:s|ed|ing)?[\s-]?up\b|\bregist", re.IGNORECASE)
_SIGN_IN = re.compile(r"\bsign(?:s|ed|ing)?[\s-]?in\b|\blog(?:s|ged|ging)?[\s-]?in\b", re.IGNORECASE)
_CREDIT_REPORT = re.compile(r"\bcredit[\s-]+reports?\b", re.IGNORECASE)

INTENT_TITLES = {
    "sign_up": "Sign Up",
    "sign_in": "Sign In",
    "credit_report": "Credit Report",
}

KIND_SUFFIXES = {
    "positive": "Happy Path",
    "negative": "Invalid Input",
    "edge": "Network Error",
    "cross-device": "Mobile Experience",
}

POSITIVE_STEPS: Dict[str, List[str]] = {
    "sign_up": [
        "Click on the sign up link",
        "Fill in valid user information",
        "Enter a valid email in the email field",
        "Enter a strong password in the password field",
        "Click the submit button",
        "Verify the account is created",
    ],
    "sign_in": [
        "Click on the sign in link",
        "Enter valid email in the email field",
        "Enter correct password in the password field",
        "Click the sign in button",
        "Verify successful authentication",
    ],
    "credit_report": [
        "Sign in to the user account",
        "Click on the credit dropdown",
        "Click on the free credit report link",
        "Wait for the credit report page to load",
        "Verify the credit report information is displayed",
    ],
    "generic": [
        "Perform the primary action described",
        "Fill in the required form fields",
        "Click the submit button",
        "Verify successful completion",
    ],
}


def detect_intent(description: str) -> str:
    """Classify a story as sign_up, sign_in, credit_report or generic."""
    if _SIGN_UP.search(description):
        return "sign_up"
    if _SIGN_IN.search(description):
        return "sign_in"
    if _CREDIT_REPORT.search(description):
        return "credit_report"
    return "generic"


def extract_title(description: str) -> str:
    """Base scenario title: the detected intent, else action words, else the first three words."""
    intent = detect_intent(description)
    if intent in INTENT_TITLES:
        return INTENT_TITLES[intent]

    words = description.split()
    action_words = [w for w in words if any(a in w.lower() for a in ACTION_WORDS)]
    chosen = action_words if action_words else words[:3]
    return " ".join(chosen).strip(".,;:!?") or "User Story"


def _action_phrase(intent: str) -> str:
    return INTENT_TITLES.get(intent, "perform the action").lower()


def synthesize_scenario(story: Story, kind: str) -> Scenario:
    """Deterministic scenario of one kind. Never fails."""
    description = story.description
    intent = detect_intent(description)
    title = f"{extract_title(description)} - {KIND_SUFFIXES[kind]}"
    action = _action_phrase(intent)
    positive_steps = ["Navigate to the application"] + POSITIVE_STEPS[intent]

    if kind == "positive":
        return Scenario(
            title=title,
            kind="positive",
            description=f"User successfully completes: {description}",
            steps=positive_steps,
            expected_outcome="User successfully completes the action with expected results",
            target_device="desktop",
        )
    if kind == "negative":
        return Scenario(
            title=title,
            kind="negative",
            description=f"User attempts {description} with invalid data",
            steps=[
                "Navigate to the application",
                f"Attempt to {action} with invalid or missing data",
                "Click the submit button",
                "Verify error message is displayed",
                "Verify the system prevents the invalid operation",
            ],
            expected_outcome="System displays appropriate error messages and prevents invalid actions",
            target_device="desktop",
        )
    if kind == "edge":
        return Scenario(
            title=title,
            kind="edge",
            description=f"User attempts {description} during network issues",
            steps=[
                "Navigate to the application",
                f"Begin to {action}",
                "Simulate network interruption or slow connection",
                "Click the submit button",
                "Verify the system handles the error gracefully",
                "Wait for the page to recover",
            ],
            expected_outcome="System gracefully handles network errors with proper user feedback",
            target_device="desktop",
        )
    return Scenario(
        title=title,
        kind="cross-device",
        description=f"User completes {description} on mobile device",
        steps=positive_steps,
        expected_outcome="Mobile interface provides equivalent functionality with responsive design",
        target_device="mobile",
    )


def synthesize_scenarios(story: Story) -> List[Scenario]:
    """All four deterministic scenarios, in kind order."""
    return [synthesize_scenario(story, kind) for kind in SCENARIO_KINDS]


def _coerce_scenario(item: Any, index: int) -> Scenario:
    if not isinstance(item, dict):
        raise ResponseParseError(f"Scenario {index} is not an object")

    missing = [f for f in REQUIRED_FIELDS if not item.get(f)]
    if missing:
        raise ResponseParseError(
            f"Scenario {index} missing fields: {', '.join(missing)}",
            missing_fields=missing,
        )

    kind = item["type"] if item["type"] in SCENARIO_KINDS else "positive"
    steps = item["steps"] if isinstance(item["steps"], list) else [item["steps"]]
    device = item.get("device")
    if device not in DEVICES:
        device = "mobile" if kind == "cross-device" else "desktop"

    try:
        return Scenario(
            title=str(item["title"]),
            kind=kind,
            description=str(item["description"]),
            steps=[str(step) for step in steps if str(step).strip()],
            expected_outcome=str(item["expected_outcome"]),
            target_device=device,
        )
    except ValidationError as e:
        raise ResponseParseError(f"Scenario {index} is invalid: {e.error_count()} error(s)") from e


def parse_scenarios(response: str) -> List[Scenario]:
    """
    Parse the model's JSON array of scenarios.

    Raises:
        ResponseParseError: Not a JSON array, or an element is missing required fields
    """
    data = parse_json_payload(response)
    if not isinstance(data, list):
        raise ResponseParseError("Response is not an array", raw_response=response)
    return [_coerce_scenario(item, index) for index, item in enumerate(data)]


class ScenarioExpander:
    """
    Stage A: Expand a user story into four test scenarios.

    The model proposes scenarios; the first one of each kind is kept and any kind
    it did not cover is synthesized deterministically. Invocation or parse
    failure falls back to synthesizing all four.
    """

    def __init__(self, client: ModelClient):
        self.client = client
        self.fallback_count = 0

    async def process(self, story: Story) -> List[Scenario]:
        """
        Generate exactly four scenarios for one story.

        Args:
            story: User story to expand

        Returns:
            Scenarios ordered positive, negative, edge, cross-device
        """
        logger.info(f"Expanding story: {story.description[:80]}")
        try:
            scenarios = await self._primary(story)
        except (ModelInvocationError, LLMRuntimeError, ResponseParseError) as e:
            scenarios = self._fallback(story, e)

        logger.info(f"Generated {len(scenarios)} scenarios")
        return scenarios

    async def expand_batch(self, stories: List[Story]) -> List[List[Scenario]]:
        """Expand several stories concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.process(story) for story in stories)))

    async def _primary(self, story: Story) -> List[Scenario]:
        criteria = ""
        if story.acceptance_criteria:
            criteria = "Acceptance Criteria:\n" + "\n".join(f"- {ac}" for ac in story.acceptance_criteria)

        response = await self.client.invoke_with_template(
            SCENARIO_EXPANSION_TEMPLATE,
            {"user_story": story.description, "acceptance_criteria": criteria},
        )
        parsed = parse_scenarios(response)
        return self._complete(story, parsed)

    def _complete(self, story: Story, parsed: List[Scenario]) -> List[Scenario]:
        by_kind: Dict[str, Scenario] = {}
        for scenario in parsed:
            by_kind.setdefault(scenario.kind, scenario)

        missing = [kind for kind in SCENARIO_KINDS if kind not in by_kind]
        if missing:
            logger.warning(f"Model omitted scenario kinds {missing}; synthesizing them")
        return [by_kind.get(kind) or synthesize_scenario(story, kind) for kind in SCENARIO_KINDS]

    def _fallback(self, story: Story, error: Exception) -> List[Scenario]:
        logger.warning(f"Scenario expansion failed ({error}); falling back to rule-based scenarios")
        self.fallback_count += 1
        return synthesize_scenarios(story)


# Convenience function

async def expand_story(story: Story, client: ModelClient) -> List[Scenario]:
    """Expand a single story into four scenarios."""
    return await ScenarioExpander(client).process(story)
