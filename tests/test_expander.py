"""Test Stage A scenario expansion."""

import json

import pytest

from storytest.config import LLMConfig
from storytest.exceptions import ResponseParseError
from storytest.models import Story
from storytest.nodes.expander import (
    ScenarioExpander,
    detect_intent,
    extract_title,
    parse_scenarios,
    synthesize_scenarios,
)
from storytest.runtime import MockLLMRuntime, ModelClient


def expander_with(response, max_retries=1):
    runtime = MockLLMRuntime(default_response=response)
    client = ModelClient(config=LLMConfig(model="mock", max_retries=max_retries), runtime=runtime)
    return ScenarioExpander(client), runtime


def scenario_dict(kind, title=None, **extra):
    item = {
        "title": title or f"{kind} scenario",
        "type": kind,
        "description": f"{kind} description",
        "steps": ["User navigates to the page", "User clicks the button"],
        "expected_outcome": "It works",
    }
    item.update(extra)
    return item


class TestIntentAndTitle:
    """Test the rule-based story classification."""

    @pytest.mark.parametrize("description,intent", [
        ("User signs up for a new account", "sign_up"),
        ("A visitor registers with email", "sign_up"),
        ("User signs in to their account", "sign_in"),
        ("Customer logs in with SSO", "sign_in"),
        ("User views their free credit report", "credit_report"),
        ("User updates profile picture", "generic"),
    ])
    def test_detect_intent(self, description, intent):
        assert detect_intent(description) == intent

    def test_title_from_intent(self):
        assert extract_title("User signs in to their account") == "Sign In"

    def test_title_from_action_words(self):
        assert extract_title("Admin can delete and update users") == "delete update"

    def test_title_from_first_words(self):
        assert extract_title("Dark mode toggles colors everywhere.") == "Dark mode toggles"


class TestSynthesizeScenarios:
    """Test the deterministic fallback scenarios."""

    def test_four_kinds_in_order(self, sign_in_story):
        scenarios = synthesize_scenarios(sign_in_story)

        assert [s.kind for s in scenarios] == ["positive", "negative", "edge", "cross-device"]
        assert [s.title for s in scenarios] == [
            "Sign In - Happy Path",
            "Sign In - Invalid Input",
            "Sign In - Network Error",
            "Sign In - Mobile Experience",
        ]
        assert [s.target_device for s in scenarios] == ["desktop", "desktop", "desktop", "mobile"]

    def test_sign_in_steps(self, sign_in_story):
        positive = synthesize_scenarios(sign_in_story)[0]

        assert positive.steps[0] == "Navigate to the application"
        assert "Click on the sign in link" in positive.steps
        assert "Click the sign in button" in positive.steps

    def test_negative_expects_error(self, sign_in_story):
        negative = synthesize_scenarios(sign_in_story)[1]
        assert "Verify error message is displayed" in negative.steps

    def test_generic_story(self):
        scenarios = synthesize_scenarios(Story(description="Admin can delete users"))

        assert len(scenarios) == 4
        assert all(s.steps for s in scenarios)
        assert scenarios[0].title == "delete - Happy Path"


class TestParseScenarios:
    """Test model response parsing."""

    def test_not_an_array(self):
        with pytest.raises(ResponseParseError, match="not an array"):
            parse_scenarios(json.dumps({"title": "x"}))

    def test_missing_fields(self):
        item = scenario_dict("positive")
        del item["steps"]

        with pytest.raises(ResponseParseError) as exc_info:
            parse_scenarios(json.dumps([item]))

        assert exc_info.value.missing_fields == ["steps"]

    def test_coercions(self):
        items = [
            scenario_dict("smoke", steps="User does one thing"),
            scenario_dict("cross-device", device="watch"),
            scenario_dict("negative", device="tablet"),
        ]

        scenarios = parse_scenarios(json.dumps(items))

        assert scenarios[0].kind == "positive"
        assert scenarios[0].steps == ["User does one thing"]
        assert scenarios[1].target_device == "mobile"
        assert scenarios[2].target_device == "tablet"

    def test_fenced_response(self):
        response = "```json\n" + json.dumps([scenario_dict("edge")]) + "\n```"
        assert parse_scenarios(response)[0].kind == "edge"


class TestScenarioExpander:
    """Test the Stage A node."""

    @pytest.mark.asyncio
    async def test_model_scenarios(self, mock_client, sign_in_story):
        expander = ScenarioExpander(mock_client)

        scenarios = await expander.process(sign_in_story)

        assert [s.title for s in scenarios] == [
            "Successful sign in",
            "Sign in with wrong password",
            "Sign in during network outage",
            "Sign in on mobile",
        ]
        assert scenarios[3].target_device == "mobile"
        assert expander.fallback_count == 0

    @pytest.mark.asyncio
    async def test_acceptance_criteria_in_prompt(self):
        expander, runtime = expander_with(json.dumps([scenario_dict("positive")]))
        story = Story(description="User signs in", acceptance_criteria=["Remember me is optional"])

        await expander.process(story)

        assert "Acceptance Criteria:\n- Remember me is optional" in runtime.last_prompt
        assert '"User signs in"' in runtime.last_prompt

    @pytest.mark.asyncio
    async def test_missing_kinds_are_synthesized(self, sign_in_story):
        response = json.dumps([
            scenario_dict("negative", title="Bad password"),
            scenario_dict("positive", title="Good password"),
            scenario_dict("positive", title="Second positive"),
        ])
        expander, _ = expander_with(response)

        scenarios = await expander.process(sign_in_story)

        assert [s.title for s in scenarios] == [
            "Good password",
            "Bad password",
            "Sign In - Network Error",
            "Sign In - Mobile Experience",
        ]
        assert expander.fallback_count == 0

    @pytest.mark.asyncio
    async def test_model_failure_falls_back(self, failing_client, sign_in_story):
        expander = ScenarioExpander(failing_client)

        scenarios = await expander.process(sign_in_story)

        assert len(scenarios) == 4
        assert scenarios[0].title == "Sign In - Happy Path"
        assert expander.fallback_count == 1

    @pytest.mark.asyncio
    async def test_unparseable_response_falls_back(self, sign_in_story):
        expander, runtime = expander_with("I cannot help with that")

        scenarios = await expander.process(sign_in_story)

        assert [s.kind for s in scenarios] == ["positive", "negative", "edge", "cross-device"]
        assert runtime.call_count == 1
        assert expander.fallback_count == 1

    @pytest.mark.asyncio
    async def test_expand_batch_preserves_order(self, failing_client):
        expander = ScenarioExpander(failing_client)
        stories = [
            Story(description="User signs up for an account"),
            Story(description="User signs in to their account"),
            Story(description="User views the free credit report"),
        ]

        batches = await expander.expand_batch(stories)

        assert [batch[0].title for batch in batches] == [
            "Sign Up - Happy Path",
            "Sign In - Happy Path",
            "Credit Report - Happy Path",
        ]
