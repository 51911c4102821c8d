"""Pytest configuration and fixtures for storytest tests."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from storytest.config import LLMConfig
from storytest.models import Scenario, Story, ValidatedScenario
from storytest.retrieval import KnowledgeBase, Retriever
from storytest.runtime import MockLLMRuntime, ModelClient


SAMPLE_LOCATORS = {
    "navigation": {
        "sign_in_link": "a:has-text(\"Sign In\")",
        "menu_button": "[data-testid=\"menu-button\"]",
    },
    "forms": {
        "sign_in": "form#login-form",
        "email": "input[type=\"email\"]",
        "password": "input[type=\"password\"]",
        "submit": "button[type=\"submit\"]",
    },
    "sign_in": {
        "button": "[data-testid=\"sign-in-button\"]",
    },
    "messages": {
        "error_message": ".error-message",
    },
}

SAMPLE_ROUTES = {
    "auth": {
        "sign_in": "POST /api/auth/signin",
        "logout": "POST /api/auth/logout",
    },
    "credit": {
        "report": "GET /api/credit/report",
    },
}


SCENARIOS_RESPONSE = json.dumps([
    {
        "title": "Successful sign in",
        "type": "positive",
        "description": "User signs in with valid credentials",
        "steps": [
            "User navigates to the sign in page",
            "User enters valid email",
            "User enters valid password",
            "User clicks the sign in button",
        ],
        "expected_outcome": "User sees the dashboard",
        "device": "desktop",
    },
    {
        "title": "Sign in with wrong password",
        "type": "negative",
        "description": "User signs in with an invalid password",
        "steps": ["User enters a wrong password", "User clicks the sign in button"],
        "expected_outcome": "An error message is shown",
        "device": "desktop",
    },
    {
        "title": "Sign in during network outage",
        "type": "edge",
        "description": "Network fails while signing in",
        "steps": ["User goes offline", "User clicks the sign in button"],
        "expected_outcome": "A retry prompt is shown",
        "device": "desktop",
    },
    {
        "title": "Sign in on mobile",
        "type": "cross-device",
        "description": "User signs in on a phone",
        "steps": ["User opens the menu", "User taps sign in"],
        "expected_outcome": "User sees the dashboard",
    },
])

GROUNDING_RESPONSE = json.dumps({
    "matched_locators": {"sign_in.button": "[data-testid=\"sign-in-button\"]"},
    "matched_routes": ["auth.sign_in: POST /api/auth/signin"],
    "advisory_notes": ["Use the test id on the sign in button"],
    "confidence": 0.9,
})

GENERATED_TEST_RESPONSE = """```typescript
import { test, expect } from '@playwright/test';

test.describe('Successful sign in', () => {
  test('signs in', async ({ page }) => {
    await page.goto('/signin');
    await page.getByRole('button', { name: /sign in/i }).click();
    await expect(page).toHaveURL(/dashboard/);
  });
});
```"""


@pytest.fixture
def sign_in_story():
    """The canonical sign-in user story."""
    return Story(description="User signs in to their account")


@pytest.fixture
def knowledge_base():
    """Small in-memory knowledge base."""
    return KnowledgeBase(locators=SAMPLE_LOCATORS, routes=SAMPLE_ROUTES)


@pytest.fixture
def kb_files(tmp_path):
    """Knowledge base written to disk. Returns (locators_path, routes_path)."""
    locators_path = tmp_path / "common.json"
    routes_path = tmp_path / "endpoints.json"
    locators_path.write_text(json.dumps(SAMPLE_LOCATORS), encoding="utf-8")
    routes_path.write_text(json.dumps(SAMPLE_ROUTES), encoding="utf-8")
    return locators_path, routes_path


@pytest.fixture
def retriever(knowledge_base):
    return Retriever(knowledge_base)


@pytest.fixture
def mock_config():
    """Single-attempt configuration so failures do not back off."""
    return LLMConfig(provider="openai", model="mock", api_key="test-key", max_retries=1)


@pytest.fixture
def mock_runtime():
    """Create mock LLM runtime with predefined responses per stage."""
    responses = {
        "exactly 4 test scenarios": SCENARIOS_RESPONSE,
        "Match the test scenario": GROUNDING_RESPONSE,
        "Convert the validated scenario": GENERATED_TEST_RESPONSE,
        "DETECTED ISSUES": (
            "1. Add await to every Playwright call\n"
            "2. Prefer getByRole locators\n"
            "3. Wrap navigation in a try/catch"
        ),
    }
    return MockLLMRuntime(responses)


@pytest.fixture
def mock_client(mock_runtime, mock_config):
    return ModelClient(config=mock_config, runtime=mock_runtime)


@pytest.fixture
def failing_client(mock_config):
    """Client whose every call fails, forcing every stage onto its fallback path."""
    return ModelClient(config=mock_config, runtime=MockLLMRuntime(always_fail=True))


@pytest.fixture
def timeout_client(mock_config):
    """Client whose runtime raises a plain TimeoutError instead of a storytest error."""
    runtime = MockLLMRuntime()
    runtime.generate = AsyncMock(side_effect=TimeoutError("read timed out"))
    return ModelClient(config=mock_config, runtime=runtime)


@pytest.fixture
def no_sleep():
    """Replace the retry backoff sleep with an AsyncMock."""
    with patch("storytest.runtime.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def sign_in_scenario():
    return Scenario(
        title="Sign In - Happy Path",
        kind="positive",
        description="User successfully completes: User signs in to their account",
        steps=[
            "Navigate to the application",
            "Enter valid email in the email field",
            "Enter correct password in the password field",
            "Click the sign in button",
            "Verify successful authentication",
        ],
        expected_outcome="User successfully completes the action with expected results",
        target_device="desktop",
    )


@pytest.fixture
def validated_sign_in(sign_in_scenario):
    return ValidatedScenario.from_scenario(
        sign_in_scenario,
        matched_locators={
            "forms.sign_in": "form#login-form",
            "forms.email": "input[type=\"email\"]",
            "forms.password": "input[type=\"password\"]",
            "sign_in.button": "[data-testid=\"sign-in-button\"]",
        },
        matched_routes=["auth.sign_in: POST /api/auth/signin"],
        advisory_notes=["Found 4 relevant selectors"],
    )
