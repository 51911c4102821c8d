"""Test LLM runtimes and the model client."""

import pytest

from storytest.config import LLMConfig
from storytest.exceptions import ConfigurationError, LLMRuntimeError, ModelInvocationError
from storytest.prompt_templates import SCENARIO_EXPANSION_TEMPLATE
from storytest.runtime import (
    AnthropicRuntime,
    MockLLMRuntime,
    ModelClient,
    OpenAICompatibleRuntime,
    create_runtime,
)


class TestCreateRuntime:
    """Test provider dispatch."""

    def test_openai_requires_key(self):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            create_runtime(LLMConfig(provider="openai", model="gpt-4"))

    def test_anthropic_requires_key(self):
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            create_runtime(LLMConfig(provider="anthropic", model="claude-3-sonnet-20240229"))

    def test_openai_runtime(self):
        runtime = create_runtime(LLMConfig(provider="openai", model="gpt-4", api_key="sk-test"))

        assert isinstance(runtime, OpenAICompatibleRuntime)
        assert runtime.get_model_info()["model"] == "gpt-4"

    def test_anthropic_runtime(self):
        runtime = create_runtime(
            LLMConfig(provider="anthropic", model="claude-3-sonnet-20240229", api_key="sk-ant")
        )

        assert isinstance(runtime, AnthropicRuntime)
        assert runtime.get_model_info()["type"] == "anthropic"

    def test_ollama_uses_openai_compatible_endpoint(self):
        runtime = create_runtime(
            LLMConfig(provider="ollama", model="llama2", base_url="http://localhost:11434/")
        )

        assert isinstance(runtime, OpenAICompatibleRuntime)
        assert runtime.base_url == "http://localhost:11434/v1"
        assert runtime.get_model_info()["name"] == "ollama"


class TestModelClientRetry:
    """Test retry with exponential backoff."""

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, no_sleep):
        runtime = MockLLMRuntime(always_fail=True)
        client = ModelClient(config=LLMConfig(model="mock", max_retries=3), runtime=runtime)

        with pytest.raises(ModelInvocationError) as exc_info:
            await client.invoke_with_retry("system", "user")

        assert runtime.call_count == 3
        assert [call.args[0] for call in no_sleep.await_args_list] == [2, 4]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, LLMRuntimeError)

    @pytest.mark.asyncio
    async def test_success_after_failures(self, no_sleep):
        runtime = MockLLMRuntime(default_response="ok", fail_times=2)
        client = ModelClient(config=LLMConfig(model="mock", max_retries=3), runtime=runtime)

        result = await client.invoke_with_retry("system", "user")

        assert result == "ok"
        assert runtime.call_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_explicit_attempt_ceiling(self, no_sleep):
        runtime = MockLLMRuntime(always_fail=True)
        client = ModelClient(config=LLMConfig(model="mock", max_retries=3), runtime=runtime)

        with pytest.raises(ModelInvocationError):
            await client.invoke_with_retry("system", "user", max_attempts=1)

        assert runtime.call_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plain_invoke_propagates(self):
        client = ModelClient(config=LLMConfig(model="mock"), runtime=MockLLMRuntime(always_fail=True))

        with pytest.raises(LLMRuntimeError):
            await client.invoke("system", "user")


class TestModelClientTemplates:
    """Test prompt template rendering through the client."""

    @pytest.mark.asyncio
    async def test_template_is_rendered(self, mock_client, mock_runtime):
        await mock_client.invoke_with_template(
            SCENARIO_EXPANSION_TEMPLATE,
            {"user_story": "User signs in", "acceptance_criteria": "None provided"},
        )

        assert "User signs in" in mock_runtime.last_prompt
        assert mock_runtime.last_system_prompt == SCENARIO_EXPANSION_TEMPLATE.system

    @pytest.mark.asyncio
    async def test_missing_variable(self, mock_client, mock_runtime):
        with pytest.raises(ConfigurationError, match="acceptance_criteria"):
            await mock_client.invoke_with_template(SCENARIO_EXPANSION_TEMPLATE, {"user_story": "x"})

        assert mock_runtime.call_count == 0

    def test_model_info(self, mock_client):
        info = mock_client.get_model_info()

        assert info["model"] == "mock"
        assert info["provider"] == "openai"
        assert info["max_retries"] == 1

    def test_config_derived_from_runtime(self):
        client = ModelClient(runtime=MockLLMRuntime())
        assert client.config.model == "mock"
