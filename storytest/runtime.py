"""
Pluggable LLM runtime abstraction and the model invocation client.

Provides a unified async interface over OpenAI, Anthropic and a local Ollama
server (through its OpenAI-compatible endpoint), plus ``ModelClient`` which adds
prompt templating and retry with exponential backoff on top of one runtime.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from .config import LLMConfig, load_llm_config
from .exceptions import ConfigurationError, LLMRuntimeError, ModelInvocationError
from .prompt_templates import PromptTemplate

logger = logging.getLogger(__name__)


class LLMRuntime(Protocol):
    """Protocol for all LLM runtime implementations."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """Generate text response from a system and user prompt."""
        ...

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        ...


class OpenAICompatibleRuntime:
    """
    Unified runtime for OpenAI-compatible APIs.
    Works with OpenAI and with a local Ollama server's /v1 endpoint.
    """

    def __init__(
        self,
        model: str,
        api_key: str = "no-key",
        base_url: Optional[str] = None,
        name: str = "openai"
    ):
        self.base_url = base_url
        self.model = model
        self.name = name
        self.client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """Generate response using an OpenAI-compatible chat completion."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return (response.choices[0].message.content or "").strip()

        except Exception as e:
            raise LLMRuntimeError(f"Failed to generate response from {self.name}: {e}") from e

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "model": self.model,
            "base_url": self.base_url,
            "type": "openai-compatible"
        }


class AnthropicRuntime:
    """Runtime for the Anthropic messages API."""

    def __init__(self, model: str, api_key: str, name: str = "anthropic"):
        self.model = model
        self.name = name
        self.client = AsyncAnthropic(api_key=api_key)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """Generate response using the Anthropic messages API."""
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
            return "".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            ).strip()

        except Exception as e:
            raise LLMRuntimeError(f"Failed to generate response from {self.name}: {e}") from e

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "model": self.model,
            "type": "anthropic"
        }


def _create_openai(config: LLMConfig) -> LLMRuntime:
    if not config.api_key:
        raise ConfigurationError("OpenAI API key is required (set OPENAI_API_KEY)")
    return OpenAICompatibleRuntime(
        model=config.model,
        api_key=config.api_key,
        base_url=config.base_url,
        name="openai"
    )


def _create_anthropic(config: LLMConfig) -> LLMRuntime:
    if not config.api_key:
        raise ConfigurationError("Anthropic API key is required (set ANTHROPIC_API_KEY)")
    return AnthropicRuntime(model=config.model, api_key=config.api_key)


def _create_ollama(config: LLMConfig) -> LLMRuntime:
    base_url = (config.base_url or "http://localhost:11434").rstrip("/")
    if not base_url.endswith("/v1"):
        base_url = f"{base_url}/v1"
    return OpenAICompatibleRuntime(
        model=config.model,
        api_key="ollama",
        base_url=base_url,
        name="ollama"
    )


_RUNTIME_BUILDERS: Dict[str, Callable[[LLMConfig], LLMRuntime]] = {
    "openai": _create_openai,
    "anthropic": _create_anthropic,
    "ollama": _create_ollama,
}


def create_runtime(config: LLMConfig) -> LLMRuntime:
    """
    Create the runtime for the configured provider.

    Raises:
        ConfigurationError: Unknown provider or missing credential
    """
    builder = _RUNTIME_BUILDERS.get(config.provider)
    if builder is None:
        raise ConfigurationError(f"Unsupported LLM provider: {config.provider}")
    runtime = builder(config)
    logger.info(f"Initialized {config.provider} runtime with model {config.model}")
    return runtime


class ModelClient:
    """
    Model invocation client shared by every pipeline stage.

    Wraps one provider runtime with prompt templating and retry. Configuration is
    read once at construction and never changes afterwards.
    """

    def __init__(self, config: Optional[LLMConfig] = None, runtime: Optional[LLMRuntime] = None):
        """
        Args:
            config: Resolved configuration (loaded from TOML/env if None)
            runtime: Runtime to use (created from config if None)
        """
        if config is None:
            if runtime is None:
                config = load_llm_config()
            else:
                info = runtime.get_model_info()
                config = LLMConfig(model=str(info.get("model") or info.get("name") or "unknown"))
        self.config = config
        self.runtime = runtime if runtime is not None else create_runtime(config)

    async def invoke(self, system_prompt: str, user_prompt: str) -> str:
        """Single model call. Provider errors propagate."""
        return await self.runtime.generate(
            system_prompt,
            user_prompt,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

    async def invoke_with_template(
        self,
        template: PromptTemplate,
        variables: Mapping[str, Any],
        max_attempts: Optional[int] = None
    ) -> str:
        """
        Render a prompt template and invoke with retry.

        Raises:
            ConfigurationError: If the template needs a variable that was not supplied
            ModelInvocationError: If every attempt failed
        """
        try:
            user_prompt = template.format(**variables)
        except KeyError as e:
            raise ConfigurationError(str(e)) from e
        return await self.invoke_with_retry(template.system, user_prompt, max_attempts=max_attempts)

    async def invoke_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        max_attempts: Optional[int] = None
    ) -> str:
        """
        Invoke the model up to ``max_attempts`` times.

        After the n-th failed attempt (n < max_attempts) waits 2**n seconds.

        Raises:
            ModelInvocationError: Carrying the last error once attempts are exhausted
        """
        attempts = max_attempts or self.config.max_retries
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self.invoke(system_prompt, user_prompt)
                if attempt > 1:
                    logger.info(f"LLM call succeeded on attempt {attempt}")
                return response
            except Exception as e:
                last_error = e
                logger.warning(f"LLM attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(2 ** attempt)

        raise ModelInvocationError(attempts, last_error)

    def get_model_info(self) -> Dict[str, Any]:
        info = dict(self.runtime.get_model_info())
        info.setdefault("provider", self.config.provider)
        info["max_retries"] = self.config.max_retries
        return info


class MockLLMRuntime:
    """Mock runtime for testing - returns predefined responses."""

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        default_response: str = "",
        fail_times: int = 0,
        always_fail: bool = False
    ):
        """
        Args:
            responses: Map from prompt keywords to mock responses
            default_response: Returned when no keyword matches
            fail_times: Number of initial calls that raise LLMRuntimeError
            always_fail: Raise LLMRuntimeError on every call
        """
        self.responses = responses or {}
        self.default_response = default_response
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.call_count = 0
        self.last_prompt = ""
        self.last_system_prompt = ""
        self.prompts: List[str] = []

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """Return mock response based on prompt content."""
        self.call_count += 1
        self.last_prompt = user_prompt
        self.last_system_prompt = system_prompt
        self.prompts.append(user_prompt)

        if self.always_fail or self.call_count <= self.fail_times:
            raise LLMRuntimeError(f"Mock failure on call {self.call_count}")

        # Find matching response based on keywords
        for keyword, response in self.responses.items():
            if keyword.lower() in user_prompt.lower():
                return response

        return self.default_response

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": "mock",
            "model": "mock",
            "type": "mock",
            "responses_count": len(self.responses)
        }
