"""
storytest

Transforms user stories into Playwright TypeScript tests and an engineer review
report. Four stages (expand, ground, generate, analyze) run over OpenAI,
Anthropic or a local Ollama model, each with a deterministic fallback.
"""

__version__ = "0.1.0"
__all__ = [
    "TestGenerationWorkflow",
    "generate_tests",
    "analyze_tests",
    "Story",
    "Report",
    "ModelClient",
    "Retriever",
    "StorytestError",
]

from .exceptions import StorytestError
from .models import Report, Story
from .retrieval import Retriever
from .runtime import ModelClient
from .workflow import TestGenerationWorkflow, analyze_tests, generate_tests
