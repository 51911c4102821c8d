"""
Pipeline stages for storytest.

1. ScenarioExpander - LLM-based story expansion into four scenarios
2. ScenarioGrounder - LLM-based grounding against the knowledge base, retrieval fallback
3. CodeGenerator - LLM-based Playwright test generation, template fallback
4. QualityAnalyzer / ReportBuilder - Deterministic static analysis and the engineer report
"""

from .expander import ScenarioExpander
from .grounder import ScenarioGrounder
from .generator import CodeGenerator
from .analyzer import QualityAnalyzer
from .reporter import ReportBuilder

__all__ = [
    "ScenarioExpander",
    "ScenarioGrounder",
    "CodeGenerator",
    "QualityAnalyzer",
    "ReportBuilder"
]
