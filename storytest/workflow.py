"""
Story-to-Playwright Test Workflow

Orchestrates the four-stage pipeline:
A. ScenarioExpander -> B. ScenarioGrounder -> C. CodeGenerator
-> G. QualityAnalyzer + ReportBuilder

Each stage fans out over its batch concurrently and joins before the next stage
starts. Model and knowledge-base configuration is resolved in the constructor so
that fatal configuration errors surface before any stage runs.
"""

from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import LLMConfig
from .models import GeneratedTest, Report, Story, WorkflowResult
from .nodes import (
    ScenarioExpander,
    ScenarioGrounder,
    CodeGenerator,
    QualityAnalyzer,
    ReportBuilder
)
from .retrieval import Retriever
from .runtime import ModelClient

logger = logging.getLogger(__name__)


class TestGenerationWorkflow:
    """
    Main workflow orchestrator for storytest.

    Holds no state between runs other than the shared model client and the
    read-only knowledge base.
    """
    __test__ = False

    def __init__(
        self,
        client: Optional[ModelClient] = None,
        retriever: Optional[Retriever] = None,
        config: Optional[LLMConfig] = None,
        base_dir: Optional[Path] = None
    ):
        """
        Args:
            client: Model client (built from config, or TOML/env, if None)
            retriever: Knowledge retriever (packaged knowledge base if None)
            config: Model configuration used when no client is given
            base_dir: Directory relative imports in generated tests resolve against

        Raises:
            ConfigurationError: Unsupported provider or missing credential
            KnowledgeBaseError: Knowledge base files missing or malformed
        """
        self.client = client if client is not None else ModelClient(config)
        self.retriever = retriever if retriever is not None else Retriever()
        self.base_dir = base_dir

        # Populated during execution
        self._execution_stats: Dict[str, Any] = {}

    async def run(self, story: Union[Story, str]) -> WorkflowResult:
        """
        Execute the complete pipeline for one story.

        Args:
            story: User story (plain text is wrapped in a Story)

        Returns:
            Scenarios, generated tests, the engineer report and execution statistics
        """
        if isinstance(story, str):
            story = Story(description=story)

        logger.info(f"Starting test generation workflow for story: {story.description[:80]}")
        self._execution_stats = {}

        try:
            result = await self._execute_workflow(story)
            self._log_success_summary(result)
            return result

        except Exception as e:
            logger.error(f"Workflow failed: {e}")
            raise

    async def _execute_workflow(self, story: Story) -> WorkflowResult:
        # Stage A: ScenarioExpander (LLM-based)
        logger.info("Stage A: Expanding user story into scenarios...")
        expander = ScenarioExpander(self.client)
        scenarios = await expander.process(story)

        self._execution_stats["stage_a_scenarios"] = len(scenarios)
        self._execution_stats["stage_a_fallbacks"] = expander.fallback_count

        # Stage B: ScenarioGrounder (LLM-based, retrieval fallback)
        logger.info("Stage B: Grounding scenarios against the knowledge base...")
        grounder = ScenarioGrounder(self.client, self.retriever)
        validated = await grounder.process(scenarios)

        self._execution_stats["stage_b_validated"] = len(validated)
        self._execution_stats["stage_b_fallbacks"] = grounder.fallback_count
        self._execution_stats["stage_b_locators"] = sum(len(v.matched_locators) for v in validated)

        # Stage C: CodeGenerator (LLM-based, template fallback)
        logger.info("Stage C: Generating Playwright tests...")
        generator = CodeGenerator(self.client)
        tests = await generator.process(validated)

        self._execution_stats["stage_c_tests"] = len(tests)
        self._execution_stats["stage_c_fallbacks"] = generator.fallback_count

        # Stage G: QualityAnalyzer + ReportBuilder (deterministic)
        logger.info("Stage G: Analyzing generated tests...")
        analyzer = QualityAnalyzer(self.client, self.base_dir)
        analyses = await analyzer.process(tests)
        report = ReportBuilder().process(analyses)

        self._execution_stats["stage_g_total_issues"] = report.summary.total_issues
        self._execution_stats["stage_g_average_score"] = report.summary.average_quality_score
        self._execution_stats["stage_g_recommendation_fallbacks"] = analyzer.fallback_count

        return WorkflowResult(
            story=story,
            scenarios=scenarios,
            validated_scenarios=validated,
            tests=tests,
            report=report,
            execution_stats=dict(self._execution_stats),
            model_info=self.client.get_model_info(),
        )

    def _log_success_summary(self, result: WorkflowResult) -> None:
        stats = result.execution_stats
        summary = result.report.summary

        summary_lines = [
            "",
            "Test Generation Complete!",
            "=" * 50,
            f"Story: {result.story.description[:80]}",
            "",
            "Generation Statistics:",
            f"  • Scenarios: {stats.get('stage_a_scenarios', 0)} "
            f"(fallback: {'yes' if stats.get('stage_a_fallbacks') else 'no'})",
            f"  • Grounded Scenarios: {stats.get('stage_b_validated', 0)} "
            f"({stats.get('stage_b_fallbacks', 0)} via retrieval)",
            f"  • Test Files: {stats.get('stage_c_tests', 0)} "
            f"({stats.get('stage_c_fallbacks', 0)} from template)",
            "",
            "Quality:",
            f"  • Average Score: {summary.average_quality_score}/100",
            f"  • Total Issues: {summary.total_issues}",
            f"  • Ready for Execution: {summary.ready_for_execution}/{summary.total_tests}",
            "=" * 50,
            "",
        ]

        for line in summary_lines:
            logger.info(line)

    def get_execution_stats(self) -> Dict[str, Any]:
        """Get execution statistics of the last run."""
        return self._execution_stats.copy()


# Convenience functions for common workflows

def generate_tests(
    story: Union[Story, str],
    client: Optional[ModelClient] = None,
    config: Optional[LLMConfig] = None,
    retriever: Optional[Retriever] = None
) -> WorkflowResult:
    """
    Run the full pipeline for one story from synchronous code.

    Args:
        story: User story text or Story
        client: Optional model client (built from config/env if None)
        config: Optional model configuration
        retriever: Optional knowledge retriever

    Returns:
        The workflow result
    """
    workflow = TestGenerationWorkflow(client=client, retriever=retriever, config=config)
    return asyncio.run(workflow.run(story))


async def analyze_tests(
    tests: List[GeneratedTest],
    client: Optional[ModelClient] = None,
    base_dir: Optional[Path] = None
) -> Report:
    """
    Run Stage G alone over existing test files.

    Args:
        tests: Test files to analyze
        client: Optional model client for recommended fixes (fixed checklist if None)
        base_dir: Directory relative imports resolve against

    Returns:
        The engineer review report
    """
    analyses = await QualityAnalyzer(client, base_dir).process(tests)
    return ReportBuilder().process(analyses)
