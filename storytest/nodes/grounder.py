"""
Stage B: ScenarioGrounder (LLM-based with retrieval fallback)

Attaches known locators and API routes from the knowledge base to each scenario.
Matches are advisory: Stage C uses them when they fit a step and falls back to
generic locators otherwise.
"""

from __future__ import annotations
import asyncio
import json
import logging
from typing import Dict, List

from pydantic import AliasChoices, BaseModel, Field

from ..exceptions import LLMRuntimeError, ModelInvocationError, ResponseParseError
from ..models import Scenario, ValidatedScenario
from ..prompt_templates import SCENARIO_GROUNDING_TEMPLATE
from ..retrieval import Retriever
from ..runtime import ModelClient
from ..validation import parse_model

logger = logging.getLogger(__name__)


class GroundingResponse(BaseModel):
    """Expected JSON object from the grounding prompt."""
    matched_locators: Dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("matched_locators", "relevant_selectors"),
    )
    matched_routes: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("matched_routes", "relevant_endpoints"),
    )
    advisory_notes: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("advisory_notes", "validation_notes"),
    )
    confidence: float = Field(
        0.5,
        validation_alias=AliasChoices("confidence", "confidence_score"),
    )


def advisory_notes_for(
    scenario: Scenario,
    locators: Dict[str, str],
    routes: List[str]
) -> List[str]:
    """Deterministic notes about match coverage, device and scenario kind."""
    notes: List[str] = []

    if not locators:
        notes.append("WARNING: No matching selectors found - may need to add custom selectors")
    else:
        notes.append(f"Found {len(locators)} relevant selectors")

    if not routes:
        notes.append("WARNING: No matching API endpoints found - may need API mocking")
    else:
        notes.append(f"Found {len(routes)} relevant API endpoints")

    if scenario.target_device == "mobile":
        notes.append("Mobile-specific: Ensure responsive selectors and touch interactions")

    if scenario.kind == "negative":
        notes.append("Negative test: Ensure error selectors and validation messages are available")
    elif scenario.kind == "edge":
        notes.append("Edge case: Consider network simulation and error handling")

    return notes


class ScenarioGrounder:
    """
    Stage B: Ground scenarios against the locator and route catalogs.

    Every scenario is grounded independently and concurrently; output order
    matches input order.
    """

    def __init__(self, client: ModelClient, retriever: Retriever):
        self.client = client
        self.retriever = retriever
        self.fallback_count = 0

    async def process(self, scenarios: List[Scenario]) -> List[ValidatedScenario]:
        """
        Ground a batch of scenarios.

        Args:
            scenarios: Scenarios from Stage A

        Returns:
            One ValidatedScenario per input scenario, in input order
        """
        logger.info(f"Grounding {len(scenarios)} scenarios against the knowledge base")
        validated = await asyncio.gather(*(self.ground(s) for s in scenarios))
        logger.info(f"Grounded {len(validated)} scenarios")
        return list(validated)

    async def ground(self, scenario: Scenario) -> ValidatedScenario:
        try:
            return await self._primary(scenario)
        except (ModelInvocationError, LLMRuntimeError, ResponseParseError) as e:
            return self._fallback(scenario, e)

    async def _primary(self, scenario: Scenario) -> ValidatedScenario:
        kb = self.retriever.knowledge_base
        response = await self.client.invoke_with_template(
            SCENARIO_GROUNDING_TEMPLATE,
            {
                "scenario": scenario.model_dump_json(indent=2),
                "locators": json.dumps(kb.locators, indent=2),
                "routes": json.dumps(kb.routes, indent=2),
            },
        )
        grounding = parse_model(response, GroundingResponse)
        logger.debug(f"Grounding confidence for '{scenario.title}': {grounding.confidence}")

        return ValidatedScenario.from_scenario(
            scenario,
            matched_locators=grounding.matched_locators,
            matched_routes=grounding.matched_routes,
            advisory_notes=grounding.advisory_notes,
        )

    def _fallback(self, scenario: Scenario, error: Exception) -> ValidatedScenario:
        logger.warning(f"LLM grounding failed for scenario '{scenario.title}' ({error}); using retrieval")
        self.fallback_count += 1
        return ground_with_retrieval(scenario, self.retriever)


def ground_with_retrieval(scenario: Scenario, retriever: Retriever) -> ValidatedScenario:
    """Keyword retrieval over title, description and steps. Never fails."""
    keywords = retriever.extract_keywords(
        f"{scenario.title} {scenario.description} {' '.join(scenario.steps)}"
    )
    locators = retriever.find_locators(keywords)
    routes = retriever.find_routes(keywords)

    return ValidatedScenario.from_scenario(
        scenario,
        matched_locators=locators,
        matched_routes=routes,
        advisory_notes=advisory_notes_for(scenario, locators, routes),
    )
