"""
Command Line Interface for storytest

  storytest generate "<user story>"   run the full pipeline and write artifacts
  storytest analyze [DIR]             re-analyze existing generated tests

Exit codes: 0 success, 2 configuration or input error, 130 interrupted,
3 unexpected error. Errors are printed to stderr as JSON.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

from .config import SUPPORTED_PROVIDERS, load_knowledge_base_config, load_llm_config
from .emitter import ArtifactEmitter, load_tests
from .exceptions import StorytestError
from .models import Report, Story, WorkflowResult
from .retrieval import KnowledgeBase, Retriever
from .runtime import ModelClient
from .workflow import TestGenerationWorkflow, analyze_tests


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Reduce noise from some libraries
    logging.getLogger('openai').setLevel(logging.WARNING)
    logging.getLogger('anthropic').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


def _add_runtime_options(parser: argparse.ArgumentParser) -> None:
    runtime_group = parser.add_argument_group('LLM runtime options')
    runtime_group.add_argument(
        '--provider',
        choices=SUPPORTED_PROVIDERS,
        help='LLM provider (default: LLM_PROVIDER or openai)'
    )
    runtime_group.add_argument(
        '--model',
        help='Provider model identifier (default: per-provider default)'
    )
    runtime_group.add_argument(
        '--api-key',
        help='API key for the hosted provider (default: OPENAI_API_KEY / ANTHROPIC_API_KEY)'
    )
    runtime_group.add_argument(
        '--base-url',
        help='Provider base URL, e.g. a local Ollama server'
    )
    runtime_group.add_argument(
        '--max-retries',
        type=int,
        help='Attempts per model call before falling back (default: 3)'
    )
    runtime_group.add_argument(
        '--config',
        type=Path,
        help='Project TOML configuration (default: ./storytest.toml)'
    )


def _add_output_options(parser: argparse.ArgumentParser) -> None:
    output_group = parser.add_argument_group('output options')
    output_group.add_argument(
        '--output-dir',
        type=Path,
        default=Path.cwd(),
        help='Output directory for artifacts (default: current directory)'
    )
    output_group.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Enable verbose logging'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""

    parser = argparse.ArgumentParser(
        prog='storytest',
        description="storytest - Turn user stories into Playwright tests and an engineer review report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate tests with OpenAI (OPENAI_API_KEY set)
  storytest generate "User signs in to their account"

  # Generate with a local Ollama model
  storytest generate --provider ollama --model llama3 --story-file story.txt

  # Re-analyze previously generated tests
  storytest analyze ./tests/generated --output-dir .
        """
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    generate = subparsers.add_parser(
        'generate',
        help='Generate Playwright tests from a user story',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    input_group = generate.add_argument_group('story input')
    input_group.add_argument(
        'story',
        nargs='?',
        help='User story text'
    )
    input_group.add_argument(
        '--story-file',
        type=Path,
        help='Path to a story file (plain text, or JSON with description and acceptance_criteria)'
    )
    input_group.add_argument(
        '--criterion',
        action='append',
        default=[],
        help='Acceptance criterion (repeatable)'
    )
    kb_group = generate.add_argument_group('knowledge base options')
    kb_group.add_argument(
        '--locators',
        type=Path,
        help='Locator catalog JSON (default: packaged catalog)'
    )
    kb_group.add_argument(
        '--routes',
        type=Path,
        help='API route catalog JSON (default: packaged catalog)'
    )
    _add_runtime_options(generate)
    _add_output_options(generate)

    analyze = subparsers.add_parser(
        'analyze',
        help='Analyze existing generated tests and write a report',
    )
    analyze.add_argument(
        'directory',
        nargs='?',
        type=Path,
        default=Path('tests') / 'generated',
        help='Directory of *.spec.ts files (default: tests/generated)'
    )
    analyze.add_argument(
        '--with-llm',
        action='store_true',
        help='Ask the configured model for recommended fixes'
    )
    _add_runtime_options(analyze)
    _add_output_options(analyze)

    return parser


def validate_inputs(args: argparse.Namespace) -> None:
    """Validate command line inputs."""
    if args.command != 'generate':
        return

    if not args.story and not args.story_file:
        raise ValueError("Either a story argument or --story-file is required")

    if args.story and args.story_file:
        raise ValueError("Provide either a story argument or --story-file, not both")

    if args.story_file and not args.story_file.exists():
        raise FileNotFoundError(f"Story file not found: {args.story_file}")


def load_story(args: argparse.Namespace) -> Story:
    """Build the Story from the command line."""
    if args.story_file:
        text = args.story_file.read_text(encoding='utf-8')
        if args.story_file.suffix == '.json':
            story = Story.model_validate(json.loads(text))
        else:
            story = Story(description=text)
    else:
        story = Story(description=args.story)

    if args.criterion:
        story = story.model_copy(update={
            "acceptance_criteria": list(story.acceptance_criteria) + list(args.criterion)
        })
    return story


def create_client(args: argparse.Namespace) -> ModelClient:
    """Create the model client from configuration plus command line overrides."""
    config = load_llm_config(
        project_cfg=args.config,
        provider=args.provider,
        model=args.model,
        api_key=args.api_key,
        base_url=args.base_url,
        max_retries=args.max_retries,
    )
    return ModelClient(config)


def create_retriever(args: argparse.Namespace) -> Retriever:
    kb_config = load_knowledge_base_config(
        project_cfg=args.config,
        locators_path=args.locators,
        routes_path=args.routes,
    )
    return Retriever(KnowledgeBase.load(kb_config.locators_path, kb_config.routes_path))


def print_success_summary(result: WorkflowResult, artifacts: Dict[str, Any]) -> None:
    """Print brief success summary to stdout."""
    print("Tests Generated Successfully")
    print(f"Story: {result.story.description[:80]}")
    print("")
    print("Scenarios:")
    for scenario in result.scenarios:
        print(f"  [{scenario.kind}] {scenario.title} ({scenario.target_device})")
    print("")
    print("Test Files:")
    for path in artifacts["test_paths"]:
        print(f"  - {path}")
    print("")
    print_report_summary(result.report)
    print(f"  Report: {artifacts['report_markdown_path']}")
    print(f"  Generation Report: {artifacts['generation_report_path']}")


def print_report_summary(report: Report, report_path: Optional[Path] = None) -> None:
    summary = report.summary
    print("Quality Summary:")
    print(f"  Tests: {summary.total_tests}")
    print(f"  Average Score: {summary.average_quality_score}/100")
    print(f"  Total Issues: {summary.total_issues}")
    print(f"  Ready for Execution: {summary.ready_for_execution}/{summary.total_tests}")
    print(f"  Needing Attention: {summary.tests_needing_attention}")
    if report_path:
        print(f"  Report: {report_path}")


def print_error_summary(error: BaseException) -> None:
    """Print machine-readable error summary to stderr."""
    error_report = {
        "error_type": type(error).__name__,
        "message": str(error),
        "details": getattr(error, 'details', None)
    }
    print(json.dumps(error_report, indent=2), file=sys.stderr)


def run_generate(args: argparse.Namespace) -> int:
    story = load_story(args)
    workflow = TestGenerationWorkflow(
        client=create_client(args),
        retriever=create_retriever(args),
    )
    result = asyncio.run(workflow.run(story))

    artifacts = ArtifactEmitter(args.output_dir).process(result)
    print_success_summary(result, artifacts)
    return 0


def run_analyze(args: argparse.Namespace) -> int:
    tests = load_tests(args.directory)
    if not tests:
        raise ValueError(f"No *.spec.ts files found in {args.directory}")

    client = create_client(args) if args.with_llm else None
    report = asyncio.run(analyze_tests(tests, client=client, base_dir=args.directory))

    paths = ArtifactEmitter(args.output_dir).write_report(report)
    print_report_summary(report, paths["markdown"])
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""

    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        validate_inputs(args)

        if args.command == 'generate':
            return run_generate(args)
        return run_analyze(args)

    except (StorytestError, ValidationError, ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration or input error: {e}")
        print_error_summary(e)
        return 2

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130  # Standard Unix exit code for SIGINT

    except Exception as e:
        logger.exception("Unexpected error occurred")
        print_error_summary(e)
        return 3


if __name__ == '__main__':
    sys.exit(main())
