"""
ArtifactEmitter: writes pipeline output to disk and reads tests back for re-analysis.

Layout under the output directory:
  tests/generated/<filename>.spec.ts
  reports/engineer-review-<stamp>.json
  reports/engineer-review-<stamp>.md
  generation-report.json
"""

from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import StorytestError
from .models import GeneratedTest, Report, WorkflowResult
from .nodes.reporter import render_markdown

logger = logging.getLogger(__name__)

GENERATED_TESTS_DIR = Path("tests") / "generated"
REPORTS_DIR = Path("reports")
GENERATION_REPORT = "generation-report.json"


class ArtifactEmitter:
    """Persist generated tests and reports."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()

    @property
    def tests_dir(self) -> Path:
        return self.output_dir / GENERATED_TESTS_DIR

    @property
    def reports_dir(self) -> Path:
        return self.output_dir / REPORTS_DIR

    def write_tests(self, tests: List[GeneratedTest]) -> List[Path]:
        self.tests_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for test in tests:
            path = self.tests_dir / test.filename
            path.write_text(test.source_text, encoding="utf-8")
            logger.debug(f"Wrote {path}")
            paths.append(path)
        logger.info(f"Saved {len(paths)} test files to {self.tests_dir}")
        return paths

    def write_report(self, report: Report) -> Dict[str, Path]:
        """Write the report as JSON and Markdown. Returns both paths."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        stamp = report.timestamp.strftime("%Y%m%dT%H%M%S%fZ")
        json_path = self.reports_dir / f"engineer-review-{stamp}.json"
        md_path = self.reports_dir / f"engineer-review-{stamp}.md"

        json_path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        md_path.write_text(render_markdown(report), encoding="utf-8")

        logger.info(f"Engineer review report saved to {md_path}")
        return {"json": json_path, "markdown": md_path}

    def write_generation_report(self, result: WorkflowResult, test_paths: List[Path]) -> Path:
        summary = result.report.summary
        payload: Dict[str, Any] = {
            "timestamp": result.report.timestamp.isoformat(),
            "user_story": result.story.model_dump(),
            "model_info": result.model_info,
            "scenarios": [
                {
                    "title": s.title,
                    "type": s.kind,
                    "device": s.target_device,
                    "steps": len(s.steps),
                }
                for s in result.scenarios
            ],
            "generated_files": [str(p) for p in test_paths],
            "execution_stats": result.execution_stats,
            "analysis_summary": summary.model_dump(),
        }
        path = self.output_dir / GENERATION_REPORT
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    def process(self, result: WorkflowResult) -> Dict[str, Any]:
        """
        Write every artifact of one workflow run.

        Returns:
            Paths keyed by artifact kind
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        test_paths = self.write_tests(result.tests)
        report_paths = self.write_report(result.report)
        generation_report = self.write_generation_report(result, test_paths)

        return {
            "test_paths": test_paths,
            "report_json_path": report_paths["json"],
            "report_markdown_path": report_paths["markdown"],
            "generation_report_path": generation_report,
        }


def load_tests(directory: Path) -> List[GeneratedTest]:
    """
    Read every *.spec.ts file in a directory, sorted by name.

    Raises:
        StorytestError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise StorytestError(f"Test directory not found: {directory}")

    return [
        GeneratedTest(filename=path.name, source_text=path.read_text(encoding="utf-8"))
        for path in sorted(directory.glob("*.spec.ts"))
    ]
