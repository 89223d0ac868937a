"""Session reporting."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from mutant_testgen.models.generation_session import GenerationSession

logger = logging.getLogger(__name__)


class SessionReporter:
    """Write JSON reports about generation sessions."""

    def __init__(self, output_dir: str = '.', report_name: str = '.mutant-testgen-report.json'):
        self.output_dir = Path(output_dir)
        self.report_file = self.output_dir / report_name

    def build_report(self, session: GenerationSession, performance: Optional[Dict[str, Any]] = None,
                     suggestions: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        report = {
            "timestamp": datetime.now().isoformat(),
            **session.get_detailed_report(),
        }
        if performance is not None:
            report["loop_performance"] = performance
        if suggestions:
            report["optimization_suggestions"] = suggestions
        return report

    def generate_report(self, session: GenerationSession, performance: Optional[Dict[str, Any]] = None,
                        suggestions: Optional[List[Dict[str, Any]]] = None) -> str:
        """Save the session report and return a human-readable summary."""
        report = self.build_report(session, performance, suggestions)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(self.report_file, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, default=str)
        logger.info(f"Session report written to {self.report_file}")

        summary = report['session']
        return f"""
Mutation-Guided Test Generation Report
======================================
Generated: {report['timestamp']}
Session: {summary['id']} ({summary['status']})

Summary:
- Files processed: {summary['processed_files']}
- Successful: {summary['successful']}
- Failed: {summary['failed']}
- Reached target: {summary['target_reached']}
- Average mutation score: {summary['average_mutation_score']:.1f}%
- Total iterations: {summary['total_iterations']}
- Duration: {summary['duration']}

Report saved to: {self.report_file}
"""
