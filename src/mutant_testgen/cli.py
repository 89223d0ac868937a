"""Command-line interface for mutant-testgen."""

import argparse
import asyncio
import logging
import os
import sys
import traceback
from typing import Any, Dict, List, Optional

from mutant_testgen import __version__
from mutant_testgen.config import Config
from mutant_testgen.core import MutantTestGenApp
from mutant_testgen.exceptions import MutantTestGenError
from mutant_testgen.utils.user_feedback import UserFeedback
from mutant_testgen.utils.validation import SettingsValidator

MODES = ['generate', 'improve', 'analyze', 'batch', 'health', 'init-config']
DEFAULT_CONFIG_FILE = '.mutant-testgen.yml'


def configure_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None,
                      level: str = 'WARNING'):
    """Configure logging based on verbosity level.

    This is the only place that configures the root logger; library modules
    only create named loggers.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    if quiet:
        logging.basicConfig(level=logging.ERROR, format='%(message)s', handlers=handlers)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('requests').setLevel(logging.WARNING)
    elif verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            handlers=handlers,
        )
    else:
        logging.basicConfig(
            level=getattr(logging, str(level).upper(), logging.WARNING),
            format='%(levelname)s: %(message)s',
            handlers=handlers,
        )
        # Reduce noise from third-party libraries
        logging.getLogger('urllib3').setLevel(logging.ERROR)
        logging.getLogger('requests').setLevel(logging.ERROR)


logger = logging.getLogger(__name__)


def show_welcome_banner(feedback: UserFeedback):
    if not feedback.quiet:
        feedback.brand_header(f"v{__version__}")


def setup_argparse() -> argparse.ArgumentParser:
    """Set up command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="mutant-testgen",
        description="Generate unit tests and refine them until mutation testing stops finding gaps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mutant-testgen generate --source src/calculator.js --feedback-loop --target-score 90
  mutant-testgen improve --source src/calculator.js --test tests/calculator.test.js
  mutant-testgen analyze --source src/calculator.js --test tests/calculator.test.js
  mutant-testgen batch --pattern "src/**/*.js" --concurrency 2
""",
    )

    parser.add_argument("mode", nargs='?', default='generate', choices=MODES, help="Mode of operation")

    parser.add_argument("--source", help="Source file to generate or improve tests for")
    parser.add_argument("--test", help="Existing test file (improve and analyze modes)")
    parser.add_argument("--output", help="Where to write the final test file")
    parser.add_argument("--pattern", help="Glob pattern of source files (batch mode)")
    parser.add_argument(
        "--batch-mode",
        choices=['generate', 'improve'],
        help="What batch mode does with each file (default: batch.mode from the config)",
    )

    # Feedback loop
    parser.add_argument(
        "--feedback-loop",
        action="store_true",
        help="Refine generated tests with mutation feedback until the target score is reached",
    )
    parser.add_argument(
        "--no-feedback-loop",
        action="store_true",
        help="Only generate once in batch mode, even if batch.use_feedback_loop is enabled",
    )
    parser.add_argument("--target-score", type=float, help="Target mutation score, 0-100")
    parser.add_argument("--max-iterations", type=int, help="Maximum number of mutation analyses per file")
    parser.add_argument("--concurrency", type=int, help="Files processed side by side in batch mode")
    parser.add_argument(
        "--no-analysis",
        action="store_true",
        help="Skip the mutation analysis after a single generation without feedback loop",
    )

    # General
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument("--force", action="store_true", help="Overwrite an existing configuration file")
    parser.add_argument("--log-file", help="Also write log records to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only show errors and the final summary")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser


def validate_arguments(args) -> None:
    """Check that the arguments each mode needs are present."""
    if args.mode in ('generate', 'improve', 'analyze'):
        SettingsValidator.require_path(args.source, 'Source path')
    if args.mode in ('improve', 'analyze'):
        SettingsValidator.require_path(args.test, 'Test path')
    if args.mode == 'batch':
        SettingsValidator.require_path(args.pattern, 'Source pattern')
    if args.target_score is not None:
        SettingsValidator.validate_target_score(args.target_score)
    if args.max_iterations is not None:
        SettingsValidator.validate_max_iterations(args.max_iterations)
    if args.concurrency is not None:
        SettingsValidator.validate_concurrency(args.concurrency)


def load_config(args, feedback: UserFeedback) -> Config:
    """Load configuration and show a short summary of it."""
    with feedback.status_spinner("Loading configuration"):
        config = Config(args.config)

    config_info = {
        "Config File": args.config if os.path.exists(args.config) else f"{args.config} (not found, using defaults)",
        "Model": config.get('llm.model'),
        "Test Framework": config.get('test_generation.framework'),
        "Target Score": f"{args.target_score or config.get('feedback_loop.target_mutation_score')}%",
        "Max Iterations": args.max_iterations or config.get('feedback_loop.max_iterations'),
    }
    feedback.summary_panel("Configuration Loaded", config_info, "blue")
    return config


def handle_init_config_mode(args, feedback: UserFeedback):
    """Write a sample configuration file."""
    feedback.section_header("Configuration Initialization")

    if os.path.exists(args.config) and not args.force:
        feedback.warning(
            f"Configuration file {args.config} already exists",
            "Pass --force to overwrite it."
        )
        return

    try:
        Config(config_file=None).create_sample_config(args.config)
    except OSError as e:
        feedback.error(f"Failed to create configuration file: {e}", "Check file permissions and try again.")
        sys.exit(1)

    feedback.success(f"Sample configuration created at {args.config}")


def render_generation(record: Dict[str, Any], feedback: UserFeedback):
    if record.get('iteration_details'):
        feedback.iteration_table(
            f"Feedback loop for {record['file']}",
            record['iteration_details'],
            record.get('target_score', 0.0),
        )
    if record.get('mutation_error'):
        feedback.warning(f"Mutation analysis failed: {record['mutation_error']}")

    if not record.get('target_reached'):
        feedback.recommendations(record.get('recommendations', []))

    score = record.get('mutation_score')
    summary = {
        "Source": record['file'],
        "Tests": record.get('test_file'),
        "Mutation Score": f"{score:.2f}%" if score is not None else "not measured",
        "Target Reached": "Yes" if record.get('target_reached') else "No",
        "Iterations": record.get('iterations', 0),
    }
    if record.get('stop_reason'):
        summary["Stopped Because"] = record['stop_reason'].replace('_', ' ')
    if 'improvement' in record:
        summary["Score Change"] = f"{record['improvement']:+.2f}"
        summary["New Test Cases"] = record.get('new_test_cases', 0)
    feedback.final_summary("Generation Summary", summary, "green" if record.get('target_reached') else "yellow")


def render_analysis(result: Dict[str, Any], feedback: UserFeedback):
    summary = result['summary']
    feedback.recommendations(result.get('recommendations', []))
    for suggestion in result.get('suggestions', []):
        feedback.info(suggestion)

    feedback.final_summary("Mutation Analysis", {
        "Source": result['source_file'],
        "Tests": result['test_file'],
        "Mutation Score": f"{summary['score']:.2f}% ({result['score_category']})",
        "Mutants": summary['total'],
        "Killed": summary['killed'],
        "Survived": summary['survived'],
    })


def render_batch(results: Dict[str, Any], feedback: UserFeedback):
    items = []
    for record in results['processed_files']:
        if record['success']:
            score = record.get('mutation_score')
            description = f"score {score:.1f}%" if score is not None else "generated"
            if record.get('target_reached'):
                description += ", target reached"
            items.append(('success', record['file'], description))
        else:
            items.append(('error', record['file'], record.get('error', '')))
    feedback.status_table("Batch Results", items)

    for suggestion in results.get('optimization_suggestions', []):
        feedback.warning(f"{suggestion['title']}: {suggestion['description']}", suggestion['recommendation'])

    session = results['session']
    feedback.final_summary("Batch Summary", {
        "Files": results['total_files'],
        "Successful": results['successful_files'],
        "Failed": results['failed_files'],
        "Reached Target": session['target_reached'],
        "Average Score": f"{session['average_mutation_score']:.2f}%",
        "Duration": session['duration'],
        "Report": results.get('report_file'),
    }, "green" if not results['failed_files'] else "yellow")


def render_health(capabilities: Dict[str, Dict[str, Any]], feedback: UserFeedback) -> bool:
    items = []
    for name, check in capabilities.items():
        status = 'healthy' if check.get('healthy') else 'unhealthy'
        description = check.get('error') or ', '.join(
            f"{key}: {value}" for key, value in (check.get('info') or {}).items()
            if isinstance(value, (str, int, float))
        )
        items.append((status, name.replace('_', ' ').title(), description))
    feedback.status_table("Collaborator Health", items)
    return all(check.get('healthy') for check in capabilities.values())


async def execute_mode(app: MutantTestGenApp, args, feedback: UserFeedback) -> int:
    """Run the requested mode and return the process exit code."""
    if args.mode == 'generate':
        feedback.section_header("Generating Tests")
        record = await app.generate_tests(
            args.source,
            output_path=args.output,
            use_feedback_loop=args.feedback_loop,
            target_score=args.target_score,
            max_iterations=args.max_iterations,
            run_mutation_analysis=not args.no_analysis,
        )
        render_generation(record, feedback)
        return 0

    if args.mode == 'improve':
        feedback.section_header("Improving Tests")
        record = await app.improve_tests(args.source, args.test, output_path=args.output)
        render_generation(record, feedback)
        return 0

    if args.mode == 'analyze':
        feedback.section_header("Mutation Analysis")
        result = await app.run_mutation_analysis(args.source, args.test)
        render_analysis(result, feedback)
        return 0

    if args.mode == 'batch':
        feedback.section_header("Batch Processing")
        use_feedback_loop = None
        if args.feedback_loop:
            use_feedback_loop = True
        elif args.no_feedback_loop:
            use_feedback_loop = False
        results = await app.batch_process(
            args.pattern,
            mode=args.batch_mode,
            concurrency=args.concurrency,
            use_feedback_loop=use_feedback_loop,
            target_score=args.target_score,
            max_iterations=args.max_iterations,
        )
        render_batch(results, feedback)
        return 0 if not results['failed_files'] else 1

    feedback.section_header("Health Check")
    healthy = render_health(await app.validate_capabilities(), feedback)
    return 0 if healthy else 1


def main(argv: Optional[List[str]] = None):
    """Main execution function."""
    feedback = None

    try:
        parser = setup_argparse()
        args = parser.parse_args(argv)

        feedback = UserFeedback(verbose=args.verbose, quiet=args.quiet)

        if args.mode == 'init-config':
            configure_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)
            show_welcome_banner(feedback)
            handle_init_config_mode(args, feedback)
            return

        validate_arguments(args)
        show_welcome_banner(feedback)
        config = load_config(args, feedback)
        configure_logging(
            verbose=args.verbose,
            quiet=args.quiet,
            log_file=args.log_file or config.get('logging.file'),
            level=config.get('logging.level', 'WARNING'),
        )

        app = MutantTestGenApp(config, feedback)
        exit_code = asyncio.run(execute_mode(app, args, feedback))
        if exit_code:
            sys.exit(exit_code)

    except KeyboardInterrupt:
        if feedback:
            feedback.warning("Operation cancelled by user")
        else:
            print("\nOperation cancelled by user")
        sys.exit(130)

    except MutantTestGenError as e:
        if feedback:
            feedback.error(e.message, e.suggestion)
        else:
            print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    except Exception as e:
        if feedback:
            feedback.error(f"Unexpected error: {e}", "This appears to be a bug. Please report it with the details below.")
            if feedback.verbose:
                feedback.error("Full traceback:", details=traceback.format_exc())
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
