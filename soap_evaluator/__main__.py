"""
SOAP Note Evaluator - Command Line Host

Drives one persisted session step by step. The session lives in the JSON
store at SOAP_STORE_PATH, so each command picks up where the previous one
stopped.

Usage:
    python -m soap_evaluator upload --transcript visit.txt --model gpt-4o-mini
    python -m soap_evaluator reference reference_note.txt
    python -m soap_evaluator evaluate
    python -m soap_evaluator export --output soap_evaluation_results.json
    python -m soap_evaluator status
    python -m soap_evaluator models

Exit codes:
    0 → step completed
    1 → step reported an error
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from loguru import logger

from soap_evaluator.core.config import PipelineConfiguration
from soap_evaluator.core.constants import MODEL_OPTIONS, REPORT_FILENAME
from soap_evaluator.core.exceptions import SoapEvaluatorError
from soap_evaluator.core.models import ErrorReport
from soap_evaluator.pipeline import SoapNotePipeline
from soap_evaluator.repository import JsonFileBackend, ResultStore


# =============================================================================
# STAGE 1: ARGUMENT PARSER
# =============================================================================


def create_argument_parser() -> argparse.ArgumentParser:
    """Build the parser with one subcommand per workflow step."""
    parser = argparse.ArgumentParser(
        prog="soap_evaluator",
        description="Generate a SOAP note from a transcript and score it against a reference",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Upload a transcript (and optionally a reference) and generate
  python -m soap_evaluator upload --transcript visit.txt --reference ref.txt

  # Score the generated note and save the analysis payload
  python -m soap_evaluator evaluate
  python -m soap_evaluator export --output results.json
        """,
    )
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file")
    parser.add_argument("--store", type=str, default=None, help="Override SOAP_STORE_PATH")
    parser.add_argument("--log-level", type=str, default=None, help="Override SOAP_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Start a new session and generate a SOAP note")
    upload.add_argument("--transcript", required=True, help="Transcript .txt file")
    upload.add_argument("--reference", default=None, help="Reference SOAP note .txt file")
    upload.add_argument("--model", default=None, help="Model selector (see `models`)")

    subparsers.add_parser("resume", help="Continue the stored session")

    reference = subparsers.add_parser("reference", help="Attach or replace the reference note")
    reference.add_argument("path", help="Reference SOAP note .txt file")

    evaluate = subparsers.add_parser("evaluate", help="Score the generated note")
    evaluate.add_argument("--reference", default=None, help="Reference .txt file to attach first")

    subparsers.add_parser("status", help="Show the stored session")

    export = subparsers.add_parser("export", help="Write the analysis payload as JSON")
    export.add_argument("--output", default=REPORT_FILENAME, help="Output path")

    subparsers.add_parser("models", help="List selectable models")

    return parser


# =============================================================================
# STAGE 2: PIPELINE FACTORY
# =============================================================================


def load_configuration(args: argparse.Namespace) -> PipelineConfiguration:
    config = PipelineConfiguration.from_environment(env_file=args.env_file)
    if args.store:
        config.store_path = args.store
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


def build_pipeline(config: PipelineConfiguration) -> SoapNotePipeline:
    return SoapNotePipeline(config, store=ResultStore(JsonFileBackend(config.store_path)))


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


# =============================================================================
# STAGE 3: OUTPUT HELPERS
# =============================================================================


def _print_error(report: Optional[ErrorReport]) -> bool:
    if report is None:
        return False
    print(f"[FAIL] {report.message} ({report.category.value})")
    return True


def _print_session(pipeline: SoapNotePipeline) -> None:
    snapshot = pipeline.snapshot
    print(f"State: {pipeline.state.value}")
    print(f"Model: {snapshot.model or '-'}")
    print(f"Transcript: {len(snapshot.transcript)} chars")
    print(f"Reference: {'yes' if snapshot.has_reference else 'no'}")

    for outcome in snapshot.outcomes:
        print("-" * 80)
        print(f"{outcome.label} [{outcome.status.value}]")
        if outcome.error_detail:
            print(f"Error: {outcome.error_detail}")
        print(outcome.note_text or "")

    if snapshot.metrics:
        print("-" * 80)
        print(f"{'Model':<30} {'ROUGE-1':<10} {'BLEU-1':<10} {'Combined':<10}")
        for metric in snapshot.metrics:
            print(f"{metric.label:<30} {metric.rouge1:<10.3f} {metric.bleu1:<10.3f} {metric.combined:<10.3f}")


# =============================================================================
# STAGE 4: COMMANDS
# =============================================================================


async def run_command(args: argparse.Namespace, pipeline: SoapNotePipeline) -> int:
    """Execute one subcommand against the pipeline; returns the exit code."""
    failed = False

    if args.command == "upload":
        await pipeline.upload_files(args.transcript, args.model, args.reference)
        await pipeline.wait_for_generation()
        failed = _print_error(pipeline.generation_error)

    elif args.command == "resume":
        await pipeline.resume()
        await pipeline.join()
        failed = _print_error(pipeline.generation_error)

    elif args.command == "reference":
        await pipeline.resume()
        await pipeline.wait_for_generation()
        pipeline.update_reference_file(args.path)
        print("[OK] Reference saved")

    elif args.command == "evaluate":
        await pipeline.resume()
        await pipeline.wait_for_generation()
        if _print_error(pipeline.generation_error):
            return 1
        if args.reference:
            pipeline.update_reference_file(args.reference)
        await pipeline.evaluate()
        await pipeline.wait_for_evaluation()
        failed = _print_error(pipeline.evaluation_error)

    elif args.command == "status":
        pipeline.store.ensure_schema()
        snapshot = pipeline.store.snapshot()
        print(
            json.dumps(
                {
                    "transcript_chars": len(snapshot.transcript),
                    "model": snapshot.model,
                    "has_reference": snapshot.has_reference,
                    "generation_in_progress": snapshot.generation_in_progress,
                    "evaluation_in_progress": snapshot.evaluation_in_progress,
                    "results": [outcome.to_dict() for outcome in snapshot.outcomes],
                    "metrics": [metric.to_dict() for metric in snapshot.metrics],
                },
                indent=2,
            )
        )
        return 0

    elif args.command == "export":
        await pipeline.resume()
        await pipeline.join()
        path = pipeline.export_report(args.output)
        if path is None:
            print("[FAIL] Nothing to export yet. Run `evaluate` first.")
            return 1
        print(f"[OK] Saved results to: {path}")
        return 0

    _print_session(pipeline)
    if _print_error(pipeline.storage_error):
        failed = True
    await pipeline.close()
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if args.command == "models":
        for selector, label in MODEL_OPTIONS:
            print(f"{selector:<30} {label}")
        return 0

    try:
        config = load_configuration(args)
        configure_logging(config.log_level)
        pipeline = build_pipeline(config)
        return asyncio.run(run_command(args, pipeline))
    except SoapEvaluatorError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"[FAIL] {e.user_message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
