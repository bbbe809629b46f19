"""
Main entry point for the deal screening orchestrator.
Creates deals, starts and resumes screening runs, and prints derived state.
"""
import os
import sys
import json
import asyncio
import argparse
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from core.orchestrator import Orchestrator
from dealflow.state.models import DealInput
from exceptions import PipelineError, InputError
from logging_config import setup_pipeline_logging, log_error


def read_deal_file(path: str) -> DealInput:
    """Read a deal description from a JSON or YAML file."""
    if not os.path.exists(path):
        raise InputError(f"Deal file '{path}' not found.")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (IOError, yaml.YAMLError) as e:
        raise InputError(f"Error reading deal file '{path}': {e}")
    if not isinstance(data, dict):
        raise InputError(f"Deal file '{path}' must contain a mapping.")
    try:
        return DealInput.model_validate(data)
    except ValidationError as e:
        raise InputError(f"Invalid deal in '{path}': {e}")


def emit(result: Dict[str, Any]) -> None:
    print(json.dumps(result, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Dealflow - wave-based deal screening with validated worker outputs'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Set the logging level (default: INFO, can also be set via DEALFLOW_LOG_LEVEL env var)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging (equivalent to --log-level DEBUG)'
    )
    parser.add_argument(
        '--config-root',
        default='./config',
        help='Path to configuration directory (default: ./config)'
    )
    parser.add_argument(
        '--data-dir',
        help='Override the deal storage directory from pipeline.yaml'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Use canned worker outputs and skip network collaborators (no LLM required)'
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Register a deal from a JSON or YAML file")
    create_parser.add_argument("--deal", required=True, help="Deal description file")
    create_parser.add_argument("--start", action="store_true", help="Start a run right after creating the deal")

    start_parser = subparsers.add_parser("start", help="Start a new run and drive it to completion")
    start_parser.add_argument("deal_id")
    start_parser.add_argument("--run-id", help="Continue an existing unsealed run instead of creating one")

    resume_parser = subparsers.add_parser("resume", help="Advance the latest run by one wave")
    resume_parser.add_argument("deal_id")

    state_parser = subparsers.add_parser("state", help="Print the derived state of a run")
    state_parser.add_argument("deal_id")
    state_parser.add_argument("--run-id", help="Run to inspect (default: latest)")

    runs_parser = subparsers.add_parser("runs", help="List the runs of a deal, or all deals when none is given")
    runs_parser.add_argument("deal_id", nargs="?")
    return parser


async def dispatch(args: argparse.Namespace, orchestrator: Orchestrator) -> Dict[str, Any]:
    if args.command == "create":
        deal_id = orchestrator.create_deal(read_deal_file(args.deal))
        if not args.start:
            return {"deal_id": deal_id}
        result = await orchestrator.start_run(deal_id)
        return result.model_dump(mode="json")
    if args.command == "start":
        result = await orchestrator.start_run(args.deal_id, args.run_id)
        return result.model_dump(mode="json")
    if args.command == "resume":
        result = await orchestrator.resume_run(args.deal_id)
        return result.model_dump(mode="json")
    if args.command == "state":
        return orchestrator.get_state(args.deal_id, args.run_id).model_dump(mode="json")
    if args.command == "runs":
        if args.deal_id is None:
            return {"deals": orchestrator.run_manager.list_deals()}
        return {"deal_id": args.deal_id,
                "runs": [record.model_dump(mode="json") for record in orchestrator.list_runs(args.deal_id)]}
    raise InputError(f"Unknown command '{args.command}'")


def main():
    """Main function to run the orchestrator with CLI arguments."""

    try:
        args = build_parser().parse_args()

        # Set up logging
        pipeline_logger = setup_pipeline_logging(
            log_level=args.log_level,
            verbose=args.verbose
        )
        logger = pipeline_logger.get_logger("main")

        if args.dry_run:
            logger.info("Running in DRY-RUN mode - canned worker outputs (no LLM required)", extra={
                "component": "Main",
                "data": {"mode": "dry_run"}
            })

        try:
            orchestrator = Orchestrator.from_config(args.config_root, args.dry_run, args.data_dir)
        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(f"Failed to initialize orchestrator: {e}")
        orchestrator.set_logger(logger)

        emit(asyncio.run(dispatch(args, orchestrator)))

    except InputError as e:
        if 'logger' in locals():
            log_error(logger, f"Input error: {str(e)}", "Main", e)
        else:
            print(f"Input Error: {e}", file=sys.stderr)
        sys.exit(1)

    except PipelineError as e:
        if 'logger' in locals():
            log_error(logger, f"Pipeline error: {str(e)}", "Main", e)
        else:
            print(f"Pipeline Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        if 'logger' in locals():
            log_error(logger, f"Unexpected error: {str(e)}", "Main", e)
        else:
            print(f"Unexpected Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
