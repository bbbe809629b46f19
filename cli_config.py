#!/usr/bin/env python3
"""
CLI tool for managing dealflow worker configurations.
Validates configs and provides management commands.
"""
import argparse
import sys
from config_system.config_loader import ConfigLoader, ConfigValidationError


def validate_command(args):
    """Validate all configuration files."""
    try:
        loader = ConfigLoader(args.config_root)
        loader.validate_all_configs()
        print("[OK] All configurations are valid!")
        return True
    except ConfigValidationError as e:
        print(f"[ERROR] Configuration validation failed: {e}")
        return False


def list_command(args):
    """List available models, workers and collaborators."""
    try:
        loader = ConfigLoader(args.config_root)

        print("Available Models:")
        for model in loader.list_available_models():
            print(f"  - {model}")

        print("\nAvailable Workers:")
        for worker in loader.list_available_workers():
            print(f"  - {worker}")

        pipeline = loader.load_pipeline_config()
        print("\nAnalysts:")
        for index, analyst in enumerate(pipeline.analysts, start=1):
            print(f"  - analyst_{index}: {analyst.specialization}")

        print("\nCollaborators:")
        for collaborator in pipeline.collaborators:
            print(f"  - {collaborator.name} ({collaborator.kind}) stages: {', '.join(collaborator.stages)}")

        return True
    except ConfigValidationError as e:
        print(f"[ERROR] Error listing configs: {e}")
        return False


def check_command(args):
    """Check specific worker or model configuration."""
    try:
        loader = ConfigLoader(args.config_root)

        if args.model:
            model_config = loader.load_model_config(args.model)
            print(f"[OK] Model '{args.model}' configuration is valid:")
            print(f"  Provider: {model_config.provider}")
            print(f"  Model: {model_config.model_name}")
            print(f"  Parameters: {', '.join(sorted(model_config.parameters)) or 'none'}")

        if args.worker:
            worker_config = loader.load_worker_config(args.worker)
            prompts_config = loader.load_prompts_config(args.worker)
            print(f"[OK] Worker '{args.worker}' configuration is valid:")
            print(f"  Description: {worker_config.description}")
            print(f"  LLM: {worker_config.llm}")
            print(f"  Rate limit retries: {worker_config.rate_limit.max_retries}")
            print(f"  AI prefix: {'yes' if prompts_config.ai_message_prefix else 'no'}")

        return True
    except ConfigValidationError as e:
        print(f"[ERROR] Configuration check failed: {e}")
        return False


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Dealflow Worker Configuration Management CLI"
    )
    parser.add_argument(
        "--config-root",
        default="./config",
        help="Root directory for configuration files (default: ./config)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("validate", help="Validate all configuration files")
    subparsers.add_parser("list", help="List available models, workers and collaborators")

    check_parser = subparsers.add_parser("check", help="Check specific worker or model configuration")
    check_parser.add_argument("--model", help="Model name to check")
    check_parser.add_argument("--worker", help="Worker role to check (analyst, synthesis, decision)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        print("\nExamples:")
        print("  python cli_config.py validate")
        print("  python cli_config.py list")
        print("  python cli_config.py check --worker decision")
        print("  python cli_config.py check --model openai_gpt4o_mini")
        print("  python cli_config.py --config-root ./my-configs validate")
        sys.exit(1)

    success = False
    if args.command == "validate":
        success = validate_command(args)
    elif args.command == "list":
        success = list_command(args)
    elif args.command == "check":
        if not args.model and not args.worker:
            print("[ERROR] Please specify --model or --worker to check")
            sys.exit(1)
        success = check_command(args)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
