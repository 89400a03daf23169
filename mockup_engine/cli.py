from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from dotenv import load_dotenv


def _print_err(message: str) -> None:
    sys.stderr.write(message.rstrip() + "\n")


def _add_run_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--out", type=str, default=None, help="Base output directory (defaults to run.out_dir).")
    parser.add_argument("--run-id", type=str, default=None, help="Run id (defaults to local time YYYY-MM-DD@HHMM).")
    parser.add_argument("--concurrency", type=int, default=None, help="Max parallel provider calls.")
    parser.add_argument("--dry-run", action="store_true", help="Print the plan without calling any provider.")


def _add_prompt_args(parser: argparse.ArgumentParser, prefix: str) -> None:
    parser.add_argument(f"--{prefix}-prompt", type=str, default=None, help="Inline prompt template override.")
    parser.add_argument(f"--{prefix}-prompt-file", type=str, default=None, help="Prompt template override file.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mockup_engine", add_help=True)
    parser.add_argument(
        "--config-path",
        type=str,
        default=None,
        help="Explicit config file (otherwise config/config.yaml + config/config.local.yaml, or MOCKUP_ENGINE_CONFIG).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    generate = sub.add_parser("generate", help="Generate UI mockups from a design spec")
    generate.add_argument("--spec", type=str, required=True, help="Path to the design spec (Markdown).")
    generate.add_argument("--models", type=str, default=None, help="Comma-separated models or aliases.")
    generate.add_argument("--variants", type=int, default=None, help="Variants per screen.")
    generate.add_argument("--screens", type=str, default=None, help="Comma-separated screen names.")
    generate.add_argument("--seed", type=int, default=None, help="Base seed; each variant uses seed + variant.")
    generate.add_argument("--style", type=str, default=None, help="Style name from the style catalog.")
    generate.add_argument("--retries", type=int, default=None, help="Attempts per provider call.")
    _add_run_args(generate)
    _add_prompt_args(generate, "gen")

    critique = sub.add_parser("critique", help="Score images against the design spec")
    critique.add_argument("--image", type=str, default=None, help="Single image path.")
    critique.add_argument("--images", type=str, default=None, help="Directory or glob of images.")
    critique.add_argument("--from", dest="from_path", type=str, default=None, help="Source run directory or manifest.")
    critique.add_argument("--spec", type=str, default=None, help="Design spec (defaults to the run's input/spec.md).")
    critique.add_argument("--model", type=str, default=None, help="Vision model used for critique.")
    _add_run_args(critique)
    _add_prompt_args(critique, "critique")

    iterate = sub.add_parser("iterate", help="Revise top candidates using critique feedback")
    iterate.add_argument("--origin", type=str, required=True, help="Origin manifest.json or run directory.")
    iterate.add_argument("--spec", type=str, default=None, help="Design spec (defaults to the origin run's spec).")
    iterate.add_argument("--passes", type=int, default=1, help="Number of revision passes.")
    iterate.add_argument("--top-k", type=int, default=None, help="Revise the top K candidates.")
    iterate.add_argument("--min-score", type=float, default=None, help="Minimum score for a candidate.")
    iterate.add_argument("--models", type=str, default=None, help="Models used for revision.")
    iterate.add_argument("--critique-model", type=str, default=None, help="Vision model used between passes.")
    _add_run_args(iterate)
    _add_prompt_args(iterate, "revise")

    run = sub.add_parser("run", help="Execute a pipeline file")
    run.add_argument("--pipeline", type=str, required=True, help="Pipeline JSON file.")
    run.add_argument("--spec", type=str, default=None, help="Spec used by steps that do not name one.")
    _add_run_args(run)

    sub.add_parser("models", help="List model aliases and provider credential status")

    styles = sub.add_parser("styles", help="List the style catalog")
    styles.add_argument("--path", type=str, default=None, help="Style catalog file (defaults to styles.path).")

    init = sub.add_parser("init", help="Scaffold config, an example spec and an example pipeline")
    init.add_argument("--force", action="store_true", help="Overwrite existing files.")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    load_dotenv()

    try:
        if args.command == "init":
            from .app.project_init import init_project

            init_project(force=args.force)
            return 0

        from .foundation.config_io import load_config
        from .framework.config import AppConfig

        cfg_dict, _ = load_config(config_path=args.config_path)
        cfg, warnings = AppConfig.from_dict(cfg_dict)
        for warning in warnings:
            _print_err(f"Warning: {warning}")

        from .app import commands

        handlers = {
            "generate": commands.cmd_generate,
            "critique": commands.cmd_critique,
            "iterate": commands.cmd_iterate,
            "run": commands.cmd_run,
            "models": commands.cmd_models,
            "styles": commands.cmd_styles,
        }
        handler = handlers.get(args.command)
        if handler is None:
            raise AssertionError(f"Unhandled command: {args.command}")
        return int(handler(cfg, args))
    except Exception as exc:  # noqa: BLE001
        _print_err(f"{args.command} failed: {exc}")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
