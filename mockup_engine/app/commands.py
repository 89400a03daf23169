from __future__ import annotations

import argparse
import asyncio
import os
import sys

from mockup_engine.app.inputs import find_run_spec, load_origin_items, resolve_image_paths
from mockup_engine.app.pipeline import PipelineExecutor, load_pipeline
from mockup_engine.framework.config import AppConfig
from mockup_engine.framework.errors import ConfigurationError
from mockup_engine.framework.prompting import PromptOverride
from mockup_engine.framework.runtime import open_run
from mockup_engine.framework.selection import SelectionPolicy
from mockup_engine.framework.spec import DesignSpec, parse_spec
from mockup_engine.framework.styles import load_styles
from mockup_engine.providers import ProviderRegistry
from mockup_engine.stages.critique import run_critique
from mockup_engine.stages.generate import run_generate
from mockup_engine.stages.iterate import run_iterate
from mockup_engine.stages.results import DryRunPlan


def _split_csv(value: str | None) -> list[str] | None:
    if not value:
        return None
    parts = [part.strip() for part in value.split(",") if part.strip()]
    return parts or None


def _print_plan(plan: DryRunPlan) -> None:
    print(f"[dry-run] {plan.render()}")


def _resolve_spec(args: argparse.Namespace, *run_paths: str | None) -> DesignSpec:
    if args.spec:
        return parse_spec(args.spec)
    spec = find_run_spec(*run_paths)
    if spec is None:
        raise ConfigurationError("No design spec found. Use --spec or point at a run that contains input/spec.md.")
    return spec


def cmd_generate(cfg: AppConfig, args: argparse.Namespace) -> int:
    spec = parse_spec(args.spec)
    with open_run(cfg, out_dir=args.out, run_id=args.run_id) as ctx:
        if not args.dry_run:
            ctx.store.save_spec(spec)
        result = asyncio.run(
            run_generate(
                ctx,
                spec,
                models=args.models,
                screens=_split_csv(args.screens),
                variants=args.variants,
                concurrency=args.concurrency,
                seed=args.seed,
                prompt_override=PromptOverride(inline=args.gen_prompt, file_path=args.gen_prompt_file),
                style=args.style,
                max_retries=args.retries,
                dry_run=args.dry_run,
            )
        )
        if isinstance(result, DryRunPlan):
            _print_plan(result)
            return 0

        successful = result.successful
        print(f"Generation complete: {len(successful)}/{len(result.results)} images")
        print(f"Run directory: {ctx.store.run_dir}")
        print(f"Manifest: {result.manifest_path}")
        for failure in (r for r in result.results if not r.success):
            print(f"  failed: {failure.model} {failure.screen} v{failure.variant}: {failure.error}")
    return 0


def cmd_critique(cfg: AppConfig, args: argparse.Namespace) -> int:
    spec = _resolve_spec(args, args.from_path, os.path.join(args.out or cfg.out_dir, args.run_id) if args.run_id else None)
    images = resolve_image_paths(image=args.image, images=args.images, from_path=args.from_path)
    if not images:
        raise ConfigurationError("No images found to critique. Use --image, --images, or --from.")

    with open_run(cfg, out_dir=args.out, run_id=args.run_id) as ctx:
        if not args.dry_run and not os.path.exists(ctx.store.spec_path):
            ctx.store.save_spec(spec)
        result = asyncio.run(
            run_critique(
                ctx,
                images,
                spec,
                model=args.model,
                concurrency=args.concurrency,
                prompt_override=PromptOverride(inline=args.critique_prompt, file_path=args.critique_prompt_file),
                dry_run=args.dry_run,
            )
        )
        if isinstance(result, DryRunPlan):
            _print_plan(result)
            return 0

        summary = result.summary
        leaderboard = result.leaderboard
        print(f"Critique complete: {summary['successfulCritiques']}/{summary['totalCritiques']} images scored")
        print(f"Run directory: {ctx.store.run_dir}")
        print(f"Top score: {leaderboard[0]['weightedTotal'] if leaderboard else 'N/A'}")
        print(f"Average score: {summary['averageScore']}")
        for entry in leaderboard[:3]:
            print(f"  {entry['rank']}. {os.path.basename(str(entry['image']))} - {entry['weightedTotal']} pts")
    return 0


def cmd_iterate(cfg: AppConfig, args: argparse.Namespace) -> int:
    origin = load_origin_items(args.origin)
    spec = _resolve_spec(args, args.origin)

    if args.top_k is None and args.min_score is None:
        policy = SelectionPolicy.default()
    else:
        if args.top_k is not None and args.top_k < 0:
            raise ConfigurationError("--top-k must be >= 0")
        policy = SelectionPolicy(min_score=args.min_score, top_k=args.top_k)

    with open_run(cfg, out_dir=args.out, run_id=args.run_id) as ctx:
        if not args.dry_run and not os.path.exists(ctx.store.spec_path):
            ctx.store.save_spec(spec)
        result = asyncio.run(
            run_iterate(
                ctx,
                origin,
                spec,
                passes=args.passes,
                policy=policy,
                models=args.models,
                concurrency=args.concurrency,
                prompt_override=PromptOverride(inline=args.revise_prompt, file_path=args.revise_prompt_file),
                critique_model=args.critique_model,
                dry_run=args.dry_run,
            )
        )
        if isinstance(result, DryRunPlan):
            _print_plan(result)
            return 0

        print("Iteration complete")
        print(f"Run directory: {ctx.store.run_dir}")
        print(f"Passes completed: {result.passes_completed}/{result.passes}")
        print(f"Successful revisions: {len(result.successful)}")
        print(f"Final images: {len(result.final_images)}")
        for path in result.final_images:
            print(f"  {path}")
    return 0


def cmd_run(cfg: AppConfig, args: argparse.Namespace) -> int:
    pipeline, warnings = load_pipeline(args.pipeline)
    for warning in warnings:
        sys.stderr.write(f"Warning: {warning}\n")

    executor = PipelineExecutor(
        cfg,
        pipeline,
        spec_path=args.spec,
        out_dir=args.out,
        run_id=args.run_id,
        concurrency=args.concurrency,
        dry_run=args.dry_run,
        warnings=warnings,
    )
    results = asyncio.run(executor.execute())

    print(f"Pipeline '{pipeline.name}' complete")
    print(f"Run directory: {executor.run_dir}")
    for step in pipeline.steps:
        result = results.get(step.id)
        if isinstance(result, DryRunPlan):
            print(f"[dry-run] step {step.id}: {result.render()}")
        elif result is not None:
            print(f"  {step.id} ({step.kind.value}): {len(result.successful)} successful")
    return 0


def cmd_models(cfg: AppConfig, args: argparse.Namespace) -> int:
    print("Model aliases:")
    for alias, models in sorted(cfg.model_aliases.items()):
        print(f"  {alias}: {', '.join(models)}")

    print("")
    print("Providers:")
    for name in ProviderRegistry.names():
        env_name = cfg.provider_settings(name).api_key_env
        if not env_name:
            status = "no credentials required"
        elif os.environ.get(env_name, "").strip():
            status = f"{env_name} set"
        else:
            status = f"{env_name} missing"
        print(f"  {name}: {status}")

    print("")
    print(f"Default models: {cfg.default_models}")
    print(f"Critique model: {cfg.critique_model}")
    return 0


def cmd_styles(cfg: AppConfig, args: argparse.Namespace) -> int:
    styles = load_styles(args.path or cfg.styles_path)
    print(f"Styles ({len(styles)}):")
    for style in styles.values():
        print(f"  {style.name}: {style.description}")
    return 0
