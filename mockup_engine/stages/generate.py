from __future__ import annotations

import asyncio
import functools
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from mockup_engine import providers
from mockup_engine.framework.artifacts.manifest import (
    ManifestItem,
    ManifestWriter,
    prompt_fingerprint,
    slugify,
    utc_now_iso8601,
)
from mockup_engine.framework.capabilities import split_model_id
from mockup_engine.framework.concurrency import BoundedExecutor
from mockup_engine.framework.config import parse_positive_int
from mockup_engine.framework.errors import ConfigurationError
from mockup_engine.framework.prompting import (
    PromptOverride,
    build_template_context,
    render_template,
    resolve_template,
)
from mockup_engine.framework.runtime import RunContext
from mockup_engine.framework.spec import DesignSpec
from mockup_engine.framework.styles import get_style_prompt
from mockup_engine.stages.results import DryRunPlan, GenerateStageResult, GenerationResult


@dataclass(frozen=True)
class GenerationUnit:
    model: str
    provider: str
    screen: str
    variant: int
    seed: int | None
    filename: str
    item_id: str


def plan_units(
    models: Sequence[str],
    screens: Sequence[str],
    variants: int,
    seed: int | None,
) -> list[GenerationUnit]:
    """
    Cross product model x screen x variant, variants numbered from 1.

    When one provider contributes several models, file names and ids carry the model name so
    that units never share an output path.
    """

    provider_counts = Counter(split_model_id(model)[0] for model in models)
    units: list[GenerationUnit] = []
    for model in models:
        provider, model_name = split_model_id(model)
        tag = f"{slugify(model_name)}_" if provider_counts[provider] > 1 else ""
        provider_key = f"{provider}-{slugify(model_name)}" if tag else provider
        for screen in screens:
            slug = slugify(screen)
            for variant in range(1, variants + 1):
                units.append(
                    GenerationUnit(
                        model=model,
                        provider=provider,
                        screen=screen,
                        variant=variant,
                        seed=seed + variant if seed is not None else None,
                        filename=f"screen-{slug}_{tag}v{variant}.png",
                        item_id=f"{slug}_{provider_key}_v{variant}",
                    )
                )
    return units


def _resolve_style_prompt(ctx: RunContext, style: str | None, *, dry_run: bool = False) -> str | None:
    if not style:
        return None
    try:
        style_prompt = get_style_prompt(ctx.cfg.styles_path, style)
    except ConfigurationError as exc:
        # An unknown style is not fatal; generation continues without it.
        ctx.store.log("warn", "style-missing", str(exc), {"style": style})
        return None
    if not dry_run:
        ctx.store.save_style(f"{style}\n\n{style_prompt}\n")
    return style_prompt


async def _generate_unit(
    ctx: RunContext,
    spec: DesignSpec,
    unit: GenerationUnit,
    template: str,
    style_prompt: str | None,
    max_retries: int,
    writer: ManifestWriter,
) -> GenerationResult:
    meta = {"model": unit.model, "screen": unit.screen, "variant": unit.variant}
    ctx.store.log("info", "generate-image-start", f"Generating image for {unit.screen} (variant {unit.variant})", meta)

    prompt_hash: str | None = None
    try:
        context = build_template_context(
            spec,
            ctx.cfg,
            screen=unit.screen,
            variant=unit.variant,
            style_prompt=style_prompt,
        )
        prompt = render_template(template, context)
        prompt_hash = prompt_fingerprint(prompt)

        image_bytes = await asyncio.to_thread(
            providers.generate_image,
            ctx.cfg,
            unit.model,
            prompt,
            seed=unit.seed,
            max_retries=max_retries,
            logger=ctx.logger,
        )
        image_path = await asyncio.to_thread(
            ctx.store.save_image,
            image_bytes,
            stage="generate",
            provider=unit.provider,
            filename=unit.filename,
        )
        item = ManifestItem(
            id=unit.item_id,
            screen=unit.screen,
            model=unit.model,
            path=image_path,
            promptHash=prompt_hash,
            timestamp=utc_now_iso8601(),
            variant=unit.variant,
            seed=unit.seed,
        )
        await writer.append(item)
    except Exception as exc:  # noqa: BLE001
        ctx.store.log("error", "generate-image-error", "Failed to generate image", {**meta, "error": str(exc)})
        return GenerationResult(
            success=False,
            model=unit.model,
            screen=unit.screen,
            variant=unit.variant,
            prompt_hash=prompt_hash,
            seed=unit.seed,
            error=str(exc),
        )

    ctx.store.log(
        "info",
        "generate-image-complete",
        "Image generated successfully",
        {"imagePath": image_path, "imageId": item.id, "model": unit.model},
    )
    return GenerationResult(
        success=True,
        model=unit.model,
        screen=unit.screen,
        variant=unit.variant,
        image_path=image_path,
        manifest_item=item.to_dict(),
        prompt_hash=prompt_hash,
        seed=unit.seed,
    )


def _dry_run_plan(
    ctx: RunContext,
    spec: DesignSpec,
    models: Sequence[str],
    screens: Sequence[str],
    variants: int,
    units: Sequence[GenerationUnit],
    template: str,
    style_prompt: str | None,
) -> DryRunPlan:
    lines = [
        f"Spec: {spec.title}",
        f"Models: {', '.join(models) or '(none)'}",
        f"Screens: {', '.join(screens)}",
        f"Variants per screen: {variants}",
        f"Total images to generate: {len(units)}",
    ]
    lines.extend(
        f"{idx}. {unit.model} -> {unit.screen} (v{unit.variant}) -> {unit.filename}"
        for idx, unit in enumerate(units, start=1)
    )
    example = None
    if units:
        first = units[0]
        context = build_template_context(
            spec, ctx.cfg, screen=first.screen, variant=first.variant, style_prompt=style_prompt
        )
        example = render_template(template, context)
    return DryRunPlan(
        kind="generate",
        units=len(units),
        example_prompt=example,
        lines=tuple(lines),
        details={"models": list(models), "screens": list(screens), "variants": variants},
    )


async def run_generate(
    ctx: RunContext,
    spec: DesignSpec,
    *,
    models: str | Sequence[str] | None = None,
    screens: Sequence[str] | None = None,
    variants: int | None = None,
    concurrency: int | None = None,
    seed: int | None = None,
    prompt_override: PromptOverride | None = None,
    style: str | None = None,
    max_retries: int | None = None,
    dry_run: bool = False,
) -> GenerateStageResult | DryRunPlan:
    """Generate every (model, screen, variant) image concurrently and record them in the manifest."""

    cfg = ctx.cfg
    store = ctx.store

    resolved_models = cfg.resolve_models(models)
    target_screens = [screen for screen in (screens or spec.screens) if screen.strip()]
    if not target_screens:
        raise ConfigurationError("No screens to generate")
    variant_count = parse_positive_int(variants if variants is not None else cfg.default_variants, "variants")
    limit = parse_positive_int(concurrency if concurrency is not None else cfg.default_concurrency, "concurrency")
    retries = parse_positive_int(max_retries if max_retries is not None else cfg.max_retries, "retries")

    store.log(
        "info",
        "generate-start",
        "Starting image generation",
        {"models": resolved_models, "variants": variant_count, "screens": target_screens},
    )

    image_models: list[str] = []
    for model_id in resolved_models:
        if cfg.is_image_model(model_id):
            image_models.append(model_id)
        else:
            store.log("warn", "generate-skip", f"Skipping non-image model: {model_id}", {"model": model_id})

    template = resolve_template("generate", cfg, prompt_override)
    style_prompt = _resolve_style_prompt(ctx, style, dry_run=dry_run)
    units = plan_units(image_models, target_screens, variant_count, seed)

    if dry_run:
        return _dry_run_plan(ctx, spec, image_models, target_screens, variant_count, units, template, style_prompt)

    writer = store.manifest_writer("generate")
    executor = BoundedExecutor(limit)
    try:
        settled = await executor.run_all(
            functools.partial(_generate_unit, ctx, spec, unit, template, style_prompt, retries, writer)
            for unit in units
        )

        results: list[GenerationResult] = []
        for unit, outcome in zip(units, settled):
            if outcome.ok:
                results.append(outcome.value)
                continue
            store.log("error", "generate-failed", "Image generation failed", {"error": str(outcome.error)})
            results.append(
                GenerationResult(
                    success=False,
                    model=unit.model,
                    screen=unit.screen,
                    variant=unit.variant,
                    seed=unit.seed,
                    error=str(outcome.error),
                )
            )

        successful = sum(1 for result in results if result.success)
        await writer.update_header(
            {
                "spec": spec.source_path or "inline",
                "title": spec.title,
                "screens": target_screens,
                "models": resolved_models,
                "totalImages": len(results),
                "successfulImages": successful,
                "timestamp": utc_now_iso8601(),
            }
        )
    except Exception as exc:
        store.log("error", "generate-error", "Generation task failed", {"error": str(exc)})
        raise

    store.log(
        "info",
        "generate-complete",
        "Image generation completed",
        {"totalResults": len(results), "successCount": successful},
    )
    return GenerateStageResult(results=results, manifest_path=writer.path)
