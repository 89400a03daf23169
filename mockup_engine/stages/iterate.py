from __future__ import annotations

import asyncio
import functools
import os
from collections import Counter
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from mockup_engine import providers
from mockup_engine.framework.artifacts.manifest import (
    ManifestItem,
    ManifestWriter,
    prompt_fingerprint,
    slugify,
    utc_now_iso8601,
)
from mockup_engine.framework.capabilities import default_image_model_for, qualify_model_name, split_model_id
from mockup_engine.framework.concurrency import BoundedExecutor
from mockup_engine.framework.config import AppConfig, parse_positive_int
from mockup_engine.framework.prompting import (
    PromptOverride,
    build_template_context,
    render_template,
    resolve_template,
)
from mockup_engine.framework.runtime import RunContext
from mockup_engine.framework.selection import SelectionPolicy, select
from mockup_engine.framework.spec import DEFAULT_SCREEN, DesignSpec
from mockup_engine.stages.critique import run_critique, screen_from_path
from mockup_engine.stages.results import DryRunPlan, IterateStageResult, RevisionResult

DEFAULT_REVISE_INSTRUCTION = "Improve the overall design quality and usability."
_STAGE_DIRS = ("generate", "iterate")


@dataclass(frozen=True)
class Candidate:
    path: str
    screen: str
    model: str | None
    revise_prompt: str
    weighted_total: float | None


@dataclass(frozen=True)
class RevisionUnit:
    candidate: Candidate
    model: str
    provider: str
    pass_number: int
    filename: str
    item_id: str


def candidate_from_item(item: Mapping[str, Any]) -> Candidate:
    """Normalize a manifest item or a critique record into a revision candidate."""

    is_critique = "image" in item
    path = str(item.get("image") if is_critique else item.get("path") or "")
    model = item.get("sourceModel") if is_critique else item.get("model")
    score = item.get("weightedTotal")
    return Candidate(
        path=path,
        screen=str(item.get("screen") or screen_from_path(path) or DEFAULT_SCREEN),
        model=str(model) if model else None,
        revise_prompt=str(item.get("revisePrompt") or "").strip(),
        weighted_total=float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
    )


def _provider_from_path(path: str) -> str | None:
    parts = os.path.normpath(path).split(os.sep)
    for idx, part in enumerate(parts[:-1]):
        if part in _STAGE_DIRS and idx + 2 < len(parts):
            return parts[idx + 1]
    return None


def infer_model(cfg: AppConfig, candidate: Candidate) -> str | None:
    """
    The candidate's own image model.

    Bare names are qualified against known image models; with no model recorded the provider
    directory in the image path picks that provider's default image model.
    """

    if candidate.model:
        return qualify_model_name(candidate.model, cfg.extra_image_models)
    provider = _provider_from_path(candidate.path)
    if provider:
        return default_image_model_for(provider, cfg.extra_image_models)
    return None


def plan_revisions(
    ctx: RunContext,
    selected: Sequence[Candidate],
    override_models: Sequence[str] | None,
    pass_number: int,
) -> list[RevisionUnit]:
    cfg = ctx.cfg
    store = ctx.store
    units: list[RevisionUnit] = []
    names: Counter[tuple[str, str]] = Counter()

    for candidate in selected:
        if not candidate.path or not os.path.exists(candidate.path):
            store.log("warn", "iterate-missing-image", "Source image not found, skipping", {"image": candidate.path})
            continue

        if override_models:
            models = list(override_models)
        else:
            inferred = infer_model(cfg, candidate)
            if inferred is None:
                store.log(
                    "warn",
                    "iterate-skip",
                    "Cannot determine a model for candidate, skipping",
                    {"image": candidate.path, "model": candidate.model},
                )
                continue
            models = [inferred]

        for model in models:
            if not cfg.is_image_model(model):
                store.log("warn", "iterate-skip", f"Skipping non-image model: {model}", {"model": model, "image": candidate.path})
                continue
            provider, _ = split_model_id(model)
            slug = slugify(candidate.screen)
            names[(provider, slug)] += 1
            ordinal = names[(provider, slug)]
            suffix = f"-{ordinal}" if ordinal > 1 else ""
            units.append(
                RevisionUnit(
                    candidate=candidate,
                    model=model,
                    provider=provider,
                    pass_number=pass_number,
                    filename=f"screen-{slug}_rev{pass_number}{suffix}.png",
                    item_id=f"{slug}_{provider}_rev{pass_number}{suffix}",
                )
            )
    return units


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()



async def _revise_unit(
    ctx: RunContext,
    spec: DesignSpec,
    unit: RevisionUnit,
    template: str,
    writer: ManifestWriter,
) -> RevisionResult:
    candidate = unit.candidate
    instruction = candidate.revise_prompt or DEFAULT_REVISE_INSTRUCTION
    meta = {"image": candidate.path, "model": unit.model, "pass": unit.pass_number}
    ctx.store.log("info", "iterate-revision-start", f"Revising {os.path.basename(candidate.path)}", meta)

    try:
        context = build_template_context(spec, ctx.cfg, screen=candidate.screen, revise_prompt=instruction)
        prompt = render_template(template, context)
        source_bytes = await asyncio.to_thread(_read_bytes, candidate.path)
        image_bytes = await asyncio.to_thread(
            providers.edit_image,
            ctx.cfg,
            unit.model,
            prompt,
            source_bytes,
            logger=ctx.logger,
        )
        image_path = await asyncio.to_thread(
            ctx.store.save_image,
            image_bytes,
            stage="iterate",
            provider=unit.provider,
            filename=unit.filename,
        )
        item = ManifestItem(
            id=unit.item_id,
            screen=candidate.screen,
            model=unit.model,
            path=image_path,
            promptHash=prompt_fingerprint(prompt),
            timestamp=utc_now_iso8601(),
            pass_=unit.pass_number,
        )
        await writer.append(item)
    except Exception as exc:  # noqa: BLE001
        ctx.store.log("error", "iterate-revision-error", "Revision failed", {**meta, "error": str(exc)})
        return RevisionResult(
            success=False,
            original_image_path=candidate.path,
            model=unit.model,
            screen=candidate.screen,
            pass_number=unit.pass_number,
            revise_prompt=instruction,
            error=str(exc),
        )

    ctx.store.log("info", "iterate-revision-complete", "Revision saved", {**meta, "imagePath": image_path})
    return RevisionResult(
        success=True,
        original_image_path=candidate.path,
        model=unit.model,
        screen=candidate.screen,
        pass_number=unit.pass_number,
        revise_prompt=instruction,
        image_path=image_path,
        manifest_item=item.to_dict(),
    )


def _dry_run_plan(
    ctx: RunContext,
    spec: DesignSpec,
    pool: Sequence[Candidate],
    policy: SelectionPolicy,
    override_models: Sequence[str] | None,
    passes: int,
    template: str,
) -> DryRunPlan:
    selected = select(pool, policy)
    units = plan_revisions(ctx, selected, override_models, 1)
    lines = [
        f"Origin candidates: {len(pool)}",
        f"Selection: topK={policy.top_k} minScore={policy.min_score}",
        f"Pass 1: {len(selected)} selected, {len(units)} revision(s)",
    ]
    lines.extend(f"Pass {n}: depends on re-critique of pass {n - 1}" for n in range(2, passes + 1))
    lines.extend(f"  {unit.candidate.path} -> {unit.model} -> {unit.filename}" for unit in units)

    example = None
    if units:
        first = units[0].candidate
        context = build_template_context(
            spec,
            ctx.cfg,
            screen=first.screen,
            revise_prompt=first.revise_prompt or DEFAULT_REVISE_INSTRUCTION,
        )
        example = render_template(template, context)
    return DryRunPlan(
        kind="iterate",
        units=len(units),
        example_prompt=example,
        lines=tuple(lines),
        details={"passes": passes, "candidates": len(pool), "selected": len(selected)},
    )


async def run_iterate(
    ctx: RunContext,
    origin_items: Sequence[Mapping[str, Any]],
    spec: DesignSpec,
    *,
    passes: int = 1,
    policy: SelectionPolicy | None = None,
    models: str | Sequence[str] | None = None,
    concurrency: int | None = None,
    prompt_override: PromptOverride | None = None,
    critique_model: str | None = None,
    dry_run: bool = False,
) -> IterateStageResult | DryRunPlan:
    """
    Select, revise and (between passes) re-critique.

    A pass with no successful revision, or a re-critique that selects nothing, ends the loop
    early. ``final_images`` holds the successful revisions of the last pass that produced any.
    """

    cfg = ctx.cfg
    store = ctx.store
    pass_count = parse_positive_int(passes, "passes")
    limit = parse_positive_int(concurrency if concurrency is not None else cfg.default_concurrency, "concurrency")
    selection = policy or SelectionPolicy.default()
    override_models = cfg.resolve_models(models) if models else None
    template = resolve_template("revise", cfg, prompt_override)
    pool = [candidate_from_item(item) for item in origin_items]

    if dry_run:
        return _dry_run_plan(ctx, spec, pool, selection, override_models, pass_count, template)

    store.log(
        "info",
        "iterate-start",
        "Starting iteration",
        {"passes": pass_count, "candidates": len(pool), "topK": selection.top_k, "minScore": selection.min_score},
    )

    writer = store.manifest_writer("iterate")
    executor = BoundedExecutor(limit)
    results: list[RevisionResult] = []
    final_images: list[str] = []
    passes_completed = 0

    for pass_number in range(1, pass_count + 1):
        selected = select(pool, selection)
        store.log("info", "iterate-pass-start", f"Pass {pass_number}", {"pass": pass_number, "selected": len(selected)})
        if not selected:
            store.log("info", "iterate-stop", "No candidates selected; stopping", {"pass": pass_number})
            break

        units = plan_revisions(ctx, selected, override_models, pass_number)
        settled = await executor.run_all(
            functools.partial(_revise_unit, ctx, spec, unit, template, writer) for unit in units
        )
        pass_results: list[RevisionResult] = []
        for unit, outcome in zip(units, settled):
            if outcome.ok:
                pass_results.append(outcome.value)
                continue
            store.log("error", "iterate-failed", "Revision failed", {"image": unit.candidate.path, "error": str(outcome.error)})
            pass_results.append(
                RevisionResult(
                    success=False,
                    original_image_path=unit.candidate.path,
                    model=unit.model,
                    screen=unit.candidate.screen,
                    pass_number=pass_number,
                    revise_prompt=unit.candidate.revise_prompt or DEFAULT_REVISE_INSTRUCTION,
                    error=str(outcome.error),
                )
            )
        results.extend(pass_results)

        successful = [result for result in pass_results if result.success]
        store.log(
            "info",
            "iterate-pass-complete",
            f"Pass {pass_number} complete",
            {"pass": pass_number, "attempted": len(pass_results), "successful": len(successful)},
        )
        if not successful:
            store.log("info", "iterate-stop", "No successful revisions; stopping", {"pass": pass_number})
            break

        passes_completed = pass_number
        final_images = [result.image_path for result in successful if result.image_path]

        if pass_number < pass_count:
            critiqued = await run_critique(
                ctx,
                final_images,
                spec,
                model=critique_model,
                concurrency=limit,
                image_metadata={
                    result.image_path: {"model": result.model, "screen": result.screen}
                    for result in successful
                    if result.image_path
                },
            )
            pool = [candidate_from_item(critique) for critique in critiqued.successful]

    await writer.update_header(
        {
            "spec": spec.source_path or "inline",
            "title": spec.title,
            "passes": pass_count,
            "passesCompleted": passes_completed,
            "totalRevisions": len(results),
            "successfulRevisions": sum(1 for result in results if result.success),
            "timestamp": utc_now_iso8601(),
        }
    )
    store.log(
        "info",
        "iterate-complete",
        "Iteration completed",
        {"passesCompleted": passes_completed, "finalImages": len(final_images)},
    )
    return IterateStageResult(
        results=results,
        passes=pass_count,
        passes_completed=passes_completed,
        final_images=final_images,
        manifest_path=writer.path,
    )
