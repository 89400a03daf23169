from __future__ import annotations

import asyncio
import functools
import os
import re
from collections import Counter
from typing import Any, Mapping, Sequence

from mockup_engine import providers
from mockup_engine.framework.artifacts.manifest import image_id_from_path, utc_now_iso8601
from mockup_engine.framework.concurrency import BoundedExecutor
from mockup_engine.framework.config import DEFAULT_CRITIQUE_MODEL, RubricCriterion, parse_positive_int
from mockup_engine.framework.errors import ConfigurationError, CritiqueParseError
from mockup_engine.framework.prompting import (
    PromptOverride,
    build_template_context,
    render_template,
    resolve_template,
)
from mockup_engine.framework.runtime import RunContext
from mockup_engine.framework.scoring import build_critique_summary, parse_critique_response, weighted_total
from mockup_engine.framework.spec import DesignSpec
from mockup_engine.stages.results import CritiqueStageResult, DryRunPlan

_SCREEN_FROM_NAME_RE = re.compile(r"^screen-(.+?)_(?:.+_)?(?:v\d+|rev\d+(?:-\d+)?)$")


def screen_from_path(image_path: str) -> str | None:
    """Recover the screen slug from a ``screen-<slug>_v<n>.png`` / ``_rev<n>.png`` file name."""

    stem = os.path.splitext(os.path.basename(image_path))[0]
    match = _SCREEN_FROM_NAME_RE.match(stem)
    return match.group(1) if match else None


def assign_image_ids(images: Sequence[str]) -> list[str]:
    """
    One critique id per image, unique within the batch.

    Colliding stems are prefixed with their parent directory name; anything still colliding
    gets an ordinal suffix.
    """

    base_ids = [image_id_from_path(path) for path in images]
    counts = Counter(base_ids)
    ids: list[str] = []
    seen: set[str] = set()
    for path, base in zip(images, base_ids):
        candidate = base
        if counts[base] > 1:
            parent = image_id_from_path(os.path.basename(os.path.dirname(os.path.abspath(path))) or "root")
            candidate = f"{parent}_{base}"
        unique = candidate
        ordinal = 2
        while unique in seen:
            unique = f"{candidate}-{ordinal}"
            ordinal += 1
        seen.add(unique)
        ids.append(unique)
    return ids


def resolve_critique_model(ctx: RunContext, model: str | None) -> str:
    resolved = (model or ctx.cfg.critique_model or DEFAULT_CRITIQUE_MODEL).strip()
    if not ctx.cfg.is_vision_model(resolved):
        raise ConfigurationError(f"Critique model is not vision-capable: {resolved}")
    return resolved


async def _critique_one(
    ctx: RunContext,
    image_path: str,
    image_id: str,
    model: str,
    prompt: str,
    rubric: Sequence[RubricCriterion],
    metadata: Mapping[str, Any],
) -> dict[str, Any]:
    store = ctx.store
    store.log("info", "critique-image-start", f"Critiquing {os.path.basename(image_path)}", {"image": image_path, "model": model})

    record: dict[str, Any] = {
        "image": image_path,
        "imageId": image_id,
        "model": model,
        "sourceModel": metadata.get("model"),
        "screen": metadata.get("screen") or screen_from_path(image_path),
    }
    try:
        text = await asyncio.to_thread(
            providers.critique_image,
            ctx.cfg,
            model,
            prompt,
            image_path,
            logger=ctx.logger,
        )
        outcome = parse_critique_response(text, rubric)
        if not outcome.ok:
            raise CritiqueParseError(outcome.error or "No scores found in critique response", raw_text=text)
    except Exception as exc:  # noqa: BLE001
        store.log("error", "critique-image-error", "Critique failed", {"image": image_path, "model": model, "error": str(exc)})
        return {
            **record,
            "scores": {},
            "weightedTotal": 0,
            "strengths": [],
            "issues": [],
            "revisePrompt": "",
            "success": False,
            "recovered": False,
            "parseStatus": "failed",
            "timestamp": utc_now_iso8601(),
            "error": str(exc),
        }

    record.update(
        {
            "scores": dict(outcome.scores),
            "weightedTotal": weighted_total(outcome.scores, rubric),
            "strengths": list(outcome.strengths),
            "issues": list(outcome.issues),
            "revisePrompt": outcome.revise_prompt,
            "success": True,
            "recovered": outcome.recovered,
            "parseStatus": outcome.status.value,
            "timestamp": utc_now_iso8601(),
        }
    )
    if outcome.recovered:
        store.log("warn", "critique-recovered", "Critique JSON was malformed; scores recovered", {"image": image_path})
    await asyncio.to_thread(store.save_critique, image_id, record)
    return record


async def run_critique(
    ctx: RunContext,
    images: Sequence[str],
    spec: DesignSpec,
    *,
    model: str | None = None,
    rubric: Sequence[RubricCriterion] | None = None,
    concurrency: int | None = None,
    prompt_override: PromptOverride | None = None,
    image_metadata: Mapping[str, Mapping[str, Any]] | None = None,
    dry_run: bool = False,
) -> CritiqueStageResult | DryRunPlan:
    """Score each image against the rubric and write per-image records plus a summary."""

    cfg = ctx.cfg
    store = ctx.store
    critic = resolve_critique_model(ctx, model)
    criteria = tuple(rubric) if rubric is not None else cfg.rubric
    limit = parse_positive_int(concurrency if concurrency is not None else cfg.default_concurrency, "concurrency")
    metadata = image_metadata or {}

    template = resolve_template("critique", cfg, prompt_override)
    prompt = render_template(template, build_template_context(spec, cfg, rubric=criteria))

    if dry_run:
        lines = [f"Critique model: {critic}", f"Images to critique: {len(images)}"]
        lines.extend(f"{idx}. {path}" for idx, path in enumerate(images, start=1))
        return DryRunPlan(
            kind="critique",
            units=len(images),
            example_prompt=prompt,
            lines=tuple(lines),
            details={"model": critic, "images": list(images)},
        )

    store.log("info", "critique-start", "Starting critique", {"model": critic, "imageCount": len(images)})

    image_ids = assign_image_ids(images)
    executor = BoundedExecutor(limit)
    settled = await executor.run_all(
        functools.partial(
            _critique_one,
            ctx,
            path,
            image_id,
            critic,
            prompt,
            criteria,
            metadata.get(path) or {},
        )
        for path, image_id in zip(images, image_ids)
    )

    critiques: list[dict[str, Any]] = []
    for path, image_id, outcome in zip(images, image_ids, settled):
        if outcome.ok:
            critiques.append(outcome.value)
            continue
        # Reaching here means saving the record failed, not the provider call.
        store.log("error", "critique-failed", "Critique failed", {"image": path, "error": str(outcome.error)})
        critiques.append(
            {
                "image": path,
                "imageId": image_id,
                "model": critic,
                "success": False,
                "recovered": False,
                "parseStatus": "failed",
                "weightedTotal": 0,
                "timestamp": utc_now_iso8601(),
                "error": str(outcome.error),
            }
        )

    summary = build_critique_summary(critiques, criteria)
    md_path, json_path = await asyncio.to_thread(store.save_critique_summary, summary, criteria)
    store.log(
        "info",
        "critique-complete",
        "Critique completed",
        {
            "total": summary["totalCritiques"],
            "successful": summary["successfulCritiques"],
            "averageScore": summary["averageScore"],
            "summaryPath": md_path,
            "summaryJson": json_path,
        },
    )
    return CritiqueStageResult(critiques=critiques, summary=summary)
