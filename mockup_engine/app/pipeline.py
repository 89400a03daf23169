from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from mockup_engine.app.inputs import expand_image_patterns, load_origin_items
from mockup_engine.framework.config import AppConfig, parse_int, parse_positive_int
from mockup_engine.framework.errors import ConfigurationError, PipelineValidationError
from mockup_engine.framework.prompting import PromptOverride
from mockup_engine.framework.runtime import RunContext, open_run
from mockup_engine.framework.selection import SelectionPolicy
from mockup_engine.framework.spec import DesignSpec, parse_spec
from mockup_engine.stages.critique import run_critique
from mockup_engine.stages.generate import run_generate
from mockup_engine.stages.iterate import run_iterate
from mockup_engine.stages.results import (
    CritiqueStageResult,
    DryRunPlan,
    GenerateStageResult,
    IterateStageResult,
)

StepResult = GenerateStageResult | CritiqueStageResult | IterateStageResult | DryRunPlan

_RESERVED_STEP_KEYS = frozenset({"id", "run", "from"})


class StepKind(str, Enum):
    GENERATE = "generate"
    CRITIQUE = "critique"
    ITERATE = "iterate"


@dataclass(frozen=True)
class PipelineStep:
    id: str
    kind: StepKind
    from_step: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Pipeline:
    name: str
    steps: tuple[PipelineStep, ...]


def validate_pipeline(raw: Any) -> tuple[Pipeline, list[str]]:
    """
    Validate a decoded pipeline document.

    Returns ``(pipeline, warnings)``. Structural problems raise ``PipelineValidationError``;
    a ``from`` that names no earlier-declared step is only a warning.
    """

    if not isinstance(raw, Mapping):
        raise PipelineValidationError("Pipeline must be a JSON object")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise PipelineValidationError("Pipeline must have a name")

    raw_steps = raw.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PipelineValidationError("Pipeline must have a non-empty steps array")

    kinds = ", ".join(kind.value for kind in StepKind)
    steps: list[PipelineStep] = []
    warnings: list[str] = []
    seen: set[str] = set()
    for idx, raw_step in enumerate(raw_steps):
        if not isinstance(raw_step, Mapping):
            raise PipelineValidationError(f"Step {idx} must be an object")
        step_id = raw_step.get("id")
        if not isinstance(step_id, str) or not step_id.strip():
            raise PipelineValidationError(f"Step {idx} must have an id")
        if step_id in seen:
            raise PipelineValidationError(f"Duplicate step id: {step_id}")

        run = raw_step.get("run")
        try:
            kind = StepKind(run)
        except ValueError:
            raise PipelineValidationError(
                f"Step {step_id} has invalid run type: {run!r}. Must be one of: {kinds}"
            ) from None

        from_step = raw_step.get("from")
        if from_step is not None and not isinstance(from_step, str):
            raise PipelineValidationError(f"Step {step_id} has a non-string 'from'")
        if from_step and from_step not in seen:
            warnings.append(f"Step {step_id} references unknown step: {from_step}")

        params = {key: value for key, value in raw_step.items() if key not in _RESERVED_STEP_KEYS}
        steps.append(PipelineStep(id=step_id, kind=kind, from_step=from_step, params=params))
        seen.add(step_id)

    return Pipeline(name=name.strip(), steps=tuple(steps)), warnings


def load_pipeline(path: str) -> tuple[Pipeline, list[str]]:
    if not os.path.isfile(path):
        raise PipelineValidationError(f"Pipeline file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except json.JSONDecodeError as exc:
        raise PipelineValidationError(f"Pipeline file is not valid JSON: {path}: {exc}") from exc
    return validate_pipeline(raw)


def _dependency_plan(step: PipelineStep, dependency: str) -> DryRunPlan:
    return DryRunPlan(
        kind=step.kind.value,
        units=0,
        lines=(f"Inputs depend on dry-run step '{dependency}'; planned at execution time",),
        details={"dependsOn": dependency},
    )


class PipelineExecutor:
    """Runs pipeline steps in declaration order inside one run directory."""

    def __init__(
        self,
        cfg: AppConfig,
        pipeline: Pipeline,
        *,
        spec_path: str | None = None,
        out_dir: str | None = None,
        run_id: str | None = None,
        concurrency: int | None = None,
        dry_run: bool = False,
        warnings: list[str] | None = None,
    ) -> None:
        self.cfg = cfg
        self.pipeline = pipeline
        self.spec_path = spec_path
        self.out_dir = out_dir
        self.run_id = run_id
        self.concurrency = concurrency
        self.dry_run = dry_run
        self.warnings = list(warnings or [])
        self.step_results: dict[str, StepResult] = {}
        self.run_dir: str | None = None

    async def execute(self) -> dict[str, StepResult]:
        with open_run(self.cfg, out_dir=self.out_dir, run_id=self.run_id) as ctx:
            self.run_dir = ctx.store.run_dir
            store = ctx.store
            for warning in self.warnings:
                store.log("warn", "pipeline-warning", warning)
            store.log(
                "info",
                "pipeline-start",
                f"Starting pipeline: {self.pipeline.name}",
                {"steps": len(self.pipeline.steps), "dryRun": self.dry_run},
            )
            current: PipelineStep | None = None
            try:
                for step in self.pipeline.steps:
                    current = step
                    meta = {"stepId": step.id, "stepType": step.kind.value}
                    store.log("info", "step-start", f"Starting step: {step.id}", meta)
                    result = await self._execute_step(ctx, step)
                    self.step_results[step.id] = result
                    store.log("info", "step-complete", f"Step completed: {step.id}", meta)
            except Exception as exc:
                meta = {"error": str(exc)}
                if current is not None:
                    meta = {"stepId": current.id, "stepType": current.kind.value, **meta}
                store.log("error", "pipeline-error", "Pipeline execution failed", meta)
                raise

            store.log("info", "pipeline-complete", "Pipeline completed successfully", {"totalSteps": len(self.pipeline.steps)})
        return dict(self.step_results)

    def _load_spec(self, ctx: RunContext, step: PipelineStep) -> DesignSpec:
        step_spec = step.params.get("spec")
        path = step_spec if isinstance(step_spec, str) and step_spec else self.spec_path
        if path:
            spec = parse_spec(path)
            if not self.dry_run:
                ctx.store.save_spec(spec)
            return spec
        if os.path.exists(ctx.store.spec_path):
            return parse_spec(ctx.store.spec_path)
        raise ConfigurationError(f"No spec found for step {step.id}. Provide step.spec or global --spec.")

    def _concurrency(self, step: PipelineStep) -> int:
        value = step.params.get("concurrency")
        if value is None:
            value = self.concurrency if self.concurrency is not None else self.cfg.default_concurrency
        return parse_positive_int(value, f"steps.{step.id}.concurrency")

    def _from_result(self, step: PipelineStep) -> StepResult | None:
        if not step.from_step:
            return None
        return self.step_results.get(step.from_step)

    async def _execute_step(self, ctx: RunContext, step: PipelineStep) -> StepResult:
        match step.kind:
            case StepKind.GENERATE:
                return await self._generate(ctx, step)
            case StepKind.CRITIQUE:
                return await self._critique(ctx, step)
            case StepKind.ITERATE:
                return await self._iterate(ctx, step)

    async def _generate(self, ctx: RunContext, step: PipelineStep) -> StepResult:
        params = step.params
        spec = self._load_spec(ctx, step)
        screens = params.get("screens")
        if isinstance(screens, str):
            screens = [part.strip() for part in screens.split(",") if part.strip()]
        seed = params.get("seed")
        variants = params.get("variants")
        return await run_generate(
            ctx,
            spec,
            models=params.get("models"),
            screens=screens,
            variants=parse_positive_int(variants, f"steps.{step.id}.variants") if variants is not None else None,
            concurrency=self._concurrency(step),
            seed=parse_int(seed, f"steps.{step.id}.seed") if seed is not None else None,
            prompt_override=PromptOverride.from_options(params, "generate"),
            style=params.get("style"),
            dry_run=self.dry_run,
        )

    async def _critique(self, ctx: RunContext, step: PipelineStep) -> StepResult:
        params = step.params
        source = self._from_result(step)
        if isinstance(source, DryRunPlan):
            return _dependency_plan(step, step.from_step or "")

        spec = self._load_spec(ctx, step)
        images: list[str] | None = None
        metadata: dict[str, dict[str, Any]] = {}
        if isinstance(source, GenerateStageResult):
            images = [r.image_path for r in source.successful if r.image_path]
            metadata = {r.image_path: {"model": r.model, "screen": r.screen} for r in source.successful if r.image_path}
        elif isinstance(source, IterateStageResult):
            images = list(source.final_images)
            metadata = {
                r.image_path: {"model": r.model, "screen": r.screen}
                for r in source.successful
                if r.image_path in source.final_images
            }
        elif isinstance(source, CritiqueStageResult):
            images = [str(c["image"]) for c in source.successful]

        if images is None:
            patterns = params.get("images")
            if isinstance(patterns, (str, list)) and patterns:
                images = expand_image_patterns(patterns)
        if images is None:
            raise ConfigurationError(f"No images found for critique step {step.id}. Use 'from' or 'images'.")

        return await run_critique(
            ctx,
            images,
            spec,
            model=params.get("model"),
            concurrency=self._concurrency(step),
            prompt_override=PromptOverride.from_options(params, "critique"),
            image_metadata=metadata,
            dry_run=self.dry_run,
        )

    async def _iterate(self, ctx: RunContext, step: PipelineStep) -> StepResult:
        params = step.params
        source = self._from_result(step)
        if isinstance(source, DryRunPlan):
            return _dependency_plan(step, step.from_step or "")

        spec = self._load_spec(ctx, step)
        origin: list[dict[str, Any]] | None = None
        if isinstance(source, CritiqueStageResult):
            origin = list(source.critiques)
        elif isinstance(source, (GenerateStageResult, IterateStageResult)):
            origin = [dict(r.manifest_item) for r in source.successful if r.manifest_item]

        if origin is None:
            origin_path = params.get("origin")
            if isinstance(origin_path, str) and origin_path:
                origin = load_origin_items(origin_path)
        if origin is None:
            raise ConfigurationError(f"No origin found for iterate step {step.id}. Use 'from' or 'origin'.")

        select_raw = params.get("select")
        if select_raw is not None and not isinstance(select_raw, Mapping):
            raise ConfigurationError(f"Invalid config type for steps.{step.id}.select: expected object")
        policy = SelectionPolicy.from_mapping(select_raw, path=f"steps.{step.id}.select") if select_raw else None

        passes = params.get("passes", 1)
        return await run_iterate(
            ctx,
            origin,
            spec,
            passes=parse_positive_int(passes, f"steps.{step.id}.passes"),
            policy=policy,
            models=params.get("models"),
            concurrency=self._concurrency(step),
            prompt_override=PromptOverride.from_options(params, "revise"),
            critique_model=params.get("critiqueModel"),
            dry_run=self.dry_run,
        )
