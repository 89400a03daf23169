import asyncio
import json
import os

import pytest

from conftest import SPEC_TEXT
from mockup_engine.app.pipeline import PipelineExecutor, StepKind, load_pipeline, validate_pipeline
from mockup_engine.framework.errors import ConfigurationError, PipelineValidationError
from mockup_engine.stages.results import CritiqueStageResult, DryRunPlan, GenerateStageResult, IterateStageResult


def _write_spec(tmp_path):
    path = tmp_path / "spec.md"
    path.write_text(SPEC_TEXT, encoding="utf-8")
    return str(path)


def _pipeline(spec_path):
    return {
        "name": "best-effort",
        "steps": [
            {"id": "gen", "run": "generate", "spec": spec_path, "models": "fake:image", "variants": 2},
            {"id": "crit", "run": "critique", "from": "gen"},
            {"id": "rev", "run": "iterate", "from": "crit", "select": {"topK": 2, "minScore": 70}, "passes": 1},
            {"id": "crit-2", "run": "critique", "from": "rev"},
        ],
    }


def test_duplicate_step_ids_rejected():
    raw = {"name": "p", "steps": [{"id": "a", "run": "generate"}, {"id": "a", "run": "critique"}]}
    with pytest.raises(PipelineValidationError, match="Duplicate step id: a"):
        validate_pipeline(raw)


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"steps": [{"id": "a", "run": "generate"}]}, "name"),
        ({"name": "p", "steps": []}, "steps"),
        ({"name": "p", "steps": [{"run": "generate"}]}, "must have an id"),
        ({"name": "p", "steps": [{"id": "a", "run": "upscale"}]}, "invalid run type"),
    ],
)
def test_structural_errors(raw, message):
    with pytest.raises(PipelineValidationError, match=message):
        validate_pipeline(raw)


def test_unknown_from_only_warns():
    pipeline, warnings = validate_pipeline(
        {"name": "p", "steps": [{"id": "crit", "run": "critique", "from": "ghost", "images": "x/*.png"}]}
    )
    assert pipeline.steps[0].kind is StepKind.CRITIQUE
    assert pipeline.steps[0].params == {"images": "x/*.png"}
    assert warnings == ["Step crit references unknown step: ghost"]


def test_load_pipeline_rejects_bad_json(tmp_path):
    path = tmp_path / "p.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PipelineValidationError, match="not valid JSON"):
        load_pipeline(str(path))


def test_executes_steps_in_order_and_chains_results(tmp_path, cfg, fake_adapter):
    spec_path = _write_spec(tmp_path)
    pipeline, _ = validate_pipeline(_pipeline(spec_path))

    executor = PipelineExecutor(cfg, pipeline, run_id="pipe")
    results = asyncio.run(executor.execute())

    assert list(results) == ["gen", "crit", "rev", "crit-2"]
    assert isinstance(results["gen"], GenerateStageResult)
    assert isinstance(results["crit"], CritiqueStageResult)
    assert isinstance(results["rev"], IterateStageResult)
    assert isinstance(results["crit-2"], CritiqueStageResult)
    assert len(results["gen"].successful) == 4
    assert len(results["crit"].critiques) == 4
    assert len(results["rev"].successful) == 2
    assert len(results["crit-2"].critiques) == 2
    assert results["crit"].critiques[0]["sourceModel"] == "fake:image"

    run_dir = executor.run_dir
    assert os.path.exists(os.path.join(run_dir, "input", "spec.md"))
    with open(os.path.join(run_dir, "logs.jsonl"), encoding="utf-8") as handle:
        steps = [json.loads(line)["step"] for line in handle]
    assert steps.count("step-start") == 4
    assert steps.count("step-complete") == 4
    assert steps[-1] == "pipeline-complete"


def test_step_without_inputs_fails_fast(tmp_path, cfg, fake_adapter):
    spec_path = _write_spec(tmp_path)
    pipeline, _ = validate_pipeline(
        {"name": "p", "steps": [{"id": "crit", "run": "critique", "spec": spec_path}]}
    )
    executor = PipelineExecutor(cfg, pipeline, run_id="fail")

    with pytest.raises(ConfigurationError, match="No images found for critique step crit"):
        asyncio.run(executor.execute())

    with open(os.path.join(executor.run_dir, "logs.jsonl"), encoding="utf-8") as handle:
        steps = [json.loads(line)["step"] for line in handle]
    assert "pipeline-error" in steps


def test_dry_run_reports_dependencies(tmp_path, cfg, fake_adapter):
    spec_path = _write_spec(tmp_path)
    pipeline, _ = validate_pipeline(_pipeline(spec_path))

    results = asyncio.run(PipelineExecutor(cfg, pipeline, run_id="dry", dry_run=True).execute())

    assert all(isinstance(result, DryRunPlan) for result in results.values())
    assert results["gen"].units == 4
    assert results["crit"].details == {"dependsOn": "gen"}
    assert fake_adapter.generate_calls == []
    assert fake_adapter.critique_calls == []


def test_executor_concurrency_override_is_validated(tmp_path, cfg, fake_adapter):
    spec_path = _write_spec(tmp_path)
    pipeline, _ = validate_pipeline(
        {"name": "p", "steps": [{"id": "gen", "run": "generate", "spec": spec_path, "models": "fake:image"}]}
    )
    with pytest.raises(ConfigurationError, match="concurrency"):
        asyncio.run(PipelineExecutor(cfg, pipeline, run_id="c", concurrency=0).execute())


def test_forward_from_reference_warns():
    pipeline, warnings = validate_pipeline(
        {
            "name": "p",
            "steps": [
                {"id": "crit", "run": "critique", "from": "gen", "images": "x/*.png"},
                {"id": "gen", "run": "generate"},
            ],
        }
    )
    assert [step.id for step in pipeline.steps] == ["crit", "gen"]
    assert warnings == ["Step crit references unknown step: gen"]


def test_step_failure_is_logged_with_step_id(tmp_path, cfg, fake_adapter):
    spec_path = _write_spec(tmp_path)
    pipeline, _ = validate_pipeline(
        {
            "name": "p",
            "steps": [
                {"id": "gen", "run": "generate", "spec": spec_path, "models": "fake:image", "variants": 1},
                {"id": "judge", "run": "critique", "from": "gen", "model": "fake:image"},
            ],
        }
    )
    executor = PipelineExecutor(cfg, pipeline, run_id="judge-fail")

    with pytest.raises(ConfigurationError, match="not vision-capable"):
        asyncio.run(executor.execute())

    with open(os.path.join(executor.run_dir, "logs.jsonl"), encoding="utf-8") as handle:
        entries = [json.loads(line) for line in handle]
    starts = [entry["meta"]["stepId"] for entry in entries if entry["step"] == "step-start"]
    assert starts == ["gen", "judge"]
    completes = [entry["meta"]["stepId"] for entry in entries if entry["step"] == "step-complete"]
    assert completes == ["gen"]
    error = next(entry for entry in entries if entry["step"] == "pipeline-error")
    assert error["meta"]["stepId"] == "judge"
    assert error["meta"]["stepType"] == "critique"
    assert "fake:image" in error["meta"]["error"]
