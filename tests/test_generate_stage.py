import asyncio
import dataclasses
import json
import os

from mockup_engine.framework.artifacts.manifest import read_manifest
from mockup_engine.framework.prompting import PromptOverride
from mockup_engine.framework.runtime import open_run
from mockup_engine.stages.generate import plan_units, run_generate
from mockup_engine.stages.results import DryRunPlan


def _log_steps(ctx):
    with open(ctx.store.logs_path, "r", encoding="utf-8") as handle:
        return [json.loads(line)["step"] for line in handle]


def test_settle_all_with_one_failure(run_ctx, spec, fake_adapter):
    fake_adapter.fail_generate = lambda model, prompt, seed: seed == 103

    result = asyncio.run(
        run_generate(run_ctx, spec, models="fake:image", screens=["Save Spot"], variants=5, seed=100)
    )

    assert len(result.results) == 5
    assert len(result.successful) == 4
    failed = [r for r in result.results if not r.success]
    assert [(r.variant, r.seed) for r in failed] == [(3, 103)]
    assert failed[0].error == "boom"
    assert sorted(call["seed"] for call in fake_adapter.generate_calls) == [101, 102, 103, 104, 105]

    manifest = read_manifest(result.manifest_path)
    assert manifest["totalImages"] == 5
    assert manifest["successfulImages"] == 4
    assert manifest["title"] == "Where Is My Car?"
    assert sorted(item["id"] for item in manifest["items"]) == [
        "save-spot_fake_v1",
        "save-spot_fake_v2",
        "save-spot_fake_v4",
        "save-spot_fake_v5",
    ]
    for item in manifest["items"]:
        assert os.path.exists(item["path"])
        assert item["path"].endswith(os.path.join("generate", "fake", f"screen-save-spot_v{item['variant']}.png"))
        assert len(item["promptHash"]) == 16

    steps = _log_steps(run_ctx)
    assert "generate-image-error" in steps
    assert steps[-1] == "generate-complete"


def test_non_image_models_are_skipped(run_ctx, spec, fake_adapter):
    result = asyncio.run(run_generate(run_ctx, spec, models="fakes", screens=["Find Car"], variants=1))

    assert [r.model for r in result.results] == ["fake:image"]
    assert "generate-skip" in _log_steps(run_ctx)


def test_screens_default_to_spec_and_prompt_carries_variant_bias(run_ctx, spec, fake_adapter):
    result = asyncio.run(run_generate(run_ctx, spec, models="fake:image", variants=2))

    assert {(r.screen, r.variant) for r in result.results} == {
        ("Save Spot", 1),
        ("Save Spot", 2),
        ("Find Car", 1),
        ("Find Car", 2),
    }
    prompts = [call["prompt"] for call in fake_adapter.generate_calls]
    assert any("Variant bias: clean and minimal" in prompt for prompt in prompts)
    assert any("Variant bias: spacious with warm accents" in prompt for prompt in prompts)
    assert any("Screen: Find Car" in prompt for prompt in prompts)


def test_inline_prompt_override_wins(run_ctx, spec, fake_adapter):
    asyncio.run(
        run_generate(
            run_ctx,
            spec,
            models="fake:image",
            screens=["Save Spot"],
            variants=1,
            prompt_override=PromptOverride(inline="Draw {{screen}} for {{title}}"),
        )
    )
    assert fake_adapter.generate_calls[0]["prompt"] == "Draw Save Spot for Where Is My Car?"


def test_two_models_from_one_provider_do_not_collide(run_ctx, spec, fake_adapter):
    result = asyncio.run(
        run_generate(run_ctx, spec, models="fake:image,fake:image-2", screens=["Save Spot"], variants=1)
    )
    paths = sorted(os.path.basename(r.image_path) for r in result.successful)
    assert paths == ["screen-save-spot_image-2_v1.png", "screen-save-spot_image_v1.png"]


def test_dry_run_calls_no_provider(run_ctx, spec, fake_adapter):
    plan = asyncio.run(run_generate(run_ctx, spec, models="fake:image", variants=3, dry_run=True))

    assert isinstance(plan, DryRunPlan)
    assert plan.units == 6
    assert "Title: Where Is My Car?" in plan.example_prompt
    assert "Total images to generate: 6" in plan.render()
    assert fake_adapter.generate_calls == []
    assert not os.path.exists(run_ctx.store.manifest_path("generate"))


def test_style_prompt_is_injected_and_saved(tmp_path, cfg, spec, fake_adapter):
    styles = tmp_path / "styles.md"
    styles.write_text(
        "| Name | Description | Visual Cues | When to Use | Image Prompt |\n"
        "|---|---|---|---|---|\n"
        '| Minimal | Quiet | Whitespace | Drafts | "Minimal UI, single accent colour" |\n',
        encoding="utf-8",
    )
    styled_cfg = dataclasses.replace(cfg, styles_path=str(styles))

    with open_run(styled_cfg, run_id="styled") as ctx:
        asyncio.run(run_generate(ctx, spec, models="fake:image", screens=["Save Spot"], variants=1, style="minimal"))
        style_txt = open(ctx.store.path("input", "style.txt"), encoding="utf-8").read()

    assert "Style specification: Minimal UI, single accent colour" in fake_adapter.generate_calls[0]["prompt"]
    assert style_txt.startswith("minimal")


def test_unknown_style_only_warns(tmp_path, cfg, spec, fake_adapter):
    styles = tmp_path / "styles.md"
    styles.write_text(
        "| Name | Description | Visual Cues | When to Use | Image Prompt |\n|---|---|---|---|---|\n",
        encoding="utf-8",
    )
    with open_run(dataclasses.replace(cfg, styles_path=str(styles)), run_id="unstyled") as ctx:
        result = asyncio.run(
            run_generate(ctx, spec, models="fake:image", screens=["Save Spot"], variants=1, style="nope")
        )
        assert "style-missing" in _log_steps(ctx)
    assert len(result.successful) == 1


def test_plan_units_numbers_variants_from_one():
    units = plan_units(["fake:image"], ["Home"], 2, None)
    assert [(u.variant, u.seed, u.filename) for u in units] == [
        (1, None, "screen-home_v1.png"),
        (2, None, "screen-home_v2.png"),
    ]


def test_dry_run_with_style_writes_no_style_file(tmp_path, cfg, spec, fake_adapter):
    styles = tmp_path / "styles.md"
    styles.write_text(
        "| Name | Description | Visual Cues | When to Use | Image Prompt |\n"
        "|---|---|---|---|---|\n"
        '| Minimal | Quiet | Whitespace | Drafts | "Minimal UI, single accent colour" |\n',
        encoding="utf-8",
    )

    with open_run(dataclasses.replace(cfg, styles_path=str(styles)), run_id="styled-dry") as ctx:
        plan = asyncio.run(
            run_generate(ctx, spec, models="fake:image", screens=["Save Spot"], variants=1, style="minimal", dry_run=True)
        )
        assert not os.path.exists(ctx.store.path("input", "style.txt"))

    assert isinstance(plan, DryRunPlan)
    assert "Style specification: Minimal UI, single accent colour" in plan.example_prompt
    assert fake_adapter.generate_calls == []
