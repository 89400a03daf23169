import pytest

from mockup_engine.framework.config import DEFAULT_RUBRIC, AppConfig, parse_bool
from mockup_engine.framework.errors import ConfigurationError


def test_defaults_when_config_is_empty():
    cfg, warnings = AppConfig.from_dict({})
    assert warnings == []
    assert cfg.out_dir == "runs"
    assert cfg.default_variants == 3
    assert cfg.default_concurrency == 3
    assert cfg.max_retries == 3
    assert cfg.critique_model == "openai:gpt-4o"
    assert cfg.rubric == DEFAULT_RUBRIC
    assert cfg.provider_settings("openai").api_key_env == "OPENAI_API_KEY"


def test_unknown_config_keys_warn_by_default():
    _cfg, warnings = AppConfig.from_dict(
        {
            "run": {"unknown_run_key": 1},
            "models": {"aliases": {"anything": ["openai:dall-e-3"]}},
            "providers": {"openai": {"colour": "blue"}},
            "extra": True,
        }
    )
    assert "Unknown config key: run.unknown_run_key" in warnings
    assert "Unknown config key: providers.openai.colour" in warnings
    assert any(w.endswith("extra") for w in warnings)
    assert not any("aliases.anything" in w for w in warnings)


def test_unknown_config_keys_strict_mode_raises():
    with pytest.raises(ValueError, match=r"Unknown config keys: run\.nope"):
        AppConfig.from_dict({"strict": True, "run": {"nope": 1}})


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"run": {"default_concurrency": 0}}, r"run\.default_concurrency"),
        ({"run": {"max_retries": "many"}}, r"run\.max_retries"),
        ({"run": {"default_variants": True}}, r"run\.default_variants"),
        ({"critique": {"model": "gpt-4o"}}, r"critique\.model"),
        ({"critique": {"rubric": [{"id": "a", "weight": -1}]}}, r"weight"),
        ({"critique": {"rubric": [{"id": "a", "weight": 1}, {"id": "a", "weight": 1}]}}, r"Duplicate rubric id"),
        ({"strict": "maybe"}, r"strict"),
    ],
)
def test_invalid_values_raise(payload, message):
    with pytest.raises(ConfigurationError, match=message):
        AppConfig.from_dict(payload)


def test_custom_rubric_and_prompts():
    cfg, _ = AppConfig.from_dict(
        {
            "critique": {"rubric": [{"id": "clarity", "label": "Clarity", "weight": "0.5"}]},
            "prompts": {"revise": "Fix {{screen}}"},
        }
    )
    assert [(c.id, c.label, c.weight) for c in cfg.rubric] == [("clarity", "Clarity", 0.5)]
    assert cfg.prompts == {"revise": "Fix {{screen}}"}


def test_resolve_models_expands_aliases_and_dedupes(cfg):
    assert cfg.resolve_models("fakes, fake:image , fake:image-2") == ["fake:image", "fake:critic", "fake:image-2"]
    assert cfg.resolve_models(["fake:image"]) == ["fake:image"]
    assert cfg.resolve_models(None) == ["fake:image"]


def test_resolve_models_rejects_unqualified_names(cfg):
    with pytest.raises(ConfigurationError, match="dall-e-3"):
        cfg.resolve_models("dall-e-3")


def test_capabilities_extend_builtin_tables(cfg):
    assert cfg.is_image_model("fake:image")
    assert cfg.is_image_model("openai:dall-e-3")
    assert not cfg.is_image_model("fake:critic")
    assert cfg.is_vision_model("fake:critic")
    assert cfg.is_vision_model("anthropic:claude-3-5-sonnet-20241022")


def test_parse_bool_is_strict():
    assert parse_bool("Yes", "x") is True
    assert parse_bool(0, "x") is False
    with pytest.raises(ConfigurationError):
        parse_bool(2, "x")
