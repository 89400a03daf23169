import os
from pathlib import Path

import pytest

from mockup_engine.foundation.config_io import deep_merge, load_config


def test_load_config_base_only(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_MOCKUP_ENGINE_CONFIG", raising=False)
    (tmp_path / "config.yaml").write_text("a: 1\nb:\n  c: 2\n", encoding="utf-8")

    cfg, meta = load_config(config_dir=str(tmp_path), env_var="TEST_MOCKUP_ENGINE_CONFIG")

    assert cfg == {"a": 1, "b": {"c": 2}}
    assert meta["mode"] == "base"
    assert os.path.basename(meta["paths"][0]) == "config.yaml"


def test_load_config_base_plus_local_overlay(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_MOCKUP_ENGINE_CONFIG", raising=False)
    (tmp_path / "config.yaml").write_text("a: 1\nb:\n  c: 2\n", encoding="utf-8")
    (tmp_path / "config.local.yaml").write_text("b:\n  c: 3\n  d: 4\n", encoding="utf-8")

    cfg, meta = load_config(config_dir=str(tmp_path), env_var="TEST_MOCKUP_ENGINE_CONFIG")

    assert cfg == {"a": 1, "b": {"c": 3, "d": 4}}
    assert meta["mode"] == "base+local"
    assert len(meta["paths"]) == 2


def test_load_config_invalid_overlay_yaml_raises(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_MOCKUP_ENGINE_CONFIG", raising=False)
    (tmp_path / "config.yaml").write_text("a: 1\n", encoding="utf-8")
    (tmp_path / "config.local.yaml").write_text("a: [1, 2\n", encoding="utf-8")

    with pytest.raises(ValueError) as excinfo:
        load_config(config_dir=str(tmp_path), env_var="TEST_MOCKUP_ENGINE_CONFIG")

    assert "config.local.yaml" in str(excinfo.value)


def test_load_config_env_override_loads_single_file(tmp_path, monkeypatch):
    base_dir = tmp_path / "base"
    base_dir.mkdir()
    (base_dir / "config.yaml").write_text("a: 1\n", encoding="utf-8")
    (base_dir / "config.local.yaml").write_text("a: 2\n", encoding="utf-8")
    env_path = tmp_path / "my_config.yaml"
    env_path.write_text("a: 999\n", encoding="utf-8")

    monkeypatch.setenv("TEST_MOCKUP_ENGINE_CONFIG", str(env_path))
    cfg, meta = load_config(config_dir=str(base_dir), env_var="TEST_MOCKUP_ENGINE_CONFIG")

    assert cfg == {"a": 999}
    assert meta["mode"] == "env"
    assert meta["paths"] == [os.path.abspath(str(env_path))]


def test_missing_base_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_MOCKUP_ENGINE_CONFIG", raising=False)

    cfg, meta = load_config(config_dir=str(tmp_path / "nowhere"), env_var="TEST_MOCKUP_ENGINE_CONFIG")
    assert cfg == {}
    assert meta["mode"] == "defaults"

    with pytest.raises(FileNotFoundError):
        load_config(
            config_dir=str(tmp_path / "nowhere"),
            env_var="TEST_MOCKUP_ENGINE_CONFIG",
            required=True,
        )


def test_load_config_finds_repo_root_from_subdir(monkeypatch):
    repo_root = Path(__file__).resolve().parents[1]

    monkeypatch.delenv("TEST_MOCKUP_ENGINE_CONFIG", raising=False)
    monkeypatch.chdir(repo_root / "mockup_engine")

    _cfg, meta = load_config(env_var="TEST_MOCKUP_ENGINE_CONFIG")

    assert Path(meta["paths"][0]).resolve() == (repo_root / "config" / "config.yaml").resolve()
    assert Path(str(meta["repo_root"])).resolve() == repo_root.resolve()


def test_deep_merge_nested():
    merged = deep_merge({"a": {"b": 1, "c": 2}, "x": 1}, {"a": {"c": 3}, "y": 2})
    assert merged == {"a": {"b": 1, "c": 3}, "x": 1, "y": 2}


def test_explicit_path_skips_local_overlay(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_MOCKUP_ENGINE_CONFIG", str(tmp_path / "ignored.yaml"))
    (tmp_path / "config.yaml").write_text("a: 1\n", encoding="utf-8")
    (tmp_path / "config.local.yaml").write_text("a: 2\n", encoding="utf-8")

    cfg, meta = load_config(config_path=str(tmp_path / "config.yaml"), env_var="TEST_MOCKUP_ENGINE_CONFIG")

    assert cfg == {"a": 1}
    assert meta["mode"] == "explicit"
    assert meta["paths"] == [os.path.abspath(str(tmp_path / "config.yaml"))]


def test_deep_merge_rejects_shape_change():
    with pytest.raises(ValueError) as excinfo:
        deep_merge({"a": {"b": 1}}, {"a": [1, 2]})

    assert "a" in str(excinfo.value)
    assert "mapping" in str(excinfo.value)


def test_deep_merge_null_clears_value():
    assert deep_merge({"a": {"b": 1}, "c": 2}, {"a": None}) == {"a": None, "c": 2}
