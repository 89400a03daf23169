from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

CONFIG_ENV_VAR = "MOCKUP_ENGINE_CONFIG"
BASE_CONFIG_NAME = "config.yaml"
LOCAL_OVERLAY_NAME = "config.local.yaml"
ROOT_MARKERS: tuple[str, ...] = ("pyproject.toml", ".git")


def find_repo_root(start: str | os.PathLike[str] | None = None) -> str:
    """Nearest directory at or above ``start`` (default: cwd) holding pyproject.toml or .git."""
    origin = Path(start or os.getcwd()).resolve()
    if origin.is_file():
        origin = origin.parent
    for directory in (origin, *origin.parents):
        if any((directory / marker).exists() for marker in ROOT_MARKERS):
            return str(directory)
    raise FileNotFoundError(f"Cannot locate repo root above {origin} (looked for {', '.join(ROOT_MARKERS)})")


def read_yaml_mapping(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        try:
            payload = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def _kind(value: Any) -> str:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, (list, tuple)):
        return "list"
    return "scalar"


def deep_merge(base: Any, overlay: Any, *, path: str = "") -> Any:
    """
    Merge ``overlay`` over ``base``.

    Mappings merge key by key, lists and scalars are replaced, and an explicit null in the
    overlay clears the value. Changing the shape of a value (mapping to list, ...) is an error.
    """

    if overlay is None or base is None:
        return overlay
    base_kind, overlay_kind = _kind(base), _kind(overlay)
    if base_kind != overlay_kind:
        where = path or "<root>"
        raise ValueError(f"Invalid config overlay merge at {where}: base is {base_kind} but overlay is {overlay_kind}")
    if base_kind == "list":
        return list(overlay)
    if base_kind == "scalar":
        return overlay

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        child = f"{path}.{key}" if path else str(key)
        merged[key] = deep_merge(base[key], value, path=child) if key in base else value
    return merged


def _single_file(path: str, *, mode: str, env_var: str | None) -> tuple[dict[str, Any], dict[str, Any]]:
    resolved = os.path.abspath(os.path.expandvars(os.path.expanduser(path)))
    return read_yaml_mapping(resolved), {"mode": mode, "paths": [resolved], "env_var": env_var, "repo_root": None}


def load_config(
    *,
    config_path: str | None = None,
    env_var: str | None = CONFIG_ENV_VAR,
    config_dir: str = "config",
    start_dir: str | None = None,
    required: bool = False,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load the YAML configuration mapping and describe where it came from.

    Resolution order:
      - ``config_path`` (single file, no overlay)
      - ``$<env_var>`` (single file, no overlay)
      - ``<config_dir>/config.yaml`` plus an optional ``config.local.yaml`` overlay; a relative
        ``config_dir`` is taken from the repo root, or the cwd when there is none

    With no base file the mapping is empty (mode ``defaults``) unless ``required`` is set.
    """

    if config_path is not None and str(config_path).strip():
        return _single_file(str(config_path).strip(), mode="explicit", env_var=env_var)
    from_env = os.environ.get(env_var, "").strip() if env_var else ""
    if from_env:
        return _single_file(from_env, mode="env", env_var=env_var)

    repo_root: str | None = None
    directory = str(config_dir)
    if not os.path.isabs(directory):
        try:
            repo_root = find_repo_root(start_dir)
        except FileNotFoundError:
            if required:
                raise
        directory = os.path.join(repo_root or os.getcwd(), directory)

    meta: dict[str, Any] = {"mode": "defaults", "paths": [], "env_var": env_var, "repo_root": repo_root}
    base_path = os.path.join(directory, BASE_CONFIG_NAME)
    if not os.path.exists(base_path):
        if required:
            raise FileNotFoundError(f"Missing base config file: {base_path}")
        return {}, meta

    cfg = read_yaml_mapping(base_path)
    meta["mode"] = "base"
    meta["paths"].append(os.path.abspath(base_path))

    overlay_path = os.path.join(directory, LOCAL_OVERLAY_NAME)
    if os.path.exists(overlay_path):
        cfg = deep_merge(cfg, read_yaml_mapping(overlay_path))
        meta["mode"] = "base+local"
        meta["paths"].append(os.path.abspath(overlay_path))
    return cfg, meta
