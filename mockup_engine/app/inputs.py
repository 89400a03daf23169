"""Locating images, origin pools and specs from paths supplied on the command line or in a pipeline."""

from __future__ import annotations

import glob
import json
import os
from typing import Any, Iterable, Sequence

from mockup_engine.framework.artifacts.manifest import read_manifest
from mockup_engine.framework.errors import ConfigurationError
from mockup_engine.framework.spec import DesignSpec, parse_spec

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")


def _dedupe(paths: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            out.append(path)
    return out


def expand_image_patterns(patterns: str | Sequence[str]) -> list[str]:
    """Glob each pattern (recursive ``**`` allowed); a directory expands to the images below it."""

    if isinstance(patterns, str):
        patterns = [patterns]
    found: list[str] = []
    for pattern in patterns:
        pattern = str(pattern).strip()
        if not pattern:
            continue
        if os.path.isdir(pattern):
            pattern = os.path.join(pattern, "**", "*")
        matches = sorted(glob.glob(pattern, recursive=True))
        found.extend(
            path for path in matches if os.path.isfile(path) and path.lower().endswith(IMAGE_EXTENSIONS)
        )
    return _dedupe(found)


def images_from_manifest(manifest_path: str) -> list[str]:
    payload = read_manifest(manifest_path)
    return [
        str(item["path"])
        for item in payload.get("items") or []
        if isinstance(item, dict) and item.get("path") and os.path.exists(str(item["path"]))
    ]


def images_from_run(from_path: str) -> list[str]:
    """Images of a manifest file, of a run's ``generate/manifest.json``, or every PNG under a directory."""

    if os.path.isfile(from_path) and from_path.endswith(".json"):
        return images_from_manifest(from_path)
    if os.path.isdir(from_path):
        manifest_path = os.path.join(from_path, "generate", "manifest.json")
        if os.path.exists(manifest_path):
            return images_from_manifest(manifest_path)
        return sorted(glob.glob(os.path.join(from_path, "**", "*.png"), recursive=True))
    return []


def resolve_image_paths(
    *,
    image: str | None = None,
    images: str | Sequence[str] | None = None,
    from_path: str | None = None,
) -> list[str]:
    collected: list[str] = []
    if image:
        if not os.path.exists(image):
            raise ConfigurationError(f"Image not found: {image}")
        collected.append(image)
    if images:
        collected.extend(expand_image_patterns(images))
    if from_path:
        collected.extend(images_from_run(from_path))
    return _dedupe(collected)


def load_critique_records(run_dir: str) -> list[dict[str, Any]]:
    critique_dir = os.path.join(run_dir, "critique")
    records: list[dict[str, Any]] = []
    for name in sorted(os.listdir(critique_dir)):
        if not name.endswith(".json") or name == "summary.json":
            continue
        with open(os.path.join(critique_dir, name), "r", encoding="utf-8") as handle:
            record = json.load(handle)
        if isinstance(record, dict):
            records.append(record)
    return records


def load_origin_items(origin: str) -> list[dict[str, Any]]:
    """
    Origin pool for iteration.

    Accepts a manifest JSON file, a run directory with ``generate/manifest.json``, or a run
    directory holding per-image critique records.
    """

    if os.path.isfile(origin) and origin.endswith(".json"):
        with open(origin, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, dict) and isinstance(payload.get("items"), list):
            return [item for item in payload["items"] if isinstance(item, dict)]
        if isinstance(payload, dict):
            return [payload]
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        raise ConfigurationError(f"Unrecognized origin file: {origin}")

    if os.path.isdir(origin):
        manifest_path = os.path.join(origin, "generate", "manifest.json")
        if os.path.exists(manifest_path):
            return load_origin_items(manifest_path)
        if os.path.isdir(os.path.join(origin, "critique")):
            records = load_critique_records(origin)
            if records:
                return records

    raise ConfigurationError(f"Cannot find manifest at: {origin}")


def run_dir_for(path: str) -> str:
    """A run directory for a run path or for a manifest inside one (``<run>/<stage>/manifest.json``)."""

    if path.endswith(".json"):
        return os.path.dirname(os.path.dirname(os.path.abspath(path)))
    return path


def find_run_spec(*paths: str | None) -> DesignSpec | None:
    """Parse ``input/spec.md`` from the first of the given runs that has one."""

    for path in paths:
        if not path:
            continue
        candidate = os.path.join(run_dir_for(path), "input", "spec.md")
        if os.path.exists(candidate):
            return parse_spec(candidate)
    return None
