"""Scaffold a working directory with config, an example spec and an example pipeline."""

from __future__ import annotations

import json
import os

CONFIG_PATH = os.path.join("config", "config.yaml")
SPEC_PATH = os.path.join("specs", "parking-app.md")
PIPELINE_PATH = os.path.join("pipelines", "best-effort.json")
GITIGNORE_PATH = ".gitignore"
GITIGNORE_ENTRIES = ("runs/", "config/config.local.yaml", ".env")

DEFAULT_CONFIG_YAML = """\
run:
  out_dir: runs
  default_variants: 3
  default_concurrency: 3
  max_retries: 3

models:
  default: baseline

critique:
  model: openai:gpt-4o

styles:
  path: styles/styles.md
"""

EXAMPLE_SPEC = """\
# Where Is My Car? (Parking Tracker)

## Description
Design a simple mobile UI with two screens:
1) **Save Spot** - large level buttons (e.g., P0, P1, P2, P3), plus text field to add a custom label (e.g., "Street + Cross").
2) **Find Car** - shows the last saved spot, big contrasty "Navigate" call to action, and a small history list.

## Type
Mobile application UI (iOS/Android agnostic, but feel native).

## Styles
- Warm palette with a red accent, subtle depth shadows, rounded cards, bold H1.
- Keep main actions one-tap reachable.

## Inspiration
- https://dribbble.com/shots/parking-app
- images/garage-level-signage.jpg

## Models
- baseline

## Critique Criteria
- Task success (clarity of "Save" + "Find")
- Visual hierarchy & tap targets
- Accessibility (contrast, touch area)
- Consistency across screens

## Notes
Prefer a simple layout that beginners can grok instantly.
"""

EXAMPLE_PIPELINE: dict = {
    "name": "best-effort",
    "steps": [
        {
            "id": "generate-pass-1",
            "run": "generate",
            "spec": "specs/parking-app.md",
            "models": "baseline",
            "variants": 4,
            "screens": ["Save Spot", "Find Car"],
        },
        {"id": "critique-pass-1", "run": "critique", "from": "generate-pass-1"},
        {
            "id": "revise-pass-2",
            "run": "iterate",
            "from": "critique-pass-1",
            "select": {"topK": 3, "minScore": 70},
            "passes": 1,
        },
        {"id": "critique-pass-2", "run": "critique", "from": "revise-pass-2"},
    ],
}


def _write(path: str, content: str, *, force: bool) -> bool:
    if os.path.exists(path) and not force:
        print(f"Exists, skipping: {path}")
        return False
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(content)
    print(f"Created: {path}")
    return True


def _update_gitignore(root: str) -> None:
    path = os.path.join(root, GITIGNORE_PATH)
    existing = ""
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as handle:
            existing = handle.read()
    present = set(existing.splitlines())
    missing = [entry for entry in GITIGNORE_ENTRIES if entry not in present]
    if not missing:
        return
    with open(path, "a", encoding="utf-8") as handle:
        if existing and not existing.endswith("\n"):
            handle.write("\n")
        handle.write("\n".join(missing) + "\n")
    print(f"Updated: {path}")


def init_project(root: str = ".", *, force: bool = False) -> list[str]:
    """Write the scaffold under ``root``; existing files are kept unless ``force``. Returns created paths."""

    created: list[str] = []
    for relative in ("specs", "pipelines", "runs"):
        os.makedirs(os.path.join(root, relative), exist_ok=True)

    files = (
        (CONFIG_PATH, DEFAULT_CONFIG_YAML),
        (SPEC_PATH, EXAMPLE_SPEC),
        (PIPELINE_PATH, json.dumps(EXAMPLE_PIPELINE, indent=2) + "\n"),
    )
    for relative, content in files:
        target = os.path.join(root, relative)
        if _write(target, content, force=force):
            created.append(target)
    _update_gitignore(root)
    return created
