from __future__ import annotations

import re
from dataclasses import dataclass

from mockup_engine.framework.errors import ConfigurationError

_QUOTE_RE = re.compile(r"""^(["'“”‘’])(.*)(["'“”‘’])$""", re.DOTALL)


@dataclass(frozen=True)
class Style:
    name: str
    description: str
    visual_cues: str
    when_to_use: str
    image_prompt: str


def _strip_quotes(text: str) -> str:
    match = _QUOTE_RE.match(text.strip())
    return match.group(2).strip() if match else text.strip()


def parse_styles_markdown(content: str) -> dict[str, Style]:
    """
    Parse the style catalog table (Name | Description | Visual Cues | When to Use | Image Prompt).

    Keys are lowercased style names; insertion order follows the table.
    """

    lines = content.splitlines()
    start = None
    for idx, line in enumerate(lines):
        if "| Name" in line and "| Image Prompt" in line:
            start = idx + 2
            break
    if start is None:
        raise ConfigurationError("Could not find styles table (| Name ... | Image Prompt |)")

    styles: dict[str, Style] = {}
    for line in lines[start:]:
        line = line.strip()
        if not line.startswith("|"):
            continue
        columns = [column.strip() for column in line.strip("|").split("|")]
        if len(columns) < 5:
            continue
        name, description, cues, when_to_use, image_prompt = columns[:5]
        if not name or not image_prompt:
            continue
        styles[name.lower()] = Style(
            name=name,
            description=description,
            visual_cues=cues,
            when_to_use=when_to_use,
            image_prompt=_strip_quotes(image_prompt),
        )
    return styles


def load_styles(path: str) -> dict[str, Style]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            content = handle.read()
    except OSError as exc:
        raise ConfigurationError(f"Failed to load styles from {path}: {exc}") from exc
    return parse_styles_markdown(content)


def get_style_prompt(path: str, name: str) -> str:
    styles = load_styles(path)
    style = styles.get(name.strip().lower())
    if style is None:
        available = ", ".join(item.name for item in styles.values())
        raise ConfigurationError(f'Style "{name}" not found. Available styles: {available}')
    return style.image_prompt
