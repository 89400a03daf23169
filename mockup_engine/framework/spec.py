"""
Design spec parsing.

A spec is a Markdown brief: an ``# H1`` title followed by ``##`` sections (Description, Type,
Styles, Inspiration, Models, Critique Criteria, Notes). Optional YAML front matter is kept
as-is on the parsed spec.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import yaml

from mockup_engine.framework.errors import ConfigurationError

DEFAULT_TITLE = "Untitled Design"
DEFAULT_TYPE = "Mobile application UI"
DEFAULT_SCREEN = "Main Screen"

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)\s]+)[^)]*\)")
_LIST_BOLD_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s*\*\*([^*]+)\*\*", re.MULTILINE)
_SCREENS_LINE_RE = re.compile(r"screens?:[ \t]*([^.\n]+)", re.IGNORECASE)
_TASK_PATTERNS = (
    re.compile(r"tasks?:([^.]+)", re.IGNORECASE),
    re.compile(r"goals?:([^.]+)", re.IGNORECASE),
    re.compile(r"users? (?:can|should|will) ([^.]+)", re.IGNORECASE),
)
_URL_RE = re.compile(r"https?://[^\s)]+")
_IMAGE_PATH_RE = re.compile(r"[^\s()]+\.(?:jpg|jpeg|png|gif|webp)\b", re.IGNORECASE)


@dataclass(frozen=True)
class DesignSpec:
    title: str
    description: str
    type: str
    styles: str = ""
    screens: tuple[str, ...] = (DEFAULT_SCREEN,)
    inspiration: tuple[str, ...] = ()
    primary_tasks: tuple[str, ...] = ()
    models: tuple[str, ...] | None = None
    critique_criteria: str = ""
    notes: str = ""
    source_path: str | None = None
    front_matter: Mapping[str, Any] = field(default_factory=dict)


def _split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text
    for idx in range(1, len(lines)):
        if lines[idx].strip() in {"---", "..."}:
            raw = "\n".join(lines[1:idx])
            try:
                payload = yaml.safe_load(raw) if raw.strip() else {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid spec front matter: {exc}") from exc
            if payload is None:
                payload = {}
            if not isinstance(payload, Mapping):
                raise ConfigurationError("Spec front matter must be a YAML mapping")
            return dict(payload), "\n".join(lines[idx + 1 :])
    return {}, text


def _normalize_line(line: str) -> str:
    line = _LINK_RE.sub(lambda m: m.group(2), line)
    stripped = line.lstrip()
    if stripped[:2] in {"* ", "+ "}:
        line = line[: len(line) - len(stripped)] + "- " + stripped[2:]
    return line.rstrip()


def _extract_sections(markdown: str) -> tuple[str | None, dict[str, str]]:
    title: str | None = None
    sections: dict[str, str] = {}
    current: str | None = None
    buffer: list[str] = []
    in_fence = False

    def flush() -> None:
        if current is not None:
            sections[current] = "\n".join(buffer).strip()

    for raw_line in markdown.splitlines():
        if raw_line.lstrip().startswith("```"):
            in_fence = not in_fence
        match = None if in_fence else _HEADING_RE.match(raw_line)
        if match:
            flush()
            heading = match.group(2).strip()
            if len(match.group(1)) == 1 and title is None:
                title = heading
            current = heading.lower()
            buffer = []
            continue
        if current is not None:
            buffer.append(_normalize_line(raw_line))
    flush()
    return title, sections


def extract_screens(description: str) -> tuple[str, ...]:
    """Screen names from list items that start with bold text, or a ``Screens:`` line."""
    screens: list[str] = []

    def add(name: str) -> None:
        cleaned = re.sub(r"\s*[—–].*$", "", name).strip().strip("*").strip()
        if cleaned and cleaned not in screens:
            screens.append(cleaned)

    for match in _LIST_BOLD_RE.finditer(description):
        add(match.group(1))
    if screens:
        return tuple(screens)
    for match in _SCREENS_LINE_RE.finditer(description):
        for name in match.group(1).split(","):
            add(name.replace("**", ""))

    return tuple(screens) or (DEFAULT_SCREEN,)


def extract_primary_tasks(description: str) -> tuple[str, ...]:
    tasks: list[str] = []
    for pattern in _TASK_PATTERNS:
        for match in pattern.finditer(description):
            task = " ".join(match.group(1).split()).strip()
            if task and task not in tasks:
                tasks.append(task)
    return tuple(tasks)


def parse_inspiration(text: str) -> tuple[str, ...]:
    refs: list[str] = []
    for ref in [*_URL_RE.findall(text), *_IMAGE_PATH_RE.findall(text)]:
        if ref not in refs:
            refs.append(ref)
    return tuple(refs)


def parse_models_section(text: str) -> tuple[str, ...] | None:
    if not text.strip():
        return None
    models = []
    for part in re.split(r"[,\n]", text):
        name = part.strip().lstrip("-").strip().strip("`")
        if name:
            models.append(name)
    return tuple(models) or None


def parse_spec_text(text: str, *, source_path: str | None = None) -> DesignSpec:
    front_matter, markdown = _split_front_matter(text)
    title, sections = _extract_sections(markdown)

    description = sections.get("description", "")
    spec = DesignSpec(
        title=(title or DEFAULT_TITLE).strip(),
        description=description,
        type=sections.get("type") or DEFAULT_TYPE,
        styles=sections.get("styles") or sections.get("style") or "",
        screens=extract_screens(description),
        inspiration=parse_inspiration(sections.get("inspiration", "")),
        primary_tasks=extract_primary_tasks(description),
        models=parse_models_section(sections.get("models", "")),
        critique_criteria=sections.get("critique criteria", ""),
        notes=sections.get("notes", ""),
        source_path=source_path,
        front_matter=front_matter,
    )
    validate_spec(spec)
    return spec


def parse_spec(path: str) -> DesignSpec:
    if not path or not os.path.isfile(path):
        raise ConfigurationError(f"Spec file not found: {path}")
    with open(path, "r", encoding="utf-8") as handle:
        text = handle.read()
    return parse_spec_text(text, source_path=path)


def validate_spec(spec: DesignSpec) -> None:
    missing = [
        name
        for name, value in (("title", spec.title), ("description", spec.description), ("type", spec.type))
        if not value or not value.strip()
    ]
    if missing:
        raise ConfigurationError(
            "Spec validation failed. Missing required sections: " + ", ".join(missing)
        )


def screen_description(spec: DesignSpec, screen: str) -> str:
    """
    Text describing one screen: the remainder of the list item that names it in bold plus any
    indented continuation lines. Falls back to the whole description.
    """

    lines = spec.description.splitlines()
    name_re = re.compile(rf"\*\*\s*{re.escape(screen)}[^*]*\*\*(.*)$", re.IGNORECASE)
    for idx, line in enumerate(lines):
        match = name_re.search(line)
        if not match:
            continue
        parts = [re.sub(r"^\s*[—–:-]\s*", "", match.group(1)).strip()]
        for follow in lines[idx + 1 :]:
            if not follow.strip() or not follow[:1].isspace():
                break
            parts.append(follow.strip().lstrip("-").strip())
        text = " ".join(part for part in parts if part)
        if text:
            return text
    return spec.description


def spec_to_markdown(spec: DesignSpec) -> str:
    markdown = f"# {spec.title}\n\n"
    if spec.description:
        markdown += f"## Description\n\n{spec.description}\n\n"
    if spec.type:
        markdown += f"## Type\n\n{spec.type}\n\n"
    if spec.styles:
        markdown += f"## Styles\n\n{spec.styles}\n\n"
    if spec.inspiration:
        markdown += "## Inspiration\n\n" + "".join(f"- {item}\n" for item in spec.inspiration) + "\n"
    if spec.models:
        markdown += "## Models\n\n" + "".join(f"- {model}\n" for model in spec.models) + "\n"
    if spec.notes:
        markdown += f"## Notes\n\n{spec.notes}\n\n"
    return markdown
