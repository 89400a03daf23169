from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

from mockup_engine.framework.config import AppConfig, RubricCriterion
from mockup_engine.framework.errors import ConfigurationError
from mockup_engine.framework.spec import DEFAULT_SCREEN, DesignSpec, screen_description

PromptKind = Literal["generate", "critique", "revise"]

# Pipeline steps and CLI flags spell the generate prefix "gen".
OPTION_PREFIXES: Mapping[str, str] = {"generate": "gen", "critique": "critique", "revise": "revise"}

VARIANT_DESCRIPTORS: tuple[str, ...] = (
    "clean and minimal",
    "spacious with warm accents",
    "compact and efficient",
    "bold with high contrast",
    "soft with subtle shadows",
    "modern with sharp edges",
    "playful with rounded corners",
    "professional and structured",
)

DEFAULT_TEMPLATES: Mapping[str, str] = {
    "generate": """SYSTEM: You are a senior product designer generating high-fidelity UI mockups. Output images that look like real app screens, flat front-on, no device frame unless requested.

USER:
Title: {{title}}
Type: {{type}}
Screen: {{screen}}
Description: {{description_for_screen_or_overall}}
Style guidelines: {{styles}}{{#style_prompt}}
Style specification: {{style_prompt}}{{/style_prompt}}
Constraints:
- WCAG AA contrast
- Touch targets ≥48dp
- Clear hierarchy; no device chrome unless requested
Variant bias: {{variant_descriptor}}
Inspiration: {{inspiration}}
Return: a single high-res image.""",
    "critique": """SYSTEM: You are an exacting design critic and accessibility reviewer. Return valid JSON only.

USER:
Evaluate the provided UI against the spec.
Spec summary:
Title: {{title}}
Type: {{type}}
Key tasks: {{primary_tasks}}
Style intent: {{styles}}
Screens: {{screens_list}}
Criteria with weights (use the ids as score keys):
{{rubric_with_weights}}
For each image return: {"scores":{...},"weightedTotal":#,"strengths":[3],"issues":[3],"revisePrompt":"<=50 words"}""",
    "revise": """SYSTEM: You are refining an existing UI mockup using the critique notes. Keep original intent.

USER:
Original intent: {{title}} / {{type}}
Style: {{styles}}
Screen: {{screen}}
Revise instructions: {{revisePrompt}}
Return: one updated image, same framing.""",
}

_SECTION_RE = re.compile(r"\{\{([#^])\s*([\w.]+)\s*\}\}(.*?)\{\{/\s*\2\s*\}\}", re.DOTALL)
_VAR_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


@dataclass(frozen=True)
class PromptOverride:
    """An inline template or a template file supplied for one prompt kind."""

    inline: str | None = None
    file_path: str | None = None

    def load(self) -> str | None:
        if self.inline and self.inline.strip():
            return self.inline
        if self.file_path:
            try:
                with open(self.file_path, "r", encoding="utf-8") as handle:
                    return handle.read()
            except OSError as exc:
                raise ConfigurationError(f"Could not load prompt file {self.file_path}: {exc}") from exc
        return None

    @staticmethod
    def from_options(options: Mapping[str, Any], kind: PromptKind) -> "PromptOverride":
        """Read ``<prefix>Prompt`` / ``<prefix>PromptFile`` keys (``genPrompt``, ``revisePromptFile``...)."""
        prefix = OPTION_PREFIXES[kind]
        inline = options.get(f"{prefix}Prompt")
        file_path = options.get(f"{prefix}PromptFile")
        return PromptOverride(
            inline=inline if isinstance(inline, str) else None,
            file_path=file_path if isinstance(file_path, str) else None,
        )


def resolve_template(kind: PromptKind, cfg: AppConfig, override: PromptOverride | None = None) -> str:
    """Override chain: inline > file > config ``prompts.<kind>`` > built-in default."""
    if override is not None:
        loaded = override.load()
        if loaded:
            return loaded
    configured = cfg.prompts.get(kind)
    if configured:
        return configured
    return DEFAULT_TEMPLATES[kind]


def _lookup(context: Mapping[str, Any], name: str) -> Any:
    value: Any = context
    for part in name.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _stringify(value: Any) -> str:
    if value is None or value is False:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """
    Render ``{{name}}`` placeholders and ``{{#name}}...{{/name}}`` sections.

    Sections render their body only when the value is truthy (``{{^name}}`` inverts this).
    Unknown names render as empty strings.
    """

    def replace_section(match: re.Match[str]) -> str:
        inverted = match.group(1) == "^"
        truthy = bool(_lookup(context, match.group(2)))
        if truthy != inverted:
            return render_template(match.group(3), context)
        return ""

    rendered = _SECTION_RE.sub(replace_section, template)
    return _VAR_RE.sub(lambda m: _stringify(_lookup(context, m.group(1))), rendered)


def variant_descriptor(variant: int) -> str:
    """Descriptor for a 1-based variant number; wraps around after the eighth."""
    return VARIANT_DESCRIPTORS[(max(int(variant), 1) - 1) % len(VARIANT_DESCRIPTORS)]


def format_rubric(rubric: Sequence[RubricCriterion]) -> str:
    if not rubric:
        return "No specific criteria provided."
    return "\n".join(
        f"- {criterion.id}: {criterion.label} ({int(round(criterion.weight * 100))}%)"
        for criterion in rubric
    )


def format_inspiration(items: Sequence[str]) -> str:
    if not items:
        return "No specific inspiration provided."
    return "\n".join(f"- {item}" for item in items)


def _clean(value: str | None) -> str | None:
    if value is None or not value.strip() or value.strip() == "-":
        return None
    return value


def build_template_context(
    spec: DesignSpec,
    cfg: AppConfig,
    *,
    screen: str | None = None,
    variant: int = 1,
    revise_prompt: str | None = None,
    rubric: Sequence[RubricCriterion] | None = None,
    style_prompt: str | None = None,
) -> dict[str, Any]:
    description = screen_description(spec, screen) if screen else spec.description
    return {
        "title": spec.title,
        "type": spec.type,
        "styles": _clean(spec.styles),
        "screens_list": ", ".join(spec.screens),
        "primary_tasks": ", ".join(spec.primary_tasks),
        "now": datetime.now(timezone.utc).isoformat(),
        "screen": screen or DEFAULT_SCREEN,
        "description_for_screen_or_overall": _clean(description),
        "variant_descriptor": variant_descriptor(variant),
        "inspiration": format_inspiration(spec.inspiration),
        "rubric_with_weights": format_rubric(cfg.rubric if rubric is None else rubric),
        "revisePrompt": revise_prompt or "",
        "style_prompt": style_prompt or "",
    }
