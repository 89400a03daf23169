"""
Offline placeholder provider.

Renders labelled PNG wireframes with Pillow and returns deterministic critique JSON so that
pipelines can be exercised end to end without credentials or network access.
"""

from __future__ import annotations

import hashlib
import io
import json
import re

from PIL import Image, ImageDraw, ImageFont

from mockup_engine.framework.config import ProviderSettings
from mockup_engine.providers.base import ProviderAdapter

CANVAS_SIZE = (540, 960)
_RUBRIC_LINE_RE = re.compile(r"^-\s*([A-Za-z0-9_]+):", re.MULTILINE)
_FIELD_RE_TEMPLATE = r"^{field}:\s*(.+)$"


def _prompt_field(prompt: str, field: str) -> str:
    match = re.search(_FIELD_RE_TEMPLATE.format(field=re.escape(field)), prompt, re.MULTILINE)
    return match.group(1).strip() if match else ""


def _digest(*parts: object) -> bytes:
    return hashlib.sha256("|".join(str(part) for part in parts).encode("utf-8")).digest()


def _to_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _draw_caption(draw: ImageDraw.ImageDraw, lines: list[str], *, top: int) -> None:
    font = ImageFont.load_default()
    y = top
    for line in lines:
        if not line:
            continue
        draw.text((24, y), line[:60], font=font, fill=(20, 20, 20))
        y += 22
        if y > CANVAS_SIZE[1] - 40:
            break


class LocalAdapter(ProviderAdapter):
    name = "local"

    def generate_image(self, model: str, prompt: str, *, seed: int | None, settings: ProviderSettings) -> bytes:
        digest = _digest(model, prompt, seed)
        background = (200 + digest[0] % 56, 200 + digest[1] % 56, 200 + digest[2] % 56)
        accent = (digest[3] % 160, digest[4] % 160, digest[5] % 160)

        image = Image.new("RGB", CANVAS_SIZE, background)
        draw = ImageDraw.Draw(image)
        width, height = CANVAS_SIZE
        draw.rectangle([(0, 0), (width, 72)], fill=accent)
        draw.rounded_rectangle([(24, 120), (width - 24, 360)], radius=16, outline=accent, width=3)
        draw.rounded_rectangle([(24, height - 160), (width - 24, height - 88)], radius=36, fill=accent)

        _draw_caption(
            draw,
            [
                _prompt_field(prompt, "Title"),
                _prompt_field(prompt, "Screen"),
                _prompt_field(prompt, "Variant bias"),
            ],
            top=392,
        )
        return _to_png(image)

    def edit_image(self, model: str, prompt: str, image_bytes: bytes, *, settings: ProviderSettings) -> bytes:
        with Image.open(io.BytesIO(image_bytes)) as source:
            image = source.convert("RGB")
        draw = ImageDraw.Draw(image)
        width, height = image.size
        draw.rectangle([(0, height - 96), (width, height)], fill=(255, 255, 255))
        instructions = _prompt_field(prompt, "Revise instructions") or "revised"
        _draw_caption(draw, ["Revision", instructions], top=height - 84)
        return _to_png(image)

    def critique_image(
        self,
        model: str,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        *,
        settings: ProviderSettings,
    ) -> str:
        digest = hashlib.sha256(image_bytes).digest()
        criteria = _RUBRIC_LINE_RE.findall(prompt) or ["overall"]
        scores = {criterion: 60 + digest[idx % len(digest)] % 36 for idx, criterion in enumerate(criteria)}
        weakest = min(scores, key=lambda key: scores[key])
        return json.dumps(
            {
                "scores": scores,
                "strengths": ["Clear primary action", "Consistent spacing", "Readable type scale"],
                "issues": [f"Improve {weakest}", "Secondary actions lack contrast", "Dense header"],
                "revisePrompt": f"Strengthen {weakest}; raise contrast on secondary actions and simplify the header.",
            }
        )
