from __future__ import annotations

import io
import json
import logging
import os
import shutil
import threading
from datetime import datetime
from typing import Any, Mapping, Sequence

from PIL import Image

from mockup_engine.framework.artifacts.manifest import ManifestWriter, utc_now_iso8601
from mockup_engine.framework.config import RubricCriterion
from mockup_engine.framework.spec import DesignSpec, spec_to_markdown

RUN_SUBDIRS: tuple[str, ...] = ("input", "generate", "critique", "iterate")

_LEVELS: Mapping[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def generate_run_id(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d@%H%M")


def save_png(image_bytes: bytes, path: str) -> None:
    """Write image bytes as PNG; non-PNG payloads are decoded with Pillow and re-encoded."""
    with Image.open(io.BytesIO(image_bytes)) as image:
        if image.format == "PNG":
            with open(path, "wb") as handle:
                handle.write(image_bytes)
            return
        converted = image.convert("RGBA") if image.mode in ("P", "LA") else image
        converted.save(path, format="PNG")


class RunStore:
    """
    Directory-backed store for one run: ``<base_dir>/<run_id>``.

    Re-opening an existing run id reuses its directory; nothing is ever deleted.
    """

    def __init__(
        self,
        base_dir: str = "runs",
        run_id: str | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_dir = base_dir
        self.run_id = run_id or generate_run_id()
        self.run_dir = os.path.join(base_dir, self.run_id)
        self.logger = logger
        self._log_lock = threading.Lock()

    def path(self, *parts: str) -> str:
        return os.path.join(self.run_dir, *parts)

    @property
    def spec_path(self) -> str:
        return self.path("input", "spec.md")

    @property
    def logs_path(self) -> str:
        return self.path("logs.jsonl")

    def initialize(self) -> None:
        for subdir in RUN_SUBDIRS:
            os.makedirs(self.path(subdir), exist_ok=True)
        self.log("info", "run-initialized", "Run directory ready", {"runId": self.run_id, "runDir": self.run_dir})

    def log(self, level: str, step: str, message: str, meta: Mapping[str, Any] | None = None) -> None:
        entry = {
            "ts": utc_now_iso8601(),
            "level": level,
            "step": step,
            "message": message,
            "meta": dict(meta or {}),
        }
        os.makedirs(self.run_dir, exist_ok=True)
        with self._log_lock:
            with open(self.logs_path, "a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, ensure_ascii=False, default=str))
                handle.write("\n")

        if self.logger is not None:
            if meta:
                self.logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s %s", step, message, dict(meta))
            else:
                self.logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s", step, message)

    def manifest_path(self, stage: str) -> str:
        return self.path(stage, "manifest.json")

    def manifest_writer(self, stage: str) -> ManifestWriter:
        """A fresh single writer for the stage manifest; call once per stage invocation."""
        return ManifestWriter(self.manifest_path(stage))

    def save_spec(self, spec: DesignSpec) -> str:
        os.makedirs(self.path("input"), exist_ok=True)
        target = self.spec_path
        source = spec.source_path
        if source and os.path.isfile(source):
            if os.path.abspath(source) != os.path.abspath(target):
                shutil.copyfile(source, target)
        else:
            with open(target, "w", encoding="utf-8") as handle:
                handle.write(spec_to_markdown(spec))
        self.log("info", "spec-saved", "Design spec saved to run", {"specPath": target, "title": spec.title})
        return target

    def save_style(self, style: str) -> str:
        target = self.path("input", "style.txt")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            handle.write(style)
        self.log("info", "style-saved", "Style information saved to run", {"stylePath": target})
        return target

    def save_image(self, image_bytes: bytes, *, stage: str, provider: str, filename: str) -> str:
        directory = self.path(stage, provider)
        os.makedirs(directory, exist_ok=True)
        target = os.path.join(directory, filename)
        save_png(image_bytes, target)
        return target

    def save_critique(self, image_id: str, critique: Mapping[str, Any]) -> str:
        target = self.path("critique", f"{image_id}.json")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(dict(critique), handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        self.log(
            "info",
            "critique-saved",
            "Critique saved",
            {"imageId": image_id, "score": critique.get("weightedTotal")},
        )
        return target

    def save_critique_summary(
        self,
        summary: Mapping[str, Any],
        rubric: Sequence[RubricCriterion],
    ) -> tuple[str, str]:
        md_path = self.path("critique", "summary.md")
        json_path = self.path("critique", "summary.json")
        os.makedirs(os.path.dirname(md_path), exist_ok=True)
        with open(md_path, "w", encoding="utf-8") as handle:
            handle.write(render_summary_markdown(summary, rubric))
        with open(json_path, "w", encoding="utf-8") as handle:
            json.dump(dict(summary), handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        return md_path, json_path


def _score_cell(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "N/A"
    return f"{value:g}"


def render_summary_markdown(summary: Mapping[str, Any], rubric: Sequence[RubricCriterion]) -> str:
    lines = ["# Critique Summary", "", f"Generated: {summary.get('timestamp') or utc_now_iso8601()}", ""]
    lines.append(
        f"Critiques: {summary.get('successfulCritiques', 0)}/{summary.get('totalCritiques', 0)} successful, "
        f"average score {summary.get('averageScore', 0)}"
    )
    lines.append("")

    leaderboard = summary.get("leaderboard") or []
    if leaderboard:
        header = ["Rank", "Image", "Model", "Screen", "Score", *(criterion.label for criterion in rubric)]
        lines.append("## Leaderboard")
        lines.append("")
        lines.append("| " + " | ".join(header) + " |")
        lines.append("|" + "|".join("---" for _ in header) + "|")
        for entry in leaderboard:
            scores = entry.get("scores") or {}
            total = entry.get("weightedTotal")
            row = [
                str(entry.get("rank")),
                os.path.basename(str(entry.get("image") or "")),
                str(entry.get("model") or ""),
                str(entry.get("screen") or ""),
                f"{total:.1f}" if isinstance(total, (int, float)) else "N/A",
                *(_score_cell(scores.get(criterion.id)) for criterion in rubric),
            ]
            lines.append("| " + " | ".join(row) + " |")
        lines.append("")

    insights = summary.get("insights") or []
    if insights:
        lines.append("## Key Insights")
        lines.append("")
        lines.extend(f"- {insight}" for insight in insights)
        lines.append("")

    return "\n".join(lines) + "\n"
