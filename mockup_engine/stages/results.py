from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class DryRunPlan:
    """What a stage would do, computed without calling any provider."""

    kind: str
    units: int
    example_prompt: str | None = None
    lines: tuple[str, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        out = [f"{self.kind} plan: {self.units} unit(s)"]
        out.extend(f"  {line}" for line in self.lines)
        if self.example_prompt:
            out.append("")
            out.append("Example prompt:")
            out.append("=" * 80)
            out.append(self.example_prompt)
            out.append("=" * 80)
        return "\n".join(out)


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    model: str
    screen: str
    variant: int
    image_path: str | None = None
    manifest_item: Mapping[str, Any] | None = None
    prompt_hash: str | None = None
    seed: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class GenerateStageResult:
    results: list[GenerationResult]
    manifest_path: str

    @property
    def successful(self) -> list[GenerationResult]:
        return [result for result in self.results if result.success]


@dataclass(frozen=True)
class CritiqueStageResult:
    critiques: list[dict[str, Any]]
    summary: dict[str, Any]

    @property
    def leaderboard(self) -> list[dict[str, Any]]:
        return list(self.summary.get("leaderboard") or [])

    @property
    def successful(self) -> list[dict[str, Any]]:
        return [critique for critique in self.critiques if critique.get("success")]


@dataclass(frozen=True)
class RevisionResult:
    success: bool
    original_image_path: str
    model: str
    screen: str
    pass_number: int
    revise_prompt: str
    image_path: str | None = None
    manifest_item: Mapping[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True)
class IterateStageResult:
    results: list[RevisionResult]
    passes: int
    passes_completed: int
    final_images: list[str]
    manifest_path: str

    @property
    def successful(self) -> list[RevisionResult]:
        return [result for result in self.results if result.success]
