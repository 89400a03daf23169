from __future__ import annotations

import json
import os
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from mockup_engine.framework.config import RubricCriterion
from mockup_engine.framework.artifacts.manifest import utc_now_iso8601

MAX_LIST_ITEMS = 3
INSUFFICIENT_DATA_INSIGHT = "Insufficient data: no successful critiques to analyze"


class ParseStatus(str, Enum):
    STRICT = "strict"
    RECOVERED = "recovered"
    FAILED = "failed"


@dataclass(frozen=True)
class ParseOutcome:
    status: ParseStatus
    scores: Mapping[str, float] = field(default_factory=dict)
    strengths: tuple[str, ...] = ()
    issues: tuple[str, ...] = ()
    revise_prompt: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ParseStatus.FAILED

    @property
    def recovered(self) -> bool:
        return self.status is ParseStatus.RECOVERED


def weighted_total(scores: Mapping[str, Any], rubric: Sequence[RubricCriterion]) -> float:
    """
    Weighted mean over criteria present in both the rubric and ``scores``.

    Missing criteria are excluded from the denominator, so partial critiques are renormalized.
    Returns 0 when no weight is present.
    """

    total = 0.0
    weight_sum = 0.0
    for criterion in rubric:
        value = scores.get(criterion.id)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        total += float(value) * criterion.weight
        weight_sum += criterion.weight
    if weight_sum <= 0:
        return 0.0
    return round(total / weight_sum, 2)


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring (string literals respected), else None."""
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def _numeric_scores(raw: Mapping[str, Any]) -> dict[str, float]:
    scores: dict[str, float] = {}
    for key, value in raw.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            scores[str(key)] = value
        elif isinstance(value, str):
            try:
                scores[str(key)] = float(value.strip())
            except ValueError:
                continue
    return scores


def _str_items(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    items = [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]
    return tuple(items[:MAX_LIST_ITEMS])


def _parse_strict(text: str) -> ParseOutcome | None:
    candidate = extract_first_json_object(text)
    if candidate is None:
        return None
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, Mapping) or not isinstance(payload.get("scores"), Mapping):
        return None

    revise_prompt = payload.get("revisePrompt")
    return ParseOutcome(
        status=ParseStatus.STRICT,
        scores=_numeric_scores(payload["scores"]),
        strengths=_str_items(payload.get("strengths")),
        issues=_str_items(payload.get("issues")),
        revise_prompt=revise_prompt.strip() if isinstance(revise_prompt, str) else "",
    )


_QUOTED_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')


def _recover_list(text: str, key: str) -> tuple[str, ...]:
    match = re.search(rf'"?{key}"?\s*:?\s*\[(.*?)\]', text, re.IGNORECASE | re.DOTALL)
    if not match:
        return ()
    items = [item.replace('\\"', '"').strip() for item in _QUOTED_RE.findall(match.group(1))]
    return tuple(item for item in items if item)[:MAX_LIST_ITEMS]


def _recover_revise_prompt(text: str) -> str:
    match = re.search(r'"?revisePrompt"?\s*:?\s*"((?:[^"\\]|\\.)*)"', text, re.IGNORECASE)
    if not match:
        return ""
    return match.group(1).replace('\\"', '"').strip()


def _parse_recovered(text: str, rubric: Sequence[RubricCriterion]) -> ParseOutcome:
    scores: dict[str, float] = {}
    for criterion in rubric:
        pattern = rf'"?{re.escape(criterion.id)}"?\s*:?\s*(\d+(?:\.\d+)?)'
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            raw = match.group(1)
            scores[criterion.id] = float(raw) if "." in raw else int(raw)

    if not scores:
        return ParseOutcome(
            status=ParseStatus.FAILED,
            error="Critique response contained no JSON object and no recoverable scores",
        )

    return ParseOutcome(
        status=ParseStatus.RECOVERED,
        scores=scores,
        strengths=_recover_list(text, "strengths"),
        issues=_recover_list(text, "issues"),
        revise_prompt=_recover_revise_prompt(text),
    )


def parse_critique_response(text: str, rubric: Sequence[RubricCriterion]) -> ParseOutcome:
    """
    Two-tier critique parser.

    Tier one takes the first balanced JSON object and requires a ``scores`` mapping. Tier two
    searches the raw text per rubric criterion; any score found makes the outcome ``recovered``.
    Otherwise the outcome is ``failed``.
    """

    if not isinstance(text, str) or not text.strip():
        return ParseOutcome(status=ParseStatus.FAILED, error="Critique response was empty")
    strict = _parse_strict(text)
    if strict is not None:
        return strict
    return _parse_recovered(text, rubric)


def _issue_bucket(issue: str) -> str:
    return " ".join(issue.strip().lower().split())


def build_critique_summary(
    critiques: Sequence[Mapping[str, Any]],
    rubric: Sequence[RubricCriterion],
) -> dict[str, Any]:
    """Aggregate critique records into a leaderboard plus insights."""

    successful = [c for c in critiques if c.get("success")]
    ordered = sorted(successful, key=lambda c: float(c.get("weightedTotal") or 0), reverse=True)

    leaderboard: list[dict[str, Any]] = []
    for rank, critique in enumerate(ordered, start=1):
        leaderboard.append(
            {
                "rank": rank,
                "image": critique.get("image"),
                "imageId": critique.get("imageId"),
                "model": critique.get("sourceModel") or critique.get("model"),
                "critic": critique.get("model"),
                "screen": critique.get("screen"),
                "weightedTotal": critique.get("weightedTotal"),
                "scores": dict(critique.get("scores") or {}),
                "strengths": list(critique.get("strengths") or []),
                "issues": list(critique.get("issues") or []),
                "revisePrompt": critique.get("revisePrompt") or "",
            }
        )

    insights: list[str] = []
    if not ordered:
        average = 0.0
        insights.append(INSUFFICIENT_DATA_INSIGHT)
    else:
        average = round(sum(float(c.get("weightedTotal") or 0) for c in ordered) / len(ordered), 2)
        top = ordered[0]
        top_score = round(float(top.get("weightedTotal") or 0))
        insights.append(f"Highest scoring design: {top_score} points ({os.path.basename(str(top.get('image') or ''))})")

        issue_counts: Counter[str] = Counter()
        display: dict[str, str] = {}
        for critique in ordered:
            for issue in critique.get("issues") or []:
                key = _issue_bucket(str(issue))
                if not key:
                    continue
                issue_counts[key] += 1
                display.setdefault(key, str(issue).strip())
        if issue_counts:
            key, count = issue_counts.most_common(1)[0]
            insights.append(f"Most common issue: {display[key]} ({count} occurrences)")

        means: dict[str, float] = {}
        for criterion in rubric:
            values = [
                float(c["scores"][criterion.id])
                for c in ordered
                if isinstance(c.get("scores"), Mapping)
                and isinstance(c["scores"].get(criterion.id), (int, float))
            ]
            if values:
                means[criterion.id] = sum(values) / len(values)
        if means:
            weakest = min(means, key=lambda cid: means[cid])
            insights.append(f"Weakest area: {weakest} (avg: {round(means[weakest])})")

    return {
        "leaderboard": leaderboard,
        "averageScore": average,
        "totalCritiques": len(critiques),
        "successfulCritiques": len(ordered),
        "insights": insights,
        "timestamp": utc_now_iso8601(),
    }
