from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence, TypeVar

from mockup_engine.framework.config import parse_float, parse_int
from mockup_engine.framework.errors import ConfigurationError

T = TypeVar("T")

DEFAULT_TOP_K = 3
DEFAULT_MIN_SCORE = 70.0


@dataclass(frozen=True)
class SelectionPolicy:
    """Filter by ``min_score`` first, then keep the best ``top_k``. Either may be None."""

    min_score: float | None = None
    top_k: int | None = None

    @staticmethod
    def default() -> "SelectionPolicy":
        return SelectionPolicy(min_score=DEFAULT_MIN_SCORE, top_k=DEFAULT_TOP_K)

    @staticmethod
    def from_mapping(raw: Mapping[str, Any] | None, *, path: str = "select") -> "SelectionPolicy":
        """
        Build a policy from a pipeline ``select`` block.

        Accepts ``minScore``/``minimumScore``/``min_score`` and ``topK``/``top_k``. A missing or
        empty block yields the default policy (top 3, score >= 70).
        """

        if not raw:
            return SelectionPolicy.default()

        min_score: float | None = None
        for key in ("minScore", "minimumScore", "min_score"):
            if raw.get(key) is not None:
                min_score = parse_float(raw[key], f"{path}.{key}")
                break

        top_k: int | None = None
        for key in ("topK", "top_k"):
            if raw.get(key) is not None:
                top_k = parse_int(raw[key], f"{path}.{key}")
                break

        if top_k is not None and top_k < 0:
            raise ConfigurationError(f"Invalid config value for {path}.topK: must be >= 0")
        return SelectionPolicy(min_score=min_score, top_k=top_k)


def candidate_score(candidate: Any) -> float:
    """Read a candidate's score; mappings use ``weightedTotal``, objects ``weighted_total``/``score``."""
    if isinstance(candidate, Mapping):
        value = candidate.get("weightedTotal")
        if value is None:
            value = candidate.get("weighted_total")
    else:
        value = getattr(candidate, "weighted_total", None)
        if value is None:
            value = getattr(candidate, "score", None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def select(candidates: Sequence[T], policy: SelectionPolicy) -> list[T]:
    pool = list(candidates)
    if policy.min_score is not None:
        pool = [item for item in pool if candidate_score(item) >= policy.min_score]
    if policy.top_k is not None and len(pool) > policy.top_k:
        # sorted() is stable, so equal scores keep their input order.
        pool = sorted(pool, key=candidate_score, reverse=True)[: policy.top_k]
    return pool
