import pytest

from mockup_engine.framework.errors import ConfigurationError
from mockup_engine.framework.selection import SelectionPolicy, candidate_score, select


def _pool(*scores):
    return [{"image": f"img-{idx}.png", "weightedTotal": score} for idx, score in enumerate(scores)]


def test_min_score_then_top_k():
    pool = _pool(55, 91, 72, 88, 70, 99)
    picked = select(pool, SelectionPolicy(min_score=70, top_k=3))
    assert [c["weightedTotal"] for c in picked] == [99, 91, 88]


def test_min_score_is_inclusive():
    pool = _pool(69.99, 70, 70.01)
    picked = select(pool, SelectionPolicy(min_score=70, top_k=None))
    assert [c["weightedTotal"] for c in picked] == [70, 70.01]


def test_order_preserved_when_under_top_k():
    pool = _pool(75, 90)
    assert select(pool, SelectionPolicy(min_score=None, top_k=5)) == pool


def test_ties_keep_input_order():
    pool = _pool(80, 90, 80, 80)
    picked = select(pool, SelectionPolicy(min_score=None, top_k=3))
    assert [c["image"] for c in picked] == ["img-1.png", "img-0.png", "img-2.png"]


def test_selection_is_bounded_and_idempotent():
    pool = _pool(*range(50, 100, 5))
    policy = SelectionPolicy.default()
    once = select(pool, policy)
    assert len(once) <= 3
    assert all(candidate_score(c) >= 70 for c in once)
    assert select(once, policy) == once


def test_empty_in_empty_out():
    assert select([], SelectionPolicy.default()) == []


def test_missing_scores_count_as_zero():
    pool = [{"image": "a.png"}, {"image": "b.png", "weightedTotal": 10}]
    assert select(pool, SelectionPolicy(min_score=1, top_k=None)) == [pool[1]]


class _Obj:
    def __init__(self, weighted_total):
        self.weighted_total = weighted_total


def test_attribute_scores():
    assert candidate_score(_Obj(42.5)) == 42.5
    assert candidate_score(object()) == 0.0


def test_policy_from_mapping_aliases():
    assert SelectionPolicy.from_mapping({"minimumScore": 60, "topK": 2}) == SelectionPolicy(min_score=60, top_k=2)
    assert SelectionPolicy.from_mapping({"minScore": "75"}) == SelectionPolicy(min_score=75.0, top_k=None)
    assert SelectionPolicy.from_mapping(None) == SelectionPolicy.default()


def test_policy_rejects_negative_top_k():
    with pytest.raises(ConfigurationError, match=r"topK"):
        SelectionPolicy.from_mapping({"topK": -1})
