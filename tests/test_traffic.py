"""Tests for weighted variant picking."""

import random
from collections import Counter

import pytest

from abengine.schemas import VariantOut
from abengine.services.errors import InvalidStateError
from abengine.services.traffic import pick_variant


def variant(vid: str, weight: float = 1.0, is_control: bool = False) -> VariantOut:
    return VariantOut(id=vid, test_id="t1", name=vid, is_control=is_control, weight=weight)


def test_sticky_per_visitor():
    variants = [variant("a", is_control=True), variant("b"), variant("c")]
    first = pick_variant("t1", variants, visitor_id="visitor-42")
    for _ in range(10):
        assert pick_variant("t1", variants, visitor_id="visitor-42").id == first.id


def test_visitors_spread_over_variants():
    variants = [variant("a", is_control=True), variant("b")]
    picks = Counter(pick_variant("t1", variants, visitor_id=f"v{i}").id for i in range(400))
    assert set(picks) == {"a", "b"}
    assert 120 < picks["a"] < 280


def test_weights_shift_allocation():
    variants = [variant("a", weight=1.0, is_control=True), variant("b", weight=3.0)]
    rng = random.Random(7)
    picks = Counter(pick_variant("t1", variants, rng=rng).id for _ in range(4000))
    assert picks["b"] / 4000 == pytest.approx(0.75, abs=0.05)


def test_single_variant():
    only = variant("a", is_control=True)
    assert pick_variant("t1", [only]) is only


def test_no_variants():
    with pytest.raises(InvalidStateError):
        pick_variant("t1", [])
