"""Traffic splitting hint — pick a variant in proportion to its weight.

Weights are advisory; nothing in the engine enforces the resulting split.
With a ``visitor_id`` the choice is a stable hash bucket, so a returning
visitor keeps seeing the same variant.
"""

import hashlib
import random
from typing import Optional, Sequence

from abengine.schemas import VariantOut
from abengine.services.errors import InvalidStateError


def _hash_fraction(test_id: str, visitor_id: str) -> float:
    digest = hashlib.sha256(f"{test_id}:{visitor_id}".encode()).hexdigest()
    return int(digest[:15], 16) / float(16 ** 15)


def pick_variant(
    test_id: str,
    variants: Sequence[VariantOut],
    visitor_id: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> VariantOut:
    if not variants:
        raise InvalidStateError(f"A/B test {test_id} has no variants")

    weights = [max(v.weight, 0.0) for v in variants]
    total = sum(weights)
    if total <= 0:
        weights = [1.0] * len(variants)
        total = float(len(variants))

    if visitor_id is not None:
        point = _hash_fraction(test_id, visitor_id) * total
    else:
        point = (rng or random).random() * total

    cumulative = 0.0
    for variant, weight in zip(variants, weights):
        cumulative += weight
        if point < cumulative:
            return variant
    return variants[-1]
