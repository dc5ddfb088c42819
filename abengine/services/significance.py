"""Significance engine — two-proportion z-test of each variant against control.

A variant is a winner candidate when its two-tailed p-value is below
``1 - confidence_level`` and it converts better than the control. Among the
candidates the highest conversion rate wins, ties going to the lowest variant
id. ``min_sample_size`` only drives ``needs_more_data``; it never blocks a
decision the math already supports.

Known edge case: conversions may exceed impressions (events are not
de-duplicated), so a rate above 1.0 is accepted as-is. When that pushes the
pooled variance to zero or below the comparison is skipped, like an empty
sample.
"""

import logging
import math
from typing import Optional

from abengine.schemas import ABTestOut, SignificanceResult, VariantStats
from abengine.services.errors import InvalidStateError

logger = logging.getLogger(__name__)


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the error function."""
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def two_proportion_z_test(
    conversions_a: int,
    impressions_a: int,
    conversions_b: int,
    impressions_b: int,
) -> Optional[tuple[float, float]]:
    """
    z-score and two-tailed p-value for rate(a) - rate(b).

    Returns None when the test is undefined: an empty sample, or a pooled
    variance that is not positive (no conversions at all, everything
    converted, or conversions > impressions).
    """
    if impressions_a <= 0 or impressions_b <= 0:
        return None

    p1 = conversions_a / impressions_a
    p2 = conversions_b / impressions_b
    pooled = (conversions_a + conversions_b) / (impressions_a + impressions_b)
    variance = pooled * (1.0 - pooled) * (1.0 / impressions_a + 1.0 / impressions_b)
    if variance <= 0:
        return None

    z = (p1 - p2) / math.sqrt(variance)
    p_value = 2.0 * (1.0 - normal_cdf(abs(z)))
    return z, p_value


def analyze(test: ABTestOut) -> SignificanceResult:
    """Pure significance pass over a test snapshot. Does not touch the store."""
    control = test.control
    if control is None:
        logger.error(f"A/B test {test.id} has no control variant")
        raise InvalidStateError(f"A/B test {test.id} has no control variant")

    alpha = 1.0 - test.confidence_level
    control_rate = control.conversions / control.impressions if control.impressions > 0 else 0.0

    stats = []
    candidates = []
    for v in test.variants:
        row = VariantStats(
            variant_id=v.id,
            name=v.name,
            is_control=v.is_control,
            impressions=v.impressions,
            conversions=v.conversions,
            conversion_rate=v.conversion_rate,
        )
        stats.append(row)
        if v.id == control.id:
            continue

        outcome = two_proportion_z_test(v.conversions, v.impressions, control.conversions, control.impressions)
        if outcome is None:
            continue
        row.z_score, row.p_value = outcome
        rate = v.conversions / v.impressions
        if control_rate > 0:
            row.relative_improvement = (rate - control_rate) / control_rate * 100.0

        if row.p_value < alpha and row.relative_improvement > 0:
            candidates.append(row)

    winner = None
    if candidates:
        winner = min(candidates, key=lambda s: (-s.conversion_rate, s.variant_id))

    needs_more_data = any(v.impressions < test.min_sample_size for v in test.variants)

    return SignificanceResult(
        test_id=test.id,
        has_winner=winner is not None,
        winning_variant_id=winner.variant_id if winner else None,
        confidence_level=test.confidence_level,
        significant_results=bool(candidates),
        needs_more_data=needs_more_data,
        variant_stats=stats,
    )


async def evaluate_significance(store, test_id: str) -> SignificanceResult:
    """
    Evaluate a test from a fresh snapshot and record a winner if one emerged.

    A winner completes the test unless it is already completed or was stopped
    by hand; otherwise the status is left untouched.
    """
    test = await store.require_test(test_id, use_cache=False)
    result = analyze(test)

    if result.has_winner and test.status not in ("completed", "stopped"):
        await store.complete_test(test_id, result.winning_variant_id)
        logger.info(
            f"A/B test {test_id}: variant {result.winning_variant_id} wins "
            f"at confidence {test.confidence_level}"
        )
    return result
