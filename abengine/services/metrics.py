"""Per-variant impression/conversion counts, computed from the event log."""

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from abengine.models import ABTestConversion, ABTestImpression


@dataclass(frozen=True)
class VariantCounts:
    impressions: int = 0
    conversions: int = 0

    @property
    def conversion_rate(self) -> float:
        return conversion_rate(self.conversions, self.impressions)


def conversion_rate(conversions: int, impressions: int) -> float:
    """conversions / impressions, or 0.0 when nothing was shown yet."""
    if impressions <= 0:
        return 0.0
    return conversions / impressions


async def _count(db: AsyncSession, model, test_id: str, variant_id: str) -> int:
    stmt = select(func.count(model.id)).where(
        model.test_id == test_id,
        model.variant_id == variant_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one()


async def count_impressions(db: AsyncSession, test_id: str, variant_id: str) -> int:
    return await _count(db, ABTestImpression, test_id, variant_id)


async def count_conversions(db: AsyncSession, test_id: str, variant_id: str) -> int:
    return await _count(db, ABTestConversion, test_id, variant_id)


async def _grouped_counts(db: AsyncSession, model, test_id: str) -> dict[str, int]:
    stmt = (
        select(model.variant_id, func.count(model.id))
        .where(model.test_id == test_id)
        .group_by(model.variant_id)
    )
    result = await db.execute(stmt)
    return {row[0]: row[1] for row in result.all()}


async def variant_counts(db: AsyncSession, test_id: str) -> dict[str, VariantCounts]:
    """
    Counts for every variant of a test that has at least one event.

    One grouped aggregate per event table, so each variant's count comes from
    a single statement. Variants without events are absent; callers default
    them to ``VariantCounts()``.
    """
    impressions = await _grouped_counts(db, ABTestImpression, test_id)
    conversions = await _grouped_counts(db, ABTestConversion, test_id)
    return {
        variant_id: VariantCounts(
            impressions=impressions.get(variant_id, 0),
            conversions=conversions.get(variant_id, 0),
        )
        for variant_id in set(impressions) | set(conversions)
    }
