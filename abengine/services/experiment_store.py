"""Experiment store — durable CRUD for tests, variants and their event log."""

import json
import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from abengine.models import ABTest, ABTestConversion, ABTestImpression, ABTestVariant, utcnow
from abengine.schemas import ABTestCreate, ABTestOut, ABTestUpdate, VariantOut
from abengine.services.cache import ACTIVE_TESTS_KEY, NullCache, detail_key
from abengine.services.errors import ExperimentValidationError, NotFoundError
from abengine.services.metrics import VariantCounts, variant_counts

logger = logging.getLogger(__name__)

_REQUIRED_TEST_FIELDS = ("name", "element_selector", "goal_type", "min_sample_size", "confidence_level")


def check_control_invariant(control_flags: list[bool]) -> None:
    """Exactly one control and at least one challenger."""
    controls = sum(1 for flag in control_flags if flag)
    if controls == 0:
        raise ExperimentValidationError("A test needs exactly one control variant (none given)")
    if controls > 1:
        raise ExperimentValidationError(f"A test needs exactly one control variant ({controls} given)")
    if len(control_flags) - controls < 1:
        raise ExperimentValidationError("A test needs at least one non-control variant")


class ExperimentStore:
    """
    Tests, variants, impressions and conversions over one ``AsyncSession``.

    Reads of a single test and of the active-test list go through ``cache``;
    every write invalidates the keys it can affect before returning.
    """

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.cache = cache if cache is not None else NullCache()

    # ── Reads ────────────────────────────────────────────
    async def _get_test_row(self, test_id: str) -> Optional[ABTest]:
        result = await self.db.execute(select(ABTest).where(ABTest.id == test_id))
        return result.scalar_one_or_none()

    async def _get_variant_rows(self, test_id: str) -> list[ABTestVariant]:
        result = await self.db.execute(
            select(ABTestVariant)
            .where(ABTestVariant.test_id == test_id)
            .order_by(ABTestVariant.position, ABTestVariant.created_at, ABTestVariant.id)
        )
        return list(result.scalars().all())

    async def _build(self, test: ABTest) -> ABTestOut:
        variants = await self._get_variant_rows(test.id)
        counts = await variant_counts(self.db, test.id)
        out = []
        for v in variants:
            c = counts.get(v.id, VariantCounts())
            out.append(VariantOut.from_model(
                v,
                impressions=c.impressions,
                conversions=c.conversions,
                conversion_rate=c.conversion_rate,
            ))
        return ABTestOut.from_model(test, out)

    async def get_test(self, test_id: str, use_cache: bool = True) -> Optional[ABTestOut]:
        """Test with freshly counted variant metrics, or None if it does not exist."""
        key = detail_key(test_id)
        if use_cache:
            cached = await self.cache.get(key)
            if cached is not None:
                return cached

        generation = await self.cache.generation(key)
        test = await self._get_test_row(test_id)
        if test is None:
            return None
        out = await self._build(test)
        await self.cache.set(key, out, generation=generation)
        return out

    async def require_test(self, test_id: str, use_cache: bool = True) -> ABTestOut:
        out = await self.get_test(test_id, use_cache=use_cache)
        if out is None:
            raise NotFoundError(f"A/B test {test_id} not found")
        return out

    async def list_tests(self, status: Optional[str] = None, skip: int = 0, limit: int = 50) -> list[ABTestOut]:
        stmt = select(ABTest)
        if status:
            stmt = stmt.where(ABTest.status == status)
        stmt = stmt.order_by(ABTest.created_at.desc(), ABTest.id).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return [await self._build(t) for t in result.scalars().all()]

    async def list_active_tests(self) -> list[ABTestOut]:
        """
        Running tests, oldest first.

        The cached list is only invalidated when a test enters or leaves
        ``running``, not on every event, so its per-variant counts may lag
        by up to the cache TTL. Use ``get_test`` for current counts.
        """
        cached = await self.cache.get(ACTIVE_TESTS_KEY)
        if cached is not None:
            return cached

        generation = await self.cache.generation(ACTIVE_TESTS_KEY)
        result = await self.db.execute(
            select(ABTest).where(ABTest.status == "running").order_by(ABTest.created_at, ABTest.id)
        )
        tests = [await self._build(t) for t in result.scalars().all()]
        await self.cache.set(ACTIVE_TESTS_KEY, tests, generation=generation)
        return tests

    # ── Writes ───────────────────────────────────────────
    async def create_test(self, data: ABTestCreate) -> ABTestOut:
        check_control_invariant([v.is_control for v in data.variants])

        test = ABTest(
            name=data.name,
            description=data.description,
            status="draft",
            element_selector=data.element_selector,
            goal_type=data.goal_type,
            goal_selector=data.goal_selector,
            min_sample_size=data.min_sample_size,
            confidence_level=data.confidence_level,
        )
        self.db.add(test)
        await self.db.flush()

        for position, v in enumerate(data.variants):
            self.db.add(ABTestVariant(
                test_id=test.id,
                position=position,
                name=v.name,
                description=v.description,
                is_control=v.is_control,
                weight=v.weight,
                changes=json.dumps(v.changes),
            ))
        await self.db.commit()
        await self.cache.invalidate(ACTIVE_TESTS_KEY, detail_key(test.id))

        logger.info(f"A/B test created: id={test.id} name={test.name!r} variants={len(data.variants)}")
        return await self.require_test(test.id, use_cache=False)

    async def update_test(self, test_id: str, data: ABTestUpdate) -> ABTestOut:
        """Merge fields; variants are upserted by id and never removed."""
        test = await self._get_test_row(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")

        try:
            fields = data.model_dump(exclude_unset=True, exclude={"variants"})
            status = fields.pop("status", None)
            for key, val in fields.items():
                if val is None and key in _REQUIRED_TEST_FIELDS:
                    continue
                setattr(test, key, val)
            if status is not None:
                _apply_status(test, status)

            if data.variants:
                existing = {v.id: v for v in await self._get_variant_rows(test_id)}
                next_position = max((v.position or 0 for v in existing.values()), default=-1) + 1
                added = []
                for patch in data.variants:
                    variant = self._upsert_variant(test_id, existing, patch, next_position)
                    if variant is not None:
                        added.append(variant)
                        next_position += 1
                variants = list(existing.values()) + added
                check_control_invariant([bool(v.is_control) for v in variants])
                await self.db.flush()

            test.updated_at = utcnow()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.cache.invalidate(ACTIVE_TESTS_KEY, detail_key(test_id))
        return await self.require_test(test_id, use_cache=False)

    def _upsert_variant(self, test_id: str, existing: dict, patch, position: int) -> Optional[ABTestVariant]:
        """Apply one variant patch; returns the row when a new variant was added."""
        changes = patch.model_dump(exclude_unset=True, exclude={"id"})
        if "changes" in changes:
            changes["changes"] = json.dumps(changes["changes"] or {})

        if patch.id is None:
            if not changes.get("name"):
                raise ExperimentValidationError("New variants need a name")
            variant = ABTestVariant(
                test_id=test_id,
                position=position,
                **{k: v for k, v in changes.items() if v is not None},
            )
            self.db.add(variant)
            return variant

        variant = existing.get(patch.id)
        if variant is None:
            raise NotFoundError(f"Variant {patch.id} not found in A/B test {test_id}")
        for key, val in changes.items():
            if val is None and key in ("name", "is_control", "weight"):
                continue
            setattr(variant, key, val)
        return None

    async def set_status(self, test_id: str, status: str) -> ABTestOut:
        test = await self._get_test_row(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")
        _apply_status(test, status)
        await self.db.commit()
        await self.cache.invalidate(ACTIVE_TESTS_KEY, detail_key(test_id))
        logger.info(f"A/B test {test_id} status -> {status}")
        return await self.require_test(test_id, use_cache=False)

    async def complete_test(self, test_id: str, winning_variant_id: str) -> ABTestOut:
        test = await self._get_test_row(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")
        _apply_status(test, "completed")
        test.winning_variant_id = winning_variant_id
        await self.db.commit()
        await self.cache.invalidate(ACTIVE_TESTS_KEY, detail_key(test_id))
        logger.info(f"A/B test {test_id} completed, winner={winning_variant_id}")
        return await self.require_test(test_id, use_cache=False)

    async def delete_test(self, test_id: str) -> None:
        """Remove the test with its variants and events in one transaction."""
        test = await self._get_test_row(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")

        try:
            await self.db.execute(delete(ABTestImpression).where(ABTestImpression.test_id == test_id))
            await self.db.execute(delete(ABTestConversion).where(ABTestConversion.test_id == test_id))
            await self.db.execute(delete(ABTestVariant).where(ABTestVariant.test_id == test_id))
            await self.db.execute(delete(ABTest).where(ABTest.id == test_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.cache.invalidate(ACTIVE_TESTS_KEY, detail_key(test_id))
        logger.info(f"A/B test deleted: id={test_id}")

    # ── Event log ────────────────────────────────────────
    async def _require_pair(self, test_id: str, variant_id: str) -> ABTest:
        test = await self._get_test_row(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")
        result = await self.db.execute(
            select(ABTestVariant.id).where(
                ABTestVariant.id == variant_id,
                ABTestVariant.test_id == test_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"Variant {variant_id} not found in A/B test {test_id}")
        return test

    async def record_impression(self, test_id: str, variant_id: str) -> None:
        """Append one impression; the first one moves a draft test to running."""
        test = await self._require_pair(test_id, variant_id)
        self.db.add(ABTestImpression(test_id=test_id, variant_id=variant_id))
        started = test.status == "draft"
        if started:
            _apply_status(test, "running")
        await self.db.commit()
        if started:
            await self.cache.invalidate(ACTIVE_TESTS_KEY, detail_key(test_id))
            logger.info(f"A/B test {test_id} started on first impression")
        else:
            await self.cache.invalidate(detail_key(test_id))

    async def record_conversion(self, test_id: str, variant_id: str) -> None:
        await self._require_pair(test_id, variant_id)
        self.db.add(ABTestConversion(test_id=test_id, variant_id=variant_id))
        await self.db.commit()
        await self.cache.invalidate(detail_key(test_id))


def _apply_status(test: ABTest, status: str) -> None:
    now = utcnow()
    if status == "running" and test.started_at is None:
        test.started_at = now
    elif status in ("completed", "stopped"):
        test.ended_at = now
    test.status = status
    test.updated_at = now
