"""A/B Testing API — create, manage, track and evaluate page-element split tests."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from abengine.api.auth import require_admin
from abengine.database import get_db
from abengine.schemas import (
    ABTestCreate,
    ABTestOut,
    ABTestUpdate,
    ActiveTestOut,
    AssignmentOut,
    SignificanceResult,
    StatusUpdate,
    SuggestionRequest,
    TestStatus,
    VariantSuggestion,
)
from abengine.services.experiment_store import ExperimentStore
from abengine.services.significance import evaluate_significance
from abengine.services.suggestions import VariantSuggestionGenerator
from abengine.services.traffic import pick_variant

router = APIRouter(prefix="/ab-tests", tags=["ab-testing"])
admin_only = [Depends(require_admin)]


# ── Dependencies ─────────────────────────────────────────
def get_store(request: Request, db: AsyncSession = Depends(get_db)) -> ExperimentStore:
    return ExperimentStore(db, cache=request.app.state.cache)


def get_suggestion_generator() -> VariantSuggestionGenerator:
    return VariantSuggestionGenerator()


# ── Endpoints ────────────────────────────────────────────
@router.post("/", response_model=ABTestOut, status_code=201, dependencies=admin_only)
async def create_ab_test(data: ABTestCreate, store: ExperimentStore = Depends(get_store)):
    """Create a draft A/B test. Exactly one variant must be the control."""
    return await store.create_test(data)


@router.get("/", response_model=list[ABTestOut], dependencies=admin_only)
async def list_ab_tests(
    status: Optional[TestStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    store: ExperimentStore = Depends(get_store),
):
    return await store.list_tests(status=status, skip=skip, limit=limit)


@router.get("/active", response_model=list[ActiveTestOut])
async def list_active_ab_tests(store: ExperimentStore = Depends(get_store)):
    """Running tests, trimmed to what the page script needs to render them."""
    tests = await store.list_active_tests()
    return [ActiveTestOut.from_test(t) for t in tests]


@router.post("/suggestions", response_model=list[VariantSuggestion], dependencies=admin_only)
async def suggest_variants(
    data: SuggestionRequest,
    generator: VariantSuggestionGenerator = Depends(get_suggestion_generator),
):
    return await generator.suggest(data.element_selector, data.element_type, data.current_content)


@router.get("/{test_id}", response_model=ABTestOut, dependencies=admin_only)
async def get_ab_test(test_id: str, store: ExperimentStore = Depends(get_store)):
    return await store.require_test(test_id)


@router.patch("/{test_id}", response_model=ABTestOut, dependencies=admin_only)
async def update_ab_test(test_id: str, data: ABTestUpdate, store: ExperimentStore = Depends(get_store)):
    return await store.update_test(test_id, data)


@router.patch("/{test_id}/status", response_model=ABTestOut, dependencies=admin_only)
async def update_ab_test_status(test_id: str, data: StatusUpdate, store: ExperimentStore = Depends(get_store)):
    return await store.set_status(test_id, data.status)


@router.delete("/{test_id}", status_code=204, dependencies=admin_only)
async def delete_ab_test(test_id: str, store: ExperimentStore = Depends(get_store)):
    await store.delete_test(test_id)


@router.post("/{test_id}/variants/{variant_id}/impression", status_code=200)
async def record_impression(test_id: str, variant_id: str, store: ExperimentStore = Depends(get_store)):
    await store.record_impression(test_id, variant_id)
    return {"message": "Impression recorded", "test_id": test_id, "variant_id": variant_id}


@router.post("/{test_id}/variants/{variant_id}/conversion", status_code=200)
async def record_conversion(test_id: str, variant_id: str, store: ExperimentStore = Depends(get_store)):
    await store.record_conversion(test_id, variant_id)
    return {"message": "Conversion recorded", "test_id": test_id, "variant_id": variant_id}


@router.post("/{test_id}/analyze", response_model=SignificanceResult, dependencies=admin_only)
async def analyze_ab_test(test_id: str, store: ExperimentStore = Depends(get_store)):
    """Run the significance test; a significant winner completes the test."""
    return await evaluate_significance(store, test_id)


@router.get("/{test_id}/assign", response_model=AssignmentOut)
async def assign_variant(
    test_id: str,
    visitor_id: Optional[str] = None,
    store: ExperimentStore = Depends(get_store),
):
    """Weighted variant pick; sticky per ``visitor_id`` when one is given."""
    test = await store.require_test(test_id)
    variant = pick_variant(test.id, test.variants, visitor_id=visitor_id)
    return AssignmentOut(test_id=test.id, variant_id=variant.id, changes=variant.changes)
