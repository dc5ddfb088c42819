"""Pydantic schemas for API request/response."""

import json
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, JsonValue

TestStatus = Literal["draft", "running", "completed", "stopped"]
GoalType = Literal["click", "form_submit", "page_view", "custom"]


def _load_changes(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        changes = json.loads(raw or "{}")
    except (json.JSONDecodeError, TypeError):
        return {}
    return changes if isinstance(changes, dict) else {}


# ── Variant ──────────────────────────────────────────────
class VariantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    is_control: bool = False
    weight: float = Field(1.0, gt=0)
    changes: dict[str, JsonValue] = Field(default_factory=dict)


class VariantUpsert(BaseModel):
    """Variant patch: without ``id`` a new variant is inserted."""

    id: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_control: Optional[bool] = None
    weight: Optional[float] = Field(None, gt=0)
    changes: Optional[dict[str, JsonValue]] = None


class VariantOut(BaseModel):
    id: str
    test_id: str
    name: str
    description: Optional[str] = None
    is_control: bool
    weight: float
    changes: dict[str, JsonValue] = Field(default_factory=dict)
    impressions: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, variant, impressions: int = 0, conversions: int = 0, conversion_rate: float = 0.0):
        return cls(
            id=variant.id,
            test_id=variant.test_id,
            name=variant.name,
            description=variant.description,
            is_control=bool(variant.is_control),
            weight=variant.weight if variant.weight is not None else 1.0,
            changes=_load_changes(variant.changes),
            impressions=impressions,
            conversions=conversions,
            conversion_rate=conversion_rate,
        )


# ── Test ─────────────────────────────────────────────────
class ABTestCreate(BaseModel):
    name: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None
    element_selector: str = Field(min_length=1, max_length=500)
    goal_type: GoalType = "click"
    goal_selector: Optional[str] = None
    min_sample_size: int = Field(100, ge=1)
    confidence_level: float = Field(0.95, gt=0.0, lt=1.0)
    variants: list[VariantCreate] = Field(min_length=2)


class ABTestUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[TestStatus] = None
    element_selector: Optional[str] = Field(None, min_length=1, max_length=500)
    goal_type: Optional[GoalType] = None
    goal_selector: Optional[str] = None
    min_sample_size: Optional[int] = Field(None, ge=1)
    confidence_level: Optional[float] = Field(None, gt=0.0, lt=1.0)
    variants: Optional[list[VariantUpsert]] = None


class StatusUpdate(BaseModel):
    status: TestStatus


class ABTestOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: TestStatus
    element_selector: str
    goal_type: GoalType
    goal_selector: Optional[str] = None
    min_sample_size: int
    confidence_level: float
    winning_variant_id: Optional[str] = None
    variants: list[VariantOut] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, test, variants: list[VariantOut]):
        return cls(
            id=test.id,
            name=test.name,
            description=test.description,
            status=test.status,
            element_selector=test.element_selector,
            goal_type=test.goal_type,
            goal_selector=test.goal_selector,
            min_sample_size=test.min_sample_size,
            confidence_level=test.confidence_level,
            winning_variant_id=test.winning_variant_id,
            variants=variants,
            started_at=test.started_at,
            ended_at=test.ended_at,
            created_at=test.created_at,
            updated_at=test.updated_at,
        )

    @property
    def control(self) -> Optional[VariantOut]:
        return next((v for v in self.variants if v.is_control), None)


class ActiveVariantOut(BaseModel):
    id: str
    weight: float
    changes: dict[str, JsonValue] = Field(default_factory=dict)


class ActiveTestOut(BaseModel):
    """What the page-side script needs to render a running test."""

    id: str
    element_selector: str
    goal_type: GoalType
    goal_selector: Optional[str] = None
    variants: list[ActiveVariantOut] = Field(default_factory=list)

    @classmethod
    def from_test(cls, test: ABTestOut):
        return cls(
            id=test.id,
            element_selector=test.element_selector,
            goal_type=test.goal_type,
            goal_selector=test.goal_selector,
            variants=[ActiveVariantOut(id=v.id, weight=v.weight, changes=v.changes) for v in test.variants],
        )


# ── Significance ─────────────────────────────────────────
class VariantStats(BaseModel):
    variant_id: str
    name: str
    is_control: bool
    impressions: int
    conversions: int
    conversion_rate: float
    relative_improvement: float = 0.0  # % vs control
    p_value: float = 1.0
    z_score: Optional[float] = None


class SignificanceResult(BaseModel):
    test_id: str
    has_winner: bool
    winning_variant_id: Optional[str] = None
    confidence_level: float
    significant_results: bool
    needs_more_data: bool
    variant_stats: list[VariantStats] = Field(default_factory=list)


# ── Suggestions ──────────────────────────────────────────
class SuggestionRequest(BaseModel):
    element_selector: str = Field(min_length=1)
    element_type: str = Field(min_length=1)
    current_content: Optional[str] = None


class VariantSuggestion(BaseModel):
    variant_name: str
    description: str = ""
    changes: dict[str, JsonValue] = Field(default_factory=dict)


class AssignmentOut(BaseModel):
    test_id: str
    variant_id: str
    changes: dict[str, JsonValue] = Field(default_factory=dict)


# ── Auth ─────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
