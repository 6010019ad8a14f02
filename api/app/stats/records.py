"""Plain input records consumed by the decision and insight engine.

The persistence layer (or an API client) hands the engine these records;
validation happens here, at the boundary, so the calculators downstream can
assume non-negative counts and successes that never exceed trials.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.config import settings

VariantId = Union[int, uuid.UUID, str]


class ABTestStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class VariantMetrics(BaseModel):
    """Engagement counters for one variant of a test."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: VariantId
    test_id: Optional[VariantId] = None
    label: str = ""
    content: str = ""
    impressions: int = Field(default=0, ge=0)
    engagements: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _engagements_within_impressions(self) -> VariantMetrics:
        if self.engagements > self.impressions:
            raise ValueError(
                f"engagements ({self.engagements}) cannot exceed impressions ({self.impressions})"
            )
        return self

    @property
    def engagement_rate(self) -> float:
        """Engagement rate as a percentage (0 when there are no impressions)."""
        if self.impressions == 0:
            return 0.0
        return self.engagements / self.impressions * 100

    @property
    def engagement_rate_bp(self) -> int:
        """Fixed-point engagement rate in basis points (1000 == 10.00%)."""
        return int(round(self.engagement_rate * 100))

    @property
    def display_label(self) -> str:
        return self.label or str(self.id)


class AutoCompletePolicy(BaseModel):
    auto_complete_enabled: bool = Field(default_factory=lambda: settings.AUTO_COMPLETE_ENABLED)
    minimum_sample_size: int = Field(
        default_factory=lambda: settings.AUTO_COMPLETE_MIN_SAMPLE_SIZE, ge=0
    )
    confidence_threshold: float = Field(
        default_factory=lambda: settings.AUTO_COMPLETE_CONFIDENCE_THRESHOLD, ge=0, le=100
    )


class ABTest(BaseModel):
    """A content experiment. Winner and confidence exist only once completed."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: VariantId
    user_id: Optional[VariantId] = None
    name: str = ""
    platform: str
    status: ABTestStatus = ABTestStatus.draft
    started_at: Optional[datetime] = None
    duration_hours: int = Field(default=48, ge=0)
    winning_variant_id: Optional[VariantId] = None
    confidence_level: Optional[float] = Field(default=None, ge=0, le=100)
    completed_at: Optional[datetime] = None
    created_at: datetime
    auto_complete_enabled: Optional[bool] = None
    minimum_sample_size: Optional[int] = Field(default=None, ge=0)
    confidence_threshold: Optional[float] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _winner_only_when_completed(self) -> ABTest:
        if self.status != ABTestStatus.completed and (
            self.winning_variant_id is not None or self.confidence_level is not None
        ):
            raise ValueError(
                "winning_variant_id and confidence_level can only be set on a completed test"
            )
        return self

    def policy(self) -> AutoCompletePolicy:
        """Per-test auto-complete policy, falling back to configured defaults."""
        overrides = {
            key: value
            for key, value in (
                ("auto_complete_enabled", self.auto_complete_enabled),
                ("minimum_sample_size", self.minimum_sample_size),
                ("confidence_threshold", self.confidence_threshold),
            )
            if value is not None
        }
        return AutoCompletePolicy(**overrides)


class ABTestRecord(BaseModel):
    """A stored test with whatever variants it currently has.

    Drafts may have fewer than two variants; the auto-complete check reports
    that as a reason instead of failing to load.
    """

    test: ABTest
    variants: list[VariantMetrics]

    @model_validator(mode="after")
    def _variants_belong_to_test(self) -> ABTestRecord:
        for variant in self.variants:
            if variant.test_id is not None and variant.test_id != self.test.id:
                raise ValueError(
                    f"variant {variant.id} belongs to test {variant.test_id}, not {self.test.id}"
                )
        return self


class ABTestWithVariants(ABTestRecord):
    """A test together with at least two resolved variants."""

    @model_validator(mode="after")
    def _at_least_two_variants(self) -> ABTestWithVariants:
        if len(self.variants) < 2:
            raise ValueError(f"test {self.test.id} needs at least 2 variants, got {len(self.variants)}")
        return self
