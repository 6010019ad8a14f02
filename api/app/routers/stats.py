"""Stats router: significance, winner decisions, auto-completion and insights.

The calculators are pure; this module only loads records, calls the engine
and serializes the result.  Malformed input comes back as 422, unknown
tests as 404.
"""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.stats import results_store
from app.stats.auto_complete import auto_complete_test, check_auto_complete
from app.stats.decisions import determine_winner
from app.stats.features import compare_content, extract_features
from app.stats.insights import generate_history_insights, generate_test_insights
from app.stats.records import ABTestRecord, ABTestStatus, VariantId, VariantMetrics
from app.stats.significance import calculate_significance, min_sample_size_for, validate_counts

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stats"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class SignificanceRequest(BaseModel):
    sent_a: int
    successes_a: int
    sent_b: int
    successes_b: int
    channel: str | None = None


class SignificanceResult(BaseModel):
    confidence: float
    winner: str | None = None
    is_significant: bool
    z_score: float
    p_value: float
    rate_a: float
    rate_b: float


class PairwiseComparison(SignificanceResult):
    variant_a: str
    variant_b: str


class WinnerRequest(BaseModel):
    variants: list[VariantMetrics]
    channel: str | None = None


class WinnerDecision(BaseModel):
    winner_id: VariantId | None = None
    winner_label: str | None = None
    confidence: float
    decision_status: str
    confidence_level: str
    recommendation: str
    engagement_rates: dict[str, float]
    comparisons: list[PairwiseComparison]


class FeaturesRequest(BaseModel):
    text: str = ""
    compare_to: str | None = Field(
        default=None, description="Loser text; when given, the response includes a comparison"
    )


class ContentComparison(BaseModel):
    winner_only: list[str]
    loser_only: list[str]
    shared: list[str]


class FeaturesResult(BaseModel):
    features: list[str]
    comparison: ContentComparison | None = None


class AutoCompleteCheck(BaseModel):
    should_complete: bool
    winner: str | None = None
    winning_variant_id: VariantId | None = None
    confidence: float
    reason: str


class AutoCompleteOutcome(BaseModel):
    success: bool
    changed: bool
    winner: str | None = None
    winning_variant_id: VariantId | None = None
    confidence: float
    reason: str
    status: ABTestStatus


class InsightSummary(BaseModel):
    total_tests: int
    completed_tests: int
    avg_confidence_level: float
    avg_engagement_lift: float
    most_tested_platform: str | None = None
    best_performing_platform: str | None = None


class PlatformBreakdown(BaseModel):
    platform: str
    tests_completed: int
    avg_confidence: float
    avg_engagement_lift: float
    winning_patterns: list[str]


class HistoricalInsight(BaseModel):
    category: str
    title: str
    description: str
    confidence: str
    data_points: int
    trend: str | None = None


class ElementLearning(BaseModel):
    element: str
    frequency: int
    avg_lift: float
    impact: str


class ContentLearnings(BaseModel):
    winning_elements: list[ElementLearning]
    losing_elements: list[ElementLearning]


class Recommendation(BaseModel):
    priority: str
    title: str
    description: str
    based_on: str


class TimeAnalysis(BaseModel):
    best_day_of_week: str | None = None
    best_time_of_day: str | None = None
    test_frequency: float


class HistoryInsights(BaseModel):
    user_id: VariantId
    generated_at: datetime
    summary: InsightSummary
    platform_breakdown: list[PlatformBreakdown]
    historical_insights: list[HistoricalInsight]
    content_learnings: ContentLearnings
    recommendations: list[Recommendation]
    time_analysis: TimeAnalysis


class ContentInsight(BaseModel):
    category: str
    title: str
    description: str
    impact: str


class ContentPattern(BaseModel):
    pattern: str
    frequency: str
    effect: str


class ABTestInsights(BaseModel):
    test_id: VariantId
    test_name: str
    platform: str
    winning_variant_label: str
    confidence_level: float
    engagement_lift: float
    insights: list[ContentInsight]
    recommendations: list[str]
    content_patterns: list[ContentPattern]
    generated_at: datetime


# ---------------------------------------------------------------------------
# Stateless calculators
# ---------------------------------------------------------------------------


@router.post("/stats/significance", response_model=SignificanceResult)
async def post_significance(body: SignificanceRequest) -> SignificanceResult:
    """Pooled two-proportion z-test between two variants."""
    try:
        validate_counts(body.sent_a, body.successes_a, "variant A")
        validate_counts(body.sent_b, body.successes_b, "variant B")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    result = calculate_significance(
        body.sent_a,
        body.successes_a,
        body.sent_b,
        body.successes_b,
        min_sample_size=min_sample_size_for(body.channel),
    )
    return SignificanceResult(**result)


@router.post("/stats/winner", response_model=WinnerDecision)
async def post_winner(body: WinnerRequest) -> WinnerDecision:
    """Pick a winner among two or more variants with a plain-English recommendation."""
    try:
        decision = determine_winner(body.variants, body.channel)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return WinnerDecision(**decision)


@router.post("/stats/features", response_model=FeaturesResult)
async def post_features(body: FeaturesRequest) -> FeaturesResult:
    comparison = None
    if body.compare_to is not None:
        comparison = ContentComparison(**compare_content(body.text, body.compare_to))
    return FeaturesResult(features=extract_features(body.text), comparison=comparison)


# ---------------------------------------------------------------------------
# Stored tests
# ---------------------------------------------------------------------------


async def _require_test(db: AsyncSession, test_id: UUID) -> ABTestRecord:
    try:
        record = await results_store.load_test(db, test_id)
    except ValidationError as exc:
        logger.warning("Test %s has invalid stored data: %s", test_id, exc)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Stored A/B test data is invalid: {exc}",
        )
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="A/B test not found")
    return record


@router.get("/ab-tests/{test_id}/auto-complete", response_model=AutoCompleteCheck)
async def get_auto_complete(
    test_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> AutoCompleteCheck:
    """Report whether the test would be auto-completed now, without changing it."""
    record = await _require_test(db, test_id)
    return AutoCompleteCheck(**check_auto_complete(record.test, record.variants))


@router.post("/ab-tests/{test_id}/auto-complete", response_model=AutoCompleteOutcome)
async def post_auto_complete(
    test_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> AutoCompleteOutcome:
    """Complete the test if the auto-complete policy allows it.

    Safe to call repeatedly: an already completed test is reported as a
    successful no-op.  If another request completed or cancelled the test
    first, the stored state is reported with ``changed=False``.
    """
    record = await _require_test(db, test_id)
    outcome = auto_complete_test(record.test, record.variants)
    test = outcome["test"]

    if outcome["changed"]:
        applied = await results_store.apply_completion(db, test)
        if applied:
            logger.info(
                "Completed test %s with winner %s at %.1f%% confidence",
                test_id,
                outcome["winner"],
                outcome["confidence"],
            )
        else:
            # Another writer moved the test first; report what is stored now.
            stored = await _require_test(db, test_id)
            test = stored.test
            winner = next((v for v in stored.variants if v.id == test.winning_variant_id), None)
            outcome.update(
                success=test.status == ABTestStatus.completed,
                changed=False,
                winner=winner.display_label if winner else None,
                winning_variant_id=test.winning_variant_id,
                confidence=test.confidence_level or 0.0,
                reason=f"Test was {test.status.value} by another request",
            )

    return AutoCompleteOutcome(
        success=outcome["success"],
        changed=outcome["changed"],
        winner=outcome["winner"],
        winning_variant_id=outcome["winning_variant_id"],
        confidence=outcome["confidence"],
        reason=outcome["reason"],
        status=test.status,
    )


@router.get("/users/{user_id}/ab-tests/insights", response_model=HistoryInsights)
async def get_history_insights(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> HistoryInsights:
    """Insights and recommendations learned from all of a user's completed tests."""
    history = await results_store.load_user_history(db, user_id)
    logger.debug("Generating insights for user %s from %d test(s)", user_id, len(history))
    return HistoryInsights(**generate_history_insights(user_id, history))


@router.get("/ab-tests/{test_id}/insights", response_model=ABTestInsights)
async def get_test_insights(
    test_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ABTestInsights:
    record = await _require_test(db, test_id)
    insights = generate_test_insights(record)
    if insights is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No insights yet: the test has not been completed with a winner",
        )
    return ABTestInsights(**insights)
