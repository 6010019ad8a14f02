"""Cross-test learning: what a user's completed content tests have in common.

``generate_history_insights`` works on a user's already-resolved test
history (tests plus their variants) and produces:

- a summary (mean confidence, mean engagement lift, most tested and best
  performing platform),
- a per-platform breakdown,
- content learnings: feature tags that showed up only in winners (or only in
  losers), ranked by how often that happened,
- historical insights with a low/medium/high confidence derived from the
  number of supporting data points,
- priority-ordered recommendations, and
- timing patterns (best weekday / time of day, testing cadence).

Everything here is deterministic; no model calls are made.  An AI layer may
add free-text suggestions on top, but these recommendations are always
produced.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np

from app.core.config import settings
from app.stats.features import compare_content
from app.stats.records import ABTestRecord, ABTestStatus, ABTestWithVariants, VariantMetrics

logger = logging.getLogger(__name__)

PLATFORM_DISPLAY_NAMES = {
    "linkedin": "LinkedIn",
    "twitter": "X (Twitter)",
    "facebook": "Facebook",
    "instagram": "Instagram",
    "threads": "Threads",
    "bluesky": "Bluesky",
    "mastodon": "Mastodon",
}

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
DAYS_PER_MONTH = 30.0


# ======================================================================
# Small helpers
# ======================================================================

def platform_name(platform: str) -> str:
    return PLATFORM_DISPLAY_NAMES.get(platform, platform)


def confidence_from_data_points(
    data_points: int,
    high: Optional[int] = None,
    medium: Optional[int] = None,
) -> str:
    """Map a number of supporting observations to "low" | "medium" | "high"."""
    high = settings.INSIGHT_HIGH_DATA_POINTS if high is None else high
    medium = settings.INSIGHT_MEDIUM_DATA_POINTS if medium is None else medium
    if data_points >= high:
        return "high"
    if data_points >= medium:
        return "medium"
    return "low"


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "Morning"
    if 12 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 21:
        return "Evening"
    return "Night"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def engagement_lift(winner: VariantMetrics, loser: VariantMetrics) -> float:
    """Relative lift of the winner's engagement rate over the loser's, in percent.

    A loser with a zero rate contributes no lift rather than an infinite one.
    """
    loser_rate = loser.engagement_rate
    if loser_rate == 0:
        return 0.0
    return (winner.engagement_rate - loser_rate) / loser_rate * 100


def winner_and_loser(
    record: ABTestRecord,
) -> tuple[Optional[VariantMetrics], Optional[VariantMetrics]]:
    """Resolve the winning variant and its closest competitor.

    With more than two variants the "loser" is the best non-winning variant,
    so lift is measured against the runner-up.
    """
    winner = next((v for v in record.variants if v.id == record.test.winning_variant_id), None)
    if winner is None:
        return None, None
    others = [v for v in record.variants if v is not winner]
    loser = max(others, key=lambda v: v.engagement_rate)
    return winner, loser


def _best_key(groups: dict) -> Optional[object]:
    """Key with the highest mean value; first-seen wins ties."""
    best_key, best_mean = None, None
    for key, values in groups.items():
        mean = float(np.mean(values))
        if best_mean is None or mean > best_mean:
            best_key, best_mean = key, mean
    return best_key


def _rank_elements(tally: dict, sign: int) -> list[dict]:
    ranked = sorted(tally.items(), key=lambda item: item[1]["count"], reverse=True)
    elements = []
    for element, entry in ranked[: settings.TOP_ELEMENTS_LIMIT]:
        avg_lift = entry["lift"] / entry["count"]
        elements.append(
            {
                "element": element,
                "frequency": entry["count"],
                "avg_lift": round(avg_lift, 1),
                "impact": f"{sign * avg_lift:+.1f}% avg lift",
            }
        )
    return elements


# ======================================================================
# History insights
# ======================================================================

def _empty_insights(user_id, total_tests: int, now: datetime) -> dict:
    return {
        "user_id": user_id,
        "generated_at": now,
        "summary": {
            "total_tests": total_tests,
            "completed_tests": 0,
            "avg_confidence_level": 0.0,
            "avg_engagement_lift": 0.0,
            "most_tested_platform": None,
            "best_performing_platform": None,
        },
        "platform_breakdown": [],
        "historical_insights": [],
        "content_learnings": {"winning_elements": [], "losing_elements": []},
        "recommendations": [
            {
                "priority": "high",
                "title": "Start A/B Testing",
                "description": (
                    "Run your first A/B test: publish two versions of a post and let the "
                    "engagement data pick a winner. Insights appear here once a test completes."
                ),
                "based_on": "No completed tests yet",
            }
        ],
        "time_analysis": {
            "best_day_of_week": None,
            "best_time_of_day": None,
            "test_frequency": 0.0,
        },
    }


def generate_history_insights(
    user_id,
    history: Sequence[ABTestWithVariants],
    now: Optional[datetime] = None,
) -> dict:
    """Aggregate a user's test history into insights and recommendations.

    Parameters
    ----------
    user_id
        Owner of the history; echoed back in the result.
    history : sequence of ABTestWithVariants
        All of the user's tests with resolved variants.  Only completed tests
        with a winning variant contribute.
    now : datetime | None
        Timestamp for ``generated_at``.

    Returns
    -------
    dict
        user_id, generated_at, summary, platform_breakdown,
        historical_insights, content_learnings, recommendations,
        time_analysis
    """
    now = now or datetime.now(timezone.utc)
    qualifying = [
        record
        for record in history
        if record.test.status == ABTestStatus.completed
        and record.test.winning_variant_id is not None
    ]
    if not qualifying:
        return _empty_insights(user_id, len(history), now)

    completed = len(qualifying)
    avg_confidence = float(np.mean([r.test.confidence_level or 0.0 for r in qualifying]))

    # ----------------------------------------------------------
    # Per-test pass: lift, features, timing
    # ----------------------------------------------------------
    platforms: dict[str, dict] = {}
    winning: dict[str, dict] = {}
    losing: dict[str, dict] = {}
    lifts: list[float] = []
    day_lifts: dict[int, list[float]] = {}
    hour_lifts: dict[str, list[float]] = {}

    for record in qualifying:
        test = record.test
        group = platforms.setdefault(
            test.platform, {"confidences": [], "lifts": [], "patterns": Counter()}
        )
        group["confidences"].append(test.confidence_level or 0.0)

        winner, loser = winner_and_loser(record)
        if winner is None:
            logger.warning(
                "Test %s names winning variant %s, which is not among its variants",
                test.id,
                test.winning_variant_id,
            )
            continue

        lift = engagement_lift(winner, loser)
        lifts.append(lift)
        group["lifts"].append(lift)

        diff = compare_content(winner.content, loser.content)
        for element in diff["winner_only"]:
            entry = winning.setdefault(element, {"count": 0, "lift": 0.0})
            entry["count"] += 1
            entry["lift"] += lift
            group["patterns"][element] += 1
        for element in diff["loser_only"]:
            entry = losing.setdefault(element, {"count": 0, "lift": 0.0})
            entry["count"] += 1
            entry["lift"] += lift

        stamp = _as_utc(test.started_at or test.created_at)
        day_lifts.setdefault(stamp.weekday(), []).append(lift)
        hour_lifts.setdefault(time_of_day(stamp.hour), []).append(lift)

    # ----------------------------------------------------------
    # Platform breakdown
    # ----------------------------------------------------------
    breakdown = []
    raw_platform_lift: dict[str, float] = {}
    for platform, group in platforms.items():
        mean_lift = float(np.mean(group["lifts"])) if group["lifts"] else 0.0
        raw_platform_lift[platform] = mean_lift
        breakdown.append(
            {
                "platform": platform,
                "tests_completed": len(group["confidences"]),
                "avg_confidence": round(float(np.mean(group["confidences"])), 1),
                "avg_engagement_lift": round(mean_lift, 1),
                "winning_patterns": [p for p, _ in group["patterns"].most_common(3)],
            }
        )

    most_tested = max(breakdown, key=lambda p: p["tests_completed"])["platform"]
    best_performing = max(breakdown, key=lambda p: raw_platform_lift[p["platform"]])["platform"]
    avg_lift = float(np.mean(lifts)) if lifts else 0.0

    winning_elements = _rank_elements(winning, sign=1)
    losing_elements = _rank_elements(losing, sign=-1)

    # ----------------------------------------------------------
    # Cadence
    # ----------------------------------------------------------
    created = [_as_utc(r.test.created_at) for r in qualifying]
    months_spanned = (max(created) - min(created)).total_seconds() / 86400 / DAYS_PER_MONTH
    test_frequency = completed / max(1.0, months_spanned)

    historical_insights = _build_historical_insights(
        winning_elements, losing_elements, breakdown, raw_platform_lift, avg_confidence, completed
    )
    recommendations = _build_recommendations(
        winning_elements,
        losing_elements,
        next(p for p in breakdown if p["platform"] == best_performing),
        test_frequency,
        completed,
        months_spanned,
    )

    best_day = _best_key(day_lifts)
    return {
        "user_id": user_id,
        "generated_at": now,
        "summary": {
            "total_tests": len(history),
            "completed_tests": completed,
            "avg_confidence_level": round(avg_confidence, 1),
            "avg_engagement_lift": round(avg_lift, 1),
            "most_tested_platform": most_tested,
            "best_performing_platform": best_performing,
        },
        "platform_breakdown": breakdown,
        "historical_insights": historical_insights,
        "content_learnings": {
            "winning_elements": winning_elements,
            "losing_elements": losing_elements,
        },
        "recommendations": recommendations,
        "time_analysis": {
            "best_day_of_week": DAY_NAMES[best_day] if best_day is not None else None,
            "best_time_of_day": _best_key(hour_lifts),
            "test_frequency": round(test_frequency, 1),
        },
    }


def _build_historical_insights(
    winning_elements: list[dict],
    losing_elements: list[dict],
    breakdown: list[dict],
    platform_lift: dict[str, float],
    avg_confidence: float,
    completed: int,
) -> list[dict]:
    insights = []
    element_high = settings.ELEMENT_HIGH_DATA_POINTS
    element_medium = settings.ELEMENT_MEDIUM_DATA_POINTS

    if winning_elements:
        top = winning_elements[0]
        insights.append(
            {
                "category": "content",
                "title": f"{top['element']} appears in your winners",
                "description": (
                    f"{top['element']} showed up only in the winning variant in "
                    f"{top['frequency']} test(s), with {top['impact']}."
                ),
                "confidence": confidence_from_data_points(
                    top["frequency"], element_high, element_medium
                ),
                "data_points": top["frequency"],
                "trend": None,
            }
        )

    if losing_elements:
        top = losing_elements[0]
        insights.append(
            {
                "category": "content",
                "title": f"{top['element']} tends to underperform",
                "description": (
                    f"{top['element']} showed up only in the losing variant in "
                    f"{top['frequency']} test(s)."
                ),
                "confidence": confidence_from_data_points(
                    top["frequency"], element_high, element_medium
                ),
                "data_points": top["frequency"],
                "trend": None,
            }
        )

    for platform in breakdown:
        tests = platform["tests_completed"]
        if tests < settings.PLATFORM_INSIGHT_MIN_TESTS:
            continue
        # unrounded, so 10.04 still counts as improving
        lift = platform_lift[platform["platform"]]
        if lift > 10:
            trend = "improving"
        elif lift > 0:
            trend = "stable"
        else:
            trend = "declining"
        name = platform_name(platform["platform"])
        insights.append(
            {
                "category": "platform",
                "title": f"{name} performance",
                "description": (
                    f"Across {tests} completed tests on {name}, winners beat the runner-up by "
                    f"{lift:.1f}% on average at {platform['avg_confidence']:.0f}% average confidence."
                ),
                "confidence": "high" if tests >= settings.INSIGHT_HIGH_DATA_POINTS else "medium",
                "data_points": tests,
                "trend": trend,
            }
        )

    strategy = None
    if avg_confidence > 90:
        strategy = (
            "High-confidence testing",
            f"Your tests finish at {avg_confidence:.1f}% average confidence, so their "
            "winners are reliable guides for future content.",
        )
    elif avg_confidence < 80:
        strategy = (
            "Tests may be ending too early",
            f"Your tests finish at {avg_confidence:.1f}% average confidence. Run them longer "
            f"or with larger audiences to reach {settings.SIGNIFICANCE_THRESHOLD:.0f}%.",
        )
    if strategy:
        insights.append(
            {
                "category": "strategy",
                "title": strategy[0],
                "description": strategy[1],
                "confidence": confidence_from_data_points(completed),
                "data_points": completed,
                "trend": None,
            }
        )

    return insights


def _build_recommendations(
    winning_elements: list[dict],
    losing_elements: list[dict],
    best_platform: dict,
    test_frequency: float,
    completed: int,
    months_spanned: float,
) -> list[dict]:
    recommendations = []

    if winning_elements:
        top = winning_elements[0]
        recommendations.append(
            {
                "priority": "high",
                "title": f"Keep using {top['element']}",
                "description": (
                    f"{top['element']} was part of the winning variant in {top['frequency']} "
                    f"test(s) ({top['impact']}). Build it into your next posts."
                ),
                "based_on": f"{top['frequency']} winning test(s)",
            }
        )

    if losing_elements:
        top = losing_elements[0]
        recommendations.append(
            {
                "priority": "medium",
                "title": f"Avoid {top['element']}",
                "description": (
                    f"{top['element']} was part of the losing variant in {top['frequency']} "
                    "test(s). Try dropping it in your next test."
                ),
                "based_on": f"{top['frequency']} losing test(s)",
            }
        )

    name = platform_name(best_platform["platform"])
    patterns = best_platform["winning_patterns"][:3]
    if patterns:
        detail = f"What works there: {', '.join(patterns)}."
    else:
        detail = "Keep testing there to find its winning patterns."
    recommendations.append(
        {
            "priority": "medium",
            "title": f"Double down on {name}",
            "description": (
                f"{name} shows your strongest lift "
                f"({best_platform['avg_engagement_lift']:.1f}% on average). {detail}"
            ),
            "based_on": f"{best_platform['tests_completed']} test(s) on {name}",
        }
    )

    if test_frequency < settings.TARGET_TESTS_PER_MONTH:
        recommendations.append(
            {
                "priority": "low",
                "title": "Test more often",
                "description": (
                    f"You complete about {test_frequency:.1f} tests per month. Aim for at least "
                    f"{settings.TARGET_TESTS_PER_MONTH:.0f} to learn what works faster."
                ),
                "based_on": f"{completed} completed test(s) over {max(1.0, months_spanned):.1f} month(s)",
            }
        )

    recommendations.sort(key=lambda r: PRIORITY_ORDER[r["priority"]])
    return recommendations


# ======================================================================
# Single-test insights
# ======================================================================

def compare_engagement_metrics(winner: VariantMetrics, loser: VariantMetrics) -> list[dict]:
    """Engagement-side observations about one winner/loser pair."""
    insights = []

    rate_gap = winner.engagement_rate - loser.engagement_rate
    if rate_gap > 1:
        insights.append(
            {
                "category": "engagement",
                "title": "Significant Engagement Improvement",
                "description": (
                    f"The winning variant's engagement rate was {rate_gap:.1f} points higher "
                    f"({winner.engagement_rate:.2f}% vs {loser.engagement_rate:.2f}%)."
                ),
                "impact": "high" if rate_gap > 2 else "medium",
            }
        )

    if winner.clicks > loser.clicks * 1.5:
        insights.append(
            {
                "category": "engagement",
                "title": "Higher Click-Through Rate",
                "description": (
                    f"The winning content drove {winner.clicks} clicks vs {loser.clicks}."
                ),
                "impact": "high",
            }
        )

    if winner.shares > loser.shares * 1.5:
        insights.append(
            {
                "category": "engagement",
                "title": "More Shareable Content",
                "description": (
                    f"The winning variant was shared {winner.shares} times vs {loser.shares}, "
                    "a sign of higher perceived value."
                ),
                "impact": "high",
            }
        )

    if winner.comments > loser.comments * 1.5:
        insights.append(
            {
                "category": "engagement",
                "title": "Higher Conversation Starter",
                "description": (
                    f"The winning content sparked {winner.comments} comments vs {loser.comments}."
                ),
                "impact": "medium",
            }
        )

    return insights


def generate_test_insights(
    record: ABTestRecord,
    now: Optional[datetime] = None,
) -> Optional[dict]:
    """Deterministic insights for one completed test, or None if it has no winner."""
    test = record.test
    if test.status != ABTestStatus.completed or test.winning_variant_id is None:
        return None
    if len(record.variants) < 2:
        return None

    winner, loser = winner_and_loser(record)
    if winner is None:
        logger.warning("Could not resolve winning variant %s for test %s", test.winning_variant_id, test.id)
        return None

    diff = compare_content(winner.content, loser.content)
    insights = []
    if diff["winner_only"]:
        insights.append(
            {
                "category": "content",
                "title": "Winning Content Elements",
                "description": f"The winner featured: {', '.join(diff['winner_only'])}",
                "impact": "high",
            }
        )
    if diff["loser_only"]:
        insights.append(
            {
                "category": "content",
                "title": "Key Differentiators",
                "description": f"Only the losing variant had: {', '.join(diff['loser_only'])}",
                "impact": "medium",
            }
        )
    insights.extend(compare_engagement_metrics(winner, loser))

    name = platform_name(test.platform)
    first_step = (
        f"Focus on: {diff['winner_only'][0]}"
        if diff["winner_only"]
        else "Continue testing to gather more data"
    )
    return {
        "test_id": test.id,
        "test_name": test.name,
        "platform": test.platform,
        "winning_variant_label": winner.display_label,
        "confidence_level": test.confidence_level or 0.0,
        "engagement_lift": round(engagement_lift(winner, loser), 1),
        "insights": insights,
        "recommendations": [
            first_step,
            "Replicate the winning variant's structure in future posts",
            f"Optimize content for {name}'s audience preferences",
        ],
        "content_patterns": (
            [{"pattern": f, "frequency": "winner", "effect": "positive"} for f in diff["winner_only"]]
            + [{"pattern": f, "frequency": "loser", "effect": "negative"} for f in diff["loser_only"]]
        ),
        "generated_at": now or datetime.now(timezone.utc),
    }
