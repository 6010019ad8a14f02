"""Tests for cross-test history insights and single-test insights."""

from datetime import datetime, timedelta, timezone

import pytest

from app.stats.insights import (
    compare_engagement_metrics,
    confidence_from_data_points,
    engagement_lift,
    generate_history_insights,
    generate_test_insights,
    time_of_day,
)
from app.stats.records import ABTest, ABTestStatus, ABTestWithVariants, VariantMetrics

# 2026-03-02 is a Monday
MONDAY_MORNING = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _record(
    test_id,
    platform="linkedin",
    winner_text="Our new product is live #launch",
    loser_text="Our new product is live",
    winner=(100, 30),
    loser=(100, 20),
    confidence=95.0,
    created_at=MONDAY_MORNING,
    status=ABTestStatus.completed,
    extra_variants=(),
):
    completed = status == ABTestStatus.completed
    test = ABTest(
        id=test_id,
        name=f"Test {test_id}",
        platform=platform,
        status=status,
        winning_variant_id=f"{test_id}-w" if completed else None,
        confidence_level=confidence if completed else None,
        created_at=created_at,
    )
    variants = [
        VariantMetrics(
            id=f"{test_id}-w", test_id=test_id, label="A", content=winner_text,
            impressions=winner[0], engagements=winner[1],
        ),
        VariantMetrics(
            id=f"{test_id}-l", test_id=test_id, label="B", content=loser_text,
            impressions=loser[0], engagements=loser[1],
        ),
    ]
    variants.extend(extra_variants)
    return ABTestWithVariants(test=test, variants=variants)


# ======================================================================
# Empty history
# ======================================================================


class TestEmptyHistory:

    def test_no_tests(self):
        result = generate_history_insights("u1", [], now=NOW)
        assert result["summary"]["total_tests"] == 0
        assert result["summary"]["completed_tests"] == 0
        assert len(result["recommendations"]) == 1
        assert result["recommendations"][0]["title"] == "Start A/B Testing"
        assert result["recommendations"][0]["priority"] == "high"
        assert result["platform_breakdown"] == []
        assert result["historical_insights"] == []
        assert result["content_learnings"] == {"winning_elements": [], "losing_elements": []}
        assert result["time_analysis"]["test_frequency"] == 0.0
        assert result["generated_at"] == NOW

    def test_only_running_tests(self):
        history = [_record("t1", status=ABTestStatus.active)]
        result = generate_history_insights("u1", history, now=NOW)
        assert result["summary"]["total_tests"] == 1
        assert result["summary"]["completed_tests"] == 0
        assert result["recommendations"][0]["title"] == "Start A/B Testing"


# ======================================================================
# Aggregation
# ======================================================================


class TestHistoryInsights:

    def test_repeated_winning_pattern(self):
        """Two LinkedIn tests where only the winner carried a hashtag."""
        history = [
            _record("t1", confidence=95.0),
            _record("t2", confidence=85.0, created_at=MONDAY_MORNING + timedelta(days=10)),
        ]
        result = generate_history_insights("u1", history, now=NOW)

        top = result["content_learnings"]["winning_elements"][0]
        assert top["element"] == "Hashtags (1)"
        assert top["frequency"] == 2
        assert top["impact"] == "+50.0% avg lift"
        assert result["content_learnings"]["losing_elements"] == []

        summary = result["summary"]
        assert summary["completed_tests"] == 2
        assert summary["avg_confidence_level"] == 90
        assert summary["avg_engagement_lift"] == 50.0
        assert summary["most_tested_platform"] == "linkedin"
        assert summary["best_performing_platform"] == "linkedin"

    def test_platform_breakdown(self):
        history = [
            _record("t1", confidence=90.0),
            _record("t2", confidence=80.0),
        ]
        result = generate_history_insights("u1", history, now=NOW)
        assert result["platform_breakdown"] == [
            {
                "platform": "linkedin",
                "tests_completed": 2,
                "avg_confidence": 85.0,
                "avg_engagement_lift": 50.0,
                "winning_patterns": ["Hashtags (1)"],
            }
        ]

    def test_element_insight_confidence(self):
        history = [_record("t1"), _record("t2")]
        insights = generate_history_insights("u1", history, now=NOW)["historical_insights"]
        content = [i for i in insights if i["category"] == "content"]
        assert len(content) == 1
        assert content[0]["confidence"] == "medium"
        assert content[0]["data_points"] == 2

    def test_losing_element(self):
        history = [_record("t1", winner_text="Plain update", loser_text="Plain update \U0001F600")]
        learnings = generate_history_insights("u1", history, now=NOW)["content_learnings"]
        assert learnings["winning_elements"] == []
        assert learnings["losing_elements"][0]["element"] == "Emojis (1)"
        assert learnings["losing_elements"][0]["impact"] == "-50.0% avg lift"

    def test_platform_insight_after_three_tests(self):
        history = [_record(f"t{i}", platform="twitter") for i in range(3)]
        insights = generate_history_insights("u1", history, now=NOW)["historical_insights"]
        platform = [i for i in insights if i["category"] == "platform"]
        assert len(platform) == 1
        assert platform[0]["confidence"] == "medium"
        assert platform[0]["trend"] == "improving"
        assert "X (Twitter)" in platform[0]["title"]

    def test_platform_trend_uses_unrounded_lift(self):
        """A 10.04% lift displays as 10.0 but is still above the 10% bar."""
        history = [
            _record(f"t{i}", winner=(10_000, 2751), loser=(10_000, 2500)) for i in range(3)
        ]
        result = generate_history_insights("u1", history, now=NOW)
        assert result["platform_breakdown"][0]["avg_engagement_lift"] == 10.0
        platform = [i for i in result["historical_insights"] if i["category"] == "platform"]
        assert platform[0]["trend"] == "improving"

    def test_low_confidence_strategy_insight(self):
        history = [_record("t1", confidence=70.0)]
        insights = generate_history_insights("u1", history, now=NOW)["historical_insights"]
        strategy = [i for i in insights if i["category"] == "strategy"]
        assert strategy[0]["title"] == "Tests may be ending too early"

    def test_high_confidence_strategy_insight(self):
        history = [_record("t1", confidence=99.0)]
        insights = generate_history_insights("u1", history, now=NOW)["historical_insights"]
        assert any(i["title"] == "High-confidence testing" for i in insights)

    def test_zero_loser_rate_contributes_no_lift(self):
        history = [_record("t1", winner=(100, 10), loser=(100, 0))]
        result = generate_history_insights("u1", history, now=NOW)
        assert result["summary"]["avg_engagement_lift"] == 0.0

    def test_lift_is_measured_against_runner_up(self):
        runner_up = VariantMetrics(id="t1-c", test_id="t1", label="C", impressions=100, engagements=25)
        history = [_record("t1", winner=(100, 30), loser=(100, 10), extra_variants=[runner_up])]
        result = generate_history_insights("u1", history, now=NOW)
        assert result["summary"]["avg_engagement_lift"] == 20.0

    def test_platform_ties_go_to_first_seen(self):
        history = [_record("t1", platform="linkedin"), _record("t2", platform="twitter")]
        summary = generate_history_insights("u1", history, now=NOW)["summary"]
        assert summary["most_tested_platform"] == "linkedin"
        assert summary["best_performing_platform"] == "linkedin"

    def test_best_platform_by_lift(self):
        history = [
            _record("t1", platform="linkedin", winner=(100, 22), loser=(100, 20)),
            _record("t2", platform="linkedin", winner=(100, 22), loser=(100, 20)),
            _record("t3", platform="bluesky", winner=(100, 40), loser=(100, 20)),
        ]
        summary = generate_history_insights("u1", history, now=NOW)["summary"]
        assert summary["most_tested_platform"] == "linkedin"
        assert summary["best_performing_platform"] == "bluesky"


# ======================================================================
# Recommendations and timing
# ======================================================================


class TestRecommendations:

    def test_priority_order(self):
        history = [
            _record("t1", winner_text="Ship it #launch", loser_text="Ship it \U0001F600"),
            _record("t2", created_at=MONDAY_MORNING + timedelta(days=90)),
        ]
        recommendations = generate_history_insights("u1", history, now=NOW)["recommendations"]
        priorities = [r["priority"] for r in recommendations]
        assert priorities == sorted(priorities, key=["high", "medium", "low"].index)
        assert recommendations[0]["title"] == "Keep using Hashtags (1)"
        titles = [r["title"] for r in recommendations]
        assert "Avoid Emojis (1)" in titles
        assert "Double down on LinkedIn" in titles
        assert titles[-1] == "Test more often"

    def test_best_platform_cites_patterns(self):
        history = [_record("t1"), _record("t2")]
        recommendations = generate_history_insights("u1", history, now=NOW)["recommendations"]
        platform = next(r for r in recommendations if r["title"] == "Double down on LinkedIn")
        assert "Hashtags (1)" in platform["description"]

    def test_frequent_testing_gets_no_cadence_nudge(self):
        history = [_record("t1"), _record("t2", created_at=MONDAY_MORNING + timedelta(days=10))]
        result = generate_history_insights("u1", history, now=NOW)
        assert result["time_analysis"]["test_frequency"] == 2.0
        assert all(r["title"] != "Test more often" for r in result["recommendations"])

    def test_single_test_gets_cadence_nudge(self):
        # One test spans zero months, so cadence is 1 / max(1, 0) = 1.0 per month,
        # below the two-per-month target.
        result = generate_history_insights("u1", [_record("t1")], now=NOW)
        assert result["time_analysis"]["test_frequency"] == 1.0
        assert result["recommendations"][-1]["title"] == "Test more often"

    def test_always_at_least_one_recommendation(self):
        history = [_record("t1", winner_text="same", loser_text="same")]
        recommendations = generate_history_insights("u1", history, now=NOW)["recommendations"]
        assert len(recommendations) >= 1

    def test_time_analysis(self):
        history = [
            _record("t1", created_at=MONDAY_MORNING, winner=(100, 30), loser=(100, 20)),
            _record("t2", created_at=MONDAY_MORNING + timedelta(days=3, hours=10), winner=(100, 40), loser=(100, 20)),
        ]
        timing = generate_history_insights("u1", history, now=NOW)["time_analysis"]
        assert timing["best_day_of_week"] == "Thursday"
        assert timing["best_time_of_day"] == "Evening"


# ======================================================================
# Helpers and single-test insights
# ======================================================================


class TestHelpers:

    @pytest.mark.parametrize("points, level", [(0, "low"), (2, "low"), (3, "medium"), (5, "high")])
    def test_confidence_from_data_points(self, points, level):
        assert confidence_from_data_points(points) == level

    @pytest.mark.parametrize("hour, label", [(6, "Morning"), (13, "Afternoon"), (18, "Evening"), (23, "Night")])
    def test_time_of_day(self, hour, label):
        assert time_of_day(hour) == label

    def test_engagement_lift(self):
        winner = VariantMetrics(id=1, impressions=100, engagements=30)
        loser = VariantMetrics(id=2, impressions=100, engagements=20)
        assert engagement_lift(winner, loser) == pytest.approx(50.0)


class TestSingleTestInsights:

    def test_completed_test(self):
        record = _record("t1", winner_text="Join us! #launch \U0001F680", loser_text="Join us")
        insights = generate_test_insights(record, now=NOW)
        assert insights["winning_variant_label"] == "A"
        assert insights["engagement_lift"] == 50.0
        assert insights["recommendations"][0] == "Focus on: Emojis (1)"
        titles = [i["title"] for i in insights["insights"]]
        assert "Winning Content Elements" in titles
        assert "Significant Engagement Improvement" in titles
        patterns = {p["pattern"]: p["effect"] for p in insights["content_patterns"]}
        assert patterns == {"Emojis (1)": "positive", "Hashtags (1)": "positive"}

    def test_running_test_has_no_insights(self):
        assert generate_test_insights(_record("t1", status=ABTestStatus.active)) is None

    def test_engagement_metrics(self):
        winner = VariantMetrics(id=1, impressions=100, engagements=29, clicks=30, shares=2, comments=9)
        loser = VariantMetrics(id=2, impressions=100, engagements=29, clicks=10, shares=2, comments=3)
        titles = [i["title"] for i in compare_engagement_metrics(winner, loser)]
        assert titles == ["Higher Click-Through Rate", "Higher Conversation Starter"]

    @pytest.mark.parametrize("winner_engagements, impact", [(230, "high"), (215, "medium")])
    def test_engagement_gap_impact(self, winner_engagements, impact):
        """Gaps of 3 and 1.5 points over a 20% loser."""
        winner = VariantMetrics(id=1, impressions=1000, engagements=winner_engagements)
        loser = VariantMetrics(id=2, impressions=1000, engagements=200)
        insights = compare_engagement_metrics(winner, loser)
        assert insights[0]["title"] == "Significant Engagement Improvement"
        assert insights[0]["impact"] == impact
