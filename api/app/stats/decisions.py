"""Winner selection and plain-English recommendations for a content test.

The decision compares the leading variant (highest engagement rate) against
every other variant with the pooled z-test from ``significance``.  The
leader is only declared the winner when it beats *all* challengers, and the
reported confidence is the weakest of those pairwise confidences, so adding
variants can never make a decision look stronger than its closest race.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from app.core.config import settings
from app.stats.records import VariantMetrics
from app.stats.significance import calculate_significance, min_sample_size_for


# ======================================================================
# Leader-vs-rest comparison
# ======================================================================

def compare_leader(
    variants: Sequence[VariantMetrics],
    *,
    min_sample_size: Optional[int] = None,
    significance_threshold: Optional[float] = None,
    winner_threshold: Optional[float] = None,
) -> dict:
    """Compare the highest-rate variant against each of the others.

    Parameters
    ----------
    variants : sequence of VariantMetrics
        Two or more variants of the same test.

    Returns
    -------
    dict
        leader: VariantMetrics with the highest engagement rate (first on ties)
        confidence: minimum pairwise confidence (0-100)
        leader_wins: True if every comparison names the leader
        is_significant: True if every comparison is significant
        comparisons: list of per-pair significance results
    """
    rates = [v.engagement_rate for v in variants]
    leader_idx = int(np.argmax(rates))
    leader = variants[leader_idx]

    comparisons = []
    for i, other in enumerate(variants):
        if i == leader_idx:
            continue
        result = calculate_significance(
            leader.impressions,
            leader.engagements,
            other.impressions,
            other.engagements,
            min_sample_size=min_sample_size,
            significance_threshold=significance_threshold,
            winner_threshold=winner_threshold,
        )
        result["variant_a"] = leader.display_label
        result["variant_b"] = other.display_label
        comparisons.append(result)

    return {
        "leader": leader,
        "confidence": min(c["confidence"] for c in comparisons),
        "leader_wins": all(c["winner"] == "A" for c in comparisons),
        "is_significant": all(c["is_significant"] for c in comparisons),
        "comparisons": comparisons,
    }


# ======================================================================
# Winner decision
# ======================================================================

def determine_winner(
    variants: Optional[Sequence[VariantMetrics]],
    channel: Optional[str] = None,
) -> dict:
    """Pick a winner (or none) and explain the call in plain English.

    Returns
    -------
    dict
        winner_id: id of the winning variant, or None
        winner_label: label of the winning variant, or None
        confidence: float (0-100)
        decision_status: "collecting_data" | "keep_testing" | "ready_to_ship"
        confidence_level: "low" | "medium" | "high"
        recommendation: str
        engagement_rates: {label: rate %}
        comparisons: pairwise significance results

    Raises
    ------
    ValueError
        If fewer than two variants are supplied.
    """
    if not variants or len(variants) < 2:
        count = len(variants) if variants else 0
        raise ValueError(f"At least 2 variants are required to determine a winner, got {count}")

    floor = min_sample_size_for(channel)
    significance_bar = settings.SIGNIFICANCE_THRESHOLD
    comparison = compare_leader(variants, min_sample_size=floor)

    leader: VariantMetrics = comparison["leader"]
    confidence = comparison["confidence"]
    leader_rate = leader.engagement_rate
    runner_up_rate = max(v.engagement_rate for v in variants if v is not leader)

    result = {
        "winner_id": None,
        "winner_label": None,
        "confidence": confidence,
        "decision_status": "collecting_data",
        "confidence_level": "low",
        "recommendation": "",
        "engagement_rates": {v.display_label: round(v.engagement_rate, 4) for v in variants},
        "comparisons": comparison["comparisons"],
    }

    # ---- Not enough impressions for any comparison ----
    smallest = min(v.impressions for v in variants)
    if confidence == 0 and smallest < floor:
        result["recommendation"] = (
            "Not enough data yet. Results are not statistically significant until each "
            f"variant has at least {floor} impressions (the smallest has {smallest})."
        )
        return result

    # ---- Clear winner ----
    if comparison["leader_wins"] and comparison["is_significant"]:
        result.update(
            winner_id=leader.id,
            winner_label=leader.display_label,
            decision_status="ready_to_ship",
            confidence_level="high",
            recommendation=(
                f"Variant {leader.display_label} is the clear winner with a {leader_rate:.2f}% "
                f"engagement rate vs {runner_up_rate:.2f}% ({confidence:.1f}% confidence). "
                "Use this version going forward."
            ),
        )
        return result

    # ---- Likely winner, keep collecting ----
    if comparison["leader_wins"]:
        result.update(
            winner_id=leader.id,
            winner_label=leader.display_label,
            decision_status="keep_testing",
            confidence_level="medium",
            recommendation=(
                f"Variant {leader.display_label} is likely better ({leader_rate:.2f}% vs "
                f"{runner_up_rate:.2f}% engagement, {confidence:.1f}% confidence). Keep the test "
                f"running until it reaches {significance_bar:.0f}% confidence before committing."
            ),
        )
        return result

    # ---- Too close to call ----
    if leader_rate == runner_up_rate:
        result["recommendation"] = (
            "Results are not statistically significant yet. The leading variants are tied at "
            f"{leader_rate:.2f}% engagement."
        )
    else:
        result["recommendation"] = (
            f"Results are not statistically significant yet ({confidence:.1f}% confidence, "
            f"{significance_bar:.0f}% needed). Variant {leader.display_label} leads with "
            f"{leader_rate:.2f}% engagement vs {runner_up_rate:.2f}%. Keep the test running."
        )
    return result
