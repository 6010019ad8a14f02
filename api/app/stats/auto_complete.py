"""Auto-completion policy for running content tests.

``check_auto_complete`` decides whether an active test has gathered enough
signal to close itself; ``auto_complete_test`` turns a positive decision into
a completed copy of the test.  Neither function writes anywhere: the caller
persists the result (see ``results_store.apply_completion``).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from app.stats.decisions import compare_leader
from app.stats.records import ABTest, ABTestStatus, AutoCompletePolicy, VariantMetrics


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _duration_elapsed(test: ABTest, now: datetime) -> bool:
    if test.started_at is None or test.duration_hours <= 0:
        return False
    ends_at = _as_utc(test.started_at) + timedelta(hours=test.duration_hours)
    return _as_utc(now) >= ends_at


def check_auto_complete(
    test: ABTest,
    variants: Sequence[VariantMetrics],
    policy: Optional[AutoCompletePolicy] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Decide whether a running test should be completed now.

    Returns
    -------
    dict
        should_complete: bool
        winner: label of the winning variant, or None
        winning_variant_id: id of the winning variant, or None
        confidence: float (0-100)
        reason: user-facing explanation
    """
    policy = policy or test.policy()
    now = now or datetime.now(timezone.utc)
    result = {
        "should_complete": False,
        "winner": None,
        "winning_variant_id": None,
        "confidence": 0.0,
        "reason": "",
    }

    if test.status != ABTestStatus.active:
        result["reason"] = "Test not running"
        return result

    if not policy.auto_complete_enabled:
        result["reason"] = "Auto-complete is disabled for this test"
        return result

    if len(variants) < 2:
        result["reason"] = f"Test needs at least 2 variants to compare, found {len(variants)}"
        return result

    comparison = compare_leader(variants)
    confidence = comparison["confidence"]
    result["confidence"] = confidence

    smallest = min(v.impressions for v in variants)
    if smallest < policy.minimum_sample_size:
        counts = ", ".join(f"{v.display_label}: {v.impressions}" for v in variants)
        result["reason"] = (
            f"Minimum sample size not reached ({counts} impressions; "
            f"need {policy.minimum_sample_size} per variant)"
        )
        return result

    if (
        comparison["is_significant"]
        and comparison["leader_wins"]
        and confidence >= policy.confidence_threshold
    ):
        leader: VariantMetrics = comparison["leader"]
        result.update(
            should_complete=True,
            winner=leader.display_label,
            winning_variant_id=leader.id,
            reason=f"Statistical significance reached at {confidence:.1f}% confidence",
        )
        return result

    reason = (
        f"Confidence {confidence:.1f}% has not reached the "
        f"{policy.confidence_threshold:.0f}% threshold"
    )
    if _duration_elapsed(test, now):
        reason += (
            f". The planned {test.duration_hours}h duration has elapsed without a significant "
            "difference; consider ending the test without a winner or extending it"
        )
    result["reason"] = reason
    return result


def auto_complete_test(
    test: ABTest,
    variants: Sequence[VariantMetrics],
    policy: Optional[AutoCompletePolicy] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Apply an auto-complete decision, returning the completed test.

    Calling this on an already completed test is a successful no-op
    (``changed`` is False).  Unmet preconditions come back as
    ``success=False`` with the reason from ``check_auto_complete``.

    Returns
    -------
    dict
        success, changed: bool
        winner, winning_variant_id, confidence, reason: as in check_auto_complete
        test: the (possibly new) ABTest record
    """
    now = now or datetime.now(timezone.utc)

    if test.status == ABTestStatus.completed:
        winner = next((v for v in variants if v.id == test.winning_variant_id), None)
        return {
            "success": True,
            "changed": False,
            "winner": winner.display_label if winner else None,
            "winning_variant_id": test.winning_variant_id,
            "confidence": test.confidence_level or 0.0,
            "reason": "Test already completed",
            "test": test,
        }

    decision = check_auto_complete(test, variants, policy, now)
    if not decision["should_complete"]:
        return {
            "success": False,
            "changed": False,
            "winner": None,
            "winning_variant_id": None,
            "confidence": decision["confidence"],
            "reason": decision["reason"],
            "test": test,
        }

    completed = test.model_copy(
        update={
            "status": ABTestStatus.completed,
            "winning_variant_id": decision["winning_variant_id"],
            "confidence_level": decision["confidence"],
            "completed_at": now,
        }
    )
    return {
        "success": True,
        "changed": True,
        "winner": decision["winner"],
        "winning_variant_id": decision["winning_variant_id"],
        "confidence": decision["confidence"],
        "reason": decision["reason"],
        "test": completed,
    }
