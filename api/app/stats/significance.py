"""Frequentist significance for two-variant engagement comparisons.

A pooled two-proportion z-test turns raw (trials, successes) counts into a
0-100 confidence score.  Everything here is pure: no I/O, no randomness, and
degenerate inputs (empty samples, zero successes, tiny samples) produce a
zero-confidence, no-winner result instead of an exception.
"""

from __future__ import annotations

import math
from typing import Optional

from scipy import stats as sp_stats

from app.core.config import settings


def validate_counts(trials: int, successes: int, name: str = "variant") -> None:
    """Reject malformed counts before they reach the calculators.

    Raises
    ------
    ValueError
        If a count is negative or successes exceed trials.
    """
    if trials < 0 or successes < 0:
        raise ValueError(f"{name}: counts must be non-negative")
    if successes > trials:
        raise ValueError(f"{name}: successes ({successes}) cannot exceed trials ({trials})")


def min_sample_size_for(channel: Optional[str] = None) -> int:
    """Minimum trials per variant before a comparison is attempted.

    Email opens are a noisier signal than social engagement, so the email
    channel gets a higher floor.
    """
    if channel == "email":
        return settings.EMAIL_MIN_SAMPLE_SIZE
    return settings.MIN_SAMPLE_SIZE


def z_score(trials_a: int, successes_a: int, trials_b: int, successes_b: int) -> float:
    """Pooled two-proportion z statistic for (rate_a - rate_b).

    Returns 0.0 whenever the standard error would be zero or undefined.
    """
    if trials_a == 0 or trials_b == 0:
        return 0.0

    p_a = successes_a / trials_a
    p_b = successes_b / trials_b
    p_pooled = (successes_a + successes_b) / (trials_a + trials_b)
    if p_pooled <= 0.0 or p_pooled >= 1.0:
        return 0.0

    se = math.sqrt(p_pooled * (1 - p_pooled) * (1 / trials_a + 1 / trials_b))
    if se == 0.0:
        return 0.0
    return (p_a - p_b) / se


def _empty_result(rate_a: float, rate_b: float) -> dict:
    return {
        "confidence": 0.0,
        "winner": None,
        "is_significant": False,
        "z_score": 0.0,
        "p_value": 1.0,
        "rate_a": rate_a,
        "rate_b": rate_b,
    }


def calculate_significance(
    sent_a: int,
    successes_a: int,
    sent_b: int,
    successes_b: int,
    *,
    min_sample_size: Optional[int] = None,
    significance_threshold: Optional[float] = None,
    winner_threshold: Optional[float] = None,
) -> dict:
    """Confidence that variant A's rate differs from variant B's.

    Parameters
    ----------
    sent_a, sent_b : int
        Trials (sends, impressions) per variant.
    successes_a, successes_b : int
        Successes (opens, engagements) per variant.
    min_sample_size : int | None
        Per-variant floor; defaults to ``settings.MIN_SAMPLE_SIZE``.
    significance_threshold : float | None
        Confidence (0-100) needed for ``is_significant``.
    winner_threshold : float | None
        Confidence (0-100) needed before the leading variant is named.

    Returns
    -------
    dict
        confidence: float in [0, MAX_CONFIDENCE]
        winner: "A" | "B" | None
        is_significant: bool
        z_score, p_value: the underlying test statistics
        rate_a, rate_b: observed proportions in [0, 1]
    """
    floor = settings.MIN_SAMPLE_SIZE if min_sample_size is None else min_sample_size
    sig_bar = (
        settings.SIGNIFICANCE_THRESHOLD if significance_threshold is None else significance_threshold
    )
    win_bar = settings.WINNER_CONFIDENCE_THRESHOLD if winner_threshold is None else winner_threshold

    rate_a = successes_a / sent_a if sent_a > 0 else 0.0
    rate_b = successes_b / sent_b if sent_b > 0 else 0.0

    if sent_a == 0 or sent_b == 0:
        return _empty_result(rate_a, rate_b)
    if successes_a == 0 and successes_b == 0:
        return _empty_result(rate_a, rate_b)
    if sent_a < floor and sent_b < floor:
        return _empty_result(rate_a, rate_b)

    z = z_score(sent_a, successes_a, sent_b, successes_b)
    p_value = float(2 * sp_stats.norm.sf(abs(z)))
    confidence = min(round((1 - p_value) * 100, 1), settings.MAX_CONFIDENCE)

    winner = None
    if rate_a != rate_b and confidence >= win_bar:
        winner = "A" if rate_a > rate_b else "B"

    both_sampled = sent_a >= floor and sent_b >= floor
    return {
        "confidence": confidence,
        "winner": winner,
        "is_significant": bool(both_sampled and confidence >= sig_bar),
        "z_score": round(z, 4),
        "p_value": round(p_value, 6),
        "rate_a": rate_a,
        "rate_b": rate_b,
    }


def minimum_sample_size(
    baseline_rate: float = 0.2,
    minimum_detectable_effect: float = 0.05,
    power: float = 0.8,
    alpha: float = 0.05,
) -> int:
    """Trials per variant needed to detect an absolute lift of ``minimum_detectable_effect``.

    Normal-approximation formula for a two-sided two-proportion test.
    """
    if not 0 < baseline_rate < 1:
        raise ValueError("baseline_rate must be between 0 and 1 exclusive")
    if minimum_detectable_effect <= 0:
        raise ValueError("minimum_detectable_effect must be positive")

    z_alpha = sp_stats.norm.ppf(1 - alpha / 2)
    z_beta = sp_stats.norm.ppf(power)

    p1 = baseline_rate
    p2 = min(baseline_rate + minimum_detectable_effect, 0.9999)
    p_bar = (p1 + p2) / 2

    numerator = (
        z_alpha * math.sqrt(2 * p_bar * (1 - p_bar))
        + z_beta * math.sqrt(p1 * (1 - p1) + p2 * (1 - p2))
    ) ** 2
    return int(math.ceil(numerator / (p2 - p1) ** 2))


def progress_statistics(
    sent_a: int,
    successes_a: int,
    sent_b: int,
    successes_b: int,
    channel: Optional[str] = None,
) -> dict:
    """Progress report for a running two-variant test.

    Combines observed rates, relative improvement of B over A, the
    significance result, and how far the smaller variant is towards the
    sample size needed to detect a five-point lift over the current rate.
    """
    significance = calculate_significance(
        sent_a,
        successes_a,
        sent_b,
        successes_b,
        min_sample_size=min_sample_size_for(channel),
    )
    rate_a = significance["rate_a"]
    rate_b = significance["rate_b"]
    required = minimum_sample_size(min(max(rate_a, rate_b, 0.1), 0.9))
    current = min(sent_a, sent_b)
    return {
        "rate_a": rate_a,
        "rate_b": rate_b,
        "difference": rate_b - rate_a,
        "relative_improvement": (rate_b - rate_a) / rate_a if rate_a > 0 else 0.0,
        "significance": significance,
        "min_sample_size": required,
        "current_sample_size": current,
        "progress_to_significance": min(current / required, 1.0) if required else 1.0,
    }
