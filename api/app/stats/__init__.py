"""PostVariant content-experiment statistics engine.

Public API:
- calculate_significance: pooled two-proportion z-test as a 0-100 confidence
- determine_winner: leader-vs-rest winner decision with a recommendation
- check_auto_complete / auto_complete_test: auto-completion policy
- extract_features / compare_content: structural content tags
- generate_history_insights: cross-test learning for one user
- generate_test_insights: insights for a single completed test

Persistence lives in ``app.stats.results_store`` and is not imported here.
"""

from app.stats.auto_complete import auto_complete_test, check_auto_complete
from app.stats.decisions import compare_leader, determine_winner
from app.stats.features import compare_content, extract_features
from app.stats.insights import generate_history_insights, generate_test_insights
from app.stats.records import (
    ABTest,
    ABTestRecord,
    ABTestStatus,
    ABTestWithVariants,
    AutoCompletePolicy,
    VariantMetrics,
)
from app.stats.significance import (
    calculate_significance,
    minimum_sample_size,
    progress_statistics,
    z_score,
)

__all__ = [
    "ABTest",
    "ABTestRecord",
    "ABTestStatus",
    "ABTestWithVariants",
    "AutoCompletePolicy",
    "VariantMetrics",
    "calculate_significance",
    "minimum_sample_size",
    "progress_statistics",
    "z_score",
    "compare_leader",
    "determine_winner",
    "check_auto_complete",
    "auto_complete_test",
    "extract_features",
    "compare_content",
    "generate_history_insights",
    "generate_test_insights",
]
