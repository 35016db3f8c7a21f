"""
Revenue Potential Services Module

Business logic of the scoring engine. Pure computation services are
stateless and testable without a database; store-backed services acquire
connections from the shared asyncpg pool.

Services:
- periods: period and identifier validation
- normalizer: raw aggregates -> canonical records, coverage
- ranges: binning, population summaries, calibration payload, raw ranges
- families: piecewise and compact family sources
- composite: weighted composite score with threshold penalty
- classification: tiers and narrative templates
- policy_validation: rich, alternate and compact policy validation
- parameters: versioned parameter resolution and writes
- calibration: calibration service client and policy cache
- scoring: per-record and batch scoring with audit payloads
- persistence: aggregate reads, score upserts, reprocess deletes, error listing
- groups: sector groups
- score_run: end-to-end orchestration of a score run
"""

# =============================================================================
# Normalization and Ranges
# =============================================================================

from revenue_potential.services.normalizer import (
    normalize_record,
    normalize_population,
    compute_coverage,
)
from revenue_potential.services.ranges import (
    bin_index,
    histogram,
    build_calibration_payload,
    build_range_output,
)

# =============================================================================
# Scoring Engine
# =============================================================================

from revenue_potential.services.composite import composite_score
from revenue_potential.services.classification import classify_tier, classify_risk_tier
from revenue_potential.services.policy_validation import ScoringPolicy, validate_policy
from revenue_potential.services.scoring import score_record, score_batch

# =============================================================================
# Store-backed Services
# =============================================================================

from revenue_potential.services.parameters import resolve_coefficients, save_coefficients
from revenue_potential.services.calibration import CalibrationClient, PolicyCache
from revenue_potential.services.persistence import persist_scores, fetch_aggregates
from revenue_potential.services.score_run import run_score


__all__ = [
    # Normalization and ranges
    'normalize_record',
    'normalize_population',
    'compute_coverage',
    'bin_index',
    'histogram',
    'build_calibration_payload',
    'build_range_output',
    # Scoring engine
    'composite_score',
    'classify_tier',
    'classify_risk_tier',
    'ScoringPolicy',
    'validate_policy',
    'score_record',
    'score_batch',
    # Store-backed services
    'resolve_coefficients',
    'save_coefficients',
    'CalibrationClient',
    'PolicyCache',
    'persist_scores',
    'fetch_aggregates',
    'run_score',
]
