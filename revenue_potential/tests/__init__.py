'''
Revenue Potential Test Suite

Test Modules:
-------------
- test_periods.py: period and identifier helpers
- test_normalizer.py: raw aggregates -> canonical records, coverage
- test_ranges.py: binning, population summaries, raw ranges
- test_families.py: piecewise and compact family sources
- test_composite.py: weight renormalization, penalty, clamping
- test_classification.py: tiers, NENHUM override, template priority
- test_policy_validation.py: rich, alternate and compact policies
- test_parameters.py: versioned names, precedence, transactional writes
- test_scoring.py: per-record scoring, batch failure isolation
- test_persistence.py: validation, dedup, batch fallback, error listing
- test_calibration.py: calibration job polling and the policy cache
- test_groups.py: group naming and sector mapping
- test_score_run.py: score run orchestration
- test_api.py: HTTP contract of the routers

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

Configuration:
--------------
See conftest.py for shared fixtures.
'''

__all__ = []
