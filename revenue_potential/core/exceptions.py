"""
Exception taxonomy for the scoring engine.

Four failure classes are distinguished:

- ValidationError: malformed account ids, periods, sectors or policies. Fatal
  for a request (HTTP 400) and for a calibration cycle.
- UpstreamError: the relational store or the calibration service failed,
  timed out or reported a failed job. Fatal for the request (HTTP 502).
- NotFoundError: the requested period and sector have no aggregates (HTTP 404).
- ComputationError: an unexpected failure while scoring one record. Caught
  per record and turned into an audited null-score output; the batch goes on.

All of them derive from ScoringError so API handlers can map the whole family
with a single except clause.
"""

from typing import Any, Dict, Optional


class ScoringError(Exception):
    """Base class for every error raised by the scoring engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ScoringError):
    """Input or policy failed validation."""


class UpstreamError(ScoringError):
    """The store or the calibration service failed."""


class NotFoundError(ScoringError):
    """Nothing to score for the requested scope."""


class ComputationError(ScoringError):
    """Scoring a single record failed unexpectedly."""
