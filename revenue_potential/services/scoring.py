"""
Scoring Service Module

Scores canonical records against a validated ScoringPolicy. One engine serves
both variants:

- potential: family values are potentials (higher is better for revenue
  recovery), the threshold penalty applies, the no-signal override can
  yield NENHUM and the narrative templates are rendered
- risk: family values are badness scores, no penalty, tiers OK/ATENCAO/RISCO
  and a numeric summary line as the reason

Family sub-scores are reported on the 0-100 scale, like the composite.

Each record is scored independently. An unexpected failure on one record is
logged and turned into an output with null scores and a JSON audit payload;
the rest of the batch goes on.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from revenue_potential.core.exceptions import ComputationError
from revenue_potential.models.enums import AuditErrorType, Family, ScoreVariant, TemplateKey
from revenue_potential.models.schemas import CanonicalRecord, ScoreOutput
from revenue_potential.services.classification import (
    classify_risk_tier,
    classify_tier,
    pick_template_key,
    render_narrative,
    risk_message,
)
from revenue_potential.services.composite import composite_score
from revenue_potential.services.policy_validation import ScoringPolicy


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Audit Payload
# =============================================================================

def build_audit_error(
    error_type: AuditErrorType,
    account_id: Optional[str],
    period: Union[str, date, None],
    sector: Optional[str],
    error: Union[BaseException, str],
    extra: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Build the JSON audit payload stored in a row's error column.

    Example:
        {"error_type": "COMPUTATION_FAILED", "timestamp": "2025-02-01T10:00:00+00:00",
         "account_id": "...", "period": "2025-01-01", "sector": "101",
         "error_message": "...", "extra": {}}
    """
    payload = {
        "error_type": error_type.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "account_id": account_id,
        "period": period.isoformat() if isinstance(period, date) else period,
        "sector": sector,
        "error_message": str(error),
        "extra": dict(extra or {}),
    }
    return json.dumps(payload, ensure_ascii=False, default=str)


def failed_output(
    error_type: AuditErrorType,
    account_id: str,
    period: Union[str, date],
    sector: Optional[str],
    error: Union[BaseException, str],
    extra: Optional[Mapping[str, Any]] = None,
) -> ScoreOutput:
    """Output with null scores carrying an audit payload."""
    period_text = period.isoformat() if isinstance(period, date) else str(period)
    return ScoreOutput(
        account_id=str(account_id),
        period=period_text,
        sector=sector,
        error=build_audit_error(error_type, account_id, period_text, sector, error, extra),
    )


# =============================================================================
# Single Record
# =============================================================================

def _to_100(value: float) -> float:
    return round(max(0.0, min(1.0, value)) * 100.0, 2)


def evaluate_record(
    record: CanonicalRecord,
    policy: ScoringPolicy,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
) -> Tuple[ScoreOutput, bool]:
    """
    Score one record.

    Args:
        record: Canonical record
        policy: Validated policy
        variant: potential or risk

    Returns:
        (output, any_missing); any_missing is True when at least one family
        was computed from incomplete inputs
    """
    results = {family: policy.sources[family].evaluate(record) for family in Family}
    values = {family: result.value for family, result in results.items()}
    any_missing = any(result.missing for result in results.values())

    penalty = policy.penalty if variant == ScoreVariant.POTENTIAL else None
    total = round(composite_score(values, policy.weights, record, penalty), 2)
    scores100 = {family: _to_100(value) for family, value in values.items()}

    template_key: Optional[TemplateKey] = None
    if variant == ScoreVariant.RISK:
        level = classify_risk_tier(total, policy.thresholds).value
        reason = risk_message(scores100, total)
        suggested_action, short_justification = None, None
    else:
        level = classify_tier(total, values, policy.thresholds, policy.no_signal_cutoff).value
        template_key = pick_template_key(
            values[Family.CADASTRO],
            values[Family.MEDICAO],
            values[Family.INADIMPLENCIA],
            any_missing,
        )
        reason, suggested_action, short_justification = render_narrative(policy.templates, template_key)

    output = ScoreOutput(
        account_id=record.account_id,
        period=record.period.isoformat(),
        sector=record.sector,
        score_total=total,
        score_cadastro=scores100[Family.CADASTRO],
        score_medicao=scores100[Family.MEDICAO],
        score_inadimplencia=scores100[Family.INADIMPLENCIA],
        level=level,
        template_key=template_key,
        reason=reason,
        suggested_action=suggested_action,
        short_justification=short_justification,
    )
    return output, any_missing


def score_record(
    record: CanonicalRecord,
    policy: ScoringPolicy,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
) -> ScoreOutput:
    """
    Score one record and return its output.

    Raises:
        ComputationError: When anything goes wrong while scoring
    """
    try:
        output, _ = evaluate_record(record, policy, variant)
    except Exception as e:
        raise ComputationError(
            f"Scoring failed for account {record.account_id}: {e}",
            {"account_id": record.account_id, "policy_id": policy.policy_id},
        ) from e
    return output


# =============================================================================
# Batch
# =============================================================================

@dataclass
class ScoredBatch:
    """Outputs of one scoring pass plus counters."""
    outputs: List[ScoreOutput] = field(default_factory=list)
    insufficient_data: int = 0
    failed: int = 0


def score_batch(
    records: Sequence[CanonicalRecord],
    policy: ScoringPolicy,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
) -> ScoredBatch:
    """
    Score records sequentially, isolating per-record failures.

    A failing record yields a null-score output with a COMPUTATION_FAILED
    audit payload and is counted in `failed`.
    """
    batch = ScoredBatch()

    for record in records:
        try:
            output, any_missing = evaluate_record(record, policy, variant)
        except Exception as e:
            logger.exception(f"Scoring failed for account {record.account_id}")
            batch.outputs.append(failed_output(
                AuditErrorType.COMPUTATION_FAILED,
                record.account_id,
                record.period,
                record.sector,
                e,
                {"policy_id": policy.policy_id, "variant": variant.value},
            ))
            batch.failed += 1
            continue

        batch.outputs.append(output)
        if any_missing:
            batch.insufficient_data += 1

    logger.info(
        f"Scored {len(records)} records with policy {policy.policy_id} ({variant.value}): "
        f"failed={batch.failed}, insufficient_data={batch.insufficient_data}"
    )
    return batch
