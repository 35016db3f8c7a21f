"""
Pydantic models for the revenue potential scoring service.

This module provides type-safe data validation and serialization for the
scoring engine's domain objects and for the API contracts built on them:

- CanonicalRecord: one normalized account-period observation
- PiecewiseRule and the rich policy blocks (weights, mappings, penalty,
  classification thresholds, narrative templates, meta)
- Compact policy blocks (per-family scalar weights and curve parameters)
- CoefficientSet: scalar coefficients resolved from versioned parameters
- ScoreOutput: one persisted account-period result
- Batch summaries and parameter request models

Structural validation lives here (types, ranges, rule shape). Cross-field
policy checks (weight sums, threshold ordering, template completeness) live
in services/policy_validation.py so that they raise the engine's own
ValidationError with a readable message.

All models use Pydantic v2 syntax.
"""

import math
from datetime import date as DateType
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from revenue_potential.models.enums import (
    Family,
    ParameterScope,
    PenaltyCurve,
    PolicySource,
    ScoreVariant,
    TemplateKey,
)


# =============================================================================
# Canonical Features
# =============================================================================

# Order matters: it is the column order of the calibration payload
CANONICAL_FEATURES: List[str] = [
    "meter_age_years",
    "anomaly_rate",
    "consumption_cv",
    "inconsistencias_rate",
    "delinquency_days",
    "open_invoices_count",
    "open_amount_ratio",
]

FAMILY_FEATURES: Dict[Family, List[str]] = {
    Family.CADASTRO: ["inconsistencias_rate"],
    Family.MEDICAO: ["meter_age_years", "anomaly_rate", "consumption_cv"],
    Family.INADIMPLENCIA: ["delinquency_days", "open_invoices_count", "open_amount_ratio"],
}


def _finite_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class CanonicalRecord(BaseModel):
    """
    One account-period observation with fixed feature names.

    Every metric is either a finite float or None. NaN, infinities and
    unparsable values are coerced to None on construction so that nothing
    non-finite can reach the scoring engine.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "account_id": "3f2b8a54-6f0e-4c1b-9f55-1d1c2b0c9a11",
                "period": "2025-01-01",
                "sector": "101",
                "window_months": 12,
                "meter_age_years": 12.0,
                "anomaly_rate": 0.02,
                "consumption_cv": 0.31,
                "inconsistencias_rate": None,
                "delinquency_days": 45.0,
                "open_invoices_count": 2.0,
                "open_amount_ratio": 0.18,
            }
        }
    )

    account_id: str = Field(..., description="Opaque account (imovel) identifier")
    period: DateType = Field(..., description="First day of the reference month")
    sector: Optional[str] = Field(default=None, description="Sector code")
    window_months: Optional[int] = Field(default=None, description="Trailing aggregation window")

    meter_age_years: Optional[float] = Field(default=None, description="Meter age in years")
    anomaly_rate: Optional[float] = Field(default=None, description="Reading anomaly rate (0..1)")
    consumption_cv: Optional[float] = Field(default=None, description="Consumption coefficient of variation")
    inconsistencias_rate: Optional[float] = Field(default=None, description="Registry inconsistency rate (0..1)")
    delinquency_days: Optional[float] = Field(default=None, description="Mean days of payment delay")
    open_invoices_count: Optional[float] = Field(default=None, description="Open invoices at period end")
    open_amount_ratio: Optional[float] = Field(default=None, description="Open amount ratio (0..1)")

    @field_validator(*CANONICAL_FEATURES, mode="before")
    @classmethod
    def _coerce_metric(cls, value: Any) -> Optional[float]:
        return _finite_or_none(value)

    def get(self, feature: str) -> Optional[float]:
        """Return the value of a canonical feature, or None for unknown names."""
        if feature not in CANONICAL_FEATURES:
            return None
        return getattr(self, feature)

    def features(self) -> Dict[str, Optional[float]]:
        """Return the seven canonical metrics as a dict."""
        return {name: getattr(self, name) for name in CANONICAL_FEATURES}


# =============================================================================
# Rich Policy
# =============================================================================

class PiecewiseRule(BaseModel):
    """
    Piecewise scoring rule over one canonical feature.

    N strictly increasing breaks define N+1 bins
    (-inf, b1], (b1, b2], ..., (bN, +inf); values[i] is the calibrated
    sub-score of bin i.
    """

    feature: str = Field(..., description="Canonical feature name")
    breaks: List[float] = Field(..., min_length=1, description="Strictly increasing breakpoints")
    values: List[float] = Field(..., description="Bin values in [0, 1], one more than breaks")
    higher_is_risk: Optional[bool] = Field(default=None, description="Informative direction flag")

    @model_validator(mode="after")
    def _check_shape(self) -> "PiecewiseRule":
        if self.feature not in CANONICAL_FEATURES:
            raise ValueError(f"unknown feature '{self.feature}'")
        if any(not math.isfinite(b) for b in self.breaks):
            raise ValueError(f"{self.feature}: breaks must be finite")
        if any(b2 <= b1 for b1, b2 in zip(self.breaks, self.breaks[1:])):
            raise ValueError(f"{self.feature}: breaks must be strictly increasing")
        if len(self.values) != len(self.breaks) + 1:
            raise ValueError(
                f"{self.feature}: expected {len(self.breaks) + 1} values, got {len(self.values)}"
            )
        if any(not math.isfinite(v) or v < 0 or v > 1 for v in self.values):
            raise ValueError(f"{self.feature}: values must be within [0, 1]")
        return self


class FamilyWeights(BaseModel):
    """Weights of the three families in the composite score."""
    cadastro: float = Field(..., ge=0, le=1)
    medicao: float = Field(..., ge=0, le=1)
    inadimplencia: float = Field(..., ge=0, le=1)

    def as_dict(self) -> Dict[Family, float]:
        return {
            Family.CADASTRO: self.cadastro,
            Family.MEDICAO: self.medicao,
            Family.INADIMPLENCIA: self.inadimplencia,
        }


class FamilyMappings(BaseModel):
    """Piecewise rules per family."""
    cadastro: List[PiecewiseRule] = Field(default_factory=list)
    medicao: List[PiecewiseRule] = Field(default_factory=list)
    inadimplencia: List[PiecewiseRule] = Field(default_factory=list)

    def for_family(self, family: Family) -> List[PiecewiseRule]:
        return getattr(self, family.value)


class PenaltySpec(BaseModel):
    """
    Threshold-triggered penalty subtracted from the weighted score.

    Applied when the trigger feature is finite and strictly above the
    threshold.
    """
    trigger_feature: str = Field(..., description="Canonical feature that triggers the penalty")
    trigger_threshold: float = Field(..., description="Value above which the penalty applies")
    curve: PenaltyCurve = Field(default=PenaltyCurve.LINEAR)
    max_penalty: float = Field(..., ge=0, le=1, description="Penalty at full factor (score01 units)")


class PolicyPenalties(BaseModel):
    inadimplencia_score_penalty: Optional[PenaltySpec] = None


class ScoreThresholds(BaseModel):
    baixo: float = Field(..., ge=0, le=100)
    medio: float = Field(..., ge=0, le=100)
    alto: float = Field(..., ge=0, le=100)


class ClassificationSpec(BaseModel):
    score_thresholds: ScoreThresholds
    nenhum_if_all_potentials_below: float = Field(..., ge=0, le=1)


class NarrativeTemplates(BaseModel):
    """Three narrative texts, each keyed by template key."""
    motivo: Dict[TemplateKey, str] = Field(default_factory=dict)
    acao_sugerida: Dict[TemplateKey, str] = Field(default_factory=dict)
    justificativa_curta: Dict[TemplateKey, str] = Field(default_factory=dict)


class PolicyMeta(BaseModel):
    validity_days: float = Field(..., gt=0)
    notes: Optional[str] = None


class RichPolicy(BaseModel):
    """Policy with per-family piecewise rules, as returned by calibration."""

    model_config = ConfigDict(extra="ignore")

    policy_id: str
    periodo: str
    weights: FamilyWeights
    mappings: FamilyMappings
    penalties: PolicyPenalties = Field(default_factory=PolicyPenalties)
    classification: ClassificationSpec
    templates: NarrativeTemplates
    meta: PolicyMeta


# =============================================================================
# Compact Policy
# =============================================================================

class _CompactBlock(BaseModel):
    """Compact blocks fall back to defaults for missing or null entries."""

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class CompactFamilies(_CompactBlock):
    cadastro: float = Field(default=0.3, ge=0)
    medicao: float = Field(default=0.5, ge=0)
    inadimplencia: float = Field(default=0.2, ge=0)


class CompactInadimplencia(_CompactBlock):
    w_days: float = Field(default=0.34, ge=0)
    w_open_count: float = Field(default=0.33, ge=0)
    w_amount_ratio: float = Field(default=0.33, ge=0)
    trigger_ratio: float = Field(default=0.6)
    penalty_max: float = Field(default=0.1, ge=0, le=1)
    curve: PenaltyCurve = Field(default=PenaltyCurve.LINEAR)


class CompactMedicao(_CompactBlock):
    w_idade: float = Field(default=0.4, ge=0)
    w_anomalias: float = Field(default=0.3, ge=0)
    w_desvio: float = Field(default=0.3, ge=0)


class CompactCadastro(_CompactBlock):
    z_warn: float = Field(default=0.10)
    z_risk: float = Field(default=0.30)


class CompactPotencial(_CompactBlock):
    pot_min: float = Field(default=0.0)
    pot_max: float = Field(default=1.0)


class CompactClassificacao(_CompactBlock):
    baixo: float = Field(default=40, ge=0, le=100)
    medio: float = Field(default=70, ge=0, le=100)
    alto: float = Field(default=100, ge=0, le=100)
    nenhum_if_all_potentials_below: float = Field(default=0.05, ge=0, le=1)


class CompactMeta(_CompactBlock):
    validity_days: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = None


class CompactPolicy(_CompactBlock):
    """Policy with per-family scalar weights instead of piecewise rules."""

    policy_id: str = Field(default="compact")
    familias: CompactFamilies = Field(default_factory=CompactFamilies)
    inadimplencia: CompactInadimplencia = Field(default_factory=CompactInadimplencia)
    medicao: CompactMedicao = Field(default_factory=CompactMedicao)
    cadastro: CompactCadastro = Field(default_factory=CompactCadastro)
    potencial: CompactPotencial = Field(default_factory=CompactPotencial)
    classificacao: CompactClassificacao = Field(default_factory=CompactClassificacao)
    meta: CompactMeta = Field(default_factory=CompactMeta)


# =============================================================================
# Resolved Coefficients
# =============================================================================

class CoefficientSet(BaseModel):
    """
    Scalar coefficients driving the compact family sources.

    Produced by ParameterResolver from sector, group and default values, or
    by converting a compact policy. Field names are the parameter keys used
    in stored parameter names.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "w_atraso": 0.34, "w_indice": 0.33, "w_valor_aberto": 0.33,
                "w_idade": 0.4, "w_anomalias": 0.3, "w_desvio": 0.3,
                "z_warn": 0.1, "z_risk": 0.3, "pot_min": 0.0, "pot_max": 1.0,
            }
        }
    )

    # inadimplencia
    w_atraso: float = 0.34
    w_indice: float = 0.33
    w_valor_aberto: float = 0.33
    pen_trigger_ratio: float = 0.6
    pen_max: float = 0.1
    pen_curve: PenaltyCurve = PenaltyCurve.LINEAR
    # medicao
    w_idade: float = 0.4
    w_anomalias: float = 0.3
    w_desvio: float = 0.3
    # cadastro
    z_warn: float = 0.10
    z_risk: float = 0.30
    # potential bounds
    pot_min: float = 0.0
    pot_max: float = 1.0
    # families
    w_fam_cadastro: float = 0.3
    w_fam_medicao: float = 0.5
    w_fam_inad: float = 0.2
    # classification
    thr_baixo: float = 40
    thr_medio: float = 70
    thr_alto: float = 100
    none_cut: float = 0.05


# =============================================================================
# Score Output
# =============================================================================

class ScoreOutput(BaseModel):
    """
    Per account-period scoring result, unique on (account_id, period).

    Score fields are None when scoring failed; `error` then carries a JSON
    audit payload.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "account_id": "3f2b8a54-6f0e-4c1b-9f55-1d1c2b0c9a11",
                "period": "2025-01-01",
                "sector": "101",
                "score_total": 13.33,
                "score_cadastro": 0.0,
                "score_medicao": 40.0,
                "score_inadimplencia": 0.0,
                "level": "BAIXO",
                "template_key": "DADOS_INSUFICIENTES",
                "reason": "Dados insuficientes para avaliar o imóvel",
                "suggested_action": "Completar cadastro e leituras",
                "short_justification": "Sinais incompletos",
                "error": None,
            }
        }
    )

    account_id: str
    period: str = Field(..., description="Period as YYYY-MM-DD (first day of month)")
    sector: Optional[str] = None
    score_total: Optional[float] = Field(default=None, ge=0, le=100)
    score_cadastro: Optional[float] = Field(default=None, ge=0, le=100)
    score_medicao: Optional[float] = Field(default=None, ge=0, le=100)
    score_inadimplencia: Optional[float] = Field(default=None, ge=0, le=100)
    level: Optional[str] = Field(default=None, description="Tier (potential or risk variant)")
    template_key: Optional[TemplateKey] = None
    reason: Optional[str] = None
    suggested_action: Optional[str] = None
    short_justification: Optional[str] = None
    error: Optional[str] = Field(default=None, description="JSON audit payload on failure")


class BatchSummary(BaseModel):
    """Outcome counters of one persisted batch."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class ScoreRunResponse(BatchSummary):
    """Response of GET /score/{period}/{sector}."""
    period: str
    sector: str
    window_months: int
    variant: ScoreVariant
    policy_id: Optional[str] = None
    policy_source: Optional[PolicySource] = None
    insufficient_data: int = Field(default=0, description="Records scored with missing families")
    coverage: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Parameter Requests
# =============================================================================

class InadimplenciaWeightsIn(BaseModel):
    w_atraso: float = Field(..., ge=0, le=1)
    w_indice: float = Field(..., ge=0, le=1)
    w_valor_aberto: float = Field(..., ge=0, le=1)


class MedicaoWeightsIn(BaseModel):
    w_idade: float = Field(..., ge=0, le=1)
    w_anomalias: float = Field(..., ge=0, le=1)
    w_desvio: float = Field(..., ge=0, le=1)


class CadastroThresholdsIn(BaseModel):
    z_warn: float
    z_risk: float


class PotencialBoundsIn(BaseModel):
    pot_min: float
    pot_max: float


class ParamsSaveRequest(BaseModel):
    """Manually supplied coefficient set, persisted without calibration."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "scope": "sector",
                "scope_id": "101",
                "period": "2025-01",
                "window_months": 12,
                "inadimplencia": {"w_atraso": 0.5, "w_indice": 0.3, "w_valor_aberto": 0.2},
                "medicao": {"w_idade": 0.4, "w_anomalias": 0.3, "w_desvio": 0.3},
                "cadastro": {"z_warn": 0.1, "z_risk": 0.3},
                "potencial": {"pot_min": 0.0, "pot_max": 1.0},
            }
        }
    )

    scope: ParameterScope
    scope_id: str = Field(..., min_length=1, description="Sector code or group UUID")
    period: str = Field(..., description="YYYY-MM or YYYY-MM-DD")
    window_months: int = Field(default=12, ge=1, le=120)
    inadimplencia: InadimplenciaWeightsIn
    medicao: MedicaoWeightsIn
    cadastro: CadastroThresholdsIn
    potencial: PotencialBoundsIn


class ParamsSaveResponse(BaseModel):
    scope: ParameterScope
    scope_id: str
    period_month: str
    window_months: int
    saved: int = Field(..., description="Number of parameter rows written")
    deactivated: int = Field(..., description="Number of superseded rows soft-deleted")


class GroupCreateRequest(BaseModel):
    name: Optional[str] = Field(default=None, description="Group name; auto-generated when omitted")
    sectors: List[str] = Field(..., min_length=1)


class GroupResponse(BaseModel):
    group_id: str
    name: str
    sectors: List[str]
    created: bool
