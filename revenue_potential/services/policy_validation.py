"""
Policy Validation Service Module

Validates externally supplied policies before the engine uses them and
turns them into a ScoringPolicy, the single object the scorer consumes.

Accepted inputs:
1. Rich policy: family weights, piecewise rules per family, optional
   penalty, classification thresholds, narrative templates, meta
2. Known alternate shapes of the rich policy, remapped best-effort:
   - "rules" instead of "mappings", with "penalidade"/"classificacao" blocks
   - "maps" (feature -> rule) with LOW/MEDIUM/HIGH thresholds
3. Compact policy: per-family scalar weights, inadimplencia penalty
   parameters, cadastro z thresholds, potential bounds, thresholds
4. Resolved coefficients (stored or manual parameters)

Validation is fail-closed: any structural or semantic problem raises
ValidationError and no partial or best-guess policy is ever returned.

The family source variant (piecewise or compact) is selected here, once,
when the policy is ingested.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from revenue_potential.core.exceptions import ValidationError
from revenue_potential.models.enums import Family, PenaltyCurve, ScoreVariant, TemplateKey
from revenue_potential.models.schemas import (
    CANONICAL_FEATURES,
    FAMILY_FEATURES,
    CoefficientSet,
    CompactPolicy,
    NarrativeTemplates,
    PenaltySpec,
    RichPolicy,
    ScoreThresholds,
)
from revenue_potential.services.classification import DEFAULT_TEMPLATES
from revenue_potential.services.families import FamilySource, compact_sources, rich_sources


# Configure module logger
logger = logging.getLogger(__name__)


WEIGHT_SUM_TOLERANCE = 1e-3

# Defaults applied by the alternate-shape remap
ALT_DEFAULT_WEIGHTS = {"cadastro": 0.33, "medicao": 0.33, "inadimplencia": 0.34}
ALT_DEFAULT_THRESHOLDS = {"baixo": 40, "medio": 70, "alto": 100}
ALT_DEFAULT_NO_SIGNAL = 0.2
ALT_DEFAULT_VALIDITY_DAYS = 365

# Compact policies only penalize on the open amount ratio
COMPACT_PENALTY_FEATURE = "open_amount_ratio"


# =============================================================================
# Scoring Policy
# =============================================================================

@dataclass
class ScoringPolicy:
    """
    Validated policy ready for scoring.

    Attributes:
        policy_id: Identifier reported in score run summaries
        kind: "rich" or "compact"
        sources: One family source per family
        weights: Raw family weights (renormalized by the composite scorer)
        penalty: Optional threshold-triggered penalty
        thresholds: baixo/medio/alto score thresholds
        no_signal_cutoff: Family value below which a family has no signal
        templates: Narrative texts per template key
        validity_days: Cache lifetime
        period: Period the policy was calibrated for, when known
        coefficients: Scalar coefficients (compact kind only)
    """
    policy_id: str
    kind: str
    sources: Dict[Family, FamilySource]
    weights: Dict[Family, float]
    penalty: Optional[PenaltySpec]
    thresholds: ScoreThresholds
    no_signal_cutoff: float
    templates: NarrativeTemplates
    validity_days: float
    period: Optional[str] = None
    coefficients: Optional[CoefficientSet] = None
    notes: Optional[str] = field(default=None, repr=False)


# =============================================================================
# Helpers
# =============================================================================

def _format_pydantic_error(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors()[:5]:
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def _load(raw: Union[str, bytes, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Policy is not valid JSON: {e}") from e
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Policy must be a JSON object, got {type(raw).__name__}")
    return dict(raw)


def _check_thresholds(baixo: float, medio: float, alto: float) -> None:
    if not baixo < medio <= alto:
        raise ValidationError(
            f"Thresholds must satisfy baixo < medio <= alto (got {baixo}, {medio}, {alto})"
        )


def _check_sum_to_one(label: str, values: List[float]) -> None:
    total = sum(values)
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValidationError(f"{label} weights must sum to 1 (got {total:.4f})")


def _normalize(values: Dict[str, float]) -> Dict[str, float]:
    total = sum(values.values())
    if total <= 0:
        return values
    return {key: value / total for key, value in values.items()}


# =============================================================================
# Rich Policy
# =============================================================================

def validate_rich_policy(data: Mapping[str, Any]) -> RichPolicy:
    """
    Parse and semantically check a rich policy.

    Raises:
        ValidationError: On structural errors, family weights not summing to
            1 within 1e-3, misordered thresholds, an unknown penalty trigger
            feature or missing template keys
    """
    try:
        policy = RichPolicy.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid policy structure: {_format_pydantic_error(e)}") from e

    w = policy.weights
    _check_sum_to_one("Family", [w.cadastro, w.medicao, w.inadimplencia])

    t = policy.classification.score_thresholds
    _check_thresholds(t.baixo, t.medio, t.alto)

    penalty = policy.penalties.inadimplencia_score_penalty
    if penalty is not None and penalty.trigger_feature not in CANONICAL_FEATURES:
        raise ValidationError(f"Unknown penalty trigger feature '{penalty.trigger_feature}'")

    for block in ("motivo", "acao_sugerida", "justificativa_curta"):
        texts = getattr(policy.templates, block)
        missing = [key.value for key in TemplateKey if key not in texts]
        if missing:
            raise ValidationError(f"templates.{block} missing keys: {', '.join(missing)}")

    return policy


def _rules_by_family_from_maps(maps: Any) -> Dict[str, List[Any]]:
    """Assign "maps" entries (feature -> rule, or a list of rules) to families."""
    by_family: Dict[str, List[Any]] = {family.value: [] for family in Family}
    if isinstance(maps, Mapping):
        entries = []
        for feature, rule in maps.items():
            if isinstance(rule, Mapping):
                entries.append({"feature": feature, **rule})
    elif isinstance(maps, list):
        entries = [rule for rule in maps if isinstance(rule, Mapping)]
    else:
        entries = []

    for rule in entries:
        for family, features in FAMILY_FEATURES.items():
            if rule.get("feature") in features:
                by_family[family.value].append(rule)
    return by_family


def _value_or(block: Mapping[str, Any], key: str, default: Any) -> Any:
    """block[key], or default when the key is absent or null. Zero is kept."""
    value = block.get(key)
    return default if value is None else value


def remap_alternate_shape(data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Best-effort remap of known alternate policy shapes to the rich shape.

    Returns:
        Remapped dict, or None when the shape is not recognized
    """
    period = data.get("periodo") or data.get("period") or "unknown"
    policy_id = data.get("policy_id") or f"policy_{period}"
    weights = data.get("weights") or dict(ALT_DEFAULT_WEIGHTS)

    if data.get("rules") is not None and data.get("mappings") is None:
        logger.info("Remapping policy with 'rules' block")
        rules = data.get("rules") or {}
        penalidade = data.get("penalidade")
        classificacao = data.get("classificacao") or {}
        thresholds = classificacao.get("thresholds") or {}
        templates = data.get("templates") or {}
        meta = data.get("meta") or {}
        return {
            "policy_id": policy_id,
            "periodo": period,
            "weights": weights,
            "mappings": {family.value: rules.get(family.value) or [] for family in Family},
            "penalties": {
                "inadimplencia_score_penalty": {
                    "trigger_feature": penalidade.get("trigger_feature"),
                    "trigger_threshold": penalidade.get("trigger_threshold"),
                    "curve": penalidade.get("curve") or PenaltyCurve.LINEAR.value,
                    "max_penalty": penalidade.get("max_penalty"),
                }
            } if isinstance(penalidade, Mapping) else {},
            "classification": {
                "score_thresholds": {
                    key: _value_or(thresholds, key, default)
                    for key, default in ALT_DEFAULT_THRESHOLDS.items()
                },
                "nenhum_if_all_potentials_below": (
                    _value_or(classificacao, "nenhum_if_all_potentials_below", ALT_DEFAULT_NO_SIGNAL)
                ),
            },
            "templates": {
                "motivo": templates.get("motivo") or {},
                "acao_sugerida": templates.get("acao_sugerida") or {},
                "justificativa_curta": templates.get("justificativa_curta") or {},
            },
            "meta": {
                "validity_days": meta.get("validity_days") or ALT_DEFAULT_VALIDITY_DAYS,
                "notes": meta.get("notes"),
            },
        }

    if data.get("maps") is not None and data.get("mappings") is None:
        logger.info("Remapping policy with 'maps' block")
        classification = data.get("classification") or {}
        thresholds = classification.get("thresholds") or {}

        def first(label: str, default: float) -> float:
            value = thresholds.get(label)
            if isinstance(value, list) and value:
                return value[0]
            return default

        templates = data.get("templates") or {}
        return {
            "policy_id": policy_id,
            "periodo": period,
            "weights": weights,
            "mappings": _rules_by_family_from_maps(data.get("maps")),
            "classification": {
                "score_thresholds": {
                    "baixo": first("LOW", 40),
                    "medio": first("MEDIUM", 70),
                    "alto": first("HIGH", 100),
                },
                "nenhum_if_all_potentials_below": 0.2 if classification.get("NONE_IF_ALL_APPROX_0") else 0.1,
            },
            "templates": {
                "motivo": templates,
                "acao_sugerida": templates,
                "justificativa_curta": templates,
            },
            "meta": {"validity_days": ALT_DEFAULT_VALIDITY_DAYS},
        }

    return None


def policy_from_rich(policy: RichPolicy) -> ScoringPolicy:
    """Build a ScoringPolicy with piecewise family sources."""
    return ScoringPolicy(
        policy_id=policy.policy_id,
        kind="rich",
        sources=rich_sources(policy.mappings),
        weights=policy.weights.as_dict(),
        penalty=policy.penalties.inadimplencia_score_penalty,
        thresholds=policy.classification.score_thresholds,
        no_signal_cutoff=policy.classification.nenhum_if_all_potentials_below,
        templates=policy.templates,
        validity_days=policy.meta.validity_days,
        period=policy.periodo,
        notes=policy.meta.notes,
    )


# =============================================================================
# Compact Policy and Coefficients
# =============================================================================

def is_compact_shape(data: Mapping[str, Any]) -> bool:
    """True when the payload carries compact blocks and no rule blocks."""
    if any(data.get(key) is not None for key in ("mappings", "rules", "maps")):
        return False
    return any(isinstance(data.get(key), Mapping) for key in ("familias", "potencial", "classificacao"))


def validate_compact_policy(data: Mapping[str, Any]) -> CompactPolicy:
    """
    Parse and semantically check a compact policy.

    Missing entries fall back to defaults.

    Raises:
        ValidationError: Structural errors, misordered thresholds,
            z_warn >= z_risk, pot_min > pot_max, or all family weights 0
    """
    try:
        policy = CompactPolicy.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid compact policy: {_format_pydantic_error(e)}") from e

    c = policy.classificacao
    _check_thresholds(c.baixo, c.medio, c.alto)
    if not policy.cadastro.z_warn < policy.cadastro.z_risk:
        raise ValidationError("cadastro.z_warn must be < cadastro.z_risk")
    if not policy.potencial.pot_min <= policy.potencial.pot_max:
        raise ValidationError("potencial.pot_min must be <= potencial.pot_max")
    f = policy.familias
    if f.cadastro + f.medicao + f.inadimplencia <= 0:
        raise ValidationError("At least one family weight must be positive")
    return policy


def coefficients_from_compact(policy: CompactPolicy) -> CoefficientSet:
    """
    Convert a compact policy into coefficients.

    Family weights and each family's internal weights are normalized to
    sum to 1.
    """
    families = _normalize({
        "w_fam_cadastro": policy.familias.cadastro,
        "w_fam_medicao": policy.familias.medicao,
        "w_fam_inad": policy.familias.inadimplencia,
    })
    medicao = _normalize({
        "w_idade": policy.medicao.w_idade,
        "w_anomalias": policy.medicao.w_anomalias,
        "w_desvio": policy.medicao.w_desvio,
    })
    inadimplencia = _normalize({
        "w_atraso": policy.inadimplencia.w_days,
        "w_indice": policy.inadimplencia.w_open_count,
        "w_valor_aberto": policy.inadimplencia.w_amount_ratio,
    })

    return CoefficientSet(
        **families,
        **medicao,
        **inadimplencia,
        pen_trigger_ratio=policy.inadimplencia.trigger_ratio,
        pen_max=policy.inadimplencia.penalty_max,
        pen_curve=policy.inadimplencia.curve,
        z_warn=policy.cadastro.z_warn,
        z_risk=policy.cadastro.z_risk,
        pot_min=policy.potencial.pot_min,
        pot_max=policy.potencial.pot_max,
        thr_baixo=policy.classificacao.baixo,
        thr_medio=policy.classificacao.medio,
        thr_alto=policy.classificacao.alto,
        none_cut=policy.classificacao.nenhum_if_all_potentials_below,
    )


def compact_to_parameter_values(policy: ScoringPolicy) -> Optional[Dict[str, Any]]:
    """
    Parameter values to persist for a calibrated compact policy.

    Persisting them as sector parameters lets later runs for the same
    period and window skip calibration.

    Returns:
        key -> value for every coefficient, or None for rich policies
        (piecewise rules have no scalar representation)
    """
    if policy.kind != "compact" or policy.coefficients is None:
        return None
    return policy.coefficients.model_dump(mode="json")


def validate_weights(item: Mapping[str, Any]) -> None:
    """
    Check a manually supplied coefficient set.

    Expects blocks inadimplencia{w_atraso, w_indice, w_valor_aberto},
    medicao{w_idade, w_anomalias, w_desvio}, cadastro{z_warn, z_risk} and
    potencial{pot_min, pot_max}.

    Raises:
        ValidationError: Weights outside [0, 1] or not summing to 1 within
            1e-3, z_warn >= z_risk, or pot_min > pot_max
    """
    def block(name: str) -> Mapping[str, Any]:
        value = item.get(name) or {}
        return value if isinstance(value, Mapping) else {}

    def number(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return float("nan")

    for label, keys in (
        ("inadimplencia", ("w_atraso", "w_indice", "w_valor_aberto")),
        ("medicao", ("w_idade", "w_anomalias", "w_desvio")),
    ):
        values = [number(block(label).get(key, 0)) for key in keys]
        if not all(0 <= v <= 1 for v in values):
            raise ValidationError(f"{label} weights must be in [0, 1]")
        _check_sum_to_one(label, values)

    z_warn = number(block("cadastro").get("z_warn"))
    z_risk = number(block("cadastro").get("z_risk"))
    if not z_warn < z_risk:
        raise ValidationError("cadastro.z_warn must be < cadastro.z_risk")

    pot_min = number(block("potencial").get("pot_min"))
    pot_max = number(block("potencial").get("pot_max"))
    if not pot_min <= pot_max:
        raise ValidationError("potencial.pot_min must be <= potencial.pot_max")


def policy_from_coefficients(
    coefficients: CoefficientSet,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
    policy_id: str = "EXISTING_PARAMS",
    validity_days: float = 30,
    period: Optional[str] = None,
) -> ScoringPolicy:
    """
    Build a ScoringPolicy with compact family sources.

    The risk variant carries no penalty: a high open amount must not lower
    a risk score.
    """
    thresholds = ScoreThresholds(
        baixo=coefficients.thr_baixo,
        medio=coefficients.thr_medio,
        alto=coefficients.thr_alto,
    )
    penalty = None
    if variant == ScoreVariant.POTENTIAL and coefficients.pen_max > 0:
        penalty = PenaltySpec(
            trigger_feature=COMPACT_PENALTY_FEATURE,
            trigger_threshold=coefficients.pen_trigger_ratio,
            curve=coefficients.pen_curve,
            max_penalty=min(1.0, coefficients.pen_max),
        )

    return ScoringPolicy(
        policy_id=policy_id,
        kind="compact",
        sources=compact_sources(coefficients, variant),
        weights={
            Family.CADASTRO: coefficients.w_fam_cadastro,
            Family.MEDICAO: coefficients.w_fam_medicao,
            Family.INADIMPLENCIA: coefficients.w_fam_inad,
        },
        penalty=penalty,
        thresholds=thresholds,
        no_signal_cutoff=coefficients.none_cut,
        templates=DEFAULT_TEMPLATES,
        validity_days=validity_days,
        period=period,
        coefficients=coefficients,
    )


# =============================================================================
# Entry Point
# =============================================================================

def validate_policy(
    raw: Union[str, bytes, Mapping[str, Any]],
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
    default_validity_days: float = 30,
) -> ScoringPolicy:
    """
    Validate a calibration result and build the ScoringPolicy.

    Order: compact shape -> rich shape -> known alternate shapes.

    Args:
        raw: Policy as dict or JSON text
        variant: Scoring variant the policy will serve
        default_validity_days: Validity for compact policies without meta

    Returns:
        ScoringPolicy

    Raises:
        ValidationError: When no accepted shape validates
    """
    data = _load(raw)

    if is_compact_shape(data):
        compact = validate_compact_policy(data)
        validity = compact.meta.validity_days or default_validity_days
        logger.info(f"Validated compact policy {compact.policy_id}")
        return policy_from_coefficients(
            coefficients_from_compact(compact),
            variant=variant,
            policy_id=compact.policy_id,
            validity_days=validity,
            period=data.get("periodo"),
        )

    try:
        rich = validate_rich_policy(data)
    except ValidationError as direct_error:
        remapped = remap_alternate_shape(data)
        if remapped is None:
            raise
        logger.warning(f"Direct policy validation failed ({direct_error.message}); trying remap")
        rich = validate_rich_policy(remapped)

    logger.info(f"Validated rich policy {rich.policy_id} for {rich.periodo}")
    return policy_from_rich(rich)
