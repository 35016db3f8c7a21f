"""
Package initialization file for the scoring service models.

This module exports all Pydantic schemas and enumerations from schemas.py and
enums.py, making them importable from revenue_potential.models directly.

Usage:
    from revenue_potential.models import (
        CanonicalRecord,
        PiecewiseRule,
        RichPolicy,
        CompactPolicy,
        ScoreOutput,
        PotentialTier,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from revenue_potential.models.enums import (
    AuditErrorType,
    Family,
    ParameterScope,
    PenaltyCurve,
    PolicySource,
    PotentialTier,
    RiskTier,
    ScoreVariant,
    TemplateKey,
)

# =============================================================================
# Schemas
# =============================================================================

from revenue_potential.models.schemas import (
    CANONICAL_FEATURES,
    FAMILY_FEATURES,
    # Canonical record
    CanonicalRecord,
    # Rich policy
    PiecewiseRule,
    FamilyWeights,
    FamilyMappings,
    PenaltySpec,
    PolicyPenalties,
    ScoreThresholds,
    ClassificationSpec,
    NarrativeTemplates,
    PolicyMeta,
    RichPolicy,
    # Compact policy
    CompactFamilies,
    CompactInadimplencia,
    CompactMedicao,
    CompactCadastro,
    CompactPotencial,
    CompactClassificacao,
    CompactMeta,
    CompactPolicy,
    # Coefficients and outputs
    CoefficientSet,
    ScoreOutput,
    BatchSummary,
    ScoreRunResponse,
    # Requests
    InadimplenciaWeightsIn,
    MedicaoWeightsIn,
    CadastroThresholdsIn,
    PotencialBoundsIn,
    ParamsSaveRequest,
    ParamsSaveResponse,
    GroupCreateRequest,
    GroupResponse,
)


__all__ = [
    # Enums
    "AuditErrorType",
    "Family",
    "ParameterScope",
    "PenaltyCurve",
    "PolicySource",
    "PotentialTier",
    "RiskTier",
    "ScoreVariant",
    "TemplateKey",
    # Constants
    "CANONICAL_FEATURES",
    "FAMILY_FEATURES",
    # Schemas
    "CanonicalRecord",
    "PiecewiseRule",
    "FamilyWeights",
    "FamilyMappings",
    "PenaltySpec",
    "PolicyPenalties",
    "ScoreThresholds",
    "ClassificationSpec",
    "NarrativeTemplates",
    "PolicyMeta",
    "RichPolicy",
    "CompactFamilies",
    "CompactInadimplencia",
    "CompactMedicao",
    "CompactCadastro",
    "CompactPotencial",
    "CompactClassificacao",
    "CompactMeta",
    "CompactPolicy",
    "CoefficientSet",
    "ScoreOutput",
    "BatchSummary",
    "ScoreRunResponse",
    "InadimplenciaWeightsIn",
    "MedicaoWeightsIn",
    "CadastroThresholdsIn",
    "PotencialBoundsIn",
    "ParamsSaveRequest",
    "ParamsSaveResponse",
    "GroupCreateRequest",
    "GroupResponse",
]
