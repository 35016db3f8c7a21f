"""
Classification Service

Maps a composite score and the three family values to a discrete tier and
selects the narrative template for the result.

Potential variant tiers:
- NENHUM: every family value is below the no-signal cutoff (overrides score)
- BAIXO: score < baixo
- MEDIO: score < medio
- ALTO: otherwise

Risk variant tiers (no no-signal override):
- OK: score < baixo
- ATENCAO: score < medio
- RISCO: otherwise

Template key priority (fixed):
1. DADOS_INSUFICIENTES - any family had missing inputs
2. INAD_ALTA - inadimplencia value < 0.3
3. MEDICAO_DOMINANTE - medicao exceeds cadastro by more than 0.1
4. CADASTRO_DOMINANTE - cadastro exceeds medicao by more than 0.1
5. BALANCEADO
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

from revenue_potential.models.enums import Family, PotentialTier, RiskTier, TemplateKey
from revenue_potential.models.schemas import NarrativeTemplates, ScoreThresholds


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_THRESHOLDS: Dict[str, float] = {"baixo": 40.0, "medio": 70.0, "alto": 100.0}

DEFAULT_NO_SIGNAL_CUTOFF = 0.05

INAD_HIGH_CUTOFF = 0.3
DOMINANCE_MARGIN = 0.1

# Used by compact policies and stored coefficients, which carry no texts
DEFAULT_TEMPLATES = NarrativeTemplates(
    motivo={
        TemplateKey.MEDICAO_DOMINANTE: "Potencial concentrado em medição",
        TemplateKey.CADASTRO_DOMINANTE: "Potencial concentrado em cadastro",
        TemplateKey.INAD_ALTA: "Inadimplência elevada reduz o potencial de recuperação",
        TemplateKey.DADOS_INSUFICIENTES: "Dados insuficientes para avaliar o imóvel",
        TemplateKey.BALANCEADO: "Potencial distribuído entre as famílias",
    },
    acao_sugerida={
        TemplateKey.MEDICAO_DOMINANTE: "Priorizar troca ou aferição do hidrômetro",
        TemplateKey.CADASTRO_DOMINANTE: "Priorizar revisão cadastral",
        TemplateKey.INAD_ALTA: "Encaminhar para cobrança e negociação",
        TemplateKey.DADOS_INSUFICIENTES: "Completar cadastro e histórico de leituras",
        TemplateKey.BALANCEADO: "Vistoria geral do imóvel",
    },
    justificativa_curta={
        TemplateKey.MEDICAO_DOMINANTE: "Medição dominante",
        TemplateKey.CADASTRO_DOMINANTE: "Cadastro dominante",
        TemplateKey.INAD_ALTA: "Inadimplência alta",
        TemplateKey.DADOS_INSUFICIENTES: "Sinais incompletos",
        TemplateKey.BALANCEADO: "Sinais equilibrados",
    },
)


# =============================================================================
# Tiering
# =============================================================================

def classify_tier(
    score: float,
    family_values: Mapping[Family, float],
    thresholds: ScoreThresholds,
    no_signal_cutoff: float = DEFAULT_NO_SIGNAL_CUTOFF,
) -> PotentialTier:
    """
    Potential tier for a composite score.

    Args:
        score: Composite score in [0, 100]
        family_values: Family values in [0, 1]
        thresholds: baixo/medio/alto score thresholds
        no_signal_cutoff: Family value below which a family carries no signal

    Returns:
        PotentialTier; NENHUM whenever all three families are below the
        cutoff, whatever the score
    """
    if all(family_values.get(family, 0.0) < no_signal_cutoff for family in Family):
        return PotentialTier.NENHUM
    if score < thresholds.baixo:
        return PotentialTier.BAIXO
    if score < thresholds.medio:
        return PotentialTier.MEDIO
    return PotentialTier.ALTO


def classify_risk_tier(score: float, thresholds: ScoreThresholds) -> RiskTier:
    """Risk tier for a composite score."""
    if score < thresholds.baixo:
        return RiskTier.OK
    if score < thresholds.medio:
        return RiskTier.ATENCAO
    return RiskTier.RISCO


# =============================================================================
# Narrative
# =============================================================================

def pick_template_key(
    cadastro: float,
    medicao: float,
    inadimplencia: float,
    any_missing: bool,
) -> TemplateKey:
    """
    Select the narrative template key with the fixed priority order.

    Example:
        >>> pick_template_key(0.2, 0.5, 0.6, any_missing=False)
        TemplateKey.MEDICAO_DOMINANTE
    """
    if any_missing:
        return TemplateKey.DADOS_INSUFICIENTES
    if inadimplencia < INAD_HIGH_CUTOFF:
        return TemplateKey.INAD_ALTA
    if medicao - cadastro > DOMINANCE_MARGIN:
        return TemplateKey.MEDICAO_DOMINANTE
    if cadastro - medicao > DOMINANCE_MARGIN:
        return TemplateKey.CADASTRO_DOMINANTE
    return TemplateKey.BALANCEADO


def render_narrative(
    templates: Optional[NarrativeTemplates],
    key: TemplateKey,
) -> Tuple[str, str, str]:
    """
    Texts for a template key.

    Returns:
        (motivo, acao_sugerida, justificativa_curta); empty strings when the
        templates or the key are absent
    """
    if templates is None:
        return "", "", ""
    return (
        templates.motivo.get(key, ""),
        templates.acao_sugerida.get(key, ""),
        templates.justificativa_curta.get(key, ""),
    )


def risk_message(scores100: Mapping[Family, float], total: float) -> str:
    """Summary line for risk rows, e.g. 'cad=0.00, inad=12.50, med=40.00 (total=17.50)'."""
    cad = scores100.get(Family.CADASTRO, 0.0)
    inad = scores100.get(Family.INADIMPLENCIA, 0.0)
    med = scores100.get(Family.MEDICAO, 0.0)
    return f"cad={cad:.2f}, inad={inad:.2f}, med={med:.2f} (total={total:.2f})"
