"""
Enumeration definitions for the revenue potential scoring service.

All enums inherit from both `str` and `Enum` to ensure JSON serialization
compatibility with Pydantic models, enabling automatic serialization and
deserialization in API responses and in persisted rows.

Domain vocabulary is Portuguese where the values are stored or shown to
operators (tiers, template keys, family names) and English elsewhere.
"""

from enum import Enum


class Family(str, Enum):
    """
    Feature families aggregated into the composite score.

    - cadastro: registry consistency (inconsistency rate)
    - medicao: metering quality (meter age, anomalies, consumption variation)
    - inadimplencia: billing delinquency (days late, open invoices, open amount)
    """
    CADASTRO = "cadastro"
    MEDICAO = "medicao"
    INADIMPLENCIA = "inadimplencia"


class PotentialTier(str, Enum):
    """
    Tier assigned by the potential variant.

    NENHUM is the no-signal override: every family value is below the
    policy's cutoff, regardless of the composite score.
    """
    NENHUM = "NENHUM"
    BAIXO = "BAIXO"
    MEDIO = "MEDIO"
    ALTO = "ALTO"


class RiskTier(str, Enum):
    """Tier assigned by the risk variant (no no-signal override)."""
    OK = "OK"
    ATENCAO = "ATENCAO"
    RISCO = "RISCO"


class TemplateKey(str, Enum):
    """
    Narrative template selector.

    Selected with a fixed priority: DADOS_INSUFICIENTES, INAD_ALTA,
    MEDICAO_DOMINANTE, CADASTRO_DOMINANTE, BALANCEADO.
    """
    MEDICAO_DOMINANTE = "MEDICAO_DOMINANTE"
    CADASTRO_DOMINANTE = "CADASTRO_DOMINANTE"
    INAD_ALTA = "INAD_ALTA"
    DADOS_INSUFICIENTES = "DADOS_INSUFICIENTES"
    BALANCEADO = "BALANCEADO"


class PenaltyCurve(str, Enum):
    """Shape applied to the penalty factor f in [0, 1]."""
    LINEAR = "linear"
    LOG = "log"


class ParameterScope(str, Enum):
    """Scope of a stored versioned parameter."""
    SECTOR = "sector"
    GROUP = "group"


class ScoreVariant(str, Enum):
    """
    Scoring variant.

    - potential: higher score means more recoverable revenue; persisted in `scores`
    - risk: higher score means more risk; persisted in `risk_scores`
    """
    POTENTIAL = "potential"
    RISK = "risk"


class PolicySource(str, Enum):
    """Where the policy used by a score run came from."""
    PARAMETERS = "parameters"
    CACHE = "cache"
    CALIBRATION = "calibration"


class AuditErrorType(str, Enum):
    """Error types recorded in the `error` audit payload of a score row."""
    VALIDATION_FAILED = "VALIDATION_FAILED"
    COMPUTATION_FAILED = "COMPUTATION_FAILED"
    UPSERT_INDIVIDUAL_FAILED = "UPSERT_INDIVIDUAL_FAILED"
