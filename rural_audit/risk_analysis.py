"""
AI risk analysis using OpenAI structured output.

The model reads a plain-language digest of the audit (every property and
party with its items' name, status and notes, plus the general notes) and
must answer with {risk_level, summary, recommendations}.

Design:
  - JSON schema enforced (structured output, not free text)
  - Read-only: the audit state is never modified here
  - Graceful fallback: no API key, network error, refusal or malformed
    JSON → a fixed "Médio" verdict flagged as degraded. Nothing is raised.
"""

from __future__ import annotations

import json
import logging

from openai import OpenAI
from pydantic import ValidationError

from .config import DEFAULT_MODEL
from .models import AnalysisResult, AuditState, ChecklistItem, RiskLevel

logger = logging.getLogger(__name__)


# ─── Prompt ──────────────────────────────────────────────────────────

SYSTEM_PROMPT = """\
Atue como um advogado sênior especialista em direito agrário e imobiliário \
brasileiro (Due Diligence Rural). Responda sempre em português."""

INSTRUCTIONS = """\
INSTRUÇÕES:
1. Identifique riscos jurídicos (ex: certidões positivas, falta de georreferenciamento, problemas ambientais).
2. Status 'pending' gera alerta de atraso. 'issue' é risco alto. 'expired' exige renovação.
3. Analise a cadeia dominial e riscos ambientais (IBAMA, CAR) se mencionados.
4. Se houver múltiplos imóveis, cite especificamente qual imóvel possui o problema."""

VERDICT_SCHEMA = {
    "type": "object",
    "properties": {
        "riskLevel": {
            "type": "string",
            "enum": [level.value for level in RiskLevel],
            "description": "O nível geral de risco jurídico desta transação.",
        },
        "summary": {
            "type": "string",
            "description": "Um resumo executivo da situação da auditoria focado em pontos críticos.",
        },
        "recommendations": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Lista de ações práticas recomendadas para mitigar os riscos identificados.",
        },
    },
    "required": ["riskLevel", "summary", "recommendations"],
    "additionalProperties": False,
}

FALLBACK_SUMMARY = (
    "Não foi possível realizar a análise automática no momento. Verifique se a "
    "chave de API está configurada corretamente ou tente novamente."
)
FALLBACK_RECOMMENDATIONS = ["Realizar análise manual", "Verificar conexão com a API"]


def fallback_verdict() -> AnalysisResult:
    return AnalysisResult(
        risk_level=RiskLevel.MEDIO,
        summary=FALLBACK_SUMMARY,
        recommendations=list(FALLBACK_RECOMMENDATIONS),
        degraded=True,
    )


def _item_lines(items: list[ChecklistItem]) -> str:
    return "\n".join(
        f"  - {i.name}: {i.status.value} ({i.notes or 'Sem observações'})" for i in items
    )


def build_prompt(state: AuditState) -> str:
    """Serialise the audit into the natural-language prompt."""
    properties = "\n\n".join(
        f"IMÓVEL: {p.name} (Matrícula: {p.matricula}, Área: {p.area}ha, Município: {p.municipio})\n"
        f"Checklist do Imóvel:\n{_item_lines(p.items)}"
        for p in state.properties
    )
    parties = "\n\n".join(
        f"Parte: {p.name} ({p.role.value} - {p.type.value})\n{_item_lines(p.items)}"
        for p in state.parties
    )
    return (
        "Analise os dados desta auditoria de compra e venda de imóvel rural "
        "(pode haver múltiplas matrículas/imóveis envolvidos).\n\n"
        f"DADOS DOS IMÓVEIS:\n{properties}\n\n"
        f"DADOS DAS PARTES:\n{parties}\n\n"
        f"OBSERVAÇÕES GERAIS DO USUÁRIO:\n{state.general_notes}\n\n"
        f"{INSTRUCTIONS}"
    )


# ─── Completion Call ─────────────────────────────────────────────────


def request_completion(prompt: str, api_key: str, model: str = DEFAULT_MODEL) -> str | None:
    """Send the prompt with the verdict schema; return the raw JSON text."""
    client = OpenAI(api_key=api_key)
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        response_format={
            "type": "json_schema",
            "json_schema": {"name": "audit_verdict", "strict": True, "schema": VERDICT_SCHEMA},
        },
    )
    return response.choices[0].message.content


def parse_verdict(content: str) -> AnalysisResult:
    """Parse the model's JSON answer. Raises ValueError on any mismatch."""
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("Verdict is not a JSON object")
    try:
        return AnalysisResult(
            risk_level=RiskLevel(data.get("riskLevel")),
            summary=data.get("summary"),
            recommendations=data.get("recommendations") or [],
        )
    except ValidationError as e:
        raise ValueError(f"Verdict does not match the schema: {e}") from e


def analyze_audit_risks(
    state: AuditState,
    api_key: str | None = None,
    model: str = DEFAULT_MODEL,
) -> AnalysisResult:
    """Produce a risk verdict for the audit. Never raises.

    Returns:
        The model's verdict, or the degraded fallback verdict when the
        service is unavailable or answers with something unusable.
    """
    if not api_key:
        logger.info("No OPENAI_API_KEY set — returning fallback verdict")
        return fallback_verdict()

    try:
        content = request_completion(build_prompt(state), api_key, model)
        if not content:
            logger.error("Risk analysis returned empty content")
            return fallback_verdict()
        verdict = parse_verdict(content)
    except Exception as e:
        logger.error("Risk analysis failed: %s", e)
        return fallback_verdict()

    logger.info("Risk analysis succeeded: %s", verdict.risk_level.value)
    return verdict
