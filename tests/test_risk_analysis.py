"""
Risk analysis adapter tests — prompt building, parsing and graceful fallback.

The completion call is always patched (see the root conftest.py).
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from rural_audit.identity import DurableId
from rural_audit.models import (
    AuditState,
    ChecklistItem,
    Party,
    PartyRole,
    PartyType,
    Property,
    RiskLevel,
    Status,
)
from rural_audit.risk_analysis import (
    FALLBACK_RECOMMENDATIONS,
    analyze_audit_risks,
    build_prompt,
    parse_verdict,
)

VERDICT = {
    "riskLevel": "Alto",
    "summary": "Penhora registrada na matrícula 14.230.",
    "recommendations": ["Exigir baixa da penhora antes da escritura"],
}


def _state() -> AuditState:
    return AuditState(
        properties=[
            Property(
                id=DurableId("p-1"),
                name="Fazenda Santa Maria",
                matricula="14.230",
                area="1.250",
                municipio="Correntina - BA",
                items=[
                    ChecklistItem(id=DurableId("i-1"), category="Registro",
                                  name="Certidão de Ônus Reais", status=Status.ISSUE,
                                  notes="Penhora trabalhista"),
                    ChecklistItem(id=DurableId("i-2"), category="Ambiental", name="CAR"),
                ],
            )
        ],
        parties=[
            Party(id=DurableId("pt-1"), type=PartyType.PF, name="João da Silva",
                  role=PartyRole.SELLER,
                  items=[ChecklistItem(id=DurableId("i-3"), category="Fiscal",
                                       name="CND Federal", status=Status.EXPIRED)]),
        ],
        general_notes="Comprador exige georreferenciamento.",
    )


class TestBuildPrompt:
    def test_includes_every_entity_and_item(self):
        prompt = build_prompt(_state())
        assert "IMÓVEL: Fazenda Santa Maria (Matrícula: 14.230, Área: 1.250ha" in prompt
        assert "  - Certidão de Ônus Reais: issue (Penhora trabalhista)" in prompt
        assert "  - CAR: pending (Sem observações)" in prompt
        assert "Parte: João da Silva (seller - PF)" in prompt
        assert "  - CND Federal: expired (Sem observações)" in prompt
        assert "Comprador exige georreferenciamento." in prompt

    def test_empty_audit_still_builds(self):
        prompt = build_prompt(AuditState())
        assert "DADOS DOS IMÓVEIS:" in prompt
        assert "DADOS DAS PARTES:" in prompt


class TestParseVerdict:
    def test_parses_schema_shape(self):
        result = parse_verdict(json.dumps(VERDICT))
        assert result.risk_level == RiskLevel.ALTO
        assert result.recommendations == VERDICT["recommendations"]
        assert result.degraded is False

    def test_rejects_unknown_risk_level(self):
        bad = {**VERDICT, "riskLevel": "Crítico"}
        with pytest.raises(ValueError):
            parse_verdict(json.dumps(bad))


class TestAnalyzeAuditRisks:
    def test_no_api_key_returns_fallback(self):
        result = analyze_audit_risks(_state(), api_key=None)
        assert result.degraded is True
        assert result.risk_level == RiskLevel.MEDIO
        assert result.recommendations == FALLBACK_RECOMMENDATIONS

    def test_successful_completion(self):
        with patch(
            "rural_audit.risk_analysis.request_completion", return_value=json.dumps(VERDICT)
        ) as call:
            result = analyze_audit_risks(_state(), api_key="sk-test", model="gpt-test")

        assert result.risk_level == RiskLevel.ALTO
        assert result.degraded is False
        prompt, key, model = call.call_args.args
        assert "Fazenda Santa Maria" in prompt
        assert (key, model) == ("sk-test", "gpt-test")

    def test_empty_completion_falls_back(self):
        # Root conftest patches the completion to return None
        result = analyze_audit_risks(_state(), api_key="sk-test")
        assert result.degraded is True

    def test_service_error_falls_back(self):
        with patch(
            "rural_audit.risk_analysis.request_completion", side_effect=TimeoutError("slow")
        ):
            result = analyze_audit_risks(_state(), api_key="sk-test")
        assert result.degraded is True
        assert len(result.recommendations) == 2

    def test_malformed_json_falls_back(self):
        with patch("rural_audit.risk_analysis.request_completion", return_value="not json"):
            result = analyze_audit_risks(_state(), api_key="sk-test")
        assert result.degraded is True

    def test_state_is_not_modified(self):
        state = _state()
        before = state.model_copy(deep=True)
        with patch(
            "rural_audit.risk_analysis.request_completion", return_value=json.dumps(VERDICT)
        ):
            analyze_audit_risks(state, api_key="sk-test")
        assert state == before
