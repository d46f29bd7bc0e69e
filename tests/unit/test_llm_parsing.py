"""
Unit tests for reasoning service output extraction and candidate validation.
"""

import json

import pytest

from llm.parsing import extract_payload, parse_analysis_response, validate_candidates
from stakewatch.anomaly.schema import AnomalySeverity
from stakewatch.core.exceptions import DataValidationError

CANDIDATE = {
    "type": "gas_spike",
    "severity": "HIGH",
    "confidence": 0.7,
    "title": "Gas spike",
    "description": "Gas price is far above its normal band.",
}
PAYLOAD = {"anomalies": [CANDIDATE], "overallAssessment": "Congested network."}


@pytest.mark.parametrize(
    "raw",
    [
        PAYLOAD,
        json.dumps(PAYLOAD),
        "```json\n" + json.dumps(PAYLOAD) + "\n```",
        "Here is my analysis:\n" + json.dumps(PAYLOAD) + "\nLet me know if you need more.",
        {"model": "qwen2.5", "response": json.dumps(PAYLOAD), "done": True},
        {"content": [{"type": "text", "text": json.dumps(PAYLOAD)}]},
        {"message": {"role": "assistant", "content": json.dumps(PAYLOAD)}},
        json.dumps(PAYLOAD).encode("utf-8"),
    ],
)
def test_extract_payload_accepts_common_shapes(raw):
    assert extract_payload(raw) == PAYLOAD


def test_bare_list_and_findings_key():
    assert len(parse_analysis_response([CANDIDATE]).candidates) == 1
    assert len(parse_analysis_response({"findings": [CANDIDATE]}).candidates) == 1


@pytest.mark.parametrize("raw", ["", "no json here", 42, {"response": "still not json"}])
def test_unusable_output_raises(raw):
    with pytest.raises(DataValidationError):
        parse_analysis_response(raw)


def test_missing_candidate_list_raises():
    with pytest.raises(DataValidationError):
        parse_analysis_response({"overallAssessment": "fine"})


def test_candidate_repairs():
    accepted, rejected = validate_candidates(
        [
            dict(CANDIDATE, severity="SEVERE", confidence=1.7, title="T" * 250),
            dict(CANDIDATE, severity="low", confidence="not a number"),
            dict(CANDIDATE, confidence=-3),
        ]
    )

    assert rejected == []
    assert accepted[0].severity == AnomalySeverity.MEDIUM
    assert accepted[0].confidence == 1.0
    assert len(accepted[0].title) == 200
    assert accepted[1].severity == AnomalySeverity.LOW
    assert accepted[1].confidence == 0.5
    assert accepted[2].confidence == 0.0


def test_missing_required_field_rejects_only_that_candidate():
    no_description = {k: v for k, v in CANDIDATE.items() if k != "description"}
    empty_title = dict(CANDIDATE, title="   ")

    accepted, rejected = validate_candidates([no_description, CANDIDATE, empty_title, "junk"])

    assert len(accepted) == 1
    assert [r.index for r in rejected] == [0, 2, 3]
    assert "description" in rejected[0].reason


def test_camel_case_fields_and_batch_notes():
    response = parse_analysis_response(
        {
            "anomalies": [
                dict(
                    CANDIDATE,
                    affectedMetrics=["gas_price_gwei"],
                    historicalComparison="No clear precedent",
                    riskLevel="low",
                    correlations="gas only",
                )
            ],
            "overallAssessment": "Congested network.",
            "monitoringPriority": "gas",
            "falseAlarmProbability": "0.3",
        }
    )

    candidate = response.candidates[0]
    assert candidate.affected_metrics == ["gas_price_gwei"]
    assert candidate.historical_comparison == "No clear precedent"
    assert candidate.risk_level == "low"
    assert candidate.correlations == ["gas only"]
    assert response.monitoring_priority == "gas"
    assert response.false_alarm_probability == 0.3
