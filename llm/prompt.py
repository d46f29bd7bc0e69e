"""
Prompt construction for deep analysis.

The prompt constrains output to a single JSON object listing anomaly
findings, and references only the provided context document.
"""

from __future__ import annotations

import json

from backend.analysis.schema import AnalysisContext

FINDING_TYPES = [
    "peg_deviation",
    "tvl_change",
    "whale_movement",
    "sentiment_shift",
    "gas_spike",
    "multi_signal",
    "queue_spike",
    "unusual_pattern",
]


def build_prompt(context: AnalysisContext) -> str:
    """
    Build a strict JSON-only prompt for the reasoning service.
    """

    context_payload = json.dumps(context.model_dump(mode="json"), sort_keys=True)

    instructions = {
        "task": (
            f"Analyze the statistical triggers raised for {context.protocol_name} as an expert "
            "DeFi risk analyst and describe each genuine anomaly."
        ),
        "consider": [
            "Pattern analysis: what is breaking from baseline, and is it beyond normal variance?",
            "Multi-signal correlation: are several metrics moving together?",
            "Context: user behavior, market movement, or protocol issue?",
            "Historical precedent: does this resemble past DeFi stress events?",
        ],
        "severity_levels": {
            "LOW": "Minor deviation, likely normal variance",
            "MEDIUM": "Notable pattern, worth monitoring",
            "HIGH": "Significant anomaly, potential risk",
            "CRITICAL": "Protocol-threatening pattern, immediate attention",
        },
        "constraints": [
            "Return a single JSON object only.",
            "Do NOT include any text outside JSON.",
            "Do NOT invent facts beyond the context data.",
            "confidence is a number in [0,1].",
            "Return an empty anomalies list if nothing warrants attention.",
        ],
        "schema": {
            "anomalies": [
                {
                    "type": "|".join(FINDING_TYPES),
                    "severity": "LOW|MEDIUM|HIGH|CRITICAL",
                    "confidence": "float in [0,1]",
                    "title": "string (max 60 chars)",
                    "description": "string (2-3 sentences)",
                    "affectedMetrics": "list[string]",
                    "recommendation": "string",
                    "historicalComparison": "string",
                    "correlations": "list[string]",
                    "timeframe": "string",
                    "riskLevel": "string",
                }
            ],
            "overallAssessment": "string",
            "monitoringPriority": "string",
            "falseAlarmProbability": "float in [0,1]",
        },
    }

    prompt = (
        f"You are an autonomous anomaly detection system for {context.protocol_name}.\n"
        f"PROTOCOL: {context.protocol_description}\n"
        f"INSTRUCTIONS: {json.dumps(instructions, sort_keys=True)}\n"
        f"CONTEXT: {context_payload}\n"
        "RETURN_JSON_ONLY:"
    )

    return prompt
