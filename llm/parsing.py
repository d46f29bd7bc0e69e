"""
Extraction of structured output from reasoning service responses.

Accepted shapes:
- a dict or list (already decoded)
- a JSON string, optionally wrapped in a markdown fence or surrounded by prose
- provider envelopes: {"response": ...}, {"message": {"content": ...}},
  {"content": [{"type": "text", "text": ...}]}

The candidate list is read from "anomalies" (or "findings"); a bare list
is taken as the candidate list itself.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Tuple, Union

from pydantic import ValidationError

from stakewatch.core.exceptions import DataValidationError

from .schema import AnalysisResponse, FindingCandidate, RejectedCandidate

logger = logging.getLogger("llm.parsing")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_CANDIDATE_KEYS = ("anomalies", "findings")
_MAX_DEPTH = 5

Payload = Union[Dict[str, Any], List[Any]]


def extract_payload(raw: Any, _depth: int = 0) -> Payload:
    """
    Reduce raw service output to the decoded JSON payload.

    Raises:
        DataValidationError: If no JSON object or array can be recovered
    """
    if _depth > _MAX_DEPTH:
        raise DataValidationError("Response envelope nested too deeply")

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        return extract_payload(_decode_text(raw), _depth + 1)

    if isinstance(raw, list):
        texts = _text_blocks(raw)
        if texts is not None:
            return extract_payload("\n".join(texts), _depth + 1)
        return raw

    if isinstance(raw, dict):
        if any(key in raw for key in _CANDIDATE_KEYS):
            return raw
        if "response" in raw:
            return extract_payload(raw["response"], _depth + 1)
        message = raw.get("message")
        if isinstance(message, dict) and "content" in message:
            return extract_payload(message["content"], _depth + 1)
        if isinstance(raw.get("content"), (list, str)):
            return extract_payload(raw["content"], _depth + 1)
        return raw

    raise DataValidationError(f"Unsupported response type: {type(raw).__name__}")


def _decode_text(text: str) -> Any:
    cleaned = text.strip()
    if not cleaned:
        raise DataValidationError("Empty response text")

    candidates = [cleaned]
    fence = _FENCE_RE.search(cleaned)
    if fence:
        candidates.insert(0, fence.group(1).strip())

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

    for opener, closer in (("{", "}"), ("[", "]")):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start : end + 1])
            except json.JSONDecodeError:
                continue

    raise DataValidationError(f"No JSON found in response: {cleaned[:200]}")


def _text_blocks(items: List[Any]) -> Union[List[str], None]:
    if not items or not all(isinstance(item, dict) and item.get("type") == "text" for item in items):
        return None
    return [str(item.get("text", "")) for item in items]


def validate_candidates(items: List[Any]) -> Tuple[List[FindingCandidate], List[RejectedCandidate]]:
    """
    Validate each candidate independently.
    """
    accepted: List[FindingCandidate] = []
    rejected: List[RejectedCandidate] = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            rejected.append(RejectedCandidate(index=index, reason="candidate is not an object", raw=item))
            continue
        try:
            accepted.append(FindingCandidate.model_validate(item))
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "candidate" for err in exc.errors())
            rejected.append(RejectedCandidate(index=index, reason=f"invalid fields: {fields}", raw=item))
            logger.warning("Rejected candidate %d: invalid fields: %s", index, fields)

    return accepted, rejected


def parse_analysis_response(raw: Any) -> AnalysisResponse:
    """
    Parse raw service output into validated candidates plus batch notes.

    Raises:
        DataValidationError: If the payload or its candidate list is unusable
    """
    payload = extract_payload(raw)

    notes: Dict[str, Any] = {}
    if isinstance(payload, list):
        items = payload
    else:
        items = next((payload[key] for key in _CANDIDATE_KEYS if key in payload), None)
        if not isinstance(items, list):
            raise DataValidationError("Invalid response structure: missing anomalies array")
        notes = payload

    accepted, rejected = validate_candidates(items)

    return AnalysisResponse(
        candidates=accepted,
        rejected=rejected,
        overall_assessment=_optional_str(notes.get("overallAssessment", notes.get("overall_assessment"))),
        monitoring_priority=_optional_str(notes.get("monitoringPriority", notes.get("monitoring_priority"))),
        false_alarm_probability=_optional_probability(
            notes.get("falseAlarmProbability", notes.get("false_alarm_probability"))
        ),
    )


def _optional_str(value: Any) -> Union[str, None]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_probability(value: Any) -> Union[float, None]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:
        return None
    return min(1.0, max(0.0, number))
