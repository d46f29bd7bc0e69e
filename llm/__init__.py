"""
Reasoning service utilities.

Provider clients (HTTP and local), prompt construction, and validation of
untrusted service output.
"""

from .base import ReasoningModel
from .config import LLMConfig, ReasoningServiceConfig
from .local import LocalReasoningModel
from .ollama import HttpReasoningClient
from .parsing import extract_payload, parse_analysis_response, validate_candidates
from .prompt import build_prompt
from .schema import AnalysisResponse, FindingCandidate, RejectedCandidate

__all__ = [
    "ReasoningModel",
    "LLMConfig",
    "ReasoningServiceConfig",
    "LocalReasoningModel",
    "HttpReasoningClient",
    "build_prompt",
    "extract_payload",
    "parse_analysis_response",
    "validate_candidates",
    "AnalysisResponse",
    "FindingCandidate",
    "RejectedCandidate",
]
