"""
HTTP reasoning client for Ollama-compatible servers.

Posts the prompt to ``/api/generate`` in JSON mode and returns the decoded
response envelope (``{"response": "...", ...}``) untouched; unwrapping and
validation happen in ``llm.parsing``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from stakewatch.core.exceptions import ModelInferenceError

from .base import ReasoningModel
from .config import ReasoningServiceConfig

logger = logging.getLogger("llm.http")

TRANSIENT_STATUS_CODES = {408, 425, 429}


class HttpReasoningClient(ReasoningModel):
    """
    Reasoning client over HTTP.

    Error classification:
    - transport errors, timeouts, 5xx, 408/425/429 -> transient
    - any other 4xx, or a body that is not JSON -> non-transient
    """

    name = "http"

    def __init__(
        self,
        config: Optional[ReasoningServiceConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or ReasoningServiceConfig()
        self.session = session or requests.Session()
        self.url = self.config.base_url.rstrip("/") + "/api/generate"

    def generate(self, prompt: str) -> Dict[str, Any]:
        payload = {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.num_predict,
            },
        }

        logger.debug("Calling reasoning service %s (model=%s)", self.url, self.config.model)
        try:
            response = self.session.post(
                self.url, json=payload, timeout=self.config.request_timeout_seconds
            )
        except requests.Timeout as exc:
            raise ModelInferenceError(f"Reasoning service timed out: {exc}", transient=True) from exc
        except requests.RequestException as exc:
            raise ModelInferenceError(f"Reasoning service unreachable: {exc}", transient=True) from exc

        status = response.status_code
        if status >= 500 or status in TRANSIENT_STATUS_CODES:
            raise ModelInferenceError(
                f"Reasoning service returned HTTP {status}", transient=True
            )
        if status >= 400:
            raise ModelInferenceError(
                f"Reasoning service rejected request: HTTP {status}: {response.text[:200]}",
                transient=False,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ModelInferenceError(
                f"Reasoning service returned non-JSON body: {response.text[:200]}",
                transient=False,
            ) from exc

        if isinstance(body, dict):
            logger.info(
                "Reasoning service call successful (model=%s, eval_count=%s)",
                body.get("model", self.config.model),
                body.get("eval_count"),
            )
        return body
