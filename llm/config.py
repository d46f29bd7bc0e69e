"""
Configuration for reasoning service providers.

Two providers are supported:
- "http": an Ollama-compatible /api/generate endpoint
- "local": a Hugging Face causal LM loaded from disk (optional LoRA adapter)
"""

from __future__ import annotations

import os

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# LoRA inference toggle
USE_LORA = _parse_bool(os.getenv("USE_LORA"), False)
LORA_PATH = os.getenv("LORA_PATH", "llm/models/lora")


class LLMConfig(BaseModel):
    """
    Configuration for the local causal LM.

    Notes:
    - model_path must point to a local directory or a hub id.
    - temperature is 0.0 and sampling is disabled to keep output shape stable.
    - local_files_only is switched on automatically when model_path exists on disk.
    """

    model_path: str = Field(..., description="Local filesystem path to the model")
    max_new_tokens: int = Field(1024, ge=64, le=4096)
    temperature: float = Field(0.0, ge=0.0, le=1.0)
    top_p: float = Field(0.9, ge=0.0, le=1.0)
    repetition_penalty: float = Field(1.05, ge=1.0, le=2.0)
    local_files_only: bool = False
    use_lora: bool = USE_LORA
    lora_path: str = LORA_PATH

    def model_post_init(self, __context: object) -> None:
        path = Path(self.model_path)
        if path.exists():
            self.local_files_only = True


class ReasoningServiceConfig(BaseModel):
    """
    Provider selection and HTTP client settings.

    Notes:
    - request_timeout_seconds bounds a single HTTP call; the orchestrator
      applies its own overall timeout across retries.
    - num_predict caps generated tokens on the server side.
    """

    provider: Literal["http", "local"] = "http"
    base_url: str = Field(
        default_factory=lambda: os.getenv("REASONING_URL", "http://localhost:11434")
    )
    model: str = Field(default_factory=lambda: os.getenv("REASONING_MODEL", "qwen2.5"))
    request_timeout_seconds: float = Field(30.0, gt=0.0)
    temperature: float = Field(0.1, ge=0.0, le=1.0)
    num_predict: int = Field(2000, ge=64)
    model_path: Optional[str] = Field(default_factory=lambda: os.getenv("MODEL_PATH"))
