"""
Local causal LM loader and inference wrapper.

Uses local_files_only=True when the model path exists on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Optional

from transformers import AutoModelForCausalLM, AutoTokenizer

from stakewatch.core.exceptions import ModelInferenceError

from .base import ReasoningModel
from .config import LLMConfig

logger = logging.getLogger("llm")


@dataclass
class LocalReasoningModel(ReasoningModel):
    """
    Local model wrapper.

    Provides deterministic generation with do_sample=False. Only newly
    generated tokens are decoded, so the prompt is never echoed back.
    """

    config: LLMConfig
    _tokenizer: Optional[AutoTokenizer] = None
    _model: Optional[AutoModelForCausalLM] = None
    name: str = "local"
    _load_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def load(self) -> None:
        with self._load_lock:
            if self._model is not None and self._tokenizer is not None:
                return
            self._load()

    def _load(self) -> None:
        try:
            import torch
            device = "cuda" if torch.cuda.is_available() else "cpu"
        except ImportError:
            device = "cpu"

        logger.info(
            "Loading base model from %s (local_files_only=%s, device=%s)",
            self.config.model_path,
            self.config.local_files_only,
            device,
        )
        try:
            tokenizer = AutoTokenizer.from_pretrained(
                self.config.model_path, local_files_only=self.config.local_files_only
            )
            model = AutoModelForCausalLM.from_pretrained(
                self.config.model_path, local_files_only=self.config.local_files_only
            )
        except (OSError, ValueError) as exc:
            raise ModelInferenceError(f"Model load failed: {exc}", transient=False) from exc
        logger.info("Base model loaded successfully")

        if self.config.use_lora:
            from peft import PeftModel

            logger.info("Attaching LoRA adapter from %s", self.config.lora_path)
            model = PeftModel.from_pretrained(
                model,
                self.config.lora_path,
                is_trainable=False,
                local_files_only=self.config.local_files_only,
            )
            logger.info("LoRA adapter attached")
        model.eval()

        # Published only once fully loaded; generate() checks these without the lock
        self._tokenizer = tokenizer
        self._model = model

    def generate(self, prompt: str) -> str:
        if self._model is None or self._tokenizer is None:
            self.load()

        max_positions = getattr(self._model.config, "n_positions", None) or getattr(
            self._model.config, "max_position_embeddings", None
        )
        model_max_length = self._tokenizer.model_max_length
        if max_positions:
            max_length = min(model_max_length, max_positions)
        else:
            max_length = model_max_length

        max_input_tokens = max_length - self.config.max_new_tokens
        if max_input_tokens < 1:
            max_input_tokens = max_length

        text = self._format_prompt(prompt)
        inputs = self._tokenizer(
            text,
            return_tensors="pt",
            truncation=True,
            max_length=max_input_tokens,
        )
        prompt_length = inputs["input_ids"].shape[1]
        max_available = max_length - prompt_length
        max_new_tokens = max(1, min(self.config.max_new_tokens, max_available))

        try:
            output_ids = self._model.generate(
                **inputs,
                max_new_tokens=max_new_tokens,
                temperature=self.config.temperature,
                top_p=self.config.top_p,
                repetition_penalty=self.config.repetition_penalty,
                do_sample=False,
                eos_token_id=self._tokenizer.eos_token_id,
            )
        except RuntimeError as exc:
            # CUDA OOM and similar runtime faults may clear on a later attempt
            raise ModelInferenceError(f"Generation failed: {exc}", transient=True) from exc

        return self._tokenizer.decode(output_ids[0][prompt_length:], skip_special_tokens=True)

    def _format_prompt(self, prompt: str) -> str:
        if getattr(self._tokenizer, "chat_template", None):
            return self._tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                tokenize=False,
                add_generation_prompt=True,
            )
        return prompt
