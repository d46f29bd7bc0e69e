"""
Reasoning provider interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ReasoningModel(ABC):
    """
    A reasoning service that turns a prompt into raw output.

    Implementations raise ModelInferenceError on failure, with
    ``transient=True`` when a retry may succeed.
    """

    name: str = "reasoning"

    @abstractmethod
    def generate(self, prompt: str) -> Any:
        """Return raw output: text, or a provider response envelope."""
