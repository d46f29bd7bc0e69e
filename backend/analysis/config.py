"""
Configuration for the deep analysis context and call policy.

All settings are bounded to avoid oversized context payloads and
unbounded retry loops.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

DEFAULT_PROTOCOL_DESCRIPTION = (
    "EtherFi is an Ethereum liquid staking protocol. Users stake ETH and receive "
    "eETH, a liquid staking token that maintains a ~1:1 peg with ETH and can be "
    "used across DeFi while earning staking rewards. Withdrawals are processed "
    "through a queue."
)


class AnalysisConfig(BaseModel):
    """
    Deep analysis configuration.

    Notes:
    - max_recent_samples: recent snapshots attached to the context (hard cap 20).
    - max_retries: total attempts against the reasoning service.
    - retry_base_delay_seconds: backoff before retry n is base * 2^(n-1).
    - max_title_length: finding titles are truncated to this length.
    - default_confidence: used when the service reports an unparseable confidence.
    """

    protocol_name: str = "EtherFi"
    protocol_description: str = DEFAULT_PROTOCOL_DESCRIPTION
    max_recent_samples: int = Field(10, ge=1, le=20)
    max_retries: int = Field(3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(2.0, ge=0.0)
    max_title_length: int = Field(200, ge=10, le=200)
    default_confidence: float = Field(0.5, ge=0.0, le=1.0)
