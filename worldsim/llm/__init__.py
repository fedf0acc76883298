"""LLM integration layer for worldsim.

Importing this package has no side effects. Provider clients are created lazily on first use.
"""

from __future__ import annotations

from worldsim.llm.config import SimulationConfig
from worldsim.llm.gateway import (
    WEIGHTED_OUTCOME_TOOL,
    ChatMessage,
    LLMGateway,
    Provider,
    UsageStats,
    WeightedOutcome,
    sample_from_weighted_outcomes,
)

__all__ = [
    "ChatMessage",
    "LLMGateway",
    "Provider",
    "SimulationConfig",
    "UsageStats",
    "WEIGHTED_OUTCOME_TOOL",
    "WeightedOutcome",
    "sample_from_weighted_outcomes",
]
