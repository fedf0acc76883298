from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(slots=True)
class SimulationConfig:
    # Provider selection
    provider: str = "openai"  # "openai" | "anthropic"
    openai_model: str = "o1"
    reasoning_effort: str = "high"
    anthropic_model: str = "claude-sonnet-4-5"
    # Anthropic requires an explicit output budget; OpenAI reasoning models ignore it when None.
    max_output_tokens: int | None = 16000

    # Reproducibility (passed through as the OpenAI request seed, also seeds outcome sampling)
    seed: int | None = None

    # Narrator settings
    max_context_length: int = 100_000  # characters of ground truth fed into each prompt
    max_experts: int = 5
    expert_max_concurrency: int = 5
    enable_outcome_sampling: bool = False

    # LLM gateway retry (transient failures)
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0

    @property
    def model(self) -> str:
        return self.anthropic_model if self.provider == "anthropic" else self.openai_model

    @classmethod
    def from_env(cls, *, provider: str | None = None) -> SimulationConfig:
        """Build a config from WORLDSIM_* variables.

        An explicit ``provider`` wins over WORLDSIM_PROVIDER and is applied before
        WORLDSIM_MODEL, so the model name lands on the provider actually used.
        """
        cfg = cls()
        env_provider = os.getenv("WORLDSIM_PROVIDER")
        if env_provider:
            cfg.provider = env_provider.strip().lower()
        if provider:
            cfg.provider = provider
        model = os.getenv("WORLDSIM_MODEL")
        if model:
            cfg.set_model(model.strip())
        effort = os.getenv("WORLDSIM_REASONING_EFFORT")
        if effort:
            cfg.reasoning_effort = effort.strip()
        seed = os.getenv("WORLDSIM_SEED")
        if seed:
            cfg.seed = int(seed)
        max_ctx = os.getenv("WORLDSIM_MAX_CONTEXT_LENGTH")
        if max_ctx:
            cfg.max_context_length = int(max_ctx)
        return cfg

    def set_model(self, model: str) -> None:
        """Override the model for the currently selected provider."""
        if self.provider == "anthropic":
            self.anthropic_model = model
        else:
            self.openai_model = model

    def validate(self) -> None:
        if self.provider not in {"openai", "anthropic"}:
            raise ValueError(f"Unknown provider: {self.provider}")
        if self.max_context_length <= 0:
            raise ValueError(f"max_context_length must be positive, got {self.max_context_length}")
        if self.max_experts < 0:
            raise ValueError(f"max_experts must be non-negative, got {self.max_experts}")
        if self.expert_max_concurrency <= 0:
            raise ValueError(f"expert_max_concurrency must be positive, got {self.expert_max_concurrency}")
