from __future__ import annotations

import asyncio
import json
import logging
import os
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Sequence, TypeVar

import anthropic
import openai
from openai import AsyncOpenAI

from worldsim.llm.config import SimulationConfig


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_DEBUG_PREVIEW_CHARS = 100

# Model families that accept `reasoning_effort`.
_REASONING_MODEL_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class Provider(Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass(slots=True)
class ChatMessage:
    role: Literal["system", "user", "assistant", "developer"]
    content: str
    summary: str | None = None  # shown in debug logs instead of the full content

    def to_api(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    def preview(self) -> str:
        if self.summary:
            return self.summary
        if len(self.content) > _DEBUG_PREVIEW_CHARS:
            return f"{self.content[:_DEBUG_PREVIEW_CHARS]}... ({len(self.content)} chars)"
        return self.content


@dataclass(slots=True)
class WeightedOutcome:
    outcome: str
    weight: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WeightedOutcome:
        return cls(outcome=str(data.get("outcome", "")), weight=float(data.get("weight", 0.0) or 0.0))


@dataclass(slots=True)
class UsageStats:
    input_tokens: int = 0
    output_tokens: int = 0

    def estimate_cost(self, pricing: Literal["o1", "claude_sonnet"]) -> float:
        """Rough cost estimate in USD.

        - o1: $15.00 / MTok input, $60.00 / MTok output (reasoning tokens bill as output)
        - Claude Sonnet: $3.00 / MTok input, $15.00 / MTok output
        """
        if pricing == "o1":
            in_cost = 15.0 / 1_000_000.0
            out_cost = 60.0 / 1_000_000.0
        else:
            in_cost = 3.0 / 1_000_000.0
            out_cost = 15.0 / 1_000_000.0
        return self.input_tokens * in_cost + self.output_tokens * out_cost

    def add(self, other: UsageStats) -> None:
        self.input_tokens += int(other.input_tokens)
        self.output_tokens += int(other.output_tokens)


WEIGHTED_OUTCOME_TOOL: dict[str, Any] = {
    "name": "sample_from_weighted_outcomes",
    "description": (
        "Pick one outcome at random from a list of possible outcomes, each with a relative weight. "
        "Use this when a development is genuinely uncertain instead of choosing the outcome yourself."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "outcomes": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "outcome": {"type": "string"},
                        "weight": {"type": "number"},
                    },
                    "required": ["outcome", "weight"],
                },
            }
        },
        "required": ["outcomes"],
    },
}


def sample_from_weighted_outcomes(
    outcomes: Sequence[WeightedOutcome],
    rng: random.Random | None = None,
) -> str:
    """Draw one outcome with probability proportional to its weight."""
    if not outcomes:
        raise ValueError("Cannot sample from an empty outcome list")
    total = sum(float(o.weight) for o in outcomes)
    if total <= 0:
        raise ValueError(f"Outcome weights must sum to a positive value, got {total}")

    u = (rng or random).random()
    cum = 0.0
    for o in outcomes:
        cum += float(o.weight) / total
        if u <= cum:
            return o.outcome
    # Float rounding can leave the cumulative sum a hair under 1.0.
    return outcomes[-1].outcome


class LLMGateway:
    """Single entry point for every model call made by the simulation."""

    def __init__(self, config: SimulationConfig | None = None):
        self.config = config or SimulationConfig()
        self.usage_total = UsageStats()
        self.request_count = 0
        self._rng = random.Random(self.config.seed)
        self._usage_lock = asyncio.Lock()
        self._openai_client: Any | None = None
        self._anthropic_client: Any | None = None

    @property
    def provider(self) -> Provider:
        return Provider(self.config.provider)

    def set_seed(self, seed: int | None) -> None:
        self.config.seed = seed
        self._rng = random.Random(seed)

    async def send_prompt(
        self,
        prompt: str | Sequence[ChatMessage],
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> str:
        """Send one chat request and return the assistant text.

        A plain string is sent as a single user message. If the model answers with a
        tool call, the tool is resolved locally and its result is returned instead.
        """
        messages = [ChatMessage(role="user", content=prompt)] if isinstance(prompt, str) else list(prompt)
        self.request_count += 1
        request_id = self.request_count

        logger.debug(
            "API Request #%d messages: %s",
            request_id,
            [{"role": m.role, "content": m.preview()} for m in messages],
        )
        if tools:
            logger.debug("API Request #%d tools: %s", request_id, [t.get("name") for t in tools])

        provider = self.provider
        try:
            if provider is Provider.ANTHROPIC:
                text, usage, tool_call = await self._call_with_retry(
                    provider=provider.value,
                    fn=lambda: self._call_anthropic(messages=messages, tools=tools),
                )
            else:
                text, usage, tool_call = await self._call_with_retry(
                    provider=provider.value,
                    fn=lambda: self._call_openai(messages=messages, tools=tools),
                )
        except Exception as e:
            logger.debug("Error with API Request #%d: %s", request_id, e)
            raise

        await self._record_usage(provider=provider.value, model=self.config.model, usage=usage)

        if tool_call is not None:
            name, arguments = tool_call
            logger.debug("API Request #%d tool call: %s %s", request_id, name, arguments)
            return self._resolve_tool_call(name, arguments)

        logger.info("API Request #%d completed (%d chars)", request_id, len(text))
        logger.debug("API Response #%d: %s", request_id, text)
        return text

    def _resolve_tool_call(self, name: str, arguments: dict[str, Any]) -> str:
        if name == WEIGHTED_OUTCOME_TOOL["name"]:
            outcomes = [
                WeightedOutcome.from_dict(o) for o in (arguments.get("outcomes", []) or []) if isinstance(o, dict)
            ]
            return sample_from_weighted_outcomes(outcomes, self._rng)
        return json.dumps({"name": name, "arguments": arguments}, ensure_ascii=False)

    def _get_openai_client(self) -> Any:
        if self._openai_client is not None:
            return self._openai_client
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("Missing OPENAI_API_KEY")
        self._openai_client = AsyncOpenAI(api_key=api_key)
        return self._openai_client

    def _get_anthropic_client(self) -> Any:
        if self._anthropic_client is not None:
            return self._anthropic_client
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise RuntimeError("Missing ANTHROPIC_API_KEY")
        self._anthropic_client = anthropic.AsyncAnthropic(api_key=api_key)
        return self._anthropic_client

    @staticmethod
    def _extract_status_code(exc: BaseException) -> int | None:
        status = getattr(exc, "status_code", None)
        if isinstance(status, int):
            return status

        resp = getattr(exc, "response", None)
        if resp is not None:
            resp_status = getattr(resp, "status_code", None)
            if isinstance(resp_status, int):
                return resp_status
        return None

    @staticmethod
    def _is_retryable_status_code(status_code: int | None) -> bool:
        if status_code is None:
            return False
        if status_code in {429, 529}:
            return True
        return 500 <= status_code <= 599

    @staticmethod
    def _is_retryable_exception(*, provider: str, exc: BaseException) -> bool:
        if isinstance(exc, asyncio.CancelledError):
            return False

        if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
            return True

        status_code = LLMGateway._extract_status_code(exc)
        if LLMGateway._is_retryable_status_code(status_code):
            return True

        sdk = anthropic if provider == Provider.ANTHROPIC.value else openai
        retryable_types = (
            sdk.InternalServerError,
            sdk.RateLimitError,
            sdk.APITimeoutError,
            sdk.APIConnectionError,
        )
        return isinstance(exc, retryable_types)

    async def _call_with_retry(
        self,
        *,
        provider: str,
        fn: Callable[[], Awaitable[_T]],
    ) -> _T:
        max_attempts = max(1, int(self.config.retry_max_attempts))
        base_delay = max(0.0, float(self.config.retry_base_delay))
        max_delay = max(0.0, float(self.config.retry_max_delay))

        first_exc: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if first_exc is None:
                    first_exc = e

                retryable = self._is_retryable_exception(provider=provider, exc=e)
                if (not retryable) or attempt >= max_attempts:
                    raise first_exc

                delay = min(max_delay, base_delay * (2 ** (attempt - 1))) * random.uniform(0.5, 1.5)
                logger.warning(
                    "Retry %d/%d for %s after %s, waiting %.1fs",
                    attempt,
                    max_attempts,
                    provider,
                    type(e).__name__,
                    delay,
                )
                await asyncio.sleep(delay)

        assert first_exc is not None
        raise first_exc

    async def _call_openai(
        self,
        *,
        messages: list[ChatMessage],
        tools: Sequence[dict[str, Any]] | None,
    ) -> tuple[str, UsageStats, tuple[str, dict[str, Any]] | None]:
        client = self._get_openai_client()
        model = self.config.openai_model

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [m.to_api() for m in messages],
            "stream": False,
        }
        if self.config.reasoning_effort and model.startswith(_REASONING_MODEL_PREFIXES):
            kwargs["reasoning_effort"] = self.config.reasoning_effort
        if self.config.seed is not None:
            kwargs["seed"] = int(self.config.seed)
        if self.config.max_output_tokens:
            kwargs["max_completion_tokens"] = int(self.config.max_output_tokens)
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t.get("description", ""),
                        "parameters": t.get("parameters", {}),
                    },
                }
                for t in tools
            ]

        resp = await client.chat.completions.create(**kwargs)

        text = ""
        tool_call: tuple[str, dict[str, Any]] | None = None
        choices = getattr(resp, "choices", None) or []
        if choices:
            msg = getattr(choices[0], "message", None)
            if msg is not None:
                text = getattr(msg, "content", None) or ""
                calls = getattr(msg, "tool_calls", None) or []
                if calls:
                    fn = getattr(calls[0], "function", None)
                    tool_call = (
                        str(getattr(fn, "name", "")),
                        self._parse_tool_arguments(getattr(fn, "arguments", None)),
                    )

        usage_obj = getattr(resp, "usage", None)
        usage = UsageStats(
            input_tokens=int(getattr(usage_obj, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage_obj, "completion_tokens", 0) or 0),
        )
        return (str(text), usage, tool_call)

    async def _call_anthropic(
        self,
        *,
        messages: list[ChatMessage],
        tools: Sequence[dict[str, Any]] | None,
    ) -> tuple[str, UsageStats, tuple[str, dict[str, Any]] | None]:
        client = self._get_anthropic_client()

        # System and developer messages go in the top-level system parameter.
        system = "\n\n".join(m.content for m in messages if m.role in {"system", "developer"})
        kwargs: dict[str, Any] = {
            "model": self.config.anthropic_model,
            "max_tokens": int(self.config.max_output_tokens or 16000),
            "messages": [m.to_api() for m in messages if m.role in {"user", "assistant"}],
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "input_schema": t.get("parameters", {}),
                }
                for t in tools
            ]

        msg = await client.messages.create(**kwargs)

        text = ""
        tool_call: tuple[str, dict[str, Any]] | None = None
        for block in getattr(msg, "content", []) or []:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text += getattr(block, "text", "")
            elif block_type == "tool_use" and tool_call is None:
                tool_call = (
                    str(getattr(block, "name", "")),
                    self._parse_tool_arguments(getattr(block, "input", None)),
                )

        usage_obj = getattr(msg, "usage", None)
        usage = UsageStats(
            input_tokens=int(getattr(usage_obj, "input_tokens", 0) or 0),
            output_tokens=int(getattr(usage_obj, "output_tokens", 0) or 0),
        )
        return (text, usage, tool_call)

    @staticmethod
    def _parse_tool_arguments(raw: Any) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str) and raw.strip():
            data = json.loads(raw)
            if isinstance(data, dict):
                return data
        return {}

    async def _record_usage(self, *, provider: str, model: str, usage: UsageStats) -> None:
        async with self._usage_lock:
            self.usage_total.add(usage)

        cost_hint = usage.estimate_cost("claude_sonnet" if provider == Provider.ANTHROPIC.value else "o1")
        logger.info(
            "LLM usage provider=%s model=%s input=%s output=%s cost=%.4f",
            provider,
            model,
            usage.input_tokens,
            usage.output_tokens,
            cost_hint,
        )
