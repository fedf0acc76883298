from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest

from worldsim.llm.config import SimulationConfig
from worldsim.llm.gateway import (
    WEIGHTED_OUTCOME_TOOL,
    ChatMessage,
    LLMGateway,
    WeightedOutcome,
    sample_from_weighted_outcomes,
)


class _FixedRng:
    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def _openai_response(content: str | None = "openai-ok", tool_calls=None):  # type: ignore[no-untyped-def]
    # Mimic OpenAI response shape: choices[0].message.content + usage.prompt_tokens/completion_tokens
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=tool_calls))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=34),
    )


def _install_fake_openai(monkeypatch: pytest.MonkeyPatch, recorder: dict, response=None):  # type: ignore[no-untyped-def]
    from worldsim.llm import gateway as gw_mod

    class _Completions:
        async def create(self, **kwargs):  # type: ignore[no-untyped-def]
            recorder.setdefault("create_kwargs", []).append(dict(kwargs))
            return response if response is not None else _openai_response()

    def _fake_async_openai(**kwargs):  # type: ignore[no-untyped-def]
        recorder["ctor_kwargs"] = dict(kwargs)
        return SimpleNamespace(chat=SimpleNamespace(completions=_Completions()))

    monkeypatch.setattr(gw_mod, "AsyncOpenAI", _fake_async_openai)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


def test_send_prompt_uses_max_intelligence_openai_params(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder: dict = {}
    _install_fake_openai(monkeypatch, recorder)

    gw = LLMGateway(SimulationConfig(seed=7))
    out = asyncio.run(gw.send_prompt("What happened this week?"))

    assert out == "openai-ok"
    assert recorder["ctor_kwargs"]["api_key"] == "sk-test"
    kwargs = recorder["create_kwargs"][0]
    assert kwargs["model"] == "o1"
    assert kwargs["reasoning_effort"] == "high"
    assert kwargs["seed"] == 7
    assert kwargs["stream"] is False
    assert kwargs["messages"] == [{"role": "user", "content": "What happened this week?"}]
    assert "tools" not in kwargs


def test_summary_is_not_sent_to_the_api(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder: dict = {}
    _install_fake_openai(monkeypatch, recorder)

    gw = LLMGateway()
    messages = [
        ChatMessage(role="developer", content="Be terse.", summary="style"),
        ChatMessage(role="user", content="x" * 500, summary="long ground truth"),
    ]
    asyncio.run(gw.send_prompt(messages))

    sent = recorder["create_kwargs"][0]["messages"]
    assert sent == [{"role": "developer", "content": "Be terse."}, {"role": "user", "content": "x" * 500}]


def test_reasoning_effort_omitted_for_non_reasoning_model(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder: dict = {}
    _install_fake_openai(monkeypatch, recorder)

    gw = LLMGateway(SimulationConfig(openai_model="gpt-4o"))
    asyncio.run(gw.send_prompt("hi"))

    kwargs = recorder["create_kwargs"][0]
    assert kwargs["model"] == "gpt-4o"
    assert "reasoning_effort" not in kwargs
    assert "seed" not in kwargs


def test_request_count_and_usage_accumulate(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder: dict = {}
    _install_fake_openai(monkeypatch, recorder)

    gw = LLMGateway()

    async def _two_calls() -> None:
        await gw.send_prompt("one")
        await gw.send_prompt("two")

    asyncio.run(_two_calls())
    assert gw.request_count == 2
    assert gw.usage_total.input_tokens == 24
    assert gw.usage_total.output_tokens == 68


def test_missing_openai_key_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    gw = LLMGateway()
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        asyncio.run(gw.send_prompt("hi"))


def test_anthropic_provider_moves_system_messages(monkeypatch: pytest.MonkeyPatch) -> None:
    from worldsim.llm import gateway as gw_mod

    recorder: dict = {}

    class _Messages:
        async def create(self, **kwargs):  # type: ignore[no-untyped-def]
            recorder["create_kwargs"] = dict(kwargs)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="anthropic-"),
                    SimpleNamespace(type="text", text="ok"),
                ],
                usage=SimpleNamespace(input_tokens=100, output_tokens=200),
            )

    def _fake_async_anthropic(**kwargs):  # type: ignore[no-untyped-def]
        recorder["ctor_kwargs"] = dict(kwargs)
        return SimpleNamespace(messages=_Messages())

    monkeypatch.setattr(gw_mod.anthropic, "AsyncAnthropic", _fake_async_anthropic)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "anth-test")

    gw = LLMGateway(SimulationConfig(provider="anthropic"))
    out = asyncio.run(
        gw.send_prompt(
            [
                ChatMessage(role="system", content="SYS"),
                ChatMessage(role="user", content="USER"),
            ]
        )
    )

    assert out == "anthropic-ok"
    assert recorder["ctor_kwargs"]["api_key"] == "anth-test"
    kwargs = recorder["create_kwargs"]
    assert kwargs["model"] == gw.config.anthropic_model
    assert kwargs["system"] == "SYS"
    assert kwargs["messages"] == [{"role": "user", "content": "USER"}]
    assert kwargs["max_tokens"] == gw.config.max_output_tokens
    assert gw.usage_total.output_tokens == 200


def test_openai_weighted_outcome_tool_call_is_sampled(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder: dict = {}
    arguments = json.dumps(
        {
            "outcomes": [
                {"outcome": "ceasefire holds", "weight": 1},
                {"outcome": "ceasefire collapses", "weight": 3},
            ]
        }
    )
    tool_calls = [
        SimpleNamespace(function=SimpleNamespace(name="sample_from_weighted_outcomes", arguments=arguments))
    ]
    _install_fake_openai(monkeypatch, recorder, response=_openai_response(content=None, tool_calls=tool_calls))

    gw = LLMGateway()
    gw._rng = _FixedRng(0.9)  # type: ignore[assignment]
    out = asyncio.run(gw.send_prompt("Will it hold?", tools=[WEIGHTED_OUTCOME_TOOL]))

    assert out == "ceasefire collapses"
    sent_tools = recorder["create_kwargs"][0]["tools"]
    assert sent_tools[0]["type"] == "function"
    assert sent_tools[0]["function"]["name"] == "sample_from_weighted_outcomes"


def test_unknown_tool_call_is_returned_as_json(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder: dict = {}
    tool_calls = [SimpleNamespace(function=SimpleNamespace(name="lookup", arguments='{"q": "grid"}'))]
    _install_fake_openai(monkeypatch, recorder, response=_openai_response(content=None, tool_calls=tool_calls))

    gw = LLMGateway()
    out = asyncio.run(gw.send_prompt("?", tools=[{"name": "lookup", "parameters": {}}]))
    assert json.loads(out) == {"name": "lookup", "arguments": {"q": "grid"}}


def test_anthropic_tool_use_block_is_sampled(monkeypatch: pytest.MonkeyPatch) -> None:
    from worldsim.llm import gateway as gw_mod

    recorder: dict = {}

    class _Messages:
        async def create(self, **kwargs):  # type: ignore[no-untyped-def]
            recorder["create_kwargs"] = dict(kwargs)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(
                        type="tool_use",
                        name="sample_from_weighted_outcomes",
                        input={"outcomes": [{"outcome": "only", "weight": 2}]},
                    )
                ],
                usage=SimpleNamespace(input_tokens=1, output_tokens=1),
            )

    monkeypatch.setattr(gw_mod.anthropic, "AsyncAnthropic", lambda **kw: SimpleNamespace(messages=_Messages()))
    monkeypatch.setenv("ANTHROPIC_API_KEY", "anth-test")

    gw = LLMGateway(SimulationConfig(provider="anthropic"))
    out = asyncio.run(gw.send_prompt("?", tools=[WEIGHTED_OUTCOME_TOOL]))

    assert out == "only"
    assert recorder["create_kwargs"]["tools"][0]["input_schema"] == WEIGHTED_OUTCOME_TOOL["parameters"]


def test_sample_from_weighted_outcomes_respects_cumulative_weights() -> None:
    outcomes = [WeightedOutcome("a", 1.0), WeightedOutcome("b", 3.0)]
    assert sample_from_weighted_outcomes(outcomes, _FixedRng(0.1)) == "a"  # type: ignore[arg-type]
    assert sample_from_weighted_outcomes(outcomes, _FixedRng(0.25)) == "a"  # type: ignore[arg-type]
    assert sample_from_weighted_outcomes(outcomes, _FixedRng(0.26)) == "b"  # type: ignore[arg-type]
    assert sample_from_weighted_outcomes(outcomes, _FixedRng(0.999999)) == "b"  # type: ignore[arg-type]


def test_sample_from_weighted_outcomes_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        sample_from_weighted_outcomes([])
    with pytest.raises(ValueError):
        sample_from_weighted_outcomes([WeightedOutcome("a", 0.0)])


def test_set_seed_makes_sampling_reproducible() -> None:
    outcomes = [WeightedOutcome(str(i), 1.0) for i in range(10)]
    gw = LLMGateway()

    gw.set_seed(123)
    first = [sample_from_weighted_outcomes(outcomes, gw._rng) for _ in range(5)]
    gw.set_seed(123)
    second = [sample_from_weighted_outcomes(outcomes, gw._rng) for _ in range(5)]

    assert first == second
    assert gw.config.seed == 123


def test_chat_message_preview_truncates_long_content() -> None:
    msg = ChatMessage(role="user", content="y" * 250)
    assert msg.preview() == "y" * 100 + "... (250 chars)"
    assert ChatMessage(role="user", content="short").preview() == "short"
    assert ChatMessage(role="user", content="y" * 250, summary="ground truth").preview() == "ground truth"


def test_retry_on_transient_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Gateway retries on 529/overloaded errors."""
    from worldsim.llm import gateway as gw_mod

    class _OverloadedError(Exception):
        status_code = 529

    recorder: dict[str, object] = {"calls": 0, "sleep_delays": []}

    async def _fake_sleep(delay: float) -> None:
        recorder["sleep_delays"].append(float(delay))  # type: ignore[union-attr]

    monkeypatch.setattr(gw_mod.asyncio, "sleep", _fake_sleep)
    monkeypatch.setattr(gw_mod.random, "uniform", lambda _a, _b: 1.0)

    class _FlakyCompletions:
        async def create(self, **kwargs):  # type: ignore[no-untyped-def]
            recorder["calls"] = int(recorder["calls"]) + 1  # type: ignore[call-overload]
            if int(recorder["calls"]) <= 2:  # type: ignore[call-overload]
                raise _OverloadedError("overloaded")
            return _openai_response("finally")

    monkeypatch.setattr(
        gw_mod, "AsyncOpenAI", lambda **kw: SimpleNamespace(chat=SimpleNamespace(completions=_FlakyCompletions()))
    )
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    gw = LLMGateway()
    out = asyncio.run(gw.send_prompt("hi"))

    assert out == "finally"
    assert recorder["calls"] == 3
    assert recorder["sleep_delays"] == [2.0, 4.0]


def test_retry_exhaustion_raises_first_error(monkeypatch: pytest.MonkeyPatch) -> None:
    from worldsim.llm import gateway as gw_mod

    class _RateLimited(Exception):
        status_code = 429

    calls: list[int] = []

    async def _fake_sleep(_delay: float) -> None:
        return None

    monkeypatch.setattr(gw_mod.asyncio, "sleep", _fake_sleep)

    class _AlwaysFail:
        async def create(self, **kwargs):  # type: ignore[no-untyped-def]
            calls.append(1)
            raise _RateLimited(f"attempt {len(calls)}")

    monkeypatch.setattr(gw_mod, "AsyncOpenAI", lambda **kw: SimpleNamespace(chat=SimpleNamespace(completions=_AlwaysFail())))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    gw = LLMGateway(SimulationConfig(retry_max_attempts=4))
    with pytest.raises(_RateLimited, match="attempt 1"):
        asyncio.run(gw.send_prompt("hi"))
    assert len(calls) == 4


def test_non_transient_error_is_not_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    from worldsim.llm import gateway as gw_mod

    calls: list[int] = []

    class _BadRequest:
        async def create(self, **kwargs):  # type: ignore[no-untyped-def]
            calls.append(1)
            raise ValueError("bad request")

    monkeypatch.setattr(gw_mod, "AsyncOpenAI", lambda **kw: SimpleNamespace(chat=SimpleNamespace(completions=_BadRequest())))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    gw = LLMGateway()
    with pytest.raises(ValueError, match="bad request"):
        asyncio.run(gw.send_prompt("hi"))
    assert len(calls) == 1
