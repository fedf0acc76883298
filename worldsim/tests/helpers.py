from __future__ import annotations

from typing import Any

from worldsim.llm.config import SimulationConfig
from worldsim.llm.gateway import LLMGateway


NARRATOR_REPLY = """\
# Initial Assessment
Food prices are climbing while grid operators report probing attacks.

# Required Expertise
## Climate Science
### Expert Profile
Former lead author on regional monsoon projections.
### Analysis Required
Assess the risk of a second failed monsoon.
Quantify likely crop losses.

## Cybersecurity
### Expert Profile
Incident responder for national CERT teams
with ten years of grid experience.
### Analysis Required
Evaluate the credibility of the grid intrusion reports.

# Expected Developments
Escalation in both domains is likely over the coming week.
"""

FINAL_REPLY = """\
# Global Situation
The world is one week further along.
[SPLIT]
# Executive Summary
Things got worse.
"""

INITIAL_REPLY = "# Global Situation\nInitial world state."


def scripted_reply(prompt: str) -> str:
    """Canned model output keyed on which prompt template produced ``prompt``."""
    if prompt.startswith("You are tasked with creating"):
        return INITIAL_REPLY
    if prompt.startswith("You are the Narrator"):
        return NARRATOR_REPLY
    if prompt.startswith("You are a leading expert in "):
        domain = prompt[len("You are a leading expert in ") :].split(".", 1)[0]
        return f"## {domain} findings\n- risk is elevated"
    if prompt.startswith("Based on the following information"):
        return FINAL_REPLY
    raise AssertionError(f"Unexpected prompt: {prompt[:80]!r}")


def scripted_gateway(
    config: SimulationConfig | None = None,
    calls: list[dict[str, Any]] | None = None,
) -> LLMGateway:
    """A real gateway whose network call is replaced by ``scripted_reply``."""
    gw = LLMGateway(config or SimulationConfig())
    log = calls if calls is not None else []

    async def _send_prompt(prompt, tools=None):  # type: ignore[no-untyped-def]
        log.append({"prompt": prompt, "tools": tools})
        gw.request_count += 1
        return scripted_reply(prompt)

    gw.send_prompt = _send_prompt  # type: ignore[assignment]
    return gw
