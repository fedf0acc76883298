from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Sequence

from worldsim.errors import SimulationError
from worldsim.llm.config import SimulationConfig
from worldsim.llm.gateway import WEIGHTED_OUTCOME_TOOL, LLMGateway
from worldsim.log import progress
from worldsim.simulation.ground_truth import build_ground_truth_context
from worldsim.simulation.prompts import (
    SPLIT_MARKER,
    build_expert_prompt,
    build_final_analysis_prompt,
    build_initial_snapshot_prompt,
    build_narrator_prompt,
)
from worldsim.simulation.types import (
    ExpertRequest,
    ExpertResponse,
    GroundTruth,
    Snapshot,
    WeekResult,
)


logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response parsing patterns
# ---------------------------------------------------------------------------

# A block may not run past the next "#" or "##" heading; "###" sub-headings are fine.
_NOT_TOP_HEADING = r"(?:(?!^#{1,2}[ \t]).)"

_EXPERT_BLOCK_RE = re.compile(
    r"^##[ \t]+(?P<domain>[^\n]+?)[ \t]*\n"
    r"###[ \t]+Expert Profile[ \t]*\n"
    rf"(?P<profile>{_NOT_TOP_HEADING}*?)\n"
    r"###[ \t]+Analysis Required[ \t]*\n"
    rf"(?P<query>{_NOT_TOP_HEADING}*)",
    re.MULTILINE | re.DOTALL,
)

WEEK = timedelta(days=7)


def parse_expert_requests(narrator_response: str, limit: int | None = None) -> list[ExpertRequest]:
    """Extract ``## Domain / ### Expert Profile / ### Analysis Required`` blocks.

    Best effort: blocks missing either sub-heading are ignored.
    """
    text = narrator_response.replace("\r\n", "\n")
    requests: list[ExpertRequest] = []
    for m in _EXPERT_BLOCK_RE.finditer(text):
        domain = m.group("domain").strip()
        profile = m.group("profile").strip()
        query = m.group("query").strip()
        if not domain or not query:
            continue
        requests.append(ExpertRequest(domain=domain, profile=profile, query=query))

    if limit is not None and len(requests) > limit:
        logger.warning(
            "Narrator requested %d experts; consulting the first %d (%s dropped)",
            len(requests),
            limit,
            ", ".join(r.domain for r in requests[limit:]),
        )
        requests = requests[:limit]
    return requests


def split_final_response(response: str) -> tuple[str, str]:
    """Split the final analysis into (snapshot content, report) on the first marker."""
    snapshot_content, sep, report = response.partition(SPLIT_MARKER)
    if not sep:
        logger.debug("Final response has no %s marker: %.200s", SPLIT_MARKER, response)
        raise SimulationError("Failed to generate simulation output")
    return snapshot_content.strip(), report.strip()


class Narrator:
    """Runs one simulation week: narrator pass, expert fan-out, final synthesis."""

    def __init__(
        self,
        gateway: LLMGateway,
        config: SimulationConfig | None = None,
        start_date: datetime | None = None,
    ):
        self.gateway = gateway
        self.config = config or gateway.config
        self.start_date = start_date or datetime.now(UTC)

    def ground_truth_context(self, ground_truth: Sequence[GroundTruth]) -> str:
        return build_ground_truth_context(ground_truth, self.config.max_context_length)

    def simulation_date(self, week: int, previous: Snapshot | None = None) -> datetime:
        """Date of ``week``: one week after the previous snapshot when its date is known."""
        prev_date = previous.parsed_date() if previous is not None else None
        if prev_date is not None:
            return prev_date + WEEK
        return self.start_date + week * WEEK

    async def generate_initial_snapshot(self, ground_truth: Sequence[GroundTruth]) -> Snapshot:
        context = self.ground_truth_context(ground_truth)

        progress(logger, "Initial Analysis", "Generating current world state snapshot")
        content = await self.gateway.send_prompt(build_initial_snapshot_prompt(context))
        return Snapshot(week=0, date=self.start_date.isoformat(), content=content)

    async def consult_experts(self, narrator_response: str) -> list[ExpertResponse]:
        """Ask every requested expert concurrently. One failure fails the whole batch."""
        requests = parse_expert_requests(narrator_response, limit=self.config.max_experts)
        if not requests:
            logger.warning("Narrator response named no experts; continuing without expert input")
            return []

        semaphore = asyncio.Semaphore(int(self.config.expert_max_concurrency))
        sampling = bool(self.config.enable_outcome_sampling)
        tools = [WEIGHTED_OUTCOME_TOOL] if sampling else None

        async def _ask(req: ExpertRequest) -> ExpertResponse:
            async with semaphore:
                logger.debug("Consulting expert: %s", req.domain)
                response = await self.gateway.send_prompt(
                    build_expert_prompt(req, outcome_sampling=sampling),
                    tools=tools,
                )
            return ExpertResponse(domain=req.domain, response=response)

        # gather preserves request order and re-raises the first failure.
        return list(await asyncio.gather(*(_ask(r) for r in requests)))

    async def simulate_one_week(
        self,
        snapshot: Snapshot | None,
        ground_truth: Sequence[GroundTruth],
    ) -> WeekResult:
        context = self.ground_truth_context(ground_truth)

        progress(logger, "Narrator Analysis", "Getting initial assessment")
        narrator_response = await self.gateway.send_prompt(build_narrator_prompt(snapshot, context))

        progress(logger, "Expert Consultation", "Delegating to domain experts")
        experts = await self.consult_experts(narrator_response)
        logger.info("Consulted %d domain experts", len(experts))

        progress(logger, "Final Analysis", "Generating comprehensive simulation update")
        final_response = await self.gateway.send_prompt(build_final_analysis_prompt(narrator_response, experts))
        snapshot_content, report = split_final_response(final_response)

        week = (snapshot.week if snapshot is not None else 0) + 1
        date = self.simulation_date(week, previous=snapshot)
        new_snapshot = Snapshot(week=week, date=date.isoformat(), content=snapshot_content)

        logger.info("Week %d simulation complete (%s)", week, date.isoformat())
        return WeekResult(snapshot=new_snapshot, report=report, date=date, experts=experts)
