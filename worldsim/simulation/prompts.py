from __future__ import annotations

from typing import Sequence

from worldsim.simulation.types import ExpertRequest, ExpertResponse, Snapshot


SPLIT_MARKER = "[SPLIT]"

REPORT_SECTIONS = (
    "Executive Summary",
    "Critical Developments",
    "Comprehensive Threat Assessment",
    "Key Actor Analysis",
    "Domain-by-Domain Analysis",
    "Strategic Implications",
    "Indicators & Warnings",
    "Scenario Projections",
    "Response Options",
    "Intelligence Gaps",
    "Recommendations",
)


def build_initial_snapshot_prompt(ground_truth_context: str) -> str:
    """Prompt for the week-0 snapshot, built from ground truth alone."""

    return f"""\
You are tasked with creating a comprehensive snapshot of the current state of the world based on \
the provided ground truth data. This snapshot will serve as the foundation for future simulation steps.

Ground Truth Data:
{ground_truth_context}

Create a detailed markdown document that captures the complete current state of the world. \
This document must be exhaustive enough to serve as the sole source of truth for future simulation steps.

Structure your response as a markdown document with the following sections:

# Global Situation
- Comprehensive overview
- Major threats and their analysis
- Key actors and their current status
- Systemic risks and global trends

# Domain Analysis
For each relevant domain (climate, economy, technology, etc.):
- Current state and trends
- Critical developments
- Key players and dynamics
- Vulnerabilities and opportunities
- Interconnections with other domains

# Significant Events
- Recent developments
- Impacts and consequences
- Actor involvement
- Public reaction and expert analysis

# Key Metrics and Indicators
- Critical measurements
- Trends and trajectories
- Warning signs
- Reliability assessment

# Intelligence Assessment
- Confirmed information
- Areas of uncertainty
- Active monitoring needs
- Source reliability

# Response Capabilities
- Available resources
- Current preparedness
- Constraints and vulnerabilities
- Contingency plans

# Analysis Framework
- Key assumptions
- Known biases
- Information gaps
- Methodological notes

Remember: Include all details that could be relevant for understanding future developments. \
When in doubt, include more detail rather than less."""


def build_narrator_prompt(snapshot: Snapshot | None, ground_truth_context: str) -> str:
    """Prompt for the narrator pass that assembles the cabinet of experts.

    The snapshot content is embedded verbatim.
    """

    if snapshot is not None:
        context = f"Current simulation week: {snapshot.week}\nCurrent state:\n\n{snapshot.content}\n"
    else:
        context = "Starting new simulation.\n"

    return f"""\
You are the Narrator of a world simulation focused on exploring potential catastrophes and \
worst-case scenarios. Your role is to analyze the situation and assemble a Cabinet of domain experts.

Current Context:
{context}

Ground Truth Data:
{ground_truth_context}

Analyze the current situation and provide your response in the following markdown format:

# Initial Assessment
[Provide your high-level analysis of the current situation]

# Required Expertise
For each domain requiring expert analysis, provide:
## [Domain Name]
### Expert Profile
[Detailed description of the expert's background and capabilities]
### Analysis Required
[Specific questions or areas requiring the expert's analysis]

# Expected Developments
[Summary of anticipated developments for the coming week]"""


def build_expert_prompt(request: ExpertRequest, *, outcome_sampling: bool = False) -> str:
    prompt = f"""\
You are a leading expert in {request.domain}. {request.profile}

Analyze the following aspects:
{request.query}

Provide your analysis in markdown format, using headings and bullet points to organize your insights."""
    if outcome_sampling:
        prompt += (
            "\n\nIf a development hinges on genuine uncertainty, call sample_from_weighted_outcomes "
            "with the plausible outcomes and your weights instead of choosing one yourself."
        )
    return prompt


def build_final_analysis_prompt(narrator_response: str, experts: Sequence[ExpertResponse]) -> str:
    """Prompt that merges narrator and expert output into the next snapshot and the report."""

    expert_block = "\n\n".join(f"# {e.domain}\n{e.response}" for e in experts)
    report_outline = "\n\n".join(f"# {section}" for section in REPORT_SECTIONS)

    return f"""\
Based on the following information, create two detailed markdown documents:
1. A comprehensive snapshot of the world state
2. A detailed intelligence report

Initial Analysis:
{narrator_response}

Expert Analyses:
{expert_block}

For the snapshot document, follow the same structure as the previous snapshot, ensuring all \
relevant details are preserved and updated.

For the report document, structure it as a high-stakes intelligence briefing with:
{report_outline}

Remember: The snapshot must be detailed enough to serve as the sole source of truth for future simulation steps.

Provide your response in two parts, separated by the marker {SPLIT_MARKER}:

[First part: Complete snapshot markdown]
{SPLIT_MARKER}
[Second part: Complete report markdown]"""
