"""World simulation building blocks: ground truth, prompts, the narrator and snapshot files."""

from __future__ import annotations

from worldsim.simulation.ground_truth import (
    build_ground_truth_context,
    extract_date_from_filename,
    load_ground_truth,
)
from worldsim.simulation.narrator import Narrator, parse_expert_requests, split_final_response
from worldsim.simulation.snapshot_io import load_snapshot, save_report, save_snapshot
from worldsim.simulation.types import (
    ExpertRequest,
    ExpertResponse,
    GroundTruth,
    Snapshot,
    WeekResult,
)

__all__ = [
    "ExpertRequest",
    "ExpertResponse",
    "GroundTruth",
    "Narrator",
    "Snapshot",
    "WeekResult",
    "build_ground_truth_context",
    "extract_date_from_filename",
    "load_ground_truth",
    "load_snapshot",
    "parse_expert_requests",
    "save_report",
    "save_snapshot",
    "split_final_response",
]
