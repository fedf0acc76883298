from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable

from worldsim.simulation.types import GroundTruth


logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_WEEK_RE = re.compile(r"week-(\d{1,2})(\d{4})")

CONTEXT_SEPARATOR = "\n---\n"


def extract_date_from_filename(name: str, *, today: date | None = None) -> date:
    """Infer a date from a ground-truth filename.

    Recognizes ``YYYY-MM-DD`` anywhere in the name and ``week-WWYYYY`` (week WW of
    year YYYY, counted in 7-day steps from January 1). Anything else, including
    impossible calendar dates, falls back to ``today``.
    """
    fallback = today or date.today()

    m = _ISO_DATE_RE.search(name)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            logger.debug("Ignoring invalid date in filename %s", name)
            return fallback

    m = _WEEK_RE.search(name)
    if m:
        week = int(m.group(1))
        year = int(m.group(2))
        try:
            return date(year, 1, 1) + timedelta(days=(week - 1) * 7)
        except (ValueError, OverflowError):
            logger.debug("Ignoring invalid week in filename %s", name)
            return fallback

    return fallback


def load_ground_truth(directory: str | Path, *, today: date | None = None) -> list[GroundTruth]:
    """Recursively load every readable text file under ``directory``.

    Content is decoded from the raw bytes so line endings and whitespace survive
    untouched. Files that cannot be read or decoded are skipped.
    """
    root = Path(directory)
    if not root.exists():
        raise FileNotFoundError(f"Ground truth directory not found: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Ground truth path is not a directory: {root}")

    records: list[GroundTruth] = []
    _walk(root, records, today=today)
    return records


def _walk(directory: Path, records: list[GroundTruth], *, today: date | None) -> None:
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            _walk(entry, records, today=today)
            continue
        if not entry.is_file():
            continue
        try:
            content = entry.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping ground truth file %s: %s", entry, e)
            continue
        records.append(
            GroundTruth(
                file_path=entry,
                content=content,
                date=extract_date_from_filename(entry.name, today=today),
            )
        )
        logger.debug("Loaded ground truth from %s", entry)


def build_ground_truth_context(records: Iterable[GroundTruth], max_length: int) -> str:
    """Format ground truth chronologically, keeping the most recent data if too long."""
    ordered = sorted(records, key=lambda r: r.date)
    chunks = [f"[{r.date.isoformat()}]\n{r.content}\n" for r in ordered]

    context = CONTEXT_SEPARATOR.join(chunks)
    if len(context) <= max_length:
        return context

    # Walk newest to oldest, prepending until the next chunk would overflow.
    context = ""
    for chunk in reversed(chunks):
        candidate = chunk + (CONTEXT_SEPARATOR + context if context else "")
        if len(candidate) > max_length:
            break
        context = candidate
    logger.info("Ground truth context truncated to %d chars (limit %d)", len(context), max_length)
    return context
