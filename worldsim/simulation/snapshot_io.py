from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, date, datetime
from pathlib import Path

from worldsim.simulation.types import Snapshot


logger = logging.getLogger(__name__)


def _write_text_atomic(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Atomically write text to `path` (POSIX rename semantics)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        # newline="" keeps "\n" as written on every platform.
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except Exception:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            logger.debug("Failed to clean up temp file %s", tmp_path, exc_info=True)
        raise


def ensure_directory(path: str | Path) -> Path:
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def load_snapshot(path: str | Path) -> Snapshot:
    """Load a snapshot written by a previous run, or any freeform text file.

    JSON objects with a ``content`` key load as-is. Anything else is taken as the
    snapshot content verbatim, at week 0, dated by the file's modification time.
    """
    snapshot_path = Path(path)
    raw_bytes = snapshot_path.read_bytes()
    raw = raw_bytes.decode("utf-8")

    # Only the JSON parse skips a leading BOM.
    try:
        data = json.loads(raw_bytes.decode("utf-8-sig"))
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict) and "content" in data:
        snapshot = Snapshot.from_dict(data)
        logger.debug("Loaded JSON snapshot week=%d from %s", snapshot.week, snapshot_path)
        return snapshot

    mtime = datetime.fromtimestamp(snapshot_path.stat().st_mtime, tz=UTC)
    logger.info("Snapshot %s is not a JSON snapshot; using it as freeform text", snapshot_path)
    return Snapshot(week=0, date=mtime.isoformat(), content=raw)


def save_snapshot(snapshot: Snapshot, path: str | Path) -> Path:
    out = Path(path)
    _write_text_atomic(out, json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2))
    return out


def save_report(report: str, path: str | Path) -> Path:
    out = Path(path)
    _write_text_atomic(out, report)
    return out


def output_paths(output_dir: str | Path, on: date | None = None) -> tuple[Path, Path]:
    """Return (snapshot path, report path) named with the given date (default: today)."""
    stamp = (on or date.today()).isoformat()
    directory = Path(output_dir)
    return (directory / f"snapshot-{stamp}.json", directory / f"report-{stamp}.md")


def initial_snapshot_path(output_dir: str | Path, on: date | None = None) -> Path:
    stamp = (on or date.today()).isoformat()
    return Path(output_dir) / f"snapshot-{stamp}-initial.json"
