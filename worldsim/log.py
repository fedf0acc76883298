from __future__ import annotations

import logging
import sys


LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(*, verbose: bool = False) -> None:
    # stdout stays free for anything a caller wants to pipe; logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    # SDK transport chatter drowns out request-level debug lines.
    for noisy in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def progress(logger: logging.Logger, step: str, details: str | None = None) -> None:
    logger.info("[PROGRESS] %s%s", step, f": {details}" if details else "")
