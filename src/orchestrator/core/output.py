from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger("orchestrator.output")

OUTPUT_LIMIT = 50_000
PREVIEW_LIMIT = 2_000
TRUNCATION_MARKER = "\n...[truncated]"


def read_output(path: str, limit: int = OUTPUT_LIMIT) -> Optional[str]:
    """Read a worker's output artifact, bounded to ``limit`` characters.

    Overflow is cut and marked with ``TRUNCATION_MARKER``. Returns None when
    the artifact does not exist or cannot be read.
    """
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read(limit + 1)
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Could not read output artifact %s: %s", path, exc)
        return None
    if len(content) > limit:
        return content[:limit] + TRUNCATION_MARKER
    return content


def shorten(text: str, limit: int) -> str:
    """Cut ``text`` to at most ``limit`` characters, ending in ``...``."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def preview(text: str, limit: int = PREVIEW_LIMIT) -> str:
    return shorten(text, limit)
