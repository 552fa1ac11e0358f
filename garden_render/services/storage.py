"""
Storage — append-only PNG artifacts for rendered gardens.

Files are named <kind>-<strategy>-<timestamp>.png (or <kind>-<timestamp>.png)
with a millisecond timestamp that never repeats within the process, and are
opened in exclusive mode so an existing artifact is never overwritten.
"""
from __future__ import annotations

import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Optional

from .garden_model import Canvas

logger = logging.getLogger(__name__)

OUTPUT_DIR = Path(os.environ.get("GARDEN_OUTPUT_DIR", "static/inpainted-gardens"))
PUBLIC_PREFIX = os.environ.get("GARDEN_PUBLIC_PREFIX", "/inpainted-gardens")

_SAFE_PART = re.compile(r"[^a-z0-9]+")
_ts_lock = threading.Lock()
_last_ts = 0


def next_timestamp() -> int:
    """Milliseconds since the epoch, strictly increasing across calls."""
    global _last_ts
    with _ts_lock:
        now = int(time.time() * 1000)
        _last_ts = max(now, _last_ts + 1)
        return _last_ts


def _slug(part: str) -> str:
    return _SAFE_PART.sub("-", part.lower()).strip("-")


def artifact_name(kind: str, strategy: Optional[str], timestamp: int) -> str:
    parts = [_slug(kind)]
    if strategy:
        parts.append(_slug(strategy))
    parts.append(str(timestamp))
    return "-".join(parts) + ".png"


def save_canvas(
    canvas: Canvas,
    kind: str,
    strategy: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> str:
    """Write the canvas once and return its public reference."""
    directory = Path(output_dir) if output_dir is not None else OUTPUT_DIR
    directory.mkdir(parents=True, exist_ok=True)

    while True:
        filename = artifact_name(kind, strategy, next_timestamp())
        path = directory / filename
        try:
            with open(path, "xb") as fh:
                fh.write(canvas.pixels)
            break
        except FileExistsError:
            # Another process wrote the same millisecond; take the next one.
            continue

    ref = f"{PUBLIC_PREFIX.rstrip('/')}/{filename}"
    logger.info(f"Saved {kind} artifact: {ref}")
    return ref


def resolve_artifact(ref: str, output_dir: Optional[Path] = None) -> Path:
    """Map a public reference back onto the output directory."""
    directory = Path(output_dir) if output_dir is not None else OUTPUT_DIR
    filename = Path(ref).name
    if not filename or filename in {".", ".."}:
        raise ValueError(f"Not an artifact reference: {ref!r}")
    return directory / filename


def load_canvas(ref: str, output_dir: Optional[Path] = None) -> Canvas:
    """Read a stored artifact back. FileNotFoundError if absent, ValueError if unreadable."""
    path = resolve_artifact(ref, output_dir)
    if not path.is_file():
        raise FileNotFoundError(f"No stored artifact for {ref}")
    return Canvas.decode(path.read_bytes())
