from __future__ import annotations

import json
import os
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import scipy

from .. import __version__


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _base_record() -> Dict[str, Any]:
    return {
        "timestamp": _now_iso(),
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        # no shelling out to git; CI can export GIT_SHA
        "git_sha": os.environ.get("GIT_SHA") or None,
        "lidar_contours": __version__,
        # numerical stack
        "numpy": np.__version__,
        "scipy": scipy.__version__,
    }


def write_provenance(
    out_dir: Path,
    filename: str = "provenance_contours.json",
    extra: Dict[str, Any] | None = None,
) -> None:
    """Write a provenance record (timestamp, interpreter, platform, GIT_SHA, ``extra``).

    Best effort: an unwritable directory is ignored.
    """
    try:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        payload = _base_record()
        if extra:
            payload.update(extra)
        (out_dir / filename).write_text(json.dumps(payload, indent=2))
    except (OSError, TypeError, ValueError):
        # provenance must never break a run
        pass


def append_timings(
    out_dir: Path,
    *,
    component: str,
    timings: Dict[str, Any],
    extra: Dict[str, Any] | None = None,
    filename: str = "timings.json",
) -> None:
    """Append ``{"timestamp", "component", "timings", **extra}`` to a JSON list file.

    A malformed existing file is replaced by a fresh list. Never raises.
    """
    try:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / filename
        entries: List[Dict[str, Any]] = []
        if path.exists():
            try:
                current = json.loads(path.read_text())
            except ValueError:
                current = None
            if isinstance(current, list):
                entries = current
        entry: Dict[str, Any] = {"timestamp": _now_iso(), "component": component, "timings": timings}
        if extra:
            entry.update(extra)
        entries.append(entry)
        path.write_text(json.dumps(entries, indent=2))
    except (OSError, TypeError, ValueError):
        pass
