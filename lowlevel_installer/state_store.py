from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"yaml", "yml"}:
        return "yaml"
    # Default to JSON for unknown extensions.
    return "json"


def _yaml():
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "YAML session state requested but PyYAML is not available. Use a .json state path."
        ) from e
    return yaml


def dump_state(path: Path, state: Dict[str, Any]) -> str:
    if _detect_format(path) == "yaml":
        return _yaml().safe_dump(state, sort_keys=True)
    return json.dumps(state, indent=2, sort_keys=True) + "\n"


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Persist session state, replacing the previous file atomically."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    contents = dump_state(p, state)

    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=p.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(contents)
        os.replace(tmp, p)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
