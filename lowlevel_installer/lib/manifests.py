from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

FIXTURES_DIR = Path(__file__).resolve().parents[1] / "fixtures"


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping from disk."""
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("PyYAML required to load installer manifests") from e

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Manifest must be a mapping/dict: {path}")
    return data


def load_fixture(name: str) -> Dict[str, Any]:
    """Load one of the deterministic test-mode fixtures shipped with the package."""
    return load_yaml(FIXTURES_DIR / f"{name}.yaml")


def parse_cd_info(text: str) -> Dict[str, str]:
    """Parse the ISO's KEY=value identity file (shell quoting stripped)."""

    info: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        info[key.strip().lower()] = value.strip().strip("'\"")
    return info
