"""Environment probe collaborators.

A probe answers five questions about the machine the installer runs on.
The session controller and the snapshot writer only ever see the answers,
so test mode swaps the live probe for a fixture-backed one and everything
downstream behaves identically.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Protocol

from .errors import ProbeError
from .lib.env import Paths
from .lib.hwdetect import detect_runtime
from .lib.manifests import load_fixture, load_yaml, parse_cd_info

logger = logging.getLogger(__name__)


class EnvironmentProbe(Protocol):
    def locales(self) -> List[Dict[str, Any]]:
        ...

    def iso_info(self) -> Dict[str, Any]:
        ...

    def product_config(self) -> Dict[str, Any]:
        ...

    def locations(self) -> Dict[str, str]:
        ...

    def run_env(self) -> Dict[str, Any]:
        ...


def _locations(paths: Paths) -> Dict[str, str]:
    return {
        "iso": paths.iso_dir,
        "lib": paths.lib_dir,
        "run": paths.run_dir,
        "log": paths.log_dir,
        "target": paths.target_root,
    }


class FixtureProbe:
    """Deterministic probe backed by the YAML fixtures shipped with the package."""

    def __init__(self, paths: Paths) -> None:
        self.paths = paths

    def _load(self, name: str) -> Dict[str, Any]:
        try:
            return load_fixture(name)
        except (OSError, ValueError) as e:
            raise ProbeError(f"Failed to load fixture {name}: {e}") from e

    def locales(self) -> List[Dict[str, Any]]:
        return list(self._load("locales").get("locales") or [])

    def iso_info(self) -> Dict[str, Any]:
        return self._load("iso-info")

    def product_config(self) -> Dict[str, Any]:
        return self._load("product")

    def locations(self) -> Dict[str, str]:
        return _locations(self.paths)

    def run_env(self) -> Dict[str, Any]:
        return self._load("run-env")


class LiveProbe:
    def __init__(self, paths: Paths) -> None:
        self.paths = paths

    def _lib_yaml(self, name: str) -> Dict[str, Any]:
        p = Path(self.paths.lib_dir) / name
        try:
            return load_yaml(p)
        except (OSError, ValueError) as e:
            raise ProbeError(f"Failed to read {p}: {e}") from e

    def locales(self) -> List[Dict[str, Any]]:
        return list(self._lib_yaml("locales.yaml").get("locales") or [])

    def iso_info(self) -> Dict[str, Any]:
        p = Path(self.paths.iso_dir) / ".cd-info"
        try:
            info = parse_cd_info(p.read_text(encoding="utf-8"))
        except OSError as e:
            raise ProbeError(f"Failed to read ISO info {p}: {e}") from e
        if "release" not in info:
            raise ProbeError(f"ISO info {p} has no RELEASE entry")
        return {
            "version": info["release"],
            "isorelease": info.get("isorelease", ""),
            "release_date": info.get("release_date"),
            "checksum": info.get("checksum"),
        }

    def product_config(self) -> Dict[str, Any]:
        return self._lib_yaml("product.yaml")

    def locations(self) -> Dict[str, str]:
        return _locations(self.paths)

    def run_env(self) -> Dict[str, Any]:
        try:
            return detect_runtime()
        except (OSError, ValueError) as e:
            raise ProbeError(f"Failed to detect runtime environment: {e}") from e


def make_probe(*, test_mode: bool, paths: Paths) -> EnvironmentProbe:
    if test_mode:
        logger.info("Using fixture environment probe (test mode)")
        return FixtureProbe(paths)
    return LiveProbe(paths)
