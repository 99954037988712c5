from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from .errors import SnapshotError
from .probe import EnvironmentProbe

logger = logging.getLogger(__name__)

LOCALES_DOC = "locales.json"
ISO_INFO_DOC = "iso-info.json"
RUN_ENV_DOC = "run-env-info.json"
DOCUMENTS = (LOCALES_DOC, ISO_INFO_DOC, RUN_ENV_DOC)


@dataclass(frozen=True)
class EnvironmentSnapshot:
    locales: List[Dict[str, Any]]
    iso_info: Dict[str, Any]
    product_config: Dict[str, Any]
    locations: Dict[str, str]
    run_env: Dict[str, Any]

    def disk(self, path: str) -> Dict[str, Any] | None:
        return next((d for d in self.run_env.get("disks") or [] if d.get("path") == path), None)

    def locale(self, code: str) -> Dict[str, Any] | None:
        return next((loc for loc in self.locales if loc.get("code") == code), None)

    @property
    def interfaces(self) -> Dict[str, Any]:
        return (self.run_env.get("network") or {}).get("interfaces") or {}

    @property
    def boot_type(self) -> str:
        return str(self.run_env.get("boot_type") or "bios")


def collect_snapshot(probe: EnvironmentProbe) -> EnvironmentSnapshot:
    """Ask every probe question once; any ProbeError aborts the whole collection."""

    locales = sorted(probe.locales(), key=lambda loc: str(loc.get("code")))
    iso_info = probe.iso_info()
    product_config = probe.product_config()
    locations = probe.locations()
    run_env = probe.run_env()
    return EnvironmentSnapshot(
        locales=locales,
        iso_info=iso_info,
        product_config=product_config,
        locations=locations,
        run_env=run_env,
    )


def canonical_json(doc: Any) -> bytes:
    return (json.dumps(doc, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")


def render_documents(snapshot: EnvironmentSnapshot) -> Dict[str, bytes]:
    return {
        LOCALES_DOC: canonical_json({"locales": snapshot.locales}),
        ISO_INFO_DOC: canonical_json(
            {
                "iso-info": snapshot.iso_info,
                "product-cfg": snapshot.product_config,
                "locations": snapshot.locations,
            }
        ),
        RUN_ENV_DOC: canonical_json(snapshot.run_env),
    }


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _roll_back(placed: List[Path], backups: Dict[str, Path]) -> None:
    """Put the previous documents back after a partial placement."""

    for final in placed:
        backup = backups.pop(final.name, None)
        try:
            if backup is not None:
                os.replace(backup, final)
            else:
                final.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to restore %s: %s", final, e)
    for backup in backups.values():
        backup.unlink(missing_ok=True)


def write_snapshot(snapshot: EnvironmentSnapshot, out_dir: str | Path) -> List[Path]:
    """Write the three snapshot documents into out_dir, all or nothing.

    Every document is rendered and staged to a temporary file in out_dir
    before any of the final names is touched; only then are the staged files
    renamed into place. Previous documents are hard-linked aside first, so a
    failed rename puts the ones already replaced back. Either way a failure
    leaves the previous documents as they were.
    """

    out = Path(out_dir)
    try:
        out.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SnapshotError(f"Failed to create output directory {out}: {e}") from e

    documents = render_documents(snapshot)
    staged: Dict[str, str] = {}
    try:
        for name, data in documents.items():
            fd, tmp = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=out)
            staged[name] = tmp
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
    except OSError as e:
        for tmp in staged.values():
            Path(tmp).unlink(missing_ok=True)
        raise SnapshotError(f"Failed to stage snapshot documents in {out}: {e}") from e

    backups: Dict[str, Path] = {}
    written: List[Path] = []
    try:
        for name in DOCUMENTS:
            final = out / name
            if final.exists():
                backup = out / f".{name}.bak"
                backup.unlink(missing_ok=True)
                os.link(final, backup)
                backups[name] = backup
        for name in DOCUMENTS:
            final = out / name
            os.replace(staged.pop(name), final)
            written.append(final)
    except OSError as e:
        _roll_back(written, backups)
        for tmp in staged.values():
            Path(tmp).unlink(missing_ok=True)
        raise SnapshotError(f"Failed to place snapshot documents in {out}: {e}") from e

    for backup in backups.values():
        backup.unlink(missing_ok=True)
    _fsync_dir(out)
    logger.info("Wrote environment snapshot to %s", out)
    return written


def has_snapshot(run_dir: str | Path) -> bool:
    return all((Path(run_dir) / name).is_file() for name in DOCUMENTS)


def _read_doc(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SnapshotError(f"Failed to read snapshot document {path}: {e}") from e


def load_snapshot(run_dir: str | Path) -> EnvironmentSnapshot:
    d = Path(run_dir)
    locales = _read_doc(d / LOCALES_DOC)
    iso = _read_doc(d / ISO_INFO_DOC)
    run_env = _read_doc(d / RUN_ENV_DOC)
    if not isinstance(locales, dict) or not isinstance(iso, dict) or not isinstance(run_env, dict):
        raise SnapshotError(f"Snapshot documents in {d} must contain objects")

    run_env["disks"] = sorted(run_env.get("disks") or [], key=lambda disk: str(disk.get("path")))
    return EnvironmentSnapshot(
        locales=list(locales.get("locales") or []),
        iso_info=iso.get("iso-info") or {},
        product_config=iso.get("product-cfg") or {},
        locations=iso.get("locations") or {},
        run_env=run_env,
    )


def validate_snapshot(snapshot: EnvironmentSnapshot) -> EnvironmentSnapshot:
    """Refuse to start a session on a machine the installer cannot install to."""

    if not snapshot.run_env.get("disks"):
        raise SnapshotError("The installer could not find any supported hard disks.")
    if not snapshot.interfaces:
        raise SnapshotError("The installer could not find any supported network interface cards.")
    return snapshot
