from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

TEST_MODE_BASE = "./testdir"


@dataclass(frozen=True)
class Paths:
    run_dir: str = "/run/install-low-level"
    log_dir: str = "/tmp"
    iso_dir: str = "/cdrom"
    lib_dir: str = "/var/lib/install-low-level"
    target_root: str = "/target"

    def for_test_mode(self, base: str = TEST_MODE_BASE) -> "Paths":
        """Rebase every location under a local test directory."""

        def rebase(p: str) -> str:
            return str(Path(base) / p.lstrip("/"))

        return replace(
            self,
            run_dir=rebase(self.run_dir),
            log_dir=base,
            iso_dir=rebase(self.iso_dir),
            lib_dir=rebase(self.lib_dir),
            target_root=rebase(self.target_root),
        )


PATHS = Paths()
