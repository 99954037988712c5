from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Union

from ..lib.command import CommandError
from ..lib.storage import PartitionLayout, plan_layout
from ..snapshot import EnvironmentSnapshot

logger = logging.getLogger(__name__)

ProgressFn = Callable[[float, Optional[str]], None]


@dataclass(frozen=True)
class Success:
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failure:
    kind: str
    detail: str
    was_destructive: bool


StepResult = Union[Success, Failure]


def _no_progress(ratio: float, text: Optional[str] = None) -> None:
    pass


@dataclass(frozen=True)
class StepContext:
    """Everything a step may look at: the frozen config and the snapshot, plus where to work."""

    config: Mapping[str, Any]
    snapshot: EnvironmentSnapshot
    target_root: str
    dry_run: bool = False
    report: ProgressFn = _no_progress

    @property
    def layout(self) -> PartitionLayout:
        return plan_layout(
            disk=self.config["disk"],
            boot_type=self.snapshot.boot_type,
            swap_size_gib=self.config.get("swapsize"),
            root_size_gib=_root_size(self.config),
        )


def _root_size(config: Mapping[str, Any]) -> Optional[float]:
    hdsize = config.get("hdsize")
    if hdsize is None:
        return None
    return hdsize - (config.get("swapsize") or 0)


class Step:
    """One installation step.

    Subclasses implement run(); execute() is the contract the session
    controller relies on: it always returns a Success or a Failure and
    never raises. Destructive steps call touch_disk() right before their
    first write to the target; only faults after that are reported as
    having left the disk in an unknown state.
    """

    name: ClassVar[str]
    idempotent: ClassVar[bool] = False
    destructive: ClassVar[bool] = False

    def __init__(self, ctx: StepContext) -> None:
        self.ctx = ctx
        self.disk_touched = False

    def touch_disk(self) -> None:
        self.disk_touched = True

    def run(self) -> Optional[StepResult]:
        raise NotImplementedError

    def fail(self, kind: str, detail: str, *, touched_disk: bool = False) -> Failure:
        return Failure(kind=kind, detail=detail, was_destructive=touched_disk and self.destructive)

    def _faulted_mid_write(self) -> bool:
        return self.destructive and self.disk_touched

    def execute(self) -> StepResult:
        try:
            result = self.run()
        except CommandError as e:
            logger.error("Step %s: %s", self.name, e)
            return Failure(kind="IOFault", detail=str(e), was_destructive=self._faulted_mid_write())
        except OSError as e:
            logger.error("Step %s: %s", self.name, e)
            return Failure(kind="IOFault", detail=str(e), was_destructive=self._faulted_mid_write())
        except Exception as e:
            logger.exception("Step %s raised", self.name)
            return Failure(kind="InternalError", detail=f"{type(e).__name__}: {e}", was_destructive=self._faulted_mid_write())

        if result is None:
            return Success()
        return result

    @classmethod
    def describe(cls) -> Dict[str, Any]:
        return {"name": cls.name, "idempotent": cls.idempotent, "destructive": cls.destructive}
