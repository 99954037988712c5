from __future__ import annotations

from typing import Any, Dict, Optional


class InstallerError(Exception):
    """Base for every error the low-level installer reports by kind."""

    kind = "InstallerError"

    def to_wire(self) -> Dict[str, Any]:
        return {"errorKind": self.kind, "message": str(self)}


class UsageError(InstallerError):
    kind = "UsageError"


class ProtocolError(InstallerError):
    """The inbound channel produced something that is not a well-formed message."""

    kind = "ProtocolError"


class ValidationError(InstallerError):
    kind = "ValidationError"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class IncompleteConfigError(InstallerError):
    kind = "IncompleteConfigError"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required configuration: {', '.join(missing)}")
        self.missing = list(missing)


class InvalidStateError(InstallerError):
    kind = "InvalidStateError"


class UnknownCommandError(InstallerError):
    kind = "UnknownCommand"


class StepFailure(InstallerError):
    kind = "StepFailure"

    def __init__(self, step: str, failure_kind: str, detail: str, *, was_destructive: bool) -> None:
        super().__init__(f"Step {step} failed ({failure_kind}): {detail}")
        self.step = step
        self.failure_kind = failure_kind
        self.detail = detail
        self.was_destructive = was_destructive

    @property
    def severity(self) -> str:
        return "unsafe-state" if self.was_destructive else "recoverable"


class ProbeError(InstallerError):
    kind = "ProbeError"


class SnapshotError(InstallerError, OSError):
    """Writing or reading the environment snapshot failed."""

    kind = "IOError"
