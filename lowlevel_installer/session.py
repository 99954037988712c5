"""Session controller: turns UI commands into an ordered, supervised step sequence.

States:

    Idle -> Configuring -> Executing -> Completed | Failed | Aborted

The controller handles one request at a time and runs at most one step per
request (`next`, or `retry` after a failure). The step cursor only moves
forward, and only right after the step under it reported Success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, TextIO

from .config import apply_fields, freeze, missing_required, thaw
from .errors import (
    IncompleteConfigError,
    InstallerError,
    InvalidStateError,
    ProtocolError,
    StepFailure,
    UnknownCommandError,
)
from .lib.env import PATHS
from .protocol import MessageReader, MessageWriter, Request, error_response, ok_response, progress_message
from .snapshot import EnvironmentSnapshot
from .state_store import save_state
from .steps import DEFAULT_REGISTRY, Failure, StepContext, StepRegistry, Success

logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], None]


class SessionState(str, Enum):
    IDLE = "Idle"
    CONFIGURING = "Configuring"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @property
    def terminal(self) -> bool:
        return self in {SessionState.COMPLETED, SessionState.FAILED, SessionState.ABORTED}


@dataclass(frozen=True)
class StepRecord:
    step: str
    index: int
    outcome: str  # success|failure
    detail: Any
    kind: Optional[str] = None
    severity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"step": self.step, "index": self.index, "outcome": self.outcome, "detail": self.detail}
        if self.outcome == "failure":
            d["kind"] = self.kind
            d["severity"] = self.severity
        return d


@dataclass(frozen=True)
class SessionOptions:
    test_mode: bool = False
    log_sink: logging.Logger = field(default_factory=lambda: logger)
    target_root: str = PATHS.target_root
    state_path: Optional[str] = None
    dry_run: Optional[bool] = None

    @property
    def effective_dry_run(self) -> bool:
        return self.test_mode if self.dry_run is None else self.dry_run


def _discard(msg: Dict[str, Any]) -> None:
    pass


class SessionController:
    def __init__(
        self,
        snapshot: EnvironmentSnapshot,
        options: Optional[SessionOptions] = None,
        *,
        registry: StepRegistry = DEFAULT_REGISTRY,
        emit: Emit = _discard,
    ) -> None:
        self.snapshot = snapshot
        self.options = options or SessionOptions()
        self.registry = registry
        self.emit = emit
        self.log = self.options.log_sink

        self.state = SessionState.IDLE
        self.config: Mapping[str, Any] = {}
        self.step_cursor = 0
        self.step_results: List[StepRecord] = []
        self.failure: Optional[StepFailure] = None

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "configure": self._configure,
            "begin": self._begin,
            "next": self._next,
            "retry": self._retry,
            "abort": self._abort,
            "query-state": self._query_state,
            "query-log": self._query_log,
            "query-steps": self._query_steps,
            "query-config": self._query_config,
        }

    # -- request handling ---------------------------------------------------

    def handle(self, request: Request) -> Dict[str, Any]:
        """Handle one request and return its response; recoverable errors become error responses."""

        handler = self._handlers.get(request.command)
        try:
            if handler is None:
                raise UnknownCommandError(f"Unknown command: {request.command}")
            response = ok_response(request, handler(request.args))
        except StepFailure as e:
            response = error_response(request, e, self._failure_result(e))
        except InstallerError as e:
            self.log.warning("%s rejected: %s", request.command, e)
            response = error_response(request, e)
        self._persist()
        return response

    def _require(self, *states: SessionState, action: str) -> None:
        if self.state not in states:
            raise InvalidStateError(f"Cannot {action} in state {self.state.value}")

    def _configure(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(SessionState.IDLE, SessionState.CONFIGURING, action="configure")
        if self.state is SessionState.IDLE:
            self.state = SessionState.CONFIGURING
            self.config = {}
            self.log.info("Session entered Configuring")

        self.config = apply_fields(self.config, args, self.snapshot)
        self.log.info("Configured %s", ", ".join(sorted(args)))
        return {"state": self.state.value, "config": thaw(self.config), "missing": missing_required(self.config)}

    def _begin(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(SessionState.IDLE, SessionState.CONFIGURING, action="begin")
        if self.state is SessionState.IDLE:
            self.state = SessionState.CONFIGURING
            self.log.info("Session entered Configuring")
        missing = missing_required(self.config)
        if missing:
            raise IncompleteConfigError(missing)

        self.config = freeze(self.config)
        self.state = SessionState.EXECUTING
        self.log.info("Installation started with %d steps: %s", len(self.registry), ", ".join(self.registry.names))
        return {"state": self.state.value, "steps": self.registry.names, "stepCursor": self.step_cursor}

    def _next(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(SessionState.EXECUTING, action="run the next step")
        return self._run_current_step()

    def _retry(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(SessionState.FAILED, action="retry")
        step_cls = self.registry[self.step_cursor]
        wanted = args.get("step")
        if wanted is not None and wanted != step_cls.name:
            raise InvalidStateError(f"Only the failed step {step_cls.name} can be retried, not {wanted}")
        if not step_cls.idempotent:
            raise InvalidStateError(f"Step {step_cls.name} is not idempotent and cannot be retried")

        self.log.info("Retrying step %s", step_cls.name)
        return self._run_current_step()

    def _abort(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(
            SessionState.IDLE,
            SessionState.CONFIGURING,
            SessionState.EXECUTING,
            SessionState.FAILED,
            action="abort",
        )
        previous = self.state
        self.state = SessionState.ABORTED
        self.log.warning("Session aborted (was %s, last completed step %s)", previous.value, self.last_completed_step)
        return {
            "state": self.state.value,
            "previousState": previous.value,
            "lastCompletedStep": self.last_completed_step,
        }

    def _query_state(self, args: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "state": self.state.value,
            "stepCursor": self.step_cursor,
            "totalSteps": len(self.registry),
            "lastCompletedStep": self.last_completed_step,
            "stepResults": [r.to_dict() for r in self.step_results],
        }
        if self.state is SessionState.FAILED and self.failure is not None:
            result["severity"] = self.failure.severity
            result["failure"] = self._failure_result(self.failure)
        return result

    def _query_log(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"stepResults": [r.to_dict() for r in self.step_results]}

    def _query_steps(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"steps": self.registry.describe()}

    def _query_config(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "config": thaw(self.config),
            "missing": missing_required(self.config),
            "frozen": self.state not in {SessionState.IDLE, SessionState.CONFIGURING},
        }

    # -- step execution -----------------------------------------------------

    @property
    def last_completed_step(self) -> Optional[int]:
        return self.step_cursor - 1 if self.step_cursor > 0 else None

    def _report(self, index: int, name: str) -> Callable[[float, Optional[str]], None]:
        total = len(self.registry)

        def report(ratio: float, text: Optional[str] = None) -> None:
            self.emit(progress_message(name, (index + min(max(ratio, 0.0), 1.0)) / total, text))

        return report

    def _run_current_step(self) -> Dict[str, Any]:
        index = self.step_cursor
        step_cls = self.registry[index]
        ctx = StepContext(
            config=self.config,
            snapshot=self.snapshot,
            target_root=self.options.target_root,
            dry_run=self.options.effective_dry_run,
            report=self._report(index, step_cls.name),
        )

        self.log.info("Running step %d/%d: %s", index + 1, len(self.registry), step_cls.name)
        result = self.registry.build(index, ctx).execute()

        if isinstance(result, Failure):
            was_destructive = bool(result.was_destructive and step_cls.destructive)
            failure = StepFailure(step_cls.name, result.kind, result.detail, was_destructive=was_destructive)
            self.step_results.append(
                StepRecord(step_cls.name, index, "failure", result.detail, result.kind, failure.severity)
            )
            self.failure = failure
            self.state = SessionState.FAILED
            self.log.error("%s (severity=%s)", failure, failure.severity)
            raise failure

        detail = result.detail if isinstance(result, Success) else {}
        self.step_results.append(StepRecord(step_cls.name, index, "success", detail))
        self.failure = None
        self.step_cursor = index + 1
        self.state = SessionState.COMPLETED if self.step_cursor == len(self.registry) else SessionState.EXECUTING
        self.emit(progress_message(step_cls.name, self.step_cursor / len(self.registry), f"{step_cls.name} done"))

        if self.state is SessionState.COMPLETED:
            self.log.info("Installation completed")
        return {
            "step": step_cls.name,
            "index": index,
            "outcome": "success",
            "detail": detail,
            "state": self.state.value,
            "stepCursor": self.step_cursor,
        }

    def _failure_result(self, failure: StepFailure) -> Dict[str, Any]:
        return {
            "step": failure.step,
            "index": self.step_cursor,
            "failureKind": failure.failure_kind,
            "detail": failure.detail,
            "wasDestructive": failure.was_destructive,
            "severity": failure.severity,
            "state": self.state.value,
        }

    # -- persistence --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "config": thaw(self.config),
            "stepCursor": self.step_cursor,
            "stepResults": [r.to_dict() for r in self.step_results],
        }

    def _persist(self) -> None:
        if not self.options.state_path:
            return
        try:
            save_state(self.options.state_path, self.to_dict())
        except OSError as e:
            self.log.error("Failed to persist session state to %s: %s", self.options.state_path, e)


def serve(controller: SessionController, instream: TextIO, outstream: TextIO) -> SessionState:
    """Drive a session over a pair of text streams until the input ends.

    A ProtocolError is reported to the peer once and then re-raised; the
    caller treats it as fatal.
    """

    writer = MessageWriter(outstream)
    controller.emit = writer.send
    try:
        for request in MessageReader(instream):
            writer.send(controller.handle(request))
    except ProtocolError as e:
        controller.log.error("Protocol error, ending session: %s", e)
        writer.send(error_response(None, e))
        raise

    controller.log.info("Input closed, session ends in state %s", controller.state.value)
    return controller.state
