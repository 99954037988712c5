"""Shared test fixtures for the low-level installer tests."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

import pytest

from lowlevel_installer.lib.env import PATHS, Paths
from lowlevel_installer.logging_utils import LOGGER_NAME
from lowlevel_installer.probe import FixtureProbe
from lowlevel_installer.protocol import Request
from lowlevel_installer.session import SessionController, SessionOptions
from lowlevel_installer.snapshot import EnvironmentSnapshot, collect_snapshot
from lowlevel_installer.steps import STEP_CLASSES, Step, StepKind, StepRegistry, Success

VALID_CONFIG = {"disk": "/dev/sda", "filesystem": "ext4", "locale": "en_US"}


@pytest.fixture(autouse=True)
def _reset_installer_logging():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for h in getattr(logger, "_installer_handlers", []):
        logger.removeHandler(h)
        h.close()
    setattr(logger, "_installer_handlers", [])


@pytest.fixture
def test_paths(tmp_path) -> Paths:
    return PATHS.for_test_mode(str(tmp_path / "testdir"))


@pytest.fixture
def snapshot(test_paths) -> EnvironmentSnapshot:
    """Snapshot built from the packaged test-mode fixtures."""
    return collect_snapshot(FixtureProbe(test_paths))


@pytest.fixture
def options(test_paths) -> SessionOptions:
    return SessionOptions(test_mode=True, target_root=test_paths.target_root)


def req(command: str, **args: Any) -> Request:
    return Request(command=command, args=args)


def scripted_step(
    name: str,
    outcomes: Optional[List[Any]] = None,
    *,
    idempotent: bool = True,
    destructive: bool = False,
) -> Type[Step]:
    """Step class whose run() replays outcomes (Success, Failure or an exception to raise).

    Once the script is exhausted the step succeeds. Every execution is
    appended to the shared `executed` list on the class, and counts as
    having touched the disk.
    """

    script = list(outcomes or [])

    def run(self):
        type(self).executed.append(name)
        self.touch_disk()
        outcome = script.pop(0) if script else Success({"step": name})
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return type(
        f"Scripted{name.title().replace('-', '')}Step",
        (Step,),
        {"name": name, "idempotent": idempotent, "destructive": destructive, "run": run, "executed": []},
    )


def scripted_registry(scripts: Optional[Dict[str, List[Any]]] = None) -> StepRegistry:
    """Registry with the real step names and flags, but scripted outcomes."""

    scripts = scripts or {}
    executed: List[str] = []
    classes = []
    for kind in StepKind:
        real = STEP_CLASSES[kind]
        cls = scripted_step(
            real.name,
            scripts.get(real.name),
            idempotent=real.idempotent,
            destructive=real.destructive,
        )
        cls.executed = executed
        classes.append(cls)
    registry = StepRegistry(classes)
    registry.executed = executed  # type: ignore[attr-defined]
    return registry


@pytest.fixture
def make_controller(snapshot, options):
    """Factory: controller with an optional scripted registry and a list capturing emitted messages."""

    def _make(scripts: Optional[Dict[str, List[Any]]] = None, **kwargs: Any):
        emitted: List[Dict[str, Any]] = []
        registry = scripted_registry(scripts) if scripts is not None else kwargs.pop("registry", None)
        controller = SessionController(
            snapshot,
            kwargs.pop("options", options),
            registry=registry or scripted_registry(),
            emit=emitted.append,
        )
        return controller, emitted

    return _make


def configured(controller: SessionController, **overrides: Any) -> SessionController:
    fields = dict(VALID_CONFIG, **overrides)
    response = controller.handle(req("configure", **fields))
    assert response["status"] == "ok", response
    return controller


def started(controller: SessionController, **overrides: Any) -> SessionController:
    configured(controller, **overrides)
    response = controller.handle(req("begin"))
    assert response["status"] == "ok", response
    return controller
