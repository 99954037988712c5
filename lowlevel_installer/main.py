from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Optional, TextIO

from .errors import InstallerError, ProbeError, ProtocolError, SnapshotError, UsageError
from .lib.env import PATHS, Paths
from .logging_utils import configure_logging, log_path_for
from .probe import make_probe
from .session import SessionController, SessionOptions, serve
from .snapshot import collect_snapshot, has_snapshot, load_snapshot, validate_snapshot, write_snapshot

logger = logging.getLogger(__name__)

PROG = "install-low-level"

COMMANDS = {
    "dump-env": "Probe the environment and write the snapshot documents to the run directory",
    "start-session": "Run an installation session driven over stdin/stdout",
    "help": "Show this help",
}


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    epilog = "commands:\n" + "\n".join(f"  {name:<15} {text}" for name, text in COMMANDS.items())
    p = _ArgumentParser(
        prog=PROG,
        add_help=False,
        description="Low-level installer driver.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("command", nargs="?", help="One of: " + ", ".join(COMMANDS))
    p.add_argument("-t", "--test-mode", action="store_true", help="Use fixture data instead of probing hardware")
    p.add_argument("--run-dir", default=None, help="Directory holding the environment snapshot")
    p.add_argument("--log-dir", default=None, help="Directory for install-low-level-<command>.log")
    p.add_argument("--state", default=None, help="Persist session state here after every message (json|yaml)")
    return p


def resolve_paths(args: argparse.Namespace) -> Paths:
    paths = PATHS.for_test_mode() if args.test_mode else PATHS
    if args.run_dir:
        paths = replace(paths, run_dir=args.run_dir)
    if args.log_dir:
        paths = replace(paths, log_dir=args.log_dir)
    return paths


def dump_env(*, paths: Paths, test_mode: bool) -> int:
    probe = make_probe(test_mode=test_mode, paths=paths)
    snapshot = collect_snapshot(probe)
    for path in write_snapshot(snapshot, paths.run_dir):
        logger.info("Wrote %s", path)
    return 0


def start_session(
    *,
    paths: Paths,
    test_mode: bool,
    state_path: Optional[str],
    instream: TextIO,
    outstream: TextIO,
) -> int:
    if has_snapshot(paths.run_dir):
        logger.info("Loading environment snapshot from %s", paths.run_dir)
        snapshot = load_snapshot(paths.run_dir)
    else:
        snapshot = collect_snapshot(make_probe(test_mode=test_mode, paths=paths))
    validate_snapshot(snapshot)

    options = SessionOptions(
        test_mode=test_mode,
        log_sink=logging.getLogger("lowlevel_installer.session"),
        target_root=paths.target_root,
        state_path=state_path,
    )
    state = serve(SessionController(snapshot, options), instream, outstream)
    logger.info("Session finished in state %s", state.value)
    return 0


def main(
    argv: Optional[list[str]] = None,
    *,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        if args.command is None:
            raise UsageError("missing command")
        if args.command not in COMMANDS:
            raise UsageError(f"unknown command '{args.command}'")
    except UsageError as e:
        stderr.write(parser.format_usage())
        stderr.write(f"{PROG}: error: {e}\n")
        return 1

    if args.command == "help":
        stdout.write(parser.format_help())
        return 0

    paths = resolve_paths(args)
    configure_logging(log_path_for(args.command, paths.log_dir), console_stream=stderr)
    logger.info("%s (test_mode=%s)", args.command, args.test_mode)

    try:
        if args.command == "dump-env":
            return dump_env(paths=paths, test_mode=args.test_mode)
        return start_session(
            paths=paths,
            test_mode=args.test_mode,
            state_path=args.state,
            instream=stdin,
            outstream=stdout,
        )
    except (ProbeError, SnapshotError, ProtocolError) as e:
        logger.error("%s failed: %s", args.command, e)
        stderr.write(f"{PROG}: {e}\n")
        return 1
    except InstallerError as e:
        logger.exception("%s failed", args.command)
        stderr.write(f"{PROG}: {e}\n")
        return 1
    except Exception as e:
        logger.exception("%s crashed", args.command)
        stderr.write(f"{PROG}: internal error: {type(e).__name__}: {e}\n")
        return 1


def entrypoint() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    entrypoint()
