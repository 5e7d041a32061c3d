"""
pgbox - run commands in database containers and wait for them to be ready.

Usage:
    python -m pgbox exec <container> [--user postgres] -- psql -XAtc 'select 1'
    python -m pgbox wait-ready <container> --timeout 60
    python -m pgbox mounts /var/lib/dblab/data
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from pgbox.cancel import CancelSignal
from pgbox.config import Settings
from pgbox.errors import PgboxError
from pgbox.models import ContainerRef, ExecSpec
from pgbox.supervisor import VIEW_LOGS_CMD, Supervisor

logger = logging.getLogger(__name__)


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"expected NAME=value, got {pair!r}")
        env[name] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgbox", description="Exec and readiness supervision for database containers"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    exec_parser = sub.add_parser("exec", help="Run a command and print its stdout")
    exec_parser.add_argument("container", help="Container ID or name")
    exec_parser.add_argument("--user", default=None)
    exec_parser.add_argument("--tty", action="store_true")
    exec_parser.add_argument("--workdir", default=None)
    exec_parser.add_argument(
        "--env", action="append", default=[], metavar="NAME=value",
        help="Environment variable (repeatable)",
    )
    exec_parser.add_argument("--timeout", type=float, default=None,
                             help="Give up after this many seconds")
    exec_parser.add_argument("argv", nargs="+", metavar="-- COMMAND", help="Command to run, after --")

    ready_parser = sub.add_parser("wait-ready", help="Wait for the container health check")
    ready_parser.add_argument("container", help="Container ID or name")
    ready_parser.add_argument("--timeout", type=float, default=None,
                              help="Give up after this many seconds")

    mounts_parser = sub.add_parser("mounts", help="Print mounts for a data directory")
    mounts_parser.add_argument("data_dir")
    guest = mounts_parser.add_mutually_exclusive_group()
    guest.add_argument("--guest", dest="guest", action="store_true", default=None,
                       help="Assume this process runs inside a container")
    guest.add_argument("--no-guest", dest="guest", action="store_false",
                       help="Assume this process runs on the host")

    return parser


async def _exec(supervisor: Supervisor, args, cancel: CancelSignal) -> int:
    spec = ExecSpec(
        command=args.argv,
        user=args.user,
        tty=args.tty,
        env=args.env or None,
        workdir=args.workdir,
    )
    outcome = await supervisor.execute(ContainerRef(args.container), spec, cancel)
    print(outcome.text)
    return 0


async def _wait_ready(supervisor: Supervisor, args, cancel: CancelSignal) -> int:
    container = ContainerRef(args.container)
    try:
        await supervisor.wait_for_readiness(container, cancel)
    except PgboxError:
        await supervisor.print_container_logs(container)
        logger.error(f"Check container logs: {VIEW_LOGS_CMD} {container}")
        raise
    print(f"{container} is ready")
    return 0


async def _mounts(supervisor: Supervisor, args, cancel: CancelSignal) -> int:
    mounts = await supervisor.compute_mounts(args.data_dir, host_is_guest=args.guest)
    print(json.dumps([m.to_dict() for m in mounts], indent=2))
    return 0


COMMANDS = {
    "exec": _exec,
    "wait-ready": _wait_ready,
    "mounts": _mounts,
}


async def run(args, settings: Settings) -> int:
    cancel = CancelSignal()
    loop = asyncio.get_event_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, cancel.set, f"received {signal.Signals(sig).name}")

    timeout = getattr(args, "timeout", None)
    if timeout is not None:
        loop.call_later(timeout, cancel.set, f"timed out after {timeout}s")

    supervisor = Supervisor.from_env(settings)
    return await COMMANDS[args.command](supervisor, args, cancel)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    if args.command == "exec":
        try:
            args.env = _parse_env(args.env)
        except argparse.ArgumentTypeError as e:
            parser.error(str(e))

    try:
        return asyncio.run(run(args, settings))
    except PgboxError as e:
        print(f"pgbox: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
