"""Command line front end.

    stallbook status                 print the board once
    stallbook watch                  print the board on every change
    stallbook book 5 "Acme Ltd"      book a stall
    stallbook release 5              release a stall
    stallbook shell                  interactive session (keeps a mock store alive)

The backend comes from ``FIREBASE_*`` / ``STALLBOOK_*`` environment
variables; without a usable Firestore configuration a mock store is used.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys
from collections.abc import Sequence
from typing import Any

from stallbook import __version__
from stallbook.booking import BookingService
from stallbook.config import StallBookConfig
from stallbook.exceptions import BackendUnavailableError, StallBookConfigError
from stallbook.models.booking import Snapshot
from stallbook.models.outcomes import BookOutcome, Failure, FailureReason, ReleaseOutcome
from stallbook.selector import select_store
from stallbook.store.base import Store
from stallbook.store.firestore import FirestoreStore

_logger = logging.getLogger(__name__)

_UNEXPECTED = "Unexpected error occurred. Check the log for details."
_FIRST_SNAPSHOT_TIMEOUT = 10.0


def format_board(snapshot: Snapshot, total_stalls: int, *, columns: int = 10) -> str:
    """Render the stall grid as text: ``[ ]`` available, ``[X]`` booked."""
    width = len(str(total_stalls))
    cells = [
        f"{stall:>{width}}[{'X' if snapshot.is_booked(stall) else ' '}]" for stall in range(1, total_stalls + 1)
    ]
    rows = ["  ".join(cells[i : i + columns]) for i in range(0, len(cells), columns)]
    free = snapshot.available(total_stalls)
    if not free:
        rows.append("All stalls are booked.")
    else:
        rows.append(f"{len(free)} of {total_stalls} stalls available.")
    for stall in snapshot.booked_ids():
        record = snapshot[str(stall)]
        rows.append(f"  Stall {stall}: {record.company} ({record.timestamp.isoformat(timespec='seconds')})")
    return "\n".join(rows)


async def _first_snapshot(store: Store) -> Snapshot:
    future: asyncio.Future[Snapshot] = asyncio.get_running_loop().create_future()

    def on_snapshot(snapshot: Snapshot) -> None:
        if not future.done():
            future.set_result(snapshot)

    unsubscribe = store.subscribe(on_snapshot)
    try:
        return await future
    finally:
        unsubscribe()


async def _load_board(store: Store, timeout: float) -> Snapshot:
    """Current bookings for a one-shot read.

    A Firestore store is fetched directly so an unreachable backend raises
    instead of leaving the caller waiting on the poller.
    """
    if isinstance(store, FirestoreStore):
        return await store.refresh()
    return await asyncio.wait_for(_first_snapshot(store), timeout)


def _print_outcome(outcome: BookOutcome | ReleaseOutcome) -> int:
    print(outcome.message, file=sys.stdout if outcome.ok else sys.stderr)
    return 0 if outcome.ok else 1


async def _watch(store: Store, total_stalls: int) -> int:
    def on_snapshot(snapshot: Snapshot) -> None:
        print(format_board(snapshot, total_stalls))
        print()

    unsubscribe = store.subscribe(on_snapshot)
    try:
        await asyncio.Event().wait()
    finally:
        unsubscribe()
    return 0


_SHELL_HELP = """Commands:
  book <stall> <company>   book a stall
  release <stall>          release a stall
  list                     show the board
  help                     show this help
  quit                     leave"""


async def _shell(service: BookingService) -> int:
    latest: dict[str, Snapshot] = {}

    def on_snapshot(snapshot: Snapshot) -> None:
        previous = latest.get("snapshot")
        latest["snapshot"] = snapshot
        if previous is not None and previous != snapshot:
            print(f"\n[update] {len(snapshot)} of {service.total_stalls} stalls booked")

    unsubscribe = service.store.subscribe(on_snapshot)
    print(_SHELL_HELP)
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "stallbook> ")
            except EOFError:
                return 0
            try:
                words = shlex.split(line)
            except ValueError as exc:
                print(f"Cannot parse command: {exc}")
                continue
            if not words:
                continue
            command, rest = words[0].lower(), words[1:]
            if command in {"quit", "exit"}:
                return 0
            if command == "help":
                print(_SHELL_HELP)
            elif command == "list":
                snapshot = latest.get("snapshot")
                print(format_board(snapshot, service.total_stalls) if snapshot is not None else "No data yet.")
            elif command == "book" and len(rest) >= 2:
                _print_outcome(await service.book(rest[0], " ".join(rest[1:])))
            elif command == "release" and len(rest) == 1:
                _print_outcome(await service.release(rest[0]))
            else:
                print(f"Unknown command {line.strip()!r}; type 'help'.")
    finally:
        unsubscribe()


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    _logger.error("Unhandled error in background task: %s", context.get("message"), exc_info=exc)


async def _run(args: argparse.Namespace, config: StallBookConfig) -> int:
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    async with select_store(config) as store:
        service = BookingService(store, total_stalls=config.total_stalls)
        if args.command in {"status", "watch"}:
            timeout = config.firestore.request_timeout if config.firestore else _FIRST_SNAPSHOT_TIMEOUT
            try:
                snapshot = await _load_board(store, timeout)
            except (BackendUnavailableError, TimeoutError):
                _logger.warning("Loading stall bookings failed", exc_info=True)
                return _print_outcome(Failure(reason=FailureReason.BACKEND_UNAVAILABLE, action="Loading stalls"))
            if args.command == "status":
                print(format_board(snapshot, config.total_stalls))
                return 0
            return await _watch(store, config.total_stalls)
        if args.command == "book":
            return _print_outcome(await service.book(args.stall, args.company))
        if args.command == "release":
            return _print_outcome(await service.release(args.stall))
        return await _shell(service)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stallbook", description="Exhibition stall booking")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--stalls", type=int, default=None, help="number of stalls (default 38)")
    parser.add_argument(
        "--sync",
        choices=["local", "mqtt", "none"],
        default=None,
        help="how mock stores reach their peers",
    )
    parser.add_argument("--mqtt-host", default=None, help="MQTT broker host for --sync mqtt")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="print the board once")
    sub.add_parser("watch", help="print the board on every change")
    book = sub.add_parser("book", help="book a stall")
    book.add_argument("stall")
    book.add_argument("company")
    release = sub.add_parser("release", help="release a stall")
    release.add_argument("stall")
    sub.add_parser("shell", help="interactive session")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {}
    if args.stalls is not None:
        overrides["total_stalls"] = args.stalls
    if args.sync is not None:
        overrides["sync_transport"] = args.sync
    if args.mqtt_host is not None:
        overrides["mqtt_host"] = args.mqtt_host

    try:
        config = StallBookConfig.from_env(**overrides)
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        return 130
    except StallBookConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except Exception:
        _logger.exception("Uncaught error")
        print(_UNEXPECTED, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
