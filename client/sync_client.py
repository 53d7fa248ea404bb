"""CLI sync client for intervals-sync."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from urllib.parse import urlparse

from client.blob_store import DirectoryBlobStore
from client.controller import SyncController, SyncOutcome
from client.errors import InvalidPasswordError, SyncClientError

STATE_DIR = ".intervals-sync"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def parse_interval(spec: str) -> tuple[str, int]:
    """Parse ``name:seconds`` into a (name, seconds) pair."""
    name, sep, seconds = spec.rpartition(":")
    if not sep or not name:
        raise ValueError(f"Interval must look like name:seconds, got {spec!r}")
    try:
        duration = int(seconds)
    except ValueError:
        raise ValueError(f"Interval duration must be an integer, got {seconds!r}") from None
    if duration < 0:
        raise ValueError(f"Interval duration must not be negative, got {duration}")
    return name, duration


def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _read_password(args: argparse.Namespace) -> str:
    if args.password is not None:
        password: str = args.password
        return password
    return getpass.getpass("Backend password (leave empty if none): ")


def _report(outcome: SyncOutcome) -> int:
    if outcome.success:
        print(
            f"Synced: {outcome.timers_received} timer(s), "
            f"{outcome.history_received} history entry(ies) received"
        )
        return 0
    if outcome.auth_expired:
        print("Error: Session expired. Run 'intervals-sync login' again.")
    else:
        print(f"Error: Sync failed: {outcome.error}")
    return 1


def _server_url(args: argparse.Namespace, controller: SyncController) -> str:
    configured = args.server or controller.state.backend_url
    if not configured:
        raise ValueError("No server configured. Pass --server <url>.")
    return validate_server_url(configured, args.allow_insecure_http)


async def run_command(args: argparse.Namespace, controller: SyncController) -> int:
    """Execute one CLI command. Returns the process exit code."""
    command = args.command

    if command == "test":
        status = await controller.test_connection(
            _server_url(args, controller), args.password or ""
        )
        if status.success:
            required = "required" if status.password_required else "not required"
            print(f"Connection OK (password {required})")
            return 0
        if status.invalid_password:
            print("Error: Invalid password")
        else:
            print(f"Error: {status.error}")
        return 1

    if command == "profiles":
        profiles = await controller.list_profiles(_server_url(args, controller), args.password)
        if not profiles:
            print("No profiles")
        for name in profiles:
            print(f"  {name}")
        return 0

    if command == "login":
        server_url = _server_url(args, controller)
        await controller.login(args.profile, server_url, _read_password(args))
        print(f"Logged in as {args.profile!r} at {server_url}")
        return _report(await controller.sync_now())

    if command == "logout":
        await controller.logout()
        print("Logged out")
        return 0

    if command == "status":
        for key, value in controller.status().items():
            print(f"  {key + ':':<16}{value}")
        return 0

    if command == "list":
        timers = controller.active_timers()
        if not timers:
            print("No timers")
        for timer in timers:
            total = sum(int(i.get("duration", 0)) for i in timer.get("intervals", []))
            print(
                f"  {timer['id']}  {timer.get('name', '')} "
                f"({len(timer.get('intervals', []))} interval(s), "
                f"{timer.get('rounds', 1)} round(s), {total}s per round)"
            )
        return 0

    if command == "add-timer":
        intervals = []
        for position, spec in enumerate(args.interval or []):
            name, duration = parse_interval(spec)
            intervals.append(
                {
                    "id": f"{position + 1}",
                    "name": name,
                    "duration": duration,
                    "color": "",
                    "position": position,
                }
            )
        timer = controller.upsert_timer(
            {"name": args.name, "rounds": args.rounds, "intervals": intervals}
        )
        print(f"Added timer {timer['id']}")
        if controller.authenticated:
            return _report(await controller.sync_now())
        return 0

    if command == "delete-timer":
        if not controller.delete_timer(args.timer_id):
            print(f"Error: No timer with id {args.timer_id}")
            return 1
        print(f"Deleted timer {args.timer_id}")
        if controller.authenticated:
            return _report(await controller.sync_now())
        return 0

    if not controller.authenticated:
        print("Error: Not logged in. Run 'intervals-sync login <profile> --server <url>'.")
        return 1

    if command == "sync":
        return _report(await controller.sync_now())

    if command == "switch":
        outcome = await controller.switch_profile(args.profile)
        if outcome.success:
            print(f"Switched to profile {args.profile!r}")
        return _report(outcome)

    raise ValueError(f"Unknown command: {command}")


async def _run(args: argparse.Namespace) -> int:
    store = DirectoryBlobStore(Path(args.dir).resolve() / STATE_DIR)
    controller = SyncController(store)
    try:
        return await run_command(args, controller)
    except InvalidPasswordError:
        print("Error: Invalid password")
        return 1
    except (SyncClientError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        await controller.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intervals-sync",
        description="Sync interval timers and workout history with an intervals-sync server",
    )
    parser.add_argument("--dir", "-d", default=".", help="Data directory (default: current)")
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--password", "-p", help="Backend password (prompted when needed)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log sync details")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("test", help="Check the server is reachable and the password works")
    subparsers.add_parser("profiles", help="List profiles known to the server")
    login = subparsers.add_parser("login", help="Log in as a profile and sync")
    login.add_argument("profile", help="Profile name")
    subparsers.add_parser("logout", help="Log out and forget the server")
    subparsers.add_parser("sync", help="Sync now")
    switch = subparsers.add_parser("switch", help="Switch to another profile (replaces local data)")
    switch.add_argument("profile", help="Profile name")
    subparsers.add_parser("status", help="Show sync status")
    subparsers.add_parser("list", help="List local timers")
    add = subparsers.add_parser("add-timer", help="Create a timer")
    add.add_argument("name", help="Timer name")
    add.add_argument("--rounds", "-r", type=positive_int, default=1, help="Number of rounds")
    add.add_argument(
        "--interval",
        "-i",
        action="append",
        metavar="NAME:SECONDS",
        help="Interval, repeatable (e.g. -i work:40 -i rest:20)",
    )
    delete = subparsers.add_parser("delete-timer", help="Delete a timer")
    delete.add_argument("timer_id", help="Timer id")
    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
